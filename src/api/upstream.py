"""
Upstream Stream Relay
======================
Opens the streaming chat request against the upstream service and turns
its body into the items of an `EventSourceResponse`.

The relay never parses upstream events. Raw `bytes` items are written to
the client untouched by sse-starlette, so upstream framing survives even
when a chunk ends in the middle of an event. Only two items are synthetic:

    retry: 100000000          first, before any upstream bytes
    event: error              last, if reading the upstream body fails
"""

import json
import logging
from typing import AsyncIterator, Dict, Optional, Union

import anyio
import httpx
from sse_starlette.sse import ServerSentEvent

from src.chat.config import RECONNECT_GUARD_MS

from .dependencies import RelaySettings

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """The upstream service refused the request before any streaming began."""

    def __init__(self, status_code: Optional[int], detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.message)

    @property
    def message(self) -> str:
        if self.status_code is None:
            return f"Upstream error: {self.detail}"
        return f"Upstream error: {self.status_code} {self.detail}"


def build_payload(query: str, user: str, conversation_id: Optional[str] = None) -> Dict:
    payload = {
        "inputs": {},
        "query": query,
        "response_mode": "streaming",
        "user": user,
    }
    if conversation_id:
        payload["conversation_id"] = conversation_id
    return payload


async def open_upstream_stream(
    client: httpx.AsyncClient,
    settings: RelaySettings,
    query: str,
    conversation_id: Optional[str] = None,
) -> httpx.Response:
    """
    Send the streaming chat request and return the open response.

    Raises:
        UpstreamError: connection failed or a non-2xx status came back.
            The response is closed before raising.
    """
    request = client.build_request(
        "POST",
        settings.chat_url,
        json=build_payload(query, settings.user_id, conversation_id),
        headers={
            "Authorization": f"Bearer {settings.api_key}",
            "Accept": "text/event-stream",
        },
    )

    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        logger.error(f"Upstream connection failed: {e}")
        raise UpstreamError(None, f"{type(e).__name__}: {e}") from e

    if not response.is_success:
        try:
            detail = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError:
            detail = ""
        finally:
            await response.aclose()
        logger.warning(f"Upstream rejected chat request: HTTP {response.status_code}")
        raise UpstreamError(response.status_code, detail)

    return response


async def relay_stream(
    response: httpx.Response,
) -> AsyncIterator[Union[bytes, ServerSentEvent]]:
    """Guard line, then the upstream body verbatim; one error event on failure."""
    yield f"retry: {RECONNECT_GUARD_MS}\n\n".encode("utf-8")

    forwarded = 0
    try:
        async for chunk in response.aiter_bytes():
            forwarded += len(chunk)
            yield chunk
    except Exception as e:
        logger.error(f"Upstream stream broke after {forwarded} bytes: {e}", exc_info=True)
        yield ServerSentEvent(
            data=json.dumps({"error": f"{type(e).__name__}: {e}"}),
            event="error",
            sep="\n",
        )
    finally:
        # Client disconnects cancel the task; the upstream socket still needs closing
        with anyio.CancelScope(shield=True):
            await response.aclose()
        logger.debug(f"Relay finished ({forwarded} bytes forwarded)")
