"""
Stream Chat API Routes
========================
All HTTP endpoints for the relay.

Endpoints:
    GET /api/chat  - Relay the upstream chat stream (SSE)
    GET /health    - Relay status
"""

import os
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from src.chat.config import API_KEY_ENV, API_URL_ENV, DEFAULT_UPSTREAM_URL, PING_INTERVAL_SECONDS, VERSION

from .dependencies import (
    RelaySettings,
    UpstreamClientState,
    get_relay_settings,
    get_upstream_client,
    require_query,
)
from .upstream import UpstreamError, open_upstream_stream, relay_stream

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


class HealthResponse(BaseModel):
    status: str
    version: str
    upstream_configured: bool
    upstream_url: str
    client_ready: bool


# =============================================================================
# ROUTER
# =============================================================================

router = APIRouter()


# =============================================================================
# GET /api/chat
# =============================================================================

@router.get("/api/chat", tags=["Chat"])
async def chat(
    query: str = Depends(require_query),
    cid: Optional[str] = Query(default=None, description="Upstream conversation_id"),
    settings: RelaySettings = Depends(get_relay_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
):
    try:
        upstream = await open_upstream_stream(client, settings, query, conversation_id=cid or None)
    except UpstreamError as e:
        return PlainTextResponse(e.message, status_code=502)

    logger.info(f"Relaying chat stream (conversation={cid or 'new'})")
    return EventSourceResponse(
        relay_stream(upstream),
        headers=SSE_HEADERS,
        ping=PING_INTERVAL_SECONDS,
    )


# =============================================================================
# GET /health
# =============================================================================

@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health():
    configured = bool(os.environ.get(API_KEY_ENV, "").strip())
    return HealthResponse(
        status="healthy" if configured else "unconfigured",
        version=VERSION,
        upstream_configured=configured,
        upstream_url=os.environ.get(API_URL_ENV) or DEFAULT_UPSTREAM_URL,
        client_ready=UpstreamClientState.is_ready(),
    )
