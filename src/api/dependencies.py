"""
Stream Chat API Dependencies
==============================
- Relay settings (upstream credentials, read per request)
- Query validation
- Shared upstream HTTP client (created once at startup)
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import HTTPException, Query, status

from src.chat.config import (
    API_KEY_ENV,
    API_URL_ENV,
    USER_ID_ENV,
    DEFAULT_UPSTREAM_URL,
    DEFAULT_USER_ID,
    UPSTREAM_CHAT_PATH,
    UPSTREAM_CONNECT_TIMEOUT,
)

logger = logging.getLogger(__name__)


# =============================================================================
# UPSTREAM CLIENT SINGLETON
# =============================================================================

class UpstreamClientState:
    """
    Holds the pooled httpx client used for every upstream request.

    Lifecycle:
        - `initialize()` is called once during app startup (lifespan).
        - `get()` is called per-request via dependency injection.
        - `shutdown()` is called once during app teardown.
    """

    _instance: Optional[httpx.AsyncClient] = None

    @classmethod
    def initialize(
        cls,
        connect_timeout: float = UPSTREAM_CONNECT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> httpx.AsyncClient:
        if cls._instance is not None:
            logger.warning("Upstream client already initialized, returning existing instance")
            return cls._instance

        # Streams stay open as long as upstream keeps talking: no read timeout
        cls._instance = httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=connect_timeout),
            transport=transport,
        )
        logger.info(f"Upstream client ready (connect timeout {connect_timeout}s)")
        return cls._instance

    @classmethod
    def get(cls) -> httpx.AsyncClient:
        if cls._instance is None:
            raise RuntimeError(
                "Upstream client not initialized. "
                "This should never happen, check app lifespan."
            )
        return cls._instance

    @classmethod
    async def shutdown(cls) -> None:
        if cls._instance is not None:
            await cls._instance.aclose()
            logger.info("Upstream client closed")
            cls._instance = None

    @classmethod
    def is_ready(cls) -> bool:
        return cls._instance is not None


def get_upstream_client() -> httpx.AsyncClient:
    return UpstreamClientState.get()


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass
class RelaySettings:
    api_key: str
    api_url: str = DEFAULT_UPSTREAM_URL
    user_id: str = DEFAULT_USER_ID

    @property
    def chat_url(self) -> str:
        return f"{self.api_url.rstrip('/')}{UPSTREAM_CHAT_PATH}"


def get_relay_settings() -> RelaySettings:
    """
    FastAPI dependency that reads upstream settings from the environment.

    Raises:
        HTTPException 500: DIFY_API_KEY is not set
    """
    api_key = os.environ.get(API_KEY_ENV, "").strip()
    if not api_key:
        logger.error(f"{API_KEY_ENV} is not set. Chat requests cannot be relayed.")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Missing {API_KEY_ENV}",
        )

    return RelaySettings(
        api_key=api_key,
        api_url=os.environ.get(API_URL_ENV) or DEFAULT_UPSTREAM_URL,
        user_id=os.environ.get(USER_ID_ENV) or DEFAULT_USER_ID,
    )


# =============================================================================
# REQUEST VALIDATION
# =============================================================================

def require_query(
    q: str = Query(default="", description="User query (required, non-empty)"),
) -> str:
    """
    Returns the trimmed query.

    Raises:
        HTTPException 400: `q` missing or blank
    """
    query = q.strip()
    if not query:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing q",
        )
    return query
