"""
Stream Chat Configuration
=========================
Centralized settings for the relay and the chat client.
Supports environment variable overrides.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# System Metadata
VERSION = "1.0.0"
SERVICE_NAME = "Stream Chat Relay"

# Upstream (Dify-compatible chat service)
DEFAULT_UPSTREAM_URL = "https://api.dify.ai/v1"
DEFAULT_USER_ID = "demo-user"
UPSTREAM_CHAT_PATH = "/chat-messages"
UPSTREAM_CONNECT_TIMEOUT = float(os.getenv("UPSTREAM_CONNECT_TIMEOUT", "10"))

# Env var names (read per request by the relay)
API_KEY_ENV = "DIFY_API_KEY"
API_URL_ENV = "DIFY_API_URL"
USER_ID_ENV = "DIFY_USER_ID"

# Relay
CORS_ORIGINS = os.getenv("CHAT_CORS_ORIGINS", "*")
# Browser auto-reconnect interval sent ahead of the stream (ms). Large enough
# that a finished stream is never silently re-requested.
RECONNECT_GUARD_MS = 100_000_000
# sse-starlette keep-alive comments would be interleaved with raw upstream
# chunks, so the interval is pushed out as far as the guard.
PING_INTERVAL_SECONDS = RECONNECT_GUARD_MS // 1000

# Client
DEFAULT_RELAY_URL = os.getenv("CHAT_RELAY_URL", "http://localhost:8000/api/chat")
DEFAULT_RECONNECT_MS = 3000
MAX_OVERLAP_SCAN = 1024
