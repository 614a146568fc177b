"""
Stream Chat API Package
========================
FastAPI relay between browser/terminal clients and the upstream chat service.

Modules:
    - main: App factory, CORS, lifespan management
    - routes: HTTP endpoints (chat relay, health)
    - upstream: Upstream request and byte-stream relay
    - dependencies: Settings, validation, shared upstream client
"""

from .main import create_app

__all__ = ["create_app"]
