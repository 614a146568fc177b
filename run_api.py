#!/usr/bin/env python3
"""
Stream Chat Relay Server
========================
Launch the FastAPI relay with uvicorn.

Usage:
    python run_api.py
    python run_api.py --port 8080
    python run_api.py --reload              # Development mode
    python run_api.py --host 0.0.0.0        # Expose to network
"""

import argparse
import logging
import os

from dotenv import load_dotenv

load_dotenv()


def main():
    parser = argparse.ArgumentParser(description="Stream Chat Relay Server")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Bind host")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    parser.add_argument("--workers", type=int, default=1, help="Number of workers (no reload)")
    parser.add_argument("--log-level", type=str, default="info", help="Log level")
    args = parser.parse_args()

    # Configure logging before uvicorn takes over
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s | %(levelname)7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    # The relay still starts without a key; /api/chat answers 500 until it is set
    if not os.environ.get("DIFY_API_KEY"):
        print("\n⚠️  DIFY_API_KEY not set!")
        print("   Run: export DIFY_API_KEY='app-...'")
        print("   Chat requests will fail with HTTP 500 until it is set.\n")

    import uvicorn

    print(f"""
╔══════════════════════════════════════════════════════════════╗
║                   STREAM CHAT  RELAY                         ║
║                                                              ║
║   Host:    {args.host:<47} ║
║   Port:    {args.port:<47} ║
║   Chat:    /api/chat?q=...&cid=...                           ║
║   Health:  /health                                           ║
║   Reload:  {'ON' if args.reload else 'OFF':<47} ║
╚══════════════════════════════════════════════════════════════╝
    """)

    uvicorn.run(
        "src.api.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1 if args.reload else args.workers,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
