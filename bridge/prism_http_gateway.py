#!/usr/bin/env python3
"""
HTTP gateway for the Prism MCP surface.

- POST /mcp          -> JSON-RPC (Authorization: Bearer <token>)
- GET  /mcp/search   -> REST transcript search
- GET  /auth/verify  -> token + plan check
- GET  /healthz      -> liveness
- GET  /version      -> gateway metadata

Bind address comes from PRISM_HTTP_HOST / PRISM_HTTP_PORT unless overridden.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import uvicorn

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from prism_lib.auth import build_authenticator  # noqa: E402
from prism_lib.config import Settings  # noqa: E402
from prism_lib.dispatcher import ProtocolDispatcher  # noqa: E402
from prism_lib.errors import StoreConfigurationError  # noqa: E402
from prism_lib.http_app import create_app  # noqa: E402
from prism_lib.logging_utils import configure_loggers  # noqa: E402
from prism_lib.store import open_store  # noqa: E402

GATEWAY_LOGGERS = ("http", "dispatcher", "search", "store", "tiers", "auth")


def _parse_args(settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the Prism MCP gateway over HTTP")
    parser.add_argument("--host", default=settings.http_host, help="Bind host (default: %(default)s)")
    parser.add_argument("--port", type=int, default=settings.http_port, help="Bind port (default: %(default)s)")
    return parser.parse_args()


def main() -> None:
    settings = Settings.from_env()
    args = _parse_args(settings)
    loggers = configure_loggers(GATEWAY_LOGGERS, debug=settings.debug)
    try:
        store = open_store(settings.mongodb_uri, settings.database_name)
    except StoreConfigurationError as exc:
        loggers["http"].error("%s", exc)
        raise SystemExit(2)
    authenticator = build_authenticator(settings.static_tokens, settings.api_url)
    dispatcher = ProtocolDispatcher(store=store, authenticator=authenticator)
    app = create_app(dispatcher=dispatcher, store=store, authenticator=authenticator)
    loggers["http"].info("Prism gateway listening on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if settings.debug else "info")


if __name__ == "__main__":
    main()
