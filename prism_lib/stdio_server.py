"""Newline-delimited JSON-RPC over stdin/stdout.

stdout carries protocol frames only; every diagnostic goes to stderr. stdin is
read as raw bytes so a line that is not valid UTF-8 becomes a parse error for
that line instead of ending the session.
"""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from types import FrameType
from typing import Any, Dict, Iterable, TextIO

from .auth import build_authenticator
from .config import Settings
from .dispatcher import ProtocolDispatcher
from .errors import StoreConfigurationError
from .logging_utils import configure_loggers
from .store import DocumentStore, open_store

LOGGER = logging.getLogger("prism.stdio")

SERVER_LOGGERS = ("stdio", "dispatcher", "search", "store", "tiers", "auth")
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130
SIGNAL_EXIT_BASE = 128


def build_dispatcher(settings: Settings, store: DocumentStore) -> ProtocolDispatcher:
    authenticator = build_authenticator(settings.static_tokens, settings.api_url)
    return ProtocolDispatcher(store=store, authenticator=authenticator)


def encode_frame(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")) + "\n"


def serve(
    dispatcher: ProtocolDispatcher,
    credential: str | None,
    stdin: Iterable[bytes | str],
    stdout: TextIO,
) -> int:
    """Dispatch each non-blank line until EOF; return the number of frames written."""

    written = 0
    for line in stdin:
        line = line.strip()
        if not line:
            continue
        result = dispatcher.handle(line, credential)
        if result.is_notification:
            continue
        stdout.write(encode_frame(result.payload))
        stdout.flush()
        written += 1
    return written


def _terminate(signum: int, frame: FrameType | None) -> None:
    LOGGER.info("Received %s; shutting down", signal.Signals(signum).name)
    raise SystemExit(SIGNAL_EXIT_BASE + signum)


def _install_sigterm_handler() -> Dict[int, Any]:
    if threading.current_thread() is not threading.main_thread():
        return {}
    previous = {signal.SIGTERM: signal.getsignal(signal.SIGTERM)}
    signal.signal(signal.SIGTERM, _terminate)
    return previous


def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler if handler is not None else signal.SIG_DFL)


def main() -> int:
    try:
        settings = Settings.from_env()
    except ValueError as exc:
        configure_loggers(SERVER_LOGGERS)
        LOGGER.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG
    configure_loggers(SERVER_LOGGERS, debug=settings.debug)

    try:
        store = open_store(settings.mongodb_uri, settings.database_name)
    except StoreConfigurationError as exc:
        LOGGER.error("%s", exc)
        return EXIT_CONFIG

    previous_handlers = _install_sigterm_handler()
    try:
        dispatcher = build_dispatcher(settings, store)
        if not settings.token:
            LOGGER.warning("PRISM_TOKEN is not set; requests will be rejected as unauthenticated")
        LOGGER.info("Prism MCP server ready (database=%s)", settings.database_name)
        frames = serve(dispatcher, settings.token, sys.stdin.buffer, sys.stdout)
        LOGGER.debug("stdin closed after %d response(s)", frames)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    finally:
        store.close()
        LOGGER.debug("Document store closed")
        _restore_signal_handlers(previous_handlers)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
