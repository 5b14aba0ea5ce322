"""CLI connector: spawn the local protocol server and hand it this terminal.

The child inherits stdin/stdout/stderr, so the IDE on the other end of our
stdio talks to it directly. This process only supervises: it forwards
SIGINT/SIGTERM, escalates to SIGKILL on a repeated signal, and exits with the
child's status.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import signal
import subprocess
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from types import FrameType
from typing import Any, Callable, Dict, List, Mapping, Sequence

from .auth import RemoteTokenAuthenticator, VerifyResult
from .config import SERVER_MODULE, Settings, bundled_server_path, load_saved_token, save_cli_config, save_token
from .errors import BridgeError
from .logging_utils import configure_logger
from .tiers import IDE_SYNC, minimum_tier_for, tier_display_name

LOGGER = logging.getLogger("prism.bridge")

FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)
SIGNAL_EXIT_BASE = 128
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def exit_code_for(returncode: int) -> int:
    """Map a ``Popen.returncode`` onto a shell exit status (signal N -> 128+N)."""

    if returncode < 0:
        return SIGNAL_EXIT_BASE - returncode
    return returncode


class ProcessBridge:
    """Supervise one protocol server child.

    ``server_path`` overrides the server script; by default the server module
    bundled with this package is run with ``python -m``.
    """

    def __init__(
        self,
        server_path: Path | None = None,
        *,
        python: str = sys.executable,
        env_overrides: Mapping[str, str] | None = None,
        base_env: Mapping[str, str] | None = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self.server_path = Path(server_path) if server_path is not None else None
        self.python = python
        self._env_overrides = dict(env_overrides or {})
        self._base_env = base_env
        self._popen = popen
        self._child: subprocess.Popen | None = None
        self._lock = threading.Lock()
        self._signal_count = 0
        self._pending_signal: int | None = None
        self._original_signal_handlers: Dict[int, Any] = {}

    @property
    def running(self) -> bool:
        return self._child is not None

    def command(self) -> List[str]:
        if self.server_path is None:
            return [self.python, "-m", SERVER_MODULE]
        return [self.python, str(self.server_path)]

    def environment(self) -> Dict[str, str]:
        env = dict(os.environ if self._base_env is None else self._base_env)
        env.update(self._env_overrides)
        return env

    def connect(self) -> int:
        """Run the protocol server until it exits; return its exit status."""

        target = self.server_path or bundled_server_path()
        if not target.is_file():
            raise BridgeError(
                f"Protocol server not found at {target}. "
                "Reinstall the package or point PRISM_MCP_SERVER_PATH at scripts/prism_mcp_server.py."
            )
        with self._lock:
            if self._child is not None:
                raise BridgeError(f"Protocol server already running (pid {self._child.pid})")
            self._signal_count = 0
            self._pending_signal = None
            # Handlers go in before Popen; a signal during the spawn waits in _pending_signal.
            self._install_signal_handlers()
            try:
                self._child = self._popen(self.command(), env=self.environment())
            except OSError as exc:
                raise BridgeError(f"Failed to start protocol server: {exc}") from exc
            finally:
                if self._child is None:
                    self._restore_signal_handlers()
            child = self._child
        LOGGER.debug("Started protocol server pid=%d: %s", child.pid, " ".join(self.command()))
        try:
            if self._pending_signal is not None:
                self._forward(child, self._pending_signal)
            returncode = child.wait()
        finally:
            self._restore_signal_handlers()
            with self._lock:
                self._child = None
        code = exit_code_for(returncode)
        LOGGER.debug("Protocol server exited with status %d", code)
        return code

    # ----------------------------------------------------------------- signals
    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            LOGGER.debug("Not on the main thread; signal forwarding disabled")
            return
        for sig in FORWARDED_SIGNALS:
            self._original_signal_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._original_signal_handlers.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        self._original_signal_handlers.clear()

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        self._signal_count += 1
        child = self._child
        if child is None:
            # Still spawning; connect() forwards it once the child exists.
            self._pending_signal = signum
            return
        self._forward(child, signum)

    def _forward(self, child: subprocess.Popen, signum: int) -> None:
        if child.poll() is not None:
            return
        name = signal.Signals(signum).name
        try:
            if self._signal_count == 1:
                LOGGER.info("Received %s; forwarding to protocol server (pid %d)", name, child.pid)
                child.send_signal(signum)
            else:
                LOGGER.warning("Received %s again; killing protocol server (pid %d)", name, child.pid)
                child.kill()
        except ProcessLookupError:
            pass


# --------------------------------------------------------------------- CLI


def resolve_token(explicit: str | None, settings: Settings) -> str | None:
    for candidate in (explicit, settings.token):
        if candidate and candidate.strip():
            return candidate.strip()
    return load_saved_token()


def _verify(settings: Settings, token: str) -> VerifyResult:
    return RemoteTokenAuthenticator(settings.api_url).verify(token)


def _record_verification(result: VerifyResult) -> None:
    save_cli_config(
        {
            "userId": result.user_id,
            "tier": result.tier,
            "lastVerified": datetime.now(timezone.utc).isoformat(),
        }
    )


def _report_upgrade(settings: Settings, result: VerifyResult) -> None:
    required = minimum_tier_for(IDE_SYNC)
    LOGGER.error(
        "IDE sync requires the %s plan or higher (current plan: %s).",
        tier_display_name(required),
        tier_display_name(result.tier),
    )
    LOGGER.error("Upgrade at: %s%s", settings.api_url, result.upgrade_url or "/subscription")


def _missing_token() -> int:
    LOGGER.error("No authentication token found. Run `prism-connect login` or set PRISM_TOKEN.")
    return EXIT_FAILURE


def run_connect(args: argparse.Namespace, settings: Settings) -> int:
    token = resolve_token(args.token, settings)
    if args.verify:
        if not token:
            return _missing_token()
        result = _verify(settings, token)
        if not result.success:
            LOGGER.error("%s", result.error or "Authentication failed")
            return EXIT_FAILURE
        if not result.ide_sync:
            _report_upgrade(settings, result)
            return EXIT_FAILURE
        _record_verification(result)
        LOGGER.info("Authenticated as %s (%s)", result.user_id, tier_display_name(result.tier))

    overrides = settings.child_environment()
    if token:
        overrides["PRISM_TOKEN"] = token
    server_path = Path(args.server) if args.server else settings.server_path
    bridge = ProcessBridge(server_path, env_overrides=overrides)
    return bridge.connect()


def run_login(args: argparse.Namespace, settings: Settings) -> int:
    token = args.token or getpass.getpass("Enter your Prism token: ")
    token = (token or "").strip()
    if not token:
        return _missing_token()
    if args.verify:
        result = _verify(settings, token)
        if not result.success:
            LOGGER.error("%s", result.error or "Authentication failed")
            return EXIT_FAILURE
        _record_verification(result)
    path = save_token(token)
    LOGGER.info("Token saved to %s", path)
    return 0


def run_status(args: argparse.Namespace, settings: Settings) -> int:
    token = resolve_token(args.token, settings)
    if not token:
        return _missing_token()
    result = _verify(settings, token)
    if not result.success:
        LOGGER.error("%s", result.error or "Authentication failed")
        return EXIT_FAILURE
    _record_verification(result)
    LOGGER.info("User: %s", result.user_id)
    LOGGER.info("Plan: %s", tier_display_name(result.tier))
    LOGGER.info("IDE sync: %s", "enabled" if result.ide_sync else "not included")
    return 0


COMMANDS: Dict[str, Callable[[argparse.Namespace, Settings], int]] = {
    "connect": run_connect,
    "login": run_login,
    "status": run_status,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prism-connect", description="Connect an IDE to the Prism context engine")
    parser.set_defaults(token=None, verify=False, server=None)
    subparsers = parser.add_subparsers(dest="command")

    connect = subparsers.add_parser("connect", help="Run the protocol server on this terminal's stdio (default)")
    connect.add_argument("--token", help="Bearer token (defaults to PRISM_TOKEN, then the saved token)")
    connect.add_argument("--verify", action="store_true", help="Verify the token and plan before starting")
    connect.add_argument("--server", help="Protocol server script (defaults to PRISM_MCP_SERVER_PATH, then the bundled server module)")

    login = subparsers.add_parser("login", help="Save a token under the Prism config home")
    login.add_argument("token", nargs="?", help="Token to save; prompted for when omitted")
    login.add_argument("--verify", action="store_true", help="Verify the token before saving it")

    status = subparsers.add_parser("status", help="Show the account and plan behind the current token")
    status.add_argument("--token", help="Bearer token to check")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env()
    except ValueError as exc:
        configure_logger("bridge")
        LOGGER.error("Invalid configuration: %s", exc)
        raise SystemExit(EXIT_CONFIG)
    configure_logger("bridge", debug=settings.debug)
    try:
        code = COMMANDS[args.command or "connect"](args, settings)
    except BridgeError as exc:
        LOGGER.error("%s", exc)
        code = EXIT_FAILURE
    raise SystemExit(code)


if __name__ == "__main__":
    main()
