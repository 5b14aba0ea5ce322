from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Mapping

from .fileio import read_json, write_json_atomic, write_text_atomic
from .logging_utils import is_truthy

DEFAULT_API_URL = "https://prism.jeffdev.studio"
DEFAULT_DATABASE_NAME = "prism"
DEFAULT_HTTP_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 3100
TOKEN_FILENAME = "token"
CONFIG_FILENAME = "config.json"
SERVER_MODULE = "prism_lib.stdio_server"

DEFAULT_CLI_CONFIG: Dict[str, object] = {
    "apiUrl": DEFAULT_API_URL,
    "userId": None,
    "tier": None,
    "lastVerified": None,
}


def bundled_server_path() -> Path:
    """The protocol server module shipped alongside this package."""

    return Path(__file__).resolve().with_name("stdio_server.py")


@lru_cache(maxsize=1)
def config_home() -> Path:
    env = os.getenv("PRISM_CONFIG_HOME")
    if env:
        base = Path(env).expanduser()
        if not base.is_absolute():
            raise ValueError(f"PRISM_CONFIG_HOME must be absolute, got {base}")
    else:
        base = Path.home() / ".prism"
    base.mkdir(parents=True, exist_ok=True)
    return base


def _first_env(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env.get(name)
        if value and value.strip():
            return value.strip()
    return None


def parse_token_map(raw: str | None) -> Dict[str, str]:
    """Parse ``token=userId`` pairs separated by commas."""

    tokens: Dict[str, str] = {}
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        token, sep, user_id = part.partition("=")
        if not sep or not token.strip() or not user_id.strip():
            raise ValueError(f"Invalid PRISM_AUTH_TOKENS entry {part!r}; expected token=userId")
        tokens[token.strip()] = user_id.strip()
    return tokens


@dataclass(frozen=True)
class Settings:
    mongodb_uri: str | None = None
    database_name: str = DEFAULT_DATABASE_NAME
    api_url: str = DEFAULT_API_URL
    token: str | None = None
    static_tokens: Dict[str, str] = field(default_factory=dict)
    server_path: Path | None = None
    debug: bool = False
    http_host: str = DEFAULT_HTTP_HOST
    http_port: int = DEFAULT_HTTP_PORT

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if env is None else env
        server_path = _first_env(env, "PRISM_MCP_SERVER_PATH")
        return cls(
            mongodb_uri=_first_env(env, "MONGODB_URI", "COSMOS_CONNECTION_STRING"),
            database_name=_first_env(env, "COSMOS_DATABASE_NAME") or DEFAULT_DATABASE_NAME,
            api_url=(_first_env(env, "PRISM_API_URL") or DEFAULT_API_URL).rstrip("/"),
            token=_first_env(env, "PRISM_TOKEN"),
            static_tokens=parse_token_map(env.get("PRISM_AUTH_TOKENS")),
            server_path=Path(server_path).expanduser() if server_path else None,
            debug=is_truthy(env.get("PRISM_DEBUG")),
            http_host=_first_env(env, "PRISM_HTTP_HOST") or DEFAULT_HTTP_HOST,
            http_port=int(_first_env(env, "PRISM_HTTP_PORT") or DEFAULT_HTTP_PORT),
        )

    def child_environment(self) -> Dict[str, str]:
        """Connection parameters forwarded to the spawned protocol server."""

        values = {"COSMOS_DATABASE_NAME": self.database_name}
        if self.mongodb_uri:
            values["MONGODB_URI"] = self.mongodb_uri
        if self.token:
            values["PRISM_TOKEN"] = self.token
        return values


def token_path() -> Path:
    return config_home() / TOKEN_FILENAME


def load_saved_token() -> str | None:
    path = token_path()
    if not path.exists():
        return None
    token = path.read_text(encoding="utf-8").strip()
    return token or None


def save_token(token: str) -> Path:
    path = token_path()
    write_text_atomic(path, token.strip() + "\n", mode=0o600)
    return path


def load_cli_config() -> Dict[str, object]:
    payload = read_json(config_home() / CONFIG_FILENAME, default={})
    if not isinstance(payload, dict):
        return dict(DEFAULT_CLI_CONFIG)
    return {**DEFAULT_CLI_CONFIG, **payload}


def save_cli_config(updates: Mapping[str, object]) -> Dict[str, object]:
    merged = {**load_cli_config(), **updates}
    write_json_atomic(config_home() / CONFIG_FILENAME, merged)
    return merged
