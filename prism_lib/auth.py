from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol

import httpx

LOGGER = logging.getLogger("prism.auth")

VERIFY_PATH = "/api/auth/verify"
DEFAULT_TIMEOUT = 10.0


class Authenticator(Protocol):
    def authenticate(self, credential: str | None) -> str | None:
        """Return the user id for ``credential`` or ``None`` when it is not valid."""


def bearer_credential(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, value = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    value = value.strip()
    return value or None


class StaticTokenAuthenticator:
    """Fixed token -> user id map (local development and tests)."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    def authenticate(self, credential: str | None) -> str | None:
        if not credential:
            return None
        for token, user_id in self._tokens.items():
            if hmac.compare_digest(token, credential):
                return user_id
        return None


@dataclass(frozen=True)
class VerifyResult:
    success: bool
    user_id: str = ""
    tier: str = "free"
    ide_sync: bool = False
    error: str | None = None
    upgrade_url: str | None = None

    @classmethod
    def failure(cls, error: str) -> "VerifyResult":
        return cls(success=False, error=error)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "VerifyResult":
        return cls(
            success=bool(payload.get("success")),
            user_id=str(payload.get("userId") or ""),
            tier=str(payload.get("tier") or "free"),
            ide_sync=bool(payload.get("ideSync")),
            error=str(payload["error"]) if payload.get("error") else None,
            upgrade_url=str(payload["upgradeUrl"]) if payload.get("upgradeUrl") else None,
        )


class RemoteTokenAuthenticator:
    """Verifies bearer tokens against the hosted API's verify endpoint."""

    def __init__(
        self,
        api_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def verify(self, token: str) -> VerifyResult:
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        try:
            with httpx.Client(timeout=httpx.Timeout(self._timeout), transport=self._transport) as client:
                response = client.get(f"{self.api_url}{VERIFY_PATH}", headers=headers)
        except httpx.HTTPError as exc:
            LOGGER.warning("Token verification request failed: %s", exc)
            return VerifyResult.failure(f"Connection failed: {exc}")
        if response.status_code == 401:
            return VerifyResult.failure("Invalid or expired token")
        if response.status_code >= 400:
            return VerifyResult.failure(f"Failed to verify token (HTTP {response.status_code})")
        try:
            payload = response.json()
        except ValueError:
            return VerifyResult.failure("Verify endpoint returned invalid JSON")
        if not isinstance(payload, dict):
            return VerifyResult.failure("Verify endpoint returned an unexpected payload")
        return VerifyResult.from_payload(payload)

    def authenticate(self, credential: str | None) -> str | None:
        if not credential:
            return None
        result = self.verify(credential)
        if not result.success or not result.user_id:
            return None
        return result.user_id


def build_authenticator(static_tokens: Dict[str, str], api_url: str) -> Authenticator:
    if static_tokens:
        return StaticTokenAuthenticator(static_tokens)
    return RemoteTokenAuthenticator(api_url)
