from __future__ import annotations

from typing import Any, Dict

from mcp import types

AUTHENTICATION_REQUIRED = -32001
UPGRADE_REQUIRED = -32002


class PrismError(Exception):
    """Base class for errors the dispatcher serializes onto the wire."""

    code: int = types.INTERNAL_ERROR
    http_status: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None, *, data: Dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)

    def to_error(self) -> Dict[str, Any]:
        error = types.ErrorData(code=self.code, message=self.message, data=self.data)
        return error.model_dump(mode="json", exclude_none=True)


class ParseError(PrismError):
    code = types.PARSE_ERROR
    http_status = 400
    default_message = "Parse error"


class InvalidRequest(PrismError):
    code = types.INVALID_REQUEST
    http_status = 400
    default_message = "Invalid request"


class MethodNotFound(PrismError):
    code = types.METHOD_NOT_FOUND
    http_status = 200
    default_message = "Method not found"


class InvalidParams(PrismError):
    code = types.INVALID_PARAMS
    http_status = 200
    default_message = "Invalid params"


class InternalError(PrismError):
    code = types.INTERNAL_ERROR
    http_status = 500
    default_message = "Internal error"


class AuthenticationRequired(PrismError):
    code = AUTHENTICATION_REQUIRED
    http_status = 401
    default_message = "Authentication required"


class UpgradeRequired(PrismError):
    code = UPGRADE_REQUIRED
    http_status = 403

    def __init__(self, current_tier: str, required_tier: str, *, upgrade_url: str = "/subscription") -> None:
        self.current_tier = current_tier
        self.required_tier = required_tier
        super().__init__(
            f"IDE sync requires the {required_tier.capitalize()} plan or higher "
            f"(current plan: {current_tier.capitalize()})",
            data={
                "currentTier": current_tier,
                "requiredTier": required_tier,
                "upgradeUrl": upgrade_url,
            },
        )


class ProjectNotFound(InvalidParams):
    default_message = "Project not found"


class StoreConfigurationError(RuntimeError):
    """Raised when the document store cannot be configured from settings."""


class BridgeError(RuntimeError):
    """Raised when the connector cannot start or supervise the protocol server."""
