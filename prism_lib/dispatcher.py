"""Stateless JSON-RPC dispatcher for the Prism MCP surface.

Each request runs through the same cycle::

    received -> authenticated -> tier-checked -> method-routed -> result | error

Nothing below this module serializes errors; handlers raise ``PrismError``
subclasses (or anything else, which becomes an internal error) and
``ProtocolDispatcher.handle`` turns the outcome into a wire envelope.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Tuple

from mcp import types

from . import __version__
from .auth import Authenticator
from .errors import (
    AuthenticationRequired,
    InternalError,
    InvalidParams,
    InvalidRequest,
    MethodNotFound,
    ParseError,
    PrismError,
    UpgradeRequired,
)
from .search import TranscriptSearchEngine
from .store import SUBSCRIPTIONS, Collection, DocumentStore
from .tiers import IDE_SYNC, capability_for, minimum_tier_for, resolve_tier
from .tools import TOOL_DESCRIPTORS, ToolContext, get_tool, validate_arguments

LOGGER = logging.getLogger("prism.dispatcher")

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "prism-context-engine"
NOTIFICATION_PREFIX = "notifications/"

_MISSING = object()


def _valid_id(value: Any) -> bool:
    return value is None or isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))


def _decode(body: Any) -> Any:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8")
    if isinstance(body, str):
        return json.loads(body)
    return body


def peek_request(body: Any) -> Tuple[Any, bool]:
    """Best-effort ``(id, is_notification)`` so early failures can still echo the id."""

    try:
        payload = _decode(body)
    except (ValueError, RecursionError):
        return None, False
    if not isinstance(payload, Mapping):
        return None, False
    if "id" not in payload:
        return None, True
    candidate = payload["id"]
    return (candidate if _valid_id(candidate) else None), False


@dataclass(frozen=True)
class Envelope:
    id: Any
    method: str
    params: Dict[str, Any] = field(default_factory=dict)
    is_notification: bool = False


def parse_envelope(body: Any) -> Envelope:
    try:
        payload = _decode(body)
    except (ValueError, RecursionError) as exc:
        # RecursionError: nesting deeper than the interpreter stack.
        raise ParseError() from exc
    if isinstance(payload, list):
        raise InvalidRequest("Batch requests are not supported")
    if not isinstance(payload, Mapping):
        raise InvalidRequest()
    if payload.get("jsonrpc") != JSONRPC_VERSION:
        raise InvalidRequest("jsonrpc must be \"2.0\"")
    raw_id = payload.get("id", _MISSING)
    if raw_id is not _MISSING and not _valid_id(raw_id):
        raise InvalidRequest("id must be a string, number or null")
    method = payload.get("method")
    if not isinstance(method, str) or not method:
        raise InvalidRequest("method must be a non-empty string")
    params = payload.get("params")
    if params is None:
        params = {}
    if not isinstance(params, Mapping):
        raise InvalidParams("params must be an object")
    return Envelope(
        id=None if raw_id is _MISSING else raw_id,
        method=method,
        params=dict(params),
        is_notification=raw_id is _MISSING,
    )


@dataclass(frozen=True)
class DispatchResult:
    payload: Dict[str, Any]
    http_status: int = 200
    is_notification: bool = False

    @property
    def ok(self) -> bool:
        return "result" in self.payload


class ProtocolDispatcher:
    def __init__(
        self,
        *,
        store: DocumentStore,
        authenticator: Authenticator,
        subscriptions: Collection | None = None,
        search: TranscriptSearchEngine | None = None,
    ) -> None:
        self._store = store
        self._authenticator = authenticator
        self._subscriptions = subscriptions if subscriptions is not None else store.collection(SUBSCRIPTIONS)
        self._search = search or TranscriptSearchEngine(store)
        self._routes: Dict[str, Callable[[Envelope, str], Any]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "resources/list": self._list_resources,
            "prompts/list": self._list_prompts,
        }

    # lifecycle ----------------------------------------------------------------
    def authenticate(self, credential: str | None) -> str:
        try:
            user_id = self._authenticator.authenticate(credential)
        except Exception as exc:
            LOGGER.warning("Authentication provider failed: %s", exc)
            user_id = None
        if not user_id:
            raise AuthenticationRequired()
        return user_id

    def authorize(self, user_id: str) -> str:
        tier = resolve_tier(self._subscriptions, user_id)
        if not capability_for(tier, IDE_SYNC):
            raise UpgradeRequired(tier, minimum_tier_for(IDE_SYNC))
        return tier

    def handle(self, body: Any, credential: str | None) -> DispatchResult:
        request_id, notification = peek_request(body)
        method = None
        try:
            user_id = self.authenticate(credential)
            tier = self.authorize(user_id)
            envelope = parse_envelope(body)
            request_id, method, notification = envelope.id, envelope.method, envelope.is_notification
            result = self._route(envelope, user_id)
        except PrismError as exc:
            LOGGER.debug("request method=%s id=%r failed code=%d: %s", method, request_id, exc.code, exc.message)
            return self._error(request_id, exc, notification)
        except Exception:
            LOGGER.exception("Unhandled error while processing method=%s id=%r", method, request_id)
            return self._error(request_id, InternalError(), notification)
        LOGGER.debug("request method=%s id=%r user=%s tier=%s ok", method, request_id, user_id, tier)
        return DispatchResult(
            payload={"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result},
            is_notification=notification,
        )

    @staticmethod
    def _error(request_id: Any, exc: PrismError, notification: bool) -> DispatchResult:
        return DispatchResult(
            payload={"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": exc.to_error()},
            http_status=exc.http_status,
            is_notification=notification,
        )

    def _route(self, envelope: Envelope, user_id: str) -> Any:
        if envelope.method.startswith(NOTIFICATION_PREFIX):
            return {}
        handler = self._routes.get(envelope.method)
        if handler is None:
            raise MethodNotFound(f"Method not found: {envelope.method}")
        return handler(envelope, user_id)

    # methods ------------------------------------------------------------------
    def _initialize(self, envelope: Envelope, user_id: str) -> Dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}, "resources": {}, "prompts": {}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    def _ping(self, envelope: Envelope, user_id: str) -> Dict[str, Any]:
        return {}

    def _list_tools(self, envelope: Envelope, user_id: str) -> Dict[str, Any]:
        return {"tools": copy.deepcopy(TOOL_DESCRIPTORS)}

    def _call_tool(self, envelope: Envelope, user_id: str) -> Dict[str, Any]:
        name = envelope.params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParams("tools/call requires a tool 'name'")
        tool = get_tool(name)
        arguments = envelope.params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, Mapping):
            raise InvalidParams("'arguments' must be an object")
        validate_arguments(tool, arguments)
        context = ToolContext(user_id=user_id, store=self._store, search=self._search)
        text = tool.handler(context, arguments)
        result = types.CallToolResult(content=[types.TextContent(type="text", text=text)])
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)

    def _list_resources(self, envelope: Envelope, user_id: str) -> Dict[str, Any]:
        return {"resources": []}

    def _list_prompts(self, envelope: Envelope, user_id: str) -> Dict[str, Any]:
        return {"prompts": []}
