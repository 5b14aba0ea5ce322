"""Starlette surface for the gateway.

- POST /mcp          -> JSON-RPC through ``ProtocolDispatcher``
- GET  /mcp/search   -> REST transcript search (same auth and tier gate)
- GET  /auth/verify  -> token check used by the connector CLI
- GET  /healthz      -> liveness
- GET  /version      -> gateway metadata
"""

from __future__ import annotations

import contextlib
import logging
import sys
from typing import Any, AsyncIterator, Dict, Mapping, Tuple

import anyio
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from . import __version__
from .auth import Authenticator, bearer_credential
from .dispatcher import PROTOCOL_VERSION, SERVER_NAME, ProtocolDispatcher
from .errors import AuthenticationRequired, ProjectNotFound, UpgradeRequired
from .projects import find_owned_project
from .search import DEFAULT_LIMIT, MAX_LIMIT, TranscriptSearchEngine
from .store import SUBSCRIPTIONS, DocumentStore
from .tiers import IDE_SYNC, capability_for, limits_for, resolve_tier

LOGGER = logging.getLogger("prism.http")

GATEWAY_VERSION = f"prism-gateway/{__version__}"

Payload = Tuple[Dict[str, Any], int]


class _InvalidSearchParams(ValueError):
    pass


def _search_params(params: Mapping[str, str]) -> Tuple[str, str, int]:
    project_ref = (params.get("projectId") or "").strip()
    query = params.get("query") or ""
    if not project_ref:
        raise _InvalidSearchParams("projectId required")
    if not query.strip():
        raise _InvalidSearchParams("query required")
    raw_limit = params.get("limit")
    if raw_limit in (None, ""):
        return project_ref, query, DEFAULT_LIMIT
    try:
        limit = int(raw_limit)
    except ValueError as exc:
        raise _InvalidSearchParams("limit must be an integer") from exc
    if not 1 <= limit <= MAX_LIMIT:
        raise _InvalidSearchParams(f"limit must be between 1 and {MAX_LIMIT}")
    return project_ref, query, limit


def create_app(
    *,
    dispatcher: ProtocolDispatcher,
    store: DocumentStore,
    authenticator: Authenticator,
    search: TranscriptSearchEngine | None = None,
) -> Starlette:
    engine = search or TranscriptSearchEngine(store)

    def run_search(params: Mapping[str, str], credential: str | None) -> Payload:
        try:
            user_id = dispatcher.authenticate(credential)
            tier = dispatcher.authorize(user_id)
        except AuthenticationRequired:
            return {"error": "Unauthorized", "code": "AUTH_REQUIRED"}, 401
        except UpgradeRequired as exc:
            return {"error": exc.message, "code": "UPGRADE_REQUIRED", **(exc.data or {})}, 403
        try:
            project_ref, query, limit = _search_params(params)
        except _InvalidSearchParams as exc:
            return {"error": "Invalid parameters", "details": str(exc)}, 400
        try:
            project = find_owned_project(store, user_id, project_ref)
            response = engine.search(project, query, limit)
        except ProjectNotFound:
            return {"error": "Project not found or access denied", "code": "NOT_FOUND"}, 404
        except Exception:
            LOGGER.exception("Search failed for user=%s project=%s", user_id, project_ref)
            return {"error": "Search failed", "code": "INTERNAL_ERROR"}, 500
        return {"success": True, **response.to_dict(), "tier": tier}, 200

    def run_verify(credential: str | None) -> Payload:
        failure = {"success": False, "tier": "free", "ideSync": False, "userId": ""}
        try:
            user_id = authenticator.authenticate(credential)
        except Exception:
            LOGGER.exception("Token verification failed")
            return {**failure, "error": "Verification failed"}, 500
        if not user_id:
            return {**failure, "error": "Invalid or expired token"}, 401
        tier = resolve_tier(store.collection(SUBSCRIPTIONS), user_id)
        ide_sync = capability_for(tier, IDE_SYNC)
        payload: Dict[str, Any] = {
            "success": True,
            "userId": user_id,
            "tier": tier,
            "ideSync": ide_sync,
            "limits": limits_for(tier).to_dict(),
        }
        if not ide_sync:
            payload["upgradeUrl"] = "/subscription"
        return payload, 200

    async def post_mcp(request: Request) -> Response:
        body = await request.body()
        credential = bearer_credential(request.headers.get("authorization"))
        result = await anyio.to_thread.run_sync(dispatcher.handle, body, credential)
        if result.is_notification and result.ok:
            return Response(status_code=202)
        return JSONResponse(result.payload, status_code=result.http_status)

    async def get_search(request: Request) -> Response:
        credential = bearer_credential(request.headers.get("authorization"))
        payload, status = await anyio.to_thread.run_sync(run_search, dict(request.query_params), credential)
        return JSONResponse(payload, status_code=status)

    async def get_verify(request: Request) -> Response:
        credential = bearer_credential(request.headers.get("authorization"))
        payload, status = await anyio.to_thread.run_sync(run_verify, credential)
        return JSONResponse(payload, status_code=status)

    async def healthz(_: Request) -> Response:
        return JSONResponse({"status": "ok"})

    async def version(_: Request) -> Response:
        return JSONResponse(
            {
                "gateway": GATEWAY_VERSION,
                "server": SERVER_NAME,
                "protocolVersion": PROTOCOL_VERSION,
                "python": sys.version.split()[0],
                "routes": ["/mcp (POST)", "/mcp/search", "/auth/verify", "/healthz", "/version"],
            }
        )

    routes = [
        Route("/mcp", post_mcp, methods=["POST"]),
        Route("/mcp/search", get_search, methods=["GET"]),
        Route("/auth/verify", get_verify, methods=["GET"]),
        Route("/healthz", healthz, methods=["GET"]),
        Route("/version", version, methods=["GET"]),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_: Starlette) -> AsyncIterator[None]:
        try:
            yield
        finally:
            store.close()

    return Starlette(routes=routes, lifespan=lifespan)
