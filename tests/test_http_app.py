import json

from starlette.testclient import TestClient

from prism_lib.auth import StaticTokenAuthenticator
from prism_lib.http_app import create_app
from tests._prism_test_helpers import TOKENS, call_tool, make_dispatcher, make_store, rpc


def _client(store=None) -> TestClient:
    store = store if store is not None else make_store()
    dispatcher = make_dispatcher(store)
    app = create_app(dispatcher=dispatcher, store=store, authenticator=StaticTokenAuthenticator(TOKENS))
    return TestClient(app)


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_post_mcp_tools_call() -> None:
    with _client() as client:
        response = client.post(
            "/mcp",
            content=call_tool("search-transcript", {"projectId": "demo", "query": "state management"}, "req-1"),
            headers=_auth("pro-token"),
        )

    assert response.status_code == 200
    payload = response.json()
    assert payload["id"] == "req-1"
    assert "Architecture walkthrough" in payload["result"]["content"][0]["text"]


def test_post_mcp_status_codes() -> None:
    with _client() as client:
        unauthenticated = client.post("/mcp", content=rpc("tools/list"))
        under_tier = client.post("/mcp", content=rpc("tools/list"), headers=_auth("free-token"))
        garbage = client.post("/mcp", content=b"{", headers=_auth("pro-token"))
        nested = client.post("/mcp", content=b"[" * 200_000, headers=_auth("pro-token"))

    assert unauthenticated.status_code == 401
    assert unauthenticated.json()["error"]["code"] == -32001
    assert under_tier.status_code == 403
    assert under_tier.json()["error"]["data"]["requiredTier"] == "pro"
    assert garbage.status_code == 400
    assert garbage.json()["error"]["code"] == -32700
    assert nested.status_code == 400
    assert nested.json()["error"]["code"] == -32700


def test_post_mcp_notification_is_accepted_without_body() -> None:
    body = json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"})

    with _client() as client:
        response = client.post("/mcp", content=body, headers=_auth("pro-token"))

    assert response.status_code == 202
    assert response.content == b""


def test_rest_search_success() -> None:
    with _client() as client:
        response = client.get(
            "/mcp/search",
            params={"projectId": "demo", "query": "state management"},
            headers=_auth("pro-token"),
        )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["tier"] == "pro"
    assert payload["projectId"] == "proj-demo"
    assert payload["totalVideos"] == 1
    assert payload["results"][0]["playbackId"] == "playback-1"


def test_rest_search_errors() -> None:
    with _client() as client:
        missing_auth = client.get("/mcp/search", params={"projectId": "demo", "query": "x"})
        free = client.get("/mcp/search", params={"projectId": "demo", "query": "x"}, headers=_auth("free-token"))
        bad_limit = client.get(
            "/mcp/search",
            params={"projectId": "demo", "query": "x", "limit": "500"},
            headers=_auth("pro-token"),
        )
        no_query = client.get("/mcp/search", params={"projectId": "demo"}, headers=_auth("pro-token"))
        foreign = client.get(
            "/mcp/search",
            params={"projectId": "team-app", "query": "state"},
            headers=_auth("pro-token"),
        )

    assert missing_auth.status_code == 401
    assert free.status_code == 403
    assert free.json()["upgradeUrl"] == "/subscription"
    assert bad_limit.status_code == 400
    assert no_query.status_code == 400
    assert foreign.status_code == 404


def test_auth_verify() -> None:
    with _client() as client:
        pro = client.get("/auth/verify", headers=_auth("pro-token"))
        free = client.get("/auth/verify", headers=_auth("free-token"))
        invalid = client.get("/auth/verify", headers=_auth("nope"))

    assert pro.status_code == 200
    assert pro.json()["ideSync"] is True
    assert pro.json()["limits"]["projects"] == 10
    assert "upgradeUrl" not in pro.json()
    assert free.json()["upgradeUrl"] == "/subscription"
    assert free.json()["tier"] == "free"
    assert invalid.status_code == 401
    assert invalid.json()["success"] is False


def test_healthz_and_version() -> None:
    with _client() as client:
        health = client.get("/healthz")
        version = client.get("/version")

    assert health.json() == {"status": "ok"}
    assert version.json()["protocolVersion"] == "2024-11-05"


def test_rest_search_query_is_not_trimmed() -> None:
    store = make_store()
    store.collection("videoTranscripts").insert_one(
        {
            "projectId": "proj-empty",
            "transcriptText": "Upstate news first. Then the state of the codebase.",
            "muxAssetId": "asset-state",
            "videoTitle": "Status",
        }
    )

    with _client(store) as client:
        response = client.get(
            "/mcp/search",
            params={"projectId": "empty", "query": " state"},
            headers=_auth("pro-token"),
        )
        blank = client.get("/mcp/search", params={"projectId": "empty", "query": "  "}, headers=_auth("pro-token"))

    assert response.status_code == 200
    payload = response.json()
    assert payload["query"] == " state"
    assert payload["results"][0]["totalMatches"] == 1
    assert blank.status_code == 400
