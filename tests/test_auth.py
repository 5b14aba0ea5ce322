import httpx

from prism_lib.auth import (
    RemoteTokenAuthenticator,
    StaticTokenAuthenticator,
    bearer_credential,
    build_authenticator,
)


def _authenticator(handler) -> RemoteTokenAuthenticator:
    return RemoteTokenAuthenticator("https://prism.test/", transport=httpx.MockTransport(handler))


def test_bearer_credential_parsing() -> None:
    assert bearer_credential("Bearer abc") == "abc"
    assert bearer_credential("bearer   abc ") == "abc"
    assert bearer_credential("Basic abc") is None
    assert bearer_credential("Bearer ") is None
    assert bearer_credential(None) is None


def test_static_authenticator() -> None:
    authenticator = StaticTokenAuthenticator({"t1": "u1"})

    assert authenticator.authenticate("t1") == "u1"
    assert authenticator.authenticate("t2") is None
    assert authenticator.authenticate(None) is None


def test_remote_verify_success_sends_bearer_header() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"success": True, "userId": "u1", "tier": "pro", "ideSync": True})

    authenticator = _authenticator(handler)

    result = authenticator.verify("tok")

    assert seen == {"url": "https://prism.test/api/auth/verify", "auth": "Bearer tok"}
    assert result.success is True
    assert result.tier == "pro"
    assert authenticator.authenticate("tok") == "u1"


def test_remote_verify_unauthorized() -> None:
    authenticator = _authenticator(lambda request: httpx.Response(401, json={"success": False}))

    result = authenticator.verify("tok")

    assert result.success is False
    assert result.error == "Invalid or expired token"
    assert authenticator.authenticate("tok") is None


def test_remote_verify_server_error_and_bad_json() -> None:
    assert _authenticator(lambda request: httpx.Response(502)).verify("tok").success is False
    assert _authenticator(lambda request: httpx.Response(200, text="<html>")).verify("tok").success is False


def test_remote_verify_connection_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = _authenticator(handler).verify("tok")

    assert result.success is False
    assert result.error.startswith("Connection failed:")


def test_build_authenticator_prefers_static_tokens() -> None:
    assert isinstance(build_authenticator({"t": "u"}, "https://prism.test"), StaticTokenAuthenticator)
    assert isinstance(build_authenticator({}, "https://prism.test"), RemoteTokenAuthenticator)
