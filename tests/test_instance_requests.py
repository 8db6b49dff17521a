from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest
from authlib.integrations.base_client import OAuthError
from pydantic import BaseModel

from adepttech.client.auth import StaticTokenSource
from adepttech.client.instance import Instance, _type_adapter
from adepttech.client.token import Token, unmarshal_token
from adepttech.config.settings import ClientConfig
from adepttech.core.errors import (
    InvalidJSONResponseError,
    NotAuthenticatedError,
    ResponseDecodeError,
    TokenExpiredError,
)

TOKEN_PATH = "/v1/access_token"


class Me(BaseModel):
    id: int
    email: str


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}


def _client(handler, **kwargs) -> Instance:
    config = ClientConfig(
        instance="acme",
        base_url="https://api.example.test/v1/api",
        authorize_url="https://api.example.test/v1/authorize",
        access_token_url=f"https://api.example.test{TOKEN_PATH}",
        redirect_url="https://app.example.test/oauth/callback",
        client_id="cid",
        client_secret="secret",
    )
    return Instance(config, transport=httpx.MockTransport(handler), **kwargs)


def _authenticated(handler, access_token: str = "tok") -> Instance:
    client = _client(handler)
    client.assign_token_source(StaticTokenSource(Token(access_token=access_token, token_type="bearer")))
    return client


def test_exchange_code_then_get_sends_bearer_and_instance():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == TOKEN_PATH:
            return httpx.Response(
                200,
                json={
                    "access_token": "tok-1",
                    "token_type": "bearer",
                    "expires_in": 3600,
                    "refresh_token": "ref-1",
                },
            )
        return httpx.Response(200, content=b'{"id": 7, "email": "a@example.test"}')

    client = _client(handler)
    token = client.exchange_code("code-123")

    assert token.access_token == "tok-1"
    assert token.refresh_token == "ref-1"
    assert client.token() == token
    assert client.authenticated is True

    token_request = seen[0]
    assert token_request.method == "POST"
    assert token_request.url.params["instance"] == "acme"
    form = _form(token_request)
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "code-123"
    assert form["redirect_uri"] == "https://app.example.test/oauth/callback"
    assert token_request.extensions["timeout"]["read"] == 15.0

    response = client.get("/me")
    try:
        body = response.read()
    finally:
        response.close()

    api_request = seen[-1]
    assert api_request.method == "GET"
    assert api_request.url == "https://api.example.test/v1/api/me?instance=acme"
    assert api_request.headers["Authorization"] == "Bearer tok-1"
    assert body == b'{"id": 7, "email": "a@example.test"}'


def test_exchange_code_error_leaves_instance_unauthenticated():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    client = _client(handler)
    with pytest.raises(OAuthError):
        client.exchange_code("bad-code")

    assert client.authenticated is False
    assert client.token() is None


def test_get_before_authentication_sends_nothing():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    client = _client(handler)
    with pytest.raises(NotAuthenticatedError):
        client.get("me")
    with pytest.raises(NotAuthenticatedError):
        client.get_into("me", None, dict)

    assert seen == []


def test_assign_token_source_pulls_token_and_uses_source_per_request():
    seen: list[httpx.Request] = []

    class CountingSource:
        def __init__(self):
            self.calls = 0

        def token(self) -> Token:
            self.calls += 1
            return Token(access_token=f"tok-{self.calls}", token_type="Bearer")

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    source = CountingSource()
    client = _client(handler)
    token = client.assign_token_source(source)

    assert token.access_token == "tok-1"
    assert client.token() == token

    assert client.get_into("ping", None, dict) == {"ok": True}
    assert seen[-1].headers["Authorization"] == "Bearer tok-2"


def test_assign_token_source_failure_keeps_unauthenticated():
    class BrokenSource:
        def token(self) -> Token:
            raise RuntimeError("vault unavailable")

    client = _client(lambda request: httpx.Response(200, json={}))
    with pytest.raises(RuntimeError, match="vault unavailable"):
        client.assign_token_source(BrokenSource())

    assert client.authenticated is False
    assert client.token() is None


def test_get_into_encodes_params_and_decodes_model():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": 7, "email": "a@example.test"})

    client = _authenticated(handler)
    me = client.get_into("users/me", {"fields": ["id", "email"], "limit": 5}, Me)

    assert me == Me(id=7, email="a@example.test")
    params = seen[-1].url.params
    assert params.get_list("fields") == ["id", "email"]
    assert params["limit"] == "5"
    assert params.get_list("instance") == ["acme"]


@pytest.mark.parametrize("content", [b"", b"not json", b"NaN", b"Infinity", b"[NaN]"])
def test_get_into_rejects_invalid_json(content):
    client = _authenticated(lambda request: httpx.Response(200, content=content))

    with pytest.raises(InvalidJSONResponseError) as excinfo:
        client.get_into("me", None, Me)

    assert excinfo.value.content_length == len(content)
    assert excinfo.value.body == content
    assert f"content length {len(content)}" in str(excinfo.value)


def test_get_into_wraps_shape_mismatch():
    body = b'{"id": "seven"}'
    client = _authenticated(lambda request: httpx.Response(200, content=body))

    with pytest.raises(ResponseDecodeError) as excinfo:
        client.get_into("me", None, Me)

    assert excinfo.value.target is Me
    assert excinfo.value.body == body
    assert "Me" in str(excinfo.value)
    assert "seven" in str(excinfo.value)


def test_get_into_raises_on_error_status():
    client = _authenticated(lambda request: httpx.Response(404, json={"error": "not found"}))

    with pytest.raises(httpx.HTTPStatusError):
        client.get_into("missing", None, dict)


def test_get_returns_error_status_without_raising():
    client = _authenticated(lambda request: httpx.Response(503, content=b"down"))

    response = client.get("me")
    try:
        assert response.status_code == 503
        assert response.read() == b"down"
    finally:
        response.close()


def test_expired_token_is_refreshed_before_request():
    seen: list[httpx.Request] = []
    stored: list[Token] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == TOKEN_PATH:
            form = _form(request)
            if form["grant_type"] == "authorization_code":
                return httpx.Response(
                    200,
                    json={"access_token": "tok-1", "token_type": "bearer", "expires_in": 1, "refresh_token": "ref-1"},
                )
            assert form["grant_type"] == "refresh_token"
            assert form["refresh_token"] == "ref-1"
            return httpx.Response(
                200, json={"access_token": "tok-2", "token_type": "bearer", "expires_in": 3600}
            )
        return httpx.Response(200, json={"ok": True})

    client = _client(handler, on_token_update=stored.append)
    client.exchange_code("code-123")
    client.get_into("me", None, dict)

    assert seen[-1].headers["Authorization"] == "Bearer tok-2"
    assert client.token().access_token == "tok-2"
    assert client.token().refresh_token == "ref-1"
    assert [t.access_token for t in stored] == ["tok-1", "tok-2"]


def test_assign_token_without_refresh_token_fails_when_expired():
    client = _client(lambda request: httpx.Response(200, json={}))
    client.assign_token(
        Token(access_token="old", expiry=datetime(2020, 1, 1, tzinfo=timezone.utc))
    )

    with pytest.raises(TokenExpiredError):
        client.get_into("me", None, dict)


def test_stored_token_with_zero_time_expiry_is_usable():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    stored = unmarshal_token(b'{"access_token":"tok","token_type":"Bearer","expiry":"0001-01-01T00:00:00Z"}')
    client = _client(handler)
    client.assign_token(stored.token())

    assert client.get_into("me", None, dict) == {"ok": True}
    assert seen[-1].headers["Authorization"] == "Bearer tok"


def test_get_into_reuses_type_adapter_per_target():
    client = _authenticated(lambda request: httpx.Response(200, json={"id": 7, "email": "a@example.test"}))
    _type_adapter.cache_clear()

    client.get_into("me", None, Me)
    client.get_into("me", None, Me)

    info = _type_adapter.cache_info()
    assert info.misses == 1
    assert info.hits == 1
