"""
Adept Tech API client.

One `Instance` is one authenticated binding to the API for one configured tenant
(`ClientConfig.instance`). It is responsible for:
- building the OAuth2 authorization-code redirect URL,
- exchanging the callback code (or adopting a caller-supplied token source),
- issuing authenticated GET requests and decoding JSON bodies.

Lifecycle: an Instance starts unauthenticated and becomes authenticated once a token is
exchanged or assigned; there is no way back. Authentication state is not guarded by a
lock: set it once, then share the Instance for concurrent `get` / `get_into` calls.

Nothing here retries, paginates or rate-limits. Transport and OAuth errors propagate
as raised by httpx / Authlib.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Callable, Mapping, TypeVar

import httpx
from authlib.integrations.httpx_client import OAuth2Client
from pydantic import TypeAdapter, ValidationError
from pydantic_core import from_json

from adepttech.client.auth import (
    TOKEN_EXCHANGE_TIMEOUT,
    RefreshingTokenSource,
    TokenSource,
    TokenSourceAuth,
)
from adepttech.client.token import Token
from adepttech.config.settings import ClientConfig, Settings, get_settings
from adepttech.core.errors import (
    ConfigError,
    InvalidJSONResponseError,
    NotAuthenticatedError,
    ResponseDecodeError,
)
from adepttech.core.http import DEFAULT_USER_AGENT, append_instance_param, join_api_url

logger = logging.getLogger(__name__)

SCOPES = ("stats", "email", "basic")
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

T = TypeVar("T")
QueryParams = Mapping[str, Any]


@lru_cache(maxsize=128)
def _type_adapter(target: Any) -> TypeAdapter[Any]:
    return TypeAdapter(target)


class Instance:
    """OAuth2-authenticated client for one Adept Tech tenant."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        on_token_update: Callable[[Token], None] | None = None,
    ):
        """Validate `config` and derive the OAuth2 flow configuration.

        Args:
            config: Tenant binding; empty endpoint URLs fall back to the public defaults.
            transport: Optional httpx transport used for every HTTP exchange (tests pass
                `httpx.MockTransport`).
            http_timeout_seconds: Default timeout for API GET requests.
            on_token_update: Called with each newly stored token (exchange, assignment,
                refresh) so the caller can persist it.

        Raises:
            ConfigError: If a required field is empty or an endpoint URL cannot be parsed.
        """
        missing = config.missing_fields()
        if missing:
            raise ConfigError(f"adepttech: missing {missing[0]} in configuration")
        config = config.with_defaults()

        try:
            authorize_url = append_instance_param(config.authorize_url, config.instance)
        except httpx.InvalidURL as exc:
            raise ConfigError(f"unable to parse authorize_url: {exc}") from exc
        try:
            token_url = append_instance_param(config.access_token_url, config.instance)
        except httpx.InvalidURL as exc:
            raise ConfigError(f"unable to parse access_token_url: {exc}") from exc

        self._config = config
        self._authorize_url = str(authorize_url)
        self._token_url = str(token_url)
        self._transport = transport
        self._http_timeout_seconds = float(http_timeout_seconds)
        self._on_token_update = on_token_update

        self._oauth = OAuth2Client(
            client_id=config.client_id,
            client_secret=config.client_secret,
            scope=" ".join(SCOPES),
            redirect_uri=config.redirect_url,
            transport=transport,
        )
        self._token: Token | None = None
        self._http: httpx.Client | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> "Instance":
        """Build an Instance from layered settings (`get_settings()` when omitted)."""
        settings = settings or get_settings()
        kwargs.setdefault("http_timeout_seconds", settings.app.http_timeout_seconds)
        return cls(settings.client, **kwargs)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def authorize_url(self) -> str:
        return self._authorize_url

    @property
    def token_url(self) -> str:
        return self._token_url

    @property
    def authenticated(self) -> bool:
        return self._http is not None

    def auth_url(self, state: str) -> str:
        """Return the authorization-code redirect URL carrying the anti-forgery `state`."""
        url, _ = self._oauth.create_authorization_url(self._authorize_url, state=state)
        return url

    def token(self) -> Token | None:
        """Return the current token, or None while unauthenticated."""
        return self._token

    def exchange_code(self, code: str, *, timeout: float = TOKEN_EXCHANGE_TIMEOUT) -> Token:
        """Exchange an authorization `code` for a token and authenticate this Instance.

        The resulting transport refreshes the token through the refresh-token grant when
        it expires.

        Raises:
            httpx.HTTPError: On transport errors, timeouts and 5xx token responses.
            authlib.integrations.base_client.OAuthError: If the token endpoint answers
                with an OAuth error payload.
            TokenError: If the response carries no access token.
        """
        logger.debug("Exchanging authorization code (instance=%s).", self._config.instance)
        raw = self._oauth.fetch_token(
            self._token_url,
            grant_type="authorization_code",
            code=code,
            timeout=timeout,
        )
        token = Token.from_oauth2(raw)
        source = RefreshingTokenSource(
            self._oauth, self._token_url, token, on_refresh=self._store_token
        )
        self._authenticate(token, source)
        logger.info("Authorization code exchanged (instance=%s).", self._config.instance)
        return token

    def assign_token_source(self, source: TokenSource) -> Token:
        """Authenticate from a caller-supplied token source.

        One token is pulled immediately; later requests keep asking `source`, so refresh
        is entirely up to it. If the first pull fails the error propagates and the
        Instance stays unauthenticated.
        """
        token = source.token()
        self._authenticate(token, source)
        logger.info("Token source assigned (instance=%s).", self._config.instance)
        return token

    def assign_token(self, token: Token) -> None:
        """Authenticate from a previously stored token, refreshing it through this Instance."""
        source = RefreshingTokenSource(
            self._oauth, self._token_url, token, on_refresh=self._store_token
        )
        self._authenticate(token, source)

    def get(
        self,
        path: str,
        params: QueryParams | None = None,
        *,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Issue an authenticated GET to `{base_url}/{path}`.

        An `instance` parameter is always appended to `params`. The response is returned
        unread (streaming); the caller must `close()` it on every path.

        Raises:
            NotAuthenticatedError: Before `exchange_code` / `assign_token_source`; no
                request is sent.
            httpx.HTTPError: On transport errors and timeouts.
        """
        if self._http is None:
            raise NotAuthenticatedError("get called but the oauth2 client is not authenticated")

        url = httpx.URL(join_api_url(self._config.base_url, path))
        if params:
            url = url.copy_merge_params(params)
        url = append_instance_param(url, self._config.instance)

        request_kwargs: dict[str, Any] = {}
        if timeout is not None:
            request_kwargs["timeout"] = timeout
        request = self._http.build_request("GET", url, **request_kwargs)
        logger.debug("GET %s", url.path)
        return self._http.send(request, stream=True)

    def get_into(
        self,
        path: str,
        params: QueryParams | None,
        target: type[T],
        *,
        timeout: float | None = None,
    ) -> T:
        """GET `path` and decode the JSON body into `target` (anything pydantic can validate).

        Raises:
            NotAuthenticatedError: Before authentication.
            httpx.HTTPError: On transport errors or non-2xx responses.
            InvalidJSONResponseError: If the body is not well-formed JSON.
            ResponseDecodeError: If the JSON does not fit `target`.
        """
        response = self.get(path, params, timeout=timeout)
        try:
            body = response.read()
        finally:
            response.close()
        response.raise_for_status()

        try:
            payload = from_json(body, allow_inf_nan=False)
        except ValueError as exc:
            raise InvalidJSONResponseError(len(body), body) from exc

        try:
            return _type_adapter(target).validate_python(payload)
        except ValidationError as exc:
            raise ResponseDecodeError(target, body) from exc

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
        self._oauth.close()

    def __enter__(self) -> "Instance":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _authenticate(self, token: Token, source: TokenSource) -> None:
        previous = self._http
        self._http = httpx.Client(
            auth=TokenSourceAuth(source),
            transport=self._transport,
            timeout=self._http_timeout_seconds,
            headers={"User-Agent": DEFAULT_USER_AGENT},
        )
        if previous is not None:
            previous.close()
        self._store_token(token)

    def _store_token(self, token: Token) -> None:
        self._token = token
        if self._on_token_update is not None:
            self._on_token_update(token)
