"""
Token sources and the bearer-token httpx auth.

A token source is anything with a `token()` method returning a current `Token`. The API
transport asks its source for a token on every request, so whoever owns the source owns
the refresh policy:
- `RefreshingTokenSource` refreshes through the OAuth2 refresh grant (Authlib);
- caller-supplied sources refresh however they like;
- `StaticTokenSource` / `MarshalledToken` never refresh.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generator, Protocol

import httpx
from authlib.integrations.httpx_client import OAuth2Client

from adepttech.client.token import Token
from adepttech.core.errors import TokenExpiredError

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_TIMEOUT = 15.0


class TokenSource(Protocol):
    def token(self) -> Token: ...


class StaticTokenSource:
    """Always returns the same token."""

    def __init__(self, token: Token):
        self._token = token

    def token(self) -> Token:
        return self._token


class RefreshingTokenSource:
    """Reuse a token until it expires, then renew it with the refresh-token grant."""

    def __init__(
        self,
        oauth_client: OAuth2Client,
        token_url: str,
        token: Token,
        *,
        on_refresh: Callable[[Token], None] | None = None,
        timeout: float = TOKEN_EXCHANGE_TIMEOUT,
    ):
        self._oauth = oauth_client
        self._token_url = token_url
        self._token = token
        self._on_refresh = on_refresh
        self._timeout = timeout
        self._lock = threading.Lock()

    def token(self) -> Token:
        with self._lock:
            if not self._token.is_expired():
                return self._token
            if not self._token.refresh_token:
                raise TokenExpiredError("token expired and refresh token is not set")

            logger.info("Access token expired; refreshing.")
            raw = self._oauth.refresh_token(
                self._token_url,
                refresh_token=self._token.refresh_token,
                timeout=self._timeout,
            )
            refreshed = Token.from_oauth2(raw)
            if refreshed.refresh_token is None:
                # Servers may omit the refresh token when it is unchanged.
                refreshed = refreshed.model_copy(update={"refresh_token": self._token.refresh_token})
            self._token = refreshed

        if self._on_refresh is not None:
            self._on_refresh(refreshed)
        return refreshed


class TokenSourceAuth(httpx.Auth):
    """httpx auth that sets `Authorization` from a token source on each request."""

    def __init__(self, source: TokenSource):
        self._source = source

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self._source.token()
        request.headers["Authorization"] = token.authorization_header()
        yield request
