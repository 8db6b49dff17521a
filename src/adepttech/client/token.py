"""
OAuth2 token model and codec.

`Token` is the package's own view of an access token. Authlib hands tokens around as
dicts (`OAuth2Token`, with `expires_at` in unix seconds); `Token.from_oauth2()` converts
those into a typed, immutable value.

The serialized form is a small JSON object:

    {"access_token": "...", "token_type": "Bearer", "refresh_token": "...",
     "expiry": "2026-01-05T10:00:00Z"}

`refresh_token` and `expiry` are omitted when absent. Callers persist these bytes between
runs; how and where is up to them.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from adepttech.core.errors import TokenDecodeError, TokenError


TOKEN_EXPIRY_LEEWAY = timedelta(seconds=10)

_HEADER_TYPES = {"": "Bearer", "bearer": "Bearer", "mac": "MAC", "basic": "Basic"}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Token(BaseModel):
    """An OAuth2 access token with optional refresh token and expiry."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = ""
    refresh_token: str | None = None
    expiry: datetime | None = None

    @field_validator("expiry")
    @classmethod
    def _zero_time_as_none(cls, value: datetime | None) -> datetime | None:
        # golang.org/x/oauth2 stores a year-1 zero time for tokens without expiry.
        if value is not None and value.year == 1:
            return None
        return value

    @classmethod
    def from_oauth2(cls, data: Mapping[str, Any]) -> "Token":
        """Build a Token from an Authlib token / raw token-endpoint response.

        Raises:
            TokenError: If the mapping has no access token.
        """
        access_token = data.get("access_token")
        if not access_token:
            raise TokenError("token response does not contain an access_token")

        expiry: datetime | None = None
        expires_at = data.get("expires_at")
        expires_in = data.get("expires_in")
        if expires_at:
            expiry = datetime.fromtimestamp(int(expires_at), tz=timezone.utc)
        elif expires_in:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))

        return cls(
            access_token=str(access_token),
            token_type=str(data.get("token_type") or ""),
            refresh_token=data.get("refresh_token") or None,
            expiry=expiry,
        )

    def to_oauth2(self) -> dict[str, Any]:
        """Return the dict shape Authlib's `OAuth2Token` expects."""
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type or "Bearer",
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expiry is not None:
            data["expires_at"] = int(_as_utc(self.expiry).timestamp())
        return data

    def is_expired(self, leeway: timedelta = TOKEN_EXPIRY_LEEWAY) -> bool:
        """True when the token expires within `leeway`. Tokens without expiry never expire."""
        if self.expiry is None:
            return False
        return _as_utc(self.expiry) - leeway <= datetime.now(timezone.utc)

    def authorization_header(self) -> str:
        token_type = _HEADER_TYPES.get(self.token_type.lower(), self.token_type)
        return f"{token_type} {self.access_token}"


class MarshalledToken:
    """Opaque box around a `Token` for storage outside the process.

    It also behaves as a token source (`token()`), so a restored token can be passed
    straight to `Instance.assign_token_source()`.
    """

    def __init__(self, token: Token):
        self._token = token

    def token(self) -> Token:
        return self._token

    def to_bytes(self) -> bytes:
        return self._token.model_dump_json(exclude_none=True).encode("utf-8")


def marshal_token(token: Token) -> MarshalledToken:
    return MarshalledToken(token)


def unmarshal_token(data: bytes | str) -> MarshalledToken:
    """Parse serialized token JSON.

    Raises:
        TokenDecodeError: If `data` is not a JSON object with the token fields.
    """
    try:
        token = Token.model_validate_json(data)
    except ValidationError as exc:
        raise TokenDecodeError(f"unable to decode token: {exc}") from exc
    return MarshalledToken(token)
