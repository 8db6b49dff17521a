"""
Error types raised by the Adept Tech client.

Transport, HTTP status and OAuth protocol failures are NOT wrapped here: callers see
`httpx.HTTPError` / `authlib` `OAuthError` exactly as the libraries raise them.
These classes cover the failures this package detects itself.
"""

from __future__ import annotations

from typing import Any


class AdeptTechError(Exception):
    """Base class for errors raised by `adepttech`."""


class ConfigError(AdeptTechError, ValueError):
    """Client configuration is incomplete or has an unparsable endpoint URL."""


class NotAuthenticatedError(AdeptTechError, RuntimeError):
    """A request was attempted before a token was exchanged or assigned."""


class TokenError(AdeptTechError, ValueError):
    """A token payload is unusable (e.g. no access token)."""


class TokenExpiredError(TokenError):
    """The token has expired and there is no refresh token to renew it."""


class TokenDecodeError(AdeptTechError, ValueError):
    """Serialized token bytes could not be decoded."""


class InvalidJSONResponseError(AdeptTechError, ValueError):
    """The API answered with a body that is not well-formed JSON."""

    def __init__(self, content_length: int, body: bytes):
        self.content_length = content_length
        self.body = body
        text = body.decode("utf-8", errors="replace")
        super().__init__(f"invalid JSON response with content length {content_length}: {text}")


class ResponseDecodeError(AdeptTechError, ValueError):
    """The JSON body does not fit the requested target type."""

    def __init__(self, target: Any, body: bytes):
        self.target = target
        self.body = body
        name = getattr(target, "__name__", None) or repr(target)
        text = body.decode("utf-8", errors="replace")
        super().__init__(f"unable to decode response into type {name}: {text}")
