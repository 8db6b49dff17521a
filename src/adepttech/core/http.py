"""
HTTP helpers.

Small URL utilities shared by the OAuth flow and the API client:
- every Adept Tech endpoint (authorize, token, API) carries an `instance` query parameter;
- API paths are joined onto the base URL with exactly one slash.
"""

from __future__ import annotations

import httpx


DEFAULT_USER_AGENT = "adepttech/0.1.0 (+https://api.adept.tech)"
INSTANCE_PARAM = "instance"


def append_instance_param(url: str | httpx.URL, instance: str) -> httpx.URL:
    """Return `url` with one more `instance=<instance>` query parameter.

    Existing query parameters are kept as-is.

    Raises:
        httpx.InvalidURL: If `url` cannot be parsed.
    """
    return httpx.URL(url).copy_add_param(INSTANCE_PARAM, instance)


def join_api_url(base_url: str, path: str) -> str:
    """Join an API `path` onto `base_url` (`base/` + `/me` -> `base/me`)."""
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"
