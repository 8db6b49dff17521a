"""
Client settings (Pydantic).

Settings are loaded from `src/adepttech/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `ADEPTTECH_CLIENT_ID`, `ADEPTTECH_CLIENT_SECRET`)
- an external YAML file via `ADEPTTECH_CONFIG_PATH`

`ClientConfig` can also be built directly in code; it does not need the settings loader.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from adepttech.core.env import load_dotenv_if_present


DEFAULT_BASE_URL = "https://api.adept.tech/v1/api"
DEFAULT_AUTHORIZE_URL = "https://api.adept.tech/v1/authorize"
DEFAULT_ACCESS_TOKEN_URL = "https://api.adept.tech/v1/access_token"


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `adepttech.config`."""
    text = resources.files("adepttech.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class ClientConfig(BaseModel):
    """Static configuration of one Adept Tech tenant binding.

    Required-ness of `instance`, `redirect_url`, `client_id` and `client_secret` is
    enforced when an `Instance` is built, so a partially filled config can still be
    loaded and inspected.
    """

    instance: str = ""
    base_url: str = ""
    redirect_url: str = ""
    authorize_url: str = ""
    access_token_url: str = ""
    client_id: str = ""
    client_secret: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    def with_defaults(self) -> "ClientConfig":
        """Return a copy with empty endpoint URLs replaced by the well-known defaults."""
        return self.model_copy(
            update={
                "base_url": self.base_url or DEFAULT_BASE_URL,
                "authorize_url": self.authorize_url or DEFAULT_AUTHORIZE_URL,
                "access_token_url": self.access_token_url or DEFAULT_ACCESS_TOKEN_URL,
            }
        )

    def missing_fields(self) -> list[str]:
        required = ("instance", "redirect_url", "client_id", "client_secret")
        return [name for name in required if not getattr(self, name)]


class AppSettings(BaseModel):
    name: str = "adepttech"
    http_timeout_seconds: float = 30
    log_level: str = "INFO"


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    client: ClientConfig = Field(default_factory=ClientConfig)


_CLIENT_ENV_VARS = {
    "ADEPTTECH_INSTANCE": "instance",
    "ADEPTTECH_BASE_URL": "base_url",
    "ADEPTTECH_REDIRECT_URL": "redirect_url",
    "ADEPTTECH_AUTHORIZE_URL": "authorize_url",
    "ADEPTTECH_ACCESS_TOKEN_URL": "access_token_url",
    "ADEPTTECH_CLIENT_ID": "client_id",
    "ADEPTTECH_CLIENT_SECRET": "client_secret",
}


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload."""
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("ADEPTTECH_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    for env_name, field_name in _CLIENT_ENV_VARS.items():
        value = os.getenv(env_name)
        if value:
            data.setdefault("client", {})[field_name] = value

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("ADEPTTECH_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
