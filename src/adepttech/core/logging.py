"""
Logging configuration.

The library itself only creates module loggers. Applications (and `adepttech.cli`) call
`configure_logging()` to install the packaged YAML config (`src/adepttech/config/logging.yaml`)
with the level taken from settings (e.g., `ADEPTTECH_LOG_LEVEL`).
"""

from __future__ import annotations

import copy
import logging.config

from adepttech.config.settings import Settings, get_logging_config, get_settings


def configure_logging(settings: Settings | None = None) -> None:
    """Configure the Python logging system based on packaged YAML config + settings."""
    settings = settings or get_settings()
    config = copy.deepcopy(get_logging_config())

    level = settings.app.log_level.upper()
    config.setdefault("root", {})["level"] = level
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict) and "level" in handler:
            handler["level"] = level

    logging.config.dictConfig(config)
