"""
Common CLI helpers: logging setup and settings resolution.
"""

from __future__ import annotations

import sys

from loguru import logger

from esplora_sync.bitcoin import NetworkType
from esplora_sync.settings import (
    DEFAULT_ESPLORA_URLS,
    EsploraSettings,
    EsploraSyncSettings,
    get_settings,
    reset_settings,
)


def setup_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink with a colorized stderr sink at ``level``."""
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level.upper(),
        colorize=True,
    )


def setup_cli(log_level: str | None = None) -> EsploraSyncSettings:
    """
    Reload settings and start logging for a CLI command.

    An explicit ``log_level`` wins over the configured ``[logging] level``.
    """
    reset_settings()
    settings = get_settings()

    setup_logging(log_level or settings.logging.level)

    return settings


def resolve_esplora_settings(
    settings: EsploraSyncSettings,
    esplora_url: str | None = None,
    network: str | None = None,
    stop_gap: int | None = None,
) -> EsploraSettings:
    """
    Merge CLI overrides into the configured Esplora settings.

    When only the network is overridden and no URL is configured explicitly,
    the default Esplora instance of that network is used.
    """
    updates: dict[str, object] = {}
    if esplora_url is not None:
        updates["base_url"] = esplora_url.rstrip("/")
    elif network is not None and "base_url" not in settings.esplora.model_fields_set:
        updates["base_url"] = DEFAULT_ESPLORA_URLS[NetworkType(network)]
    if stop_gap is not None:
        updates["stop_gap"] = stop_gap

    resolved = settings.esplora.model_copy(update=updates)
    # model_copy skips validation; re-run it for the overridden fields
    return EsploraSettings.model_validate(resolved.model_dump())
