"""
Settings management for esplora-sync.

Values are resolved with pydantic-settings, highest priority first:
1. CLI options (merged in by ``cli_common.resolve_esplora_settings``)
2. Constructor overrides (``get_settings(**overrides)``)
3. Environment variables
4. TOML config file (``~/.esplora-sync/config.toml`` by default)
5. Field defaults

Usage:
    from esplora_sync.settings import get_settings

    settings = get_settings()
    print(settings.esplora.base_url)

Environment variables use a double underscore to reach nested groups and
mirror the TOML tables:
    ESPLORA__BASE_URL  -> [esplora] base_url
    ESPLORA__STOP_GAP  -> [esplora] stop_gap
    LOGGING__LEVEL     -> [logging] level
    NETWORK            -> network
"""

from __future__ import annotations

import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from esplora_sync.bitcoin import NetworkType

CONFIG_FILE_NAME = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".esplora-sync"

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")

# Default Esplora API roots per network
DEFAULT_ESPLORA_URLS: dict[NetworkType, str] = {
    NetworkType.MAINNET: "https://blockstream.info/api",
    NetworkType.TESTNET: "https://blockstream.info/testnet/api",
    NetworkType.SIGNET: "https://mempool.space/signet/api",
    NetworkType.REGTEST: "http://127.0.0.1:3002",
}


class EsploraSettings(BaseModel):
    """Esplora service and sync configuration."""

    base_url: str = Field(
        default=DEFAULT_ESPLORA_URLS[NetworkType.MAINNET],
        description="Esplora API base URL",
    )
    timeout: float | None = Field(
        default=30.0,
        gt=0.0,
        description="Request timeout in seconds (unset to disable)",
    )
    proxy: str | None = Field(
        default=None,
        description="Proxy URL for Esplora requests, e.g. socks5://127.0.0.1:9050",
    )
    stop_gap: int = Field(
        default=20,
        ge=1,
        description="Consecutive unused scripts that end discovery on a keychain",
    )
    concurrency: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum script histories fetched in parallel",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return v.rstrip("/")


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description=f"Log level: {', '.join(LOG_LEVELS)}")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level {v!r}")
        return level


class EsploraSyncSettings(BaseSettings):
    """Root settings object: network, Esplora connection and logging."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    network: NetworkType = Field(
        default=NetworkType.MAINNET,
        description="Bitcoin network (mainnet, testnet, signet, regtest)",
    )
    esplora: EsploraSettings = Field(default_factory=EsploraSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # No .env or secrets directory support; the TOML file takes their place
        return (init_settings, env_settings, TomlConfigSettingsSource(settings_cls))


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """
    Settings source backed by the TOML config file.

    Top-level keys map to settings fields (``network``) and tables to the
    nested groups (``[esplora]``, ``[logging]``). Unknown top-level keys are
    reported and dropped. A file that is not valid TOML aborts the process.
    """

    def __init__(self, settings_cls: type[BaseSettings], path: Path | None = None) -> None:
        super().__init__(settings_cls)
        self.path = path or get_config_path()
        self.values = self._read()

    def _read(self) -> dict[str, Any]:
        if not self.path.is_file():
            logger.debug(f"No config file at {self.path}, using defaults")
            return {}

        try:
            values = tomllib.loads(self.path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config file {self.path} is not valid TOML: {e}")
            sys.exit(1)

        unknown = sorted(set(values) - set(self.settings_cls.model_fields))
        if unknown:
            logger.warning(f"Ignoring unknown keys in {self.path}: {', '.join(unknown)}")
        logger.info(f"Loaded config from {self.path}")
        return {key: value for key, value in values.items() if key not in unknown}

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self.values.get(field_name), field_name, field_name in self.values

    def __call__(self) -> dict[str, Any]:
        return self.values


def get_config_path() -> Path:
    """
    Location of the TOML config file.

    ``$ESPLORA_SYNC_CONFIG_FILE`` if set, otherwise ``config.toml`` inside
    ``$ESPLORA_SYNC_DATA_DIR`` (default ``~/.esplora-sync``).
    """
    explicit = os.environ.get("ESPLORA_SYNC_CONFIG_FILE")
    if explicit:
        return Path(explicit).expanduser()
    data_dir = os.environ.get("ESPLORA_SYNC_DATA_DIR")
    return (Path(data_dir) if data_dir else DEFAULT_DATA_DIR) / CONFIG_FILE_NAME


_settings: EsploraSyncSettings | None = None


def get_settings(**overrides: Any) -> EsploraSyncSettings:
    """
    Process-wide settings, loaded on first use.

    Passing overrides rebuilds the cached instance with them applied on top
    of every other source.
    """
    global _settings
    if _settings is None or overrides:
        _settings = EsploraSyncSettings(**overrides)
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next ``get_settings()`` reloads them."""
    global _settings
    _settings = None


__all__ = [
    "CONFIG_FILE_NAME",
    "DEFAULT_ESPLORA_URLS",
    "EsploraSettings",
    "EsploraSyncSettings",
    "LoggingSettings",
    "TomlConfigSettingsSource",
    "get_config_path",
    "get_settings",
    "reset_settings",
]
