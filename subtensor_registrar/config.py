"""
Configuration management for the registrar.

Sources, highest priority first: explicit values (CLI flags), environment
variables with the REGISTRAR_ prefix, a .env file, a TOML config file
(config.toml by default), then field defaults.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from .errors import ConfigError

DEFAULT_CONFIG_FILE = "config.toml"

# Keys used by the older config.toml format.
LEGACY_KEYS = {
    "netuid": "network_uid",
    "max_cost": "max_price",
}


class Settings(BaseSettings):
    """Environment- and file-based settings."""

    model_config = SettingsConfigDict(
        env_prefix="REGISTRAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        toml_file=DEFAULT_CONFIG_FILE,
        extra="ignore",
    )

    # Registration target
    coldkey: Optional[str] = Field(default=None, description="Coldkey secret URI, mnemonic or seed")
    hotkey: Optional[str] = Field(default=None, description="Hotkey SS58 address or secret URI")
    network_uid: Optional[int] = Field(default=None, ge=0, le=65535, description="Subnet netuid")
    max_price: Optional[int] = Field(default=None, ge=0, description="Maximum burn to pay, in rao")

    # Node
    chain_endpoint: str = "ws://127.0.0.1:9944"
    wait_for_finalization: bool = False

    # Polling
    poll_interval_seconds: float = Field(default=12.0, gt=0)
    poll_per_block: bool = False
    backoff_max_seconds: float = Field(default=60.0, gt=0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    max_submit_retries: int = Field(default=1, ge=0, le=1)

    # Attempt journal ("" disables it)
    database_url: str = "sqlite:///./registrar.db"

    # Output
    monitor_pending: bool = False
    log_level: str = "INFO"
    log_json: bool = False

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for old, new in LEGACY_KEYS.items():
                if old in data and data.get(new) is None:
                    data[new] = data.pop(old)
        return data

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def _settings_class(config_path: Optional[Path]) -> type[Settings]:
    if config_path is None:
        return Settings

    class FileSettings(Settings):
        model_config = SettingsConfigDict(toml_file=config_path)

    return FileSettings


@dataclass(frozen=True)
class RegistrarConfig:
    """Validated, immutable configuration passed to the engine."""

    coldkey: str = field(repr=False)
    hotkey: str
    network_uid: int
    max_price: int
    chain_endpoint: str = "ws://127.0.0.1:9944"
    wait_for_finalization: bool = False
    poll_interval_seconds: float = 12.0
    poll_per_block: bool = False
    backoff_max_seconds: float = 60.0
    timeout_seconds: Optional[float] = None
    max_submit_retries: int = 1
    database_url: str = ""
    monitor_pending: bool = False
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "RegistrarConfig":
        missing = [
            name
            for name in ("coldkey", "hotkey", "network_uid", "max_price")
            if getattr(settings, name) in (None, "")
        ]
        if missing:
            raise ConfigError(f"missing required option(s): {', '.join(missing)}")

        return cls(
            coldkey=settings.coldkey,
            hotkey=settings.hotkey,
            network_uid=settings.network_uid,
            max_price=settings.max_price,
            chain_endpoint=settings.chain_endpoint,
            wait_for_finalization=settings.wait_for_finalization,
            poll_interval_seconds=settings.poll_interval_seconds,
            poll_per_block=settings.poll_per_block,
            backoff_max_seconds=settings.backoff_max_seconds,
            timeout_seconds=settings.timeout_seconds,
            max_submit_retries=settings.max_submit_retries,
            database_url=settings.database_url,
            monitor_pending=settings.monitor_pending,
            log_level=settings.log_level,
            log_json=settings.log_json,
        )


def load_settings(config_path: Optional[Path] = None, **overrides: Any) -> Settings:
    """
    Load settings from all sources. `None` overrides are ignored so that
    unset CLI flags do not mask file or environment values.
    """
    if config_path is not None and not config_path.is_file():
        raise ConfigError(f"config file not found: {config_path}")

    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return _settings_class(config_path)(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"invalid configuration: {problems}") from e
    except ValueError as e:
        # Malformed TOML
        raise ConfigError(f"could not read configuration: {e}") from e


def load_config(config_path: Optional[Path] = None, **overrides: Any) -> RegistrarConfig:
    """Load and validate the full registrar configuration."""
    return RegistrarConfig.from_settings(load_settings(config_path, **overrides))
