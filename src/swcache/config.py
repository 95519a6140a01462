"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (SWCACHE__GENERATION__NAME=shop-v2)
  2. swcache.yaml           (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("swcache")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first swcache.yaml found, or None."""
    candidates = [
        Path("swcache.yaml"),
        Path(platformdirs.user_config_dir("swcache")) / "swcache.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class GenerationSettings(BaseModel):
    # The generation id doubles as the cache name reported to clients.
    name: str = "swcache-v1"
    version: str = "1.0.0"


class PrecacheSettings(BaseModel):
    core_assets: list[str] = ["/", "/index.html", "/manifest.json"]
    external_resources: list[str] = []


class RoutingSettings(BaseModel):
    # "host" or "host/path-prefix"; host matches by suffix.
    dynamic_endpoints: list[str] = []
    app_shell_paths: list[str] = ["/", "/index.html", "/manifest.json"]
    # Tried in order when a document request is offline and uncached.
    offline_shell_paths: list[str] = ["/index.html", "/"]


class LifecycleSettings(BaseModel):
    skip_waiting_on_install: bool = True


class StoreSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH


class FetcherSettings(BaseModel):
    timeout_seconds: float = 30.0
    user_agent: str = "swcache/1.0"


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080
    control_key: str = ""


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: SWCACHE__SERVER__PORT=9090
        env_prefix="SWCACHE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    origin: str = "http://localhost:8000"
    generation: GenerationSettings = GenerationSettings()
    precache: PrecacheSettings = PrecacheSettings()
    routing: RoutingSettings = RoutingSettings()
    lifecycle: LifecycleSettings = LifecycleSettings()
    store: StoreSettings = StoreSettings()
    fetcher: FetcherSettings = FetcherSettings()
    server: ServerSettings = ServerSettings()
    logging: LoggingSettings = LoggingSettings()

    @field_validator("origin")
    @classmethod
    def validate_origin(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"origin must be an http(s) URL: {v!r}")
        return v.rstrip("/")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
