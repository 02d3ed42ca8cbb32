"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (RESOURCEKEEPER__FETCH__TIMEOUT_SECONDS=5)
  2. resourcekeeper.yaml    (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults. Resource
descriptors may be listed inline under ``resources:`` or kept in a separate
JSON registry file pointed to by ``registry_path``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from resourcekeeper.models.descriptor import ResourceDescriptor

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("resourcekeeper")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "store.db")

DEFAULT_RELAY_TEMPLATES: dict[str, str] = {
    "allorigins": "https://api.allorigins.win/raw?url={url}",
    "corsproxy": "https://corsproxy.io/?{url}",
    "codetabs": "https://api.codetabs.com/v1/proxy?quest={url}",
}


def _find_config_file() -> str | None:
    """Return the path of the first resourcekeeper.yaml found, or None."""
    candidates = [
        Path("resourcekeeper.yaml"),
        Path(platformdirs.user_config_dir("resourcekeeper")) / "resourcekeeper.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class CacheSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH


class FetchSettings(BaseModel):
    timeout_seconds: float = 15.0
    min_payload_length: int = 10
    # Relay name → URL template; ``{url}`` receives the percent-encoded source.
    relay_templates: dict[str, str] = dict(DEFAULT_RELAY_TEMPLATES)
    opaque_probe: bool = True
    user_agent: str = "resourcekeeper/1.0"


class ApplySettings(BaseModel):
    trigger_throttle_seconds: float = 0.5
    retry_max_attempts: int = 15
    retry_initial_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 8.0
    startup_delay_seconds: float = 0.5


class ReconcileSettings(BaseModel):
    throttle_seconds: float = 1.0
    poll_interval_seconds: float = 2.0
    max_checks: int = 50


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: RESOURCEKEEPER__RECONCILE__MAX_CHECKS=10
        env_prefix="RESOURCEKEEPER__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    cache: CacheSettings = CacheSettings()
    fetch: FetchSettings = FetchSettings()
    apply: ApplySettings = ApplySettings()
    reconcile: ReconcileSettings = ReconcileSettings()
    logging: LoggingSettings = LoggingSettings()
    registry_path: str | None = None
    resources: list[ResourceDescriptor] = []

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
