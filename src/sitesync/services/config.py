"""Application configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SITE_DB_PATH = Path("site_db")
ADAPTER_NAMES = ("file", "memory", "http")


class AppConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    site_db_path: Path = Field(..., description="Root directory of the file sync store")
    sync_adapter: str = Field(default="file", description="Default sync adapter: file, memory or http")
    sync_class_map: Dict[str, str] = Field(
        default_factory=dict,
        description="Per entity type adapter overrides",
    )
    sync_url: Optional[str] = Field(
        default=None,
        description="Base URL of a remote sitesync process (http adapter)",
    )
    watch_interval: float = Field(default=0.25, gt=0, description="Polling interval of file watchers, seconds")
    port: int = Field(default=4200, ge=1, le=65535)
    allow_external: bool = Field(default=False, description="Listen on all interfaces instead of localhost")
    cors_origins: List[str] = Field(default_factory=list, description="Origins allowed to call the HTTP API")

    @field_validator("site_db_path", mode="before")
    @classmethod
    def _normalize_db_path(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            raise ValueError("SITESYNC_SITE_DB_PATH cannot be empty")
        path = value if isinstance(value, Path) else Path(value)
        return path.expanduser().resolve()

    @field_validator("sync_adapter")
    @classmethod
    def _check_adapter(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if cleaned not in ADAPTER_NAMES:
            raise ValueError(f"Unknown sync adapter '{value}'; expected one of {', '.join(ADAPTER_NAMES)}")
        return cleaned

    @field_validator("sync_class_map", mode="before")
    @classmethod
    def _parse_class_map(cls, value: str | Dict[str, str] | None) -> Dict[str, str]:
        if value is None or value == "":
            return {}
        if isinstance(value, dict):
            pairs = value.items()
        else:
            pairs = []
            for entry in value.split(","):
                if not entry.strip():
                    continue
                if "=" not in entry:
                    raise ValueError(f"SITESYNC_SYNC_CLASS_MAP entry '{entry}' must look like Type=adapter")
                entity_type, adapter = entry.split("=", 1)
                pairs.append((entity_type.strip(), adapter.strip()))
        mapping = {}
        for entity_type, adapter in pairs:
            adapter = adapter.lower()
            if adapter not in ADAPTER_NAMES:
                raise ValueError(f"Unknown sync adapter '{adapter}' for {entity_type}")
            mapping[entity_type] = adapter
        return mapping

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str] | None) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return list(value)

    @property
    def host(self) -> str:
        return "0.0.0.0" if self.allow_external else "127.0.0.1"


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load and cache application configuration."""
    allow_external = _read_env("SITESYNC_ALLOW_EXTERNAL", "false").lower() in {
        "1",
        "true",
        "yes",
    }
    return AppConfig(
        site_db_path=_read_env("SITESYNC_SITE_DB_PATH", str(DEFAULT_SITE_DB_PATH)),
        sync_adapter=_read_env("SITESYNC_SYNC_ADAPTER", "file"),
        sync_class_map=_read_env("SITESYNC_SYNC_CLASS_MAP", ""),
        sync_url=_read_env("SITESYNC_SYNC_URL"),
        watch_interval=_read_env("SITESYNC_WATCH_INTERVAL", "0.25"),
        port=_read_env("SITESYNC_PORT", "4200"),
        allow_external=allow_external,
        cors_origins=_read_env("SITESYNC_CORS_ORIGINS", ""),
    )


def reload_config() -> AppConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()


__all__ = ["AppConfig", "get_config", "reload_config", "DEFAULT_SITE_DB_PATH", "ADAPTER_NAMES"]
