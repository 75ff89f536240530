"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "LDGC_"
DEFAULT_CONFIG_PATH = Path("~/.config/ledger-cache/config.yaml")
TESTNET_HORIZON_URL = "https://horizon-testnet.stellar.org"

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("upstream", "horizon_url"): "horizon_url",
    ("upstream", "timeout"): "http_timeout",
    ("upstream", "page_limit"): "transactions_page_limit",
    ("stream", "enabled"): "stream_enabled",
    ("stream", "cursor"): "stream_cursor",
    ("stream", "reconnect_delay"): "stream_reconnect_delay",
    ("backfill", "enabled"): "backfill_enabled",
    ("backfill", "max_transactions"): "backfill_max_transactions",
    ("backfill", "page_limit"): "backfill_page_limit",
    ("backfill", "workers"): "backfill_workers",
    ("filter", "block_list"): "block_list",
    ("filter", "block_list_path"): "block_list_path",
    ("filter", "sparse_history"): "sparse_history",
    ("api", "api_key"): "api_key",
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".ledger-cache" / "ledger.db")
    horizon_url: str = TESTNET_HORIZON_URL
    http_timeout: float = 30.0
    transactions_page_limit: int = Field(default=200, ge=1, le=200)
    stream_enabled: bool = False
    stream_cursor: str = "now"
    stream_reconnect_delay: float = 5.0
    backfill_enabled: bool = True
    backfill_max_transactions: int = Field(default=1000, ge=1)
    backfill_page_limit: int = Field(default=200, ge=1, le=200)
    backfill_workers: int = Field(default=2, ge=1)
    block_list: list[str] = Field(default_factory=list)
    block_list_path: Path | None = None
    sparse_history: bool = False
    api_key: str | None = None
    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @field_validator("block_list_path", mode="before")
    @classmethod
    def _expand_block_list_path(cls, value: Any) -> Path | None:
        if value in (None, ""):
            return None
        return Path(value).expanduser()

    @field_validator("block_list", mode="before")
    @classmethod
    def _split_block_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [item.strip() for item in value if item and item.strip()]

    @field_validator("horizon_url")
    @classmethod
    def _strip_horizon_url(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with LDGC_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
