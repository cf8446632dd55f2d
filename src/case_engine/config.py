"""Configuration loading from YAML + environment overrides."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from case_engine.sla import DEFAULT_SLA_HOURS, DEFAULT_WARNING_FRACTION, SlaPolicy


def _load_yaml(path: str | Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


class AppSettings(BaseSettings):
    """App-level settings with env override."""

    model_config = SettingsConfigDict(
        env_prefix="CASE_ENGINE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    config_path: str = Field(default="config/default.yaml", alias="CASE_ENGINE_CONFIG_PATH")
    log_level: str | None = Field(default=None, alias="CASE_ENGINE_LOG_LEVEL")
    database_url: str | None = Field(default=None, alias="CASE_ENGINE_DATABASE_URL")
    api_host: str = Field(default="0.0.0.0", alias="CASE_ENGINE_API_HOST")
    api_port: int = Field(default=8000, alias="CASE_ENGINE_API_PORT")


def validate_config(config: dict[str, Any]) -> None:
    """Raise ValueError if the SLA table or assignment settings are unusable."""
    SlaPolicy.from_config(config)
    assignment = config.get("assignment") or {}
    cap = assignment.get("max_workload")
    if cap is not None and int(cap) <= 0:
        raise ValueError(f"assignment.max_workload must be positive, got {cap}")


def get_config(config_path: str | None = None) -> dict[str, Any]:
    """Load merged config from YAML and apply env overrides via AppSettings."""
    settings = AppSettings()
    path = config_path or settings.config_path
    if not Path(path).exists():
        base = _default_config()
    else:
        base = _deep_merge(_default_config(), _load_yaml(path))
        config_dir = Path(path).parent
        dev_path = config_dir / "dev.yaml"
        if dev_path.exists() and os.environ.get("CASE_ENGINE_ENV") == "dev":
            base = _deep_merge(base, _load_yaml(str(dev_path)))
    # Env overrides (DATABASE_URL standard for Docker/Postgres; CASE_ENGINE_DATABASE_URL for app)
    db_url = os.environ.get("DATABASE_URL") or settings.database_url
    if db_url:
        base.setdefault("database", {})["url"] = db_url
    if settings.log_level:
        base.setdefault("app", {})["log_level"] = settings.log_level
    validate_config(base)
    return base


def _default_config() -> dict[str, Any]:
    return {
        "app": {"name": "citizen-case-engine", "env": "default", "log_level": "INFO"},
        "database": {"url": "sqlite:///./data/cases.db", "echo": False, "timeout_seconds": 5},
        "sla": {
            "hours": dict(DEFAULT_SLA_HOURS),
            "warning_fraction": DEFAULT_WARNING_FRACTION,
            "overrides": {},
        },
        "assignment": {"strategy": "least_loaded", "max_workload": None},
        "ids": {"state": "AP"},
        "api": {"host": "0.0.0.0", "port": 8000},
    }


def get_config_hash(config: dict[str, Any]) -> str:
    """SHA256 of resolved config for audit reproducibility (canonical key order)."""
    canonical = yaml.dump(config, default_flow_style=False, sort_keys=True, allow_unicode=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
