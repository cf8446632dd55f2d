"""Tests for config loading."""

import os
import subprocess
import sys

import pytest

from case_engine.config import (
    _deep_merge,
    _default_config,
    get_config,
    get_config_hash,
)
from case_engine.service import CaseEngine


def test_default_config() -> None:
    cfg = _default_config()
    assert "app" in cfg
    assert cfg["app"]["log_level"] == "INFO"
    assert "database" in cfg
    assert cfg["sla"]["hours"] == {"P1": 48, "P2": 120, "P3": 240, "P4": 480}


def test_deep_merge() -> None:
    base = {"a": 1, "b": {"x": 1, "y": 2}}
    override = {"b": {"y": 3}, "c": 4}
    out = _deep_merge(base, override)
    assert out["a"] == 1
    assert out["b"]["x"] == 1
    assert out["b"]["y"] == 3
    assert out["c"] == 4


def test_get_config_with_file(config_path: str) -> None:
    cfg = get_config(config_path)
    assert cfg["database"]["url"].startswith("sqlite:///")
    assert cfg["assignment"]["max_workload"] == 12
    assert cfg["ids"]["state"] == "AP"


def test_missing_file_falls_back_to_defaults(tmp_path) -> None:
    cfg = get_config(str(tmp_path / "nope.yaml"))
    assert cfg["assignment"]["strategy"] == "least_loaded"


def test_engine_from_config_uses_overrides(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        """
sla:
  hours: { P1: 24, P2: 72, P3: 240, P4: 480 }
  overrides:
    TEMPLE_LETTER: { P2: 96 }
assignment: { max_workload: 5 }
ids: { state: TS }
"""
    )
    engine = CaseEngine.from_config(get_config(str(cfg_path)))
    assert engine.max_workload == 5
    assert engine.id_state == "TS"
    assert engine.policy.duration("GRIEVANCE", "P1").total_seconds() == 24 * 3600
    assert engine.policy.duration("TEMPLE_LETTER", "P2").total_seconds() == 96 * 3600
    assert engine.policy.duration("CM_RELIEF", "HIGH").total_seconds() == 72 * 3600


@pytest.mark.parametrize(
    "body, match",
    [
        ("sla: { hours: { P1: -1 } }", "positive"),
        ("sla: { hours: { P1: 240, P2: 120, P3: 240, P4: 480 } }", "monotonic"),
        ("sla: { warning_fraction: 1.5 }", "warning_fraction"),
        ("assignment: { max_workload: 0 }", "max_workload"),
    ],
)
def test_config_rejects_unusable_values(tmp_path, body: str, match: str) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(body)
    with pytest.raises(ValueError, match=match):
        get_config(str(cfg_path))


def test_config_rejects_override_for_unknown_case_type(tmp_path) -> None:
    from case_engine.errors import UnknownCaseType

    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("sla: { overrides: { PARKING: { P1: 12 } } }")
    with pytest.raises(UnknownCaseType):
        get_config(str(cfg_path))


def test_dev_overlay_applies_only_in_dev_env(config_path: str, monkeypatch) -> None:
    dev = os.path.join(os.path.dirname(config_path), "dev.yaml")
    with open(dev, "w", encoding="utf-8") as f:
        f.write("app: { log_level: DEBUG }\n")
    assert get_config(config_path)["app"]["log_level"] == "INFO"
    monkeypatch.setenv("CASE_ENGINE_ENV", "dev")
    assert get_config(config_path)["app"]["log_level"] == "DEBUG"


def test_database_url_env_override(config_path: str, monkeypatch) -> None:
    monkeypatch.setenv("CASE_ENGINE_DATABASE_URL", "sqlite:///elsewhere.db")
    assert get_config(config_path)["database"]["url"] == "sqlite:///elsewhere.db"


def test_config_hash_stable(config_path: str) -> None:
    a = get_config_hash(get_config(config_path))
    b = get_config_hash(get_config(config_path))
    assert a == b
    assert len(a) == 64
    changed = get_config(config_path)
    changed["assignment"]["max_workload"] = 13
    assert get_config_hash(changed) != a


def test_registry_version_respects_env() -> None:
    """CASE_ENGINE_REGISTRY_VERSION env is used when set (subprocess to avoid import-time cache)."""
    env = {**os.environ, "CASE_ENGINE_REGISTRY_VERSION": "2.0.0"}
    code = "from case_engine import REGISTRY_VERSION; assert REGISTRY_VERSION == '2.0.0'"
    result = subprocess.run(
        [sys.executable, "-c", code],
        env=env,
        capture_output=True,
        text=True,
        timeout=10,
    )
    assert result.returncode == 0, (result.stdout or "") + (result.stderr or "")
