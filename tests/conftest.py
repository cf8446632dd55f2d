"""Pytest fixtures: temp config, file-backed SQLite per test, fixed clock."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Ensure all tests use SQLite by default; ignore DATABASE_URL and dev overlays.
os.environ.pop("DATABASE_URL", None)
os.environ.pop("CASE_ENGINE_DATABASE_URL", None)
os.environ.pop("CASE_ENGINE_ENV", None)

from case_engine.config import get_config
from case_engine.db import init_db
from case_engine.models import Case
from case_engine.registry import get_definition
from case_engine.service import CaseEngine

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def config_path(tmp_path: Path) -> str:
    """Return path to a temporary config dir with default.yaml."""
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir()
    db_file = tmp_path / "cases.db"
    (cfg_dir / "default.yaml").write_text(
        f"""
app:
  log_level: INFO
database:
  url: "sqlite:///{db_file}"
  echo: false
sla:
  hours: {{ P1: 48, P2: 120, P3: 240, P4: 480 }}
  warning_fraction: 0.25
assignment:
  strategy: least_loaded
  max_workload: 12
"""
    )
    return str(cfg_dir / "default.yaml")


@pytest.fixture
def db(config_path: str) -> str:
    """Initialize a file-backed SQLite DB (separate sessions see each other's commits)."""
    config = get_config(config_path)
    url = config["database"]["url"]
    init_db(url, echo=False)
    return url


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def engine(db: str, config_path: str, clock: FixedClock) -> CaseEngine:
    return CaseEngine.from_config(get_config(config_path), clock=clock)


def make_case(case_type: str, status: str | None = None, **kwargs) -> Case:
    """Transient Case for pure state-machine and gate tests (never added to a session)."""
    definition = get_definition(case_type)
    fields = {
        "id": f"{definition.id_prefix}-TEST",
        "case_type": str(definition.case_type),
        "status": status or definition.initial_status,
        "priority": definition.default_priority,
        "gate_state": "NONE",
        "assigned_to": None,
        "sla_started_at": T0,
        "sla_due_at": T0 + timedelta(hours=240),
    }
    fields.update(kwargs)
    return Case(**fields)


@pytest.fixture
def new_case():
    return make_case
