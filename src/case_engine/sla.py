"""SLA policy: priority to duration, due-date computation and breach evaluation."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Protocol

from case_engine.registry import P_PRIORITIES, get_definition, priority_rank

DEFAULT_SLA_HOURS: Mapping[str, float] = MappingProxyType(
    {"P1": 48, "P2": 120, "P3": 240, "P4": 480}
)
DEFAULT_WARNING_FRACTION = 0.25


class SlaBucket(StrEnum):
    WITHIN_SLA = "WITHIN_SLA"
    AT_RISK = "AT_RISK"
    BREACHED = "BREACHED"


class SlaTracked(Protocol):
    case_type: Any
    status: str
    priority: str
    sla_started_at: datetime
    sla_due_at: datetime


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def validate_hours_table(hours: Mapping[str, Any], where: str = "sla.hours") -> dict[str, float]:
    """Return a float table for P1..P4. Raise ValueError if missing, non-positive or non-monotonic."""
    missing = [p for p in P_PRIORITIES if p not in hours]
    if missing:
        raise ValueError(f"{where} must define all priorities; missing {missing}")
    table = {p: float(hours[p]) for p in P_PRIORITIES}
    if any(v <= 0 for v in table.values()):
        raise ValueError(f"{where} durations must be positive: {table}")
    values = [table[p] for p in P_PRIORITIES]
    if values != sorted(values):
        raise ValueError(
            f"{where} must be monotonic (more urgent priority <= less urgent duration): {table}"
        )
    return table


@dataclass(frozen=True)
class SlaPolicy:
    """Duration table and at-risk window. Pure; never mutates a case."""

    hours: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_SLA_HOURS))
    warning_fraction: float = DEFAULT_WARNING_FRACTION
    overrides: Mapping[str, Mapping[str, float]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> SlaPolicy:
        sla = config.get("sla") or {}
        hours = validate_hours_table(sla.get("hours") or DEFAULT_SLA_HOURS)
        fraction = float(sla.get("warning_fraction", DEFAULT_WARNING_FRACTION))
        if not 0 < fraction < 1:
            raise ValueError(f"sla.warning_fraction must be in (0, 1), got {fraction}")
        overrides: dict[str, dict[str, float]] = {}
        for case_type, table in (sla.get("overrides") or {}).items():
            get_definition(case_type)
            merged = {**hours, **(table or {})}
            overrides[str(case_type)] = validate_hours_table(merged, f"sla.overrides.{case_type}")
        return cls(hours=hours, warning_fraction=fraction, overrides=overrides)

    def duration(self, case_type: Any, priority: str) -> timedelta:
        key = f"P{priority_rank(priority)}"
        table = self.overrides.get(str(case_type), self.hours)
        return timedelta(hours=table[key])

    def compute_due_date(self, case_type: Any, priority: str, from_: datetime) -> datetime:
        """Return from_ + duration(priority) for case_type."""
        return as_utc(from_) + self.duration(case_type, priority)

    def remaining(self, case: SlaTracked, now: datetime) -> timedelta:
        return as_utc(case.sla_due_at) - as_utc(now)

    def evaluate(self, case: SlaTracked, now: datetime | None = None) -> SlaBucket:
        now = as_utc(now or datetime.now(UTC))
        definition = get_definition(case.case_type)
        if definition.is_terminal(case.status):
            return SlaBucket.WITHIN_SLA
        due = as_utc(case.sla_due_at)
        if now > due:
            return SlaBucket.BREACHED
        window = due - as_utc(case.sla_started_at)
        if now >= due - window * self.warning_fraction:
            return SlaBucket.AT_RISK
        return SlaBucket.WITHIN_SLA


DEFAULT_POLICY = SlaPolicy()


def compute_due_date(
    case_type: Any, priority: str, from_: datetime, policy: SlaPolicy = DEFAULT_POLICY
) -> datetime:
    return policy.compute_due_date(case_type, priority, from_)


def evaluate(
    case: SlaTracked, now: datetime | None = None, policy: SlaPolicy = DEFAULT_POLICY
) -> SlaBucket:
    return policy.evaluate(case, now)
