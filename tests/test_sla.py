"""Unit tests for the SLA policy."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from case_engine.errors import InvalidPriority, UnknownCaseType
from case_engine.sla import (
    DEFAULT_POLICY,
    SlaBucket,
    SlaPolicy,
    as_utc,
    compute_due_date,
    evaluate,
    validate_hours_table,
)

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


def _tracked(case_type="GRIEVANCE", status="NEW", priority="P3", start=T0, hours=240):
    return SimpleNamespace(
        case_type=case_type,
        status=status,
        priority=priority,
        sla_started_at=start,
        sla_due_at=start + timedelta(hours=hours),
    )


def test_default_durations() -> None:
    assert compute_due_date("GRIEVANCE", "P1", T0) == T0 + timedelta(hours=48)
    assert compute_due_date("GRIEVANCE", "P2", T0) == T0 + timedelta(hours=120)
    assert compute_due_date("GRIEVANCE", "P3", T0) == T0 + timedelta(hours=240)
    assert compute_due_date("GRIEVANCE", "P4", T0) == T0 + timedelta(hours=480)


def test_policy_constructs_with_defaults() -> None:
    a, b = SlaPolicy(), SlaPolicy(warning_fraction=0.5)
    assert dict(a.hours) == {"P1": 48, "P2": 120, "P3": 240, "P4": 480}
    assert a.hours is not b.hours
    assert a.duration("GRIEVANCE", "P2") == timedelta(hours=120)


def test_label_priorities_follow_rank() -> None:
    assert compute_due_date("CM_RELIEF", "CRITICAL", T0) == compute_due_date("GRIEVANCE", "P1", T0)
    assert compute_due_date("EDUCATION", "LOW", T0) == compute_due_date("GRIEVANCE", "P4", T0)


def test_due_date_monotonic_across_priorities() -> None:
    dues = [compute_due_date("DISPUTE", p, T0) for p in ("P1", "P2", "P3", "P4")]
    assert dues == sorted(dues)


def test_temple_letter_priority_change_restarts_window() -> None:
    assert compute_due_date("TEMPLE_LETTER", "P2", T0) == T0 + timedelta(hours=120)
    t1 = T0 + timedelta(hours=10)
    assert compute_due_date("TEMPLE_LETTER", "P1", t1) == T0 + timedelta(hours=58)


def test_unknown_priority() -> None:
    with pytest.raises(InvalidPriority):
        compute_due_date("GRIEVANCE", "P9", T0)


def test_naive_datetime_treated_as_utc() -> None:
    naive = datetime(2025, 3, 1, 9, 0)
    assert as_utc(naive) == T0
    assert compute_due_date("GRIEVANCE", "P1", naive) == T0 + timedelta(hours=48)


def test_evaluate_buckets() -> None:
    case = _tracked(hours=240)
    assert evaluate(case, T0) == SlaBucket.WITHIN_SLA
    # Last quarter of a 240h window starts at 180h.
    assert evaluate(case, T0 + timedelta(hours=179)) == SlaBucket.WITHIN_SLA
    assert evaluate(case, T0 + timedelta(hours=180)) == SlaBucket.AT_RISK
    assert evaluate(case, T0 + timedelta(hours=240)) == SlaBucket.AT_RISK
    assert evaluate(case, T0 + timedelta(hours=240, seconds=1)) == SlaBucket.BREACHED


def test_terminal_case_never_breached() -> None:
    case = _tracked(status="CLOSED", hours=48)
    assert evaluate(case, T0 + timedelta(days=30)) == SlaBucket.WITHIN_SLA


def test_evaluate_does_not_mutate() -> None:
    case = _tracked()
    before = dict(vars(case))
    evaluate(case, T0 + timedelta(days=30))
    assert vars(case) == before


def test_remaining() -> None:
    case = _tracked(hours=48)
    assert DEFAULT_POLICY.remaining(case, T0 + timedelta(hours=8)) == timedelta(hours=40)
    assert DEFAULT_POLICY.remaining(case, T0 + timedelta(hours=50)) == timedelta(hours=-2)


def test_from_config_overrides_per_type() -> None:
    policy = SlaPolicy.from_config(
        {"sla": {"hours": {"P1": 24, "P2": 72, "P3": 168, "P4": 336}, "overrides": {"APPOINTMENT": {"P1": 4}}}}
    )
    assert policy.duration("GRIEVANCE", "P1") == timedelta(hours=24)
    assert policy.duration("APPOINTMENT", "P1") == timedelta(hours=4)
    assert policy.duration("APPOINTMENT", "P2") == timedelta(hours=72)


def test_from_config_rejects_bad_tables() -> None:
    with pytest.raises(ValueError, match="monotonic"):
        SlaPolicy.from_config({"sla": {"hours": {"P1": 200, "P2": 120, "P3": 240, "P4": 480}}})
    with pytest.raises(ValueError, match="missing"):
        validate_hours_table({"P1": 1, "P2": 2})
    with pytest.raises(ValueError, match="positive"):
        validate_hours_table({"P1": 0, "P2": 2, "P3": 3, "P4": 4})
    with pytest.raises(ValueError, match="warning_fraction"):
        SlaPolicy.from_config({"sla": {"warning_fraction": 1.5}})
    with pytest.raises(UnknownCaseType):
        SlaPolicy.from_config({"sla": {"overrides": {"PARKING": {"P1": 1}}}})
