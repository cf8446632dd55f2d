"""Dashboard projection: read-only counts over a collection of cases.

Everything here is a pure function of the cases passed in and ``now``; nothing
is cached and no case is mutated.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from case_engine.registry import get_definition, priority_rank
from case_engine.sla import DEFAULT_POLICY, SlaBucket, SlaPolicy, SlaTracked

GROUP_BY_FIELDS = (
    "case_type_status",
    "case_type",
    "status",
    "priority",
    "sla_bucket",
    "assigned_to",
)

UNASSIGNED = "UNASSIGNED"
# sla_bucket key for terminal cases
CLOSED = "CLOSED"


def _key_fn(group_by: str, now: datetime, policy: SlaPolicy) -> Callable[[Any], str]:
    if group_by == "case_type_status":
        return lambda c: f"{c.case_type}:{c.status}"
    if group_by == "case_type":
        return lambda c: str(c.case_type)
    if group_by == "status":
        return lambda c: c.status
    if group_by == "priority":
        return lambda c: c.priority
    if group_by == "sla_bucket":
        return lambda c: str(policy.evaluate(c, now)) if is_open(c) else CLOSED
    if group_by == "assigned_to":
        return lambda c: c.assigned_to or UNASSIGNED
    raise ValueError(f"group_by must be one of {list(GROUP_BY_FIELDS)}, got {group_by!r}")


def aggregate(
    cases: Iterable[SlaTracked],
    group_by: str = "case_type_status",
    now: datetime | None = None,
    policy: SlaPolicy = DEFAULT_POLICY,
) -> list[dict[str, Any]]:
    """Count cases per key; rows sorted by count descending, then key."""
    now = now or datetime.now(UTC)
    key = _key_fn(group_by, now, policy)
    counts = Counter(key(c) for c in cases)
    return [{"key": k, "count": n} for k, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))]


def is_open(case: SlaTracked) -> bool:
    return not get_definition(case.case_type).is_terminal(case.status)


def dashboard(
    cases: Iterable[SlaTracked],
    now: datetime | None = None,
    policy: SlaPolicy = DEFAULT_POLICY,
) -> dict[str, Any]:
    """Headline numbers for the dashboard: totals, open cases by priority and SLA bucket."""
    now = now or datetime.now(UTC)
    cases = list(cases)
    open_cases = [c for c in cases if is_open(c)]
    by_priority = Counter(c.priority for c in open_cases)
    by_bucket = Counter(str(policy.evaluate(c, now)) for c in open_cases)
    return {
        "total": len(cases),
        "open": len(open_cases),
        "closed": len(cases) - len(open_cases),
        "by_priority": dict(sorted(by_priority.items(), key=lambda kv: (priority_rank(kv[0]), kv[0]))),
        "by_sla_bucket": {b.value: by_bucket.get(b.value, 0) for b in SlaBucket},
        "by_case_type": dict(sorted(Counter(str(c.case_type) for c in cases).items())),
        "by_case_type_status": aggregate(cases, "case_type_status", now, policy),
        "generated_at": now,
    }


def breached(
    cases: Iterable[SlaTracked],
    now: datetime | None = None,
    policy: SlaPolicy = DEFAULT_POLICY,
) -> list[SlaTracked]:
    """Open cases past their due date, most overdue first."""
    now = now or datetime.now(UTC)
    out = [c for c in cases if policy.evaluate(c, now) == SlaBucket.BREACHED]
    return sorted(out, key=lambda c: policy.remaining(c, now))
