"""Transition validator: the only path by which a case's status changes."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from case_engine.errors import (
    AlreadyTerminal,
    Forbidden,
    IllegalTransition,
    VerificationRequired,
)
from case_engine.logging_config import get_logger
from case_engine.registry import (
    ActorRole,
    CaseTypeDefinition,
    get_definition,
    parse_role,
    role_at_least,
)
from case_engine.verification import gate_allows, open_gate_on_entry

if TYPE_CHECKING:
    from case_engine.models import Case, StatusHistory

logger = get_logger(__name__)


def check_transition(
    definition: CaseTypeDefinition,
    case: Case,
    to_status: str,
    actor_role: str | ActorRole,
    actor_id: str,
    enforce_assignee: bool = True,
) -> None:
    """Raise the matching engine error if case may not move to to_status.

    Checks run in a fixed order: status validity, terminal, edge, role, verification gate.
    """
    definition.check_status(to_status)
    if definition.is_terminal(case.status):
        raise AlreadyTerminal(
            f"Case {case.id} is in terminal status {case.status}",
            case_id=case.id,
            status=case.status,
        )
    targets = definition.allowed_targets(case.status)
    if to_status not in targets:
        raise IllegalTransition(
            f"Invalid transition for {definition.case_type}: {case.status} -> {to_status}. "
            f"Allowed from {case.status}: {sorted(targets) or 'none'}",
            case_id=case.id,
            from_status=case.status,
            to_status=to_status,
        )
    try:
        role = parse_role(actor_role)
    except ValueError as e:
        raise Forbidden(f"Unknown actor role {actor_role!r}", case_id=case.id) from e
    minimum = targets[to_status]
    if not role_at_least(role, minimum):
        raise Forbidden(
            f"{role} may not move {case.id} to {to_status}; requires {minimum}",
            case_id=case.id,
            required_role=str(minimum),
        )
    if (
        enforce_assignee
        and role == ActorRole.EXECUTIVE
        and case.status == definition.initial_status
        and case.assigned_to != actor_id
    ):
        raise Forbidden(
            f"Only the assigned officer or a master admin may move {case.id} out of "
            f"{definition.initial_status}",
            case_id=case.id,
        )
    if not gate_allows(definition, case.gate_state, to_status):
        raise VerificationRequired(
            f"{to_status} requires completed two-stage verification (gate is {case.gate_state})",
            case_id=case.id,
            gate_state=case.gate_state,
        )


def apply_transition(
    case: Case,
    to_status: str,
    actor_role: str | ActorRole,
    actor_id: str,
    at: datetime,
    notes: str | None = None,
    correlation_id: str | None = None,
    enforce_assignee: bool = True,
) -> StatusHistory:
    """Validate and apply a transition; append the history entry and return it."""
    from case_engine.models import StatusHistory

    definition = get_definition(case.case_type)
    check_transition(definition, case, to_status, actor_role, actor_id, enforce_assignee)
    entry = StatusHistory(
        from_status=case.status,
        to_status=to_status,
        actor_role=str(actor_role),
        actor_id=actor_id,
        at=at,
        notes=notes,
        correlation_id=correlation_id,
    )
    case.history.append(entry)
    from_status = case.status
    case.status = to_status
    case.updated_at = at
    if definition.is_terminal(to_status):
        case.closed_at = at
    open_gate_on_entry(case, definition, to_status)
    logger.info(
        "case %s (%s) %s -> %s by %s", case.id, definition.case_type, from_status, to_status, actor_id
    )
    return entry


def record_creation(
    case: Case,
    actor_role: str | ActorRole,
    actor_id: str,
    at: datetime,
    notes: str | None = None,
    correlation_id: str | None = None,
) -> StatusHistory:
    """Append the entry into the type's initial status (from_status is None)."""
    from case_engine.models import StatusHistory

    entry = StatusHistory(
        from_status=None,
        to_status=case.status,
        actor_role=str(actor_role),
        actor_id=actor_id,
        at=at,
        notes=notes,
        correlation_id=correlation_id,
    )
    case.history.append(entry)
    return entry
