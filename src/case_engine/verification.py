"""Two-stage verification gate: executive sign-off, then master-admin sign-off.

The gate is a per-case overlay on the status lifecycle. Case types that do not
require verification never touch it. The transition validator consults
``gate_allows`` before letting a gated type into an approved/issued/disbursed/
completed status.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from case_engine.errors import AlreadyTerminal, Forbidden, IllegalTransition, Stage1NotComplete
from case_engine.registry import ActorRole, CaseTypeDefinition, get_definition, role_at_least

if TYPE_CHECKING:
    from case_engine.models import Case, VerificationRecord


class GateState(StrEnum):
    NONE = "NONE"
    STAGE1_PENDING = "STAGE1_PENDING"
    STAGE1_APPROVED = "STAGE1_APPROVED"
    STAGE1_REJECTED = "STAGE1_REJECTED"
    STAGE2_PENDING = "STAGE2_PENDING"
    STAGE2_APPROVED = "STAGE2_APPROVED"
    STAGE2_REJECTED = "STAGE2_REJECTED"


class VerificationOutcome(StrEnum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


STAGE1_OPEN = frozenset({GateState.NONE, GateState.STAGE1_PENDING})
STAGE1_COMPLETE = frozenset({GateState.STAGE1_APPROVED, GateState.STAGE2_PENDING})


def gate_allows(definition: CaseTypeDefinition, gate_state: str, to_status: str) -> bool:
    """True when to_status is not gated for this type, or the gate has passed stage 2."""
    if to_status not in definition.gated_statuses:
        return True
    return gate_state == GateState.STAGE2_APPROVED


def open_gate_on_entry(case: Case, definition: CaseTypeDefinition, to_status: str) -> None:
    """Entering the type's verification status puts an untouched gate at STAGE1_PENDING."""
    if (
        definition.requires_two_stage_verification
        and to_status == definition.verification_entry_status
        and case.gate_state == GateState.NONE
    ):
        case.gate_state = GateState.STAGE1_PENDING


def _require_gated(definition: CaseTypeDefinition, case: Case) -> None:
    if not definition.requires_two_stage_verification:
        raise IllegalTransition(
            f"{definition.case_type} does not use two-stage verification",
            case_id=case.id,
        )


def _record(case: Case, stage: int, by: str, outcome: str, notes: str | None, at: datetime) -> VerificationRecord:
    from case_engine.models import VerificationRecord

    rec = VerificationRecord(stage=stage, by=by, at=at, notes=notes, outcome=outcome)
    case.verifications.append(rec)
    return rec


def submit_stage1(
    case: Case,
    executive_id: str,
    outcome: str | VerificationOutcome,
    notes: str | None,
    at: datetime,
    actor_role: str | ActorRole = ActorRole.EXECUTIVE,
    correlation_id: str | None = None,
) -> GateState:
    """Record the executive sign-off. A rejection also moves the case to REJECTED."""
    from case_engine.state_machine import apply_transition

    definition = get_definition(case.case_type)
    _require_gated(definition, case)
    outcome = VerificationOutcome(outcome)
    if not _role_ok(actor_role, ActorRole.EXECUTIVE):
        raise Forbidden("Stage-1 verification requires an executive officer", case_id=case.id)
    if definition.is_terminal(case.status):
        raise AlreadyTerminal(f"Case {case.id} is {case.status}", case_id=case.id)
    if case.gate_state not in STAGE1_OPEN:
        raise IllegalTransition(
            f"Stage-1 verification is not open (gate is {case.gate_state})",
            case_id=case.id,
            gate_state=case.gate_state,
        )
    _record(case, 1, executive_id, outcome, notes, at)
    if outcome == VerificationOutcome.APPROVED:
        case.gate_state = GateState.STAGE1_APPROVED
    else:
        case.gate_state = GateState.STAGE1_REJECTED
        apply_transition(
            case,
            "REJECTED",
            actor_role,
            executive_id,
            at,
            notes=notes or "Rejected at stage-1 verification",
            correlation_id=correlation_id,
            enforce_assignee=False,
        )
    case.updated_at = at
    return GateState(case.gate_state)


def forward_to_stage2(case: Case, actor_role: str | ActorRole, at: datetime) -> GateState:
    """Hand a stage-1-approved case to the master-admin queue."""
    definition = get_definition(case.case_type)
    _require_gated(definition, case)
    if not _role_ok(actor_role, ActorRole.EXECUTIVE):
        raise Forbidden("Forwarding to stage-2 requires an executive officer", case_id=case.id)
    if case.gate_state != GateState.STAGE1_APPROVED:
        raise Stage1NotComplete(
            f"Stage-1 verification is not approved (gate is {case.gate_state})",
            case_id=case.id,
            gate_state=case.gate_state,
        )
    case.gate_state = GateState.STAGE2_PENDING
    case.updated_at = at
    return GateState.STAGE2_PENDING


def submit_stage2(
    case: Case,
    master_admin_id: str,
    outcome: str | VerificationOutcome,
    notes: str | None,
    at: datetime,
    actor_role: str | ActorRole = ActorRole.MASTER_ADMIN,
    correlation_id: str | None = None,
) -> GateState:
    """Record the master-admin sign-off. Legal only once stage 1 is approved."""
    from case_engine.state_machine import apply_transition

    definition = get_definition(case.case_type)
    _require_gated(definition, case)
    outcome = VerificationOutcome(outcome)
    if case.gate_state not in STAGE1_COMPLETE:
        raise Stage1NotComplete(
            f"Stage-1 verification is not approved (gate is {case.gate_state})",
            case_id=case.id,
            gate_state=case.gate_state,
        )
    if not _role_ok(actor_role, ActorRole.MASTER_ADMIN):
        raise Forbidden("Stage-2 verification requires a master admin", case_id=case.id)
    if definition.is_terminal(case.status):
        raise AlreadyTerminal(f"Case {case.id} is {case.status}", case_id=case.id)
    _record(case, 2, master_admin_id, outcome, notes, at)
    if outcome == VerificationOutcome.APPROVED:
        case.gate_state = GateState.STAGE2_APPROVED
    else:
        case.gate_state = GateState.STAGE2_REJECTED
        apply_transition(
            case,
            "REJECTED",
            actor_role,
            master_admin_id,
            at,
            notes=notes or "Rejected at stage-2 verification",
            correlation_id=correlation_id,
            enforce_assignee=False,
        )
    case.updated_at = at
    return GateState(case.gate_state)


def _role_ok(role: str | ActorRole, minimum: ActorRole) -> bool:
    try:
        return role_at_least(role, minimum)
    except ValueError:
        return False
