"""Case engine service: every read and write against the case store.

Each operation opens its own unit of work, applies the registry, SLA policy,
state machine and verification gate to the loaded case, writes an audit row and
returns a ``CaseRecord`` snapshot built before the session closes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from case_engine import REGISTRY_VERSION, projection, verification
from case_engine.audit_context import get_correlation_id
from case_engine.balancer import Candidate, select_assignee
from case_engine.db import session_scope
from case_engine.errors import (
    AlreadyTerminal,
    ConcurrentModification,
    DuplicateCaseId,
    Forbidden,
    InvalidFilter,
    NotFound,
)
from case_engine.identifiers import DEFAULT_STATE, next_case_id
from case_engine.logging import get_logger, sanitize_fields
from case_engine.models import AuditLog, Case, CaseEvent, CaseNote
from case_engine.registry import (
    ActorRole,
    CaseTypeDefinition,
    get_definition,
    parse_case_type,
    parse_role,
    role_at_least,
)
from case_engine.schemas import (
    CaseEventEntry,
    CaseNoteOut,
    CaseRecord,
    CaseSummary,
    StatusHistoryEntry,
    VerificationOut,
    VerificationRecordOut,
)
from case_engine.sla import DEFAULT_POLICY, SlaBucket, SlaPolicy
from case_engine.state_machine import apply_transition, record_creation

logger = get_logger(__name__)

Clock = Callable[[], datetime]
Operation = Callable[[Session, Case, datetime, str], dict[str, Any]]

ID_ALLOCATION_ATTEMPTS = 10


def _utcnow() -> datetime:
    return datetime.now(UTC)


def case_to_record(case: Case) -> CaseRecord:
    """Snapshot an attached Case (with history, events, verification and notes)."""
    stages = {v.stage: VerificationRecordOut.model_validate(v) for v in case.verifications}
    return CaseRecord(
        id=case.id,
        case_type=case.case_type,
        status=case.status,
        priority=case.priority,
        title=case.title,
        district=case.district,
        citizen_ref=case.citizen_ref,
        attributes=case.attributes,
        assigned_to=case.assigned_to,
        verification=VerificationOut(
            gate_state=case.gate_state, stage1=stages.get(1), stage2=stages.get(2)
        ),
        sla_started_at=case.sla_started_at,
        sla_due_at=case.sla_due_at,
        created_at=case.created_at,
        updated_at=case.updated_at,
        closed_at=case.closed_at,
        version=case.version,
        status_history=[StatusHistoryEntry.model_validate(h) for h in case.history],
        events=[CaseEventEntry.model_validate(e) for e in case.events],
        notes=[CaseNoteOut.model_validate(n) for n in case.notes],
    )


def case_to_summary(case: Case, now: datetime, policy: SlaPolicy = DEFAULT_POLICY) -> CaseSummary:
    return CaseSummary(
        id=case.id,
        case_type=case.case_type,
        status=case.status,
        priority=case.priority,
        title=case.title,
        district=case.district,
        assigned_to=case.assigned_to,
        gate_state=case.gate_state,
        sla_due_at=case.sla_due_at,
        sla_bucket=policy.evaluate(case, now).value,
        created_at=case.created_at,
        closed_at=case.closed_at,
        version=case.version,
    )


def workload_counts(session: Session, officer_ids: Iterable[str]) -> dict[str, int]:
    """Number of non-terminal cases currently assigned to each officer."""
    ids = list(dict.fromkeys(officer_ids))
    counts = dict.fromkeys(ids, 0)
    if not ids:
        return counts
    rows = session.execute(
        select(Case.assigned_to, Case.case_type, Case.status).where(Case.assigned_to.in_(ids))
    ).all()
    for officer_id, case_type, status in rows:
        if not get_definition(case_type).is_terminal(status):
            counts[officer_id] += 1
    return counts


def _require_role(role: str | ActorRole, minimum: ActorRole, action: str, case_id: str) -> None:
    try:
        ok = role_at_least(role, minimum)
    except ValueError:
        ok = False
    if not ok:
        raise Forbidden(f"{action} requires {minimum}; got {role}", case_id=case_id)


def _event(
    case: Case,
    kind: str,
    actor_role: str | ActorRole,
    actor_id: str,
    at: datetime,
    details: dict[str, Any],
) -> None:
    case.events.append(
        CaseEvent(kind=kind, actor_role=str(actor_role), actor_id=actor_id, at=at, details_json=details)
    )


class CaseEngine:
    """Stateless between calls; all case state lives in the store."""

    def __init__(
        self,
        policy: SlaPolicy = DEFAULT_POLICY,
        clock: Clock = _utcnow,
        max_workload: int | None = None,
        strategy: str = "least_loaded",
        id_state: str = DEFAULT_STATE,
    ) -> None:
        self.policy = policy
        self.clock = clock
        self.max_workload = max_workload
        self.strategy = strategy
        self.id_state = id_state

    @classmethod
    def from_config(cls, config: dict[str, Any], clock: Clock = _utcnow) -> CaseEngine:
        assignment = config.get("assignment") or {}
        cap = assignment.get("max_workload")
        return cls(
            policy=SlaPolicy.from_config(config),
            clock=clock,
            max_workload=int(cap) if cap is not None else None,
            strategy=assignment.get("strategy", "least_loaded"),
            id_state=(config.get("ids") or {}).get("state", DEFAULT_STATE),
        )

    # --- store access ---
    def _load(self, session: Session, case_id: str) -> Case:
        case = session.get(Case, case_id)
        if case is None:
            raise NotFound(f"Case {case_id} not found", case_id=case_id)
        return case

    def _now(self) -> datetime:
        now = self.clock()
        return now if now.tzinfo else now.replace(tzinfo=UTC)

    def _mutate(
        self,
        case_id: str,
        action: str,
        actor_id: str,
        op: Operation,
        expected_version: int | None = None,
    ) -> CaseRecord:
        """Run op against a freshly loaded case in one unit of work.

        A stale write is retried once, and only if the re-read case is still in
        the status the first attempt validated against.
        """
        observed_status: str | None = None
        for attempt in (1, 2):
            try:
                with session_scope() as session:
                    case = self._load(session, case_id)
                    if expected_version is not None and case.version != expected_version:
                        raise ConcurrentModification(
                            f"Case {case_id} is at version {case.version}, expected {expected_version}",
                            case_id=case_id,
                            version=case.version,
                        )
                    if observed_status is not None and case.status != observed_status:
                        raise ConcurrentModification(
                            f"Case {case_id} moved from {observed_status} to {case.status} concurrently",
                            case_id=case_id,
                            status=case.status,
                        )
                    observed_status = case.status
                    at = self._now()
                    cid = get_correlation_id()
                    details = op(session, case, at, cid)
                    session.add(
                        AuditLog(
                            correlation_id=cid,
                            action=action,
                            entity_type="case",
                            entity_id=case.id,
                            ts=at,
                            actor=actor_id,
                            details_json=details,
                        )
                    )
                    session.flush()
                    return case_to_record(case)
            except ConcurrentModification:
                if attempt == 2 or expected_version is not None or observed_status is None:
                    raise
                logger.warning("Stale write on %s (%s); retrying once", case_id, action)
        raise AssertionError("unreachable")

    # --- writes ---
    def create_case(
        self,
        case_type: str,
        actor_role: str | ActorRole,
        actor_id: str,
        priority: str | None = None,
        case_id: str | None = None,
        title: str | None = None,
        district: str | None = None,
        citizen_ref: str | None = None,
        attributes: dict[str, Any] | None = None,
        note: str | None = None,
    ) -> CaseRecord:
        """Create a case in its type's initial status with its SLA window starting now.

        A generated id whose sequence row was taken by a concurrent create is
        re-allocated, up to ID_ALLOCATION_ATTEMPTS times. A caller-supplied id
        that another writer inserts first raises DuplicateCaseId.
        """
        definition = get_definition(case_type)
        priority = priority or definition.default_priority
        definition.check_priority(priority)
        try:
            role = parse_role(actor_role)
        except ValueError as e:
            raise Forbidden(f"Unknown actor role {actor_role!r}") from e
        fields = {
            "title": title,
            "district": district,
            "citizen_ref": citizen_ref,
            "attributes": attributes,
            "note": note,
        }
        attempts = 1 if case_id is not None else ID_ALLOCATION_ATTEMPTS
        for attempt in range(1, attempts + 1):
            try:
                return self._insert_case(definition, role, actor_id, priority, case_id, **fields)
            except ConcurrentModification as e:
                if case_id is not None:
                    raise DuplicateCaseId(f"Case {case_id} already exists", case_id=case_id) from e
                if attempt == attempts:
                    raise
                logger.warning(
                    "id sequence conflict creating %s (attempt %d of %d); retrying",
                    definition.case_type,
                    attempt,
                    attempts,
                )
        raise AssertionError("unreachable")

    def _insert_case(
        self,
        definition: CaseTypeDefinition,
        role: ActorRole,
        actor_id: str,
        priority: str,
        case_id: str | None,
        title: str | None,
        district: str | None,
        citizen_ref: str | None,
        attributes: dict[str, Any] | None,
        note: str | None,
    ) -> CaseRecord:
        with session_scope() as session:
            at = self._now()
            cid = get_correlation_id()
            if case_id is None:
                case_id = next_case_id(session, definition.case_type, district, at.year, self.id_state)
            elif session.get(Case, case_id) is not None:
                raise DuplicateCaseId(f"Case {case_id} already exists", case_id=case_id)
            case = Case(
                id=case_id,
                case_type=str(definition.case_type),
                status=definition.initial_status,
                priority=priority,
                title=title,
                district=district,
                citizen_ref=citizen_ref,
                attributes=attributes,
                gate_state=verification.GateState.NONE,
                sla_started_at=at,
                sla_due_at=self.policy.compute_due_date(definition.case_type, priority, at),
                created_at=at,
                updated_at=at,
                correlation_id=cid,
                actor=actor_id,
            )
            session.add(case)
            record_creation(case, role, actor_id, at, notes="Case created", correlation_id=cid)
            if note:
                case.notes.append(CaseNote(note=note, created_at=at, actor=actor_id, correlation_id=cid))
            session.add(
                AuditLog(
                    correlation_id=cid,
                    action="case_create",
                    entity_type="case",
                    entity_id=case_id,
                    ts=at,
                    actor=actor_id,
                    details_json={
                        "case_type": str(definition.case_type),
                        "priority": priority,
                        "sla_due_at": case.sla_due_at.isoformat(),
                        "attributes": sanitize_fields(attributes),
                        "registry_version": REGISTRY_VERSION,
                    },
                )
            )
            session.flush()
            logger.info(
                "case %s (%s) created by %s, priority %s",
                case_id,
                definition.case_type,
                actor_id,
                priority,
            )
            return case_to_record(case)

    def transition(
        self,
        case_id: str,
        to_status: str,
        actor_role: str | ActorRole,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> CaseRecord:
        def op(session: Session, case: Case, at: datetime, cid: str) -> dict[str, Any]:
            from_status = case.status
            apply_transition(case, to_status, actor_role, actor_id, at, notes=notes, correlation_id=cid)
            return {"from_status": from_status, "to_status": to_status, "role": str(actor_role)}

        return self._mutate(case_id, "case_transition", actor_id, op, expected_version)

    def change_priority(
        self,
        case_id: str,
        priority: str,
        actor_role: str | ActorRole,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> CaseRecord:
        """Set a new priority and restart the SLA window from now.

        Re-submitting the current priority leaves the case and its SLA window
        untouched; only the request is audited.
        """

        def op(session: Session, case: Case, at: datetime, cid: str) -> dict[str, Any]:
            definition = get_definition(case.case_type)
            definition.check_priority(priority)
            if definition.is_terminal(case.status):
                raise AlreadyTerminal(f"Case {case.id} is {case.status}", case_id=case.id)
            _require_role(actor_role, ActorRole.EXECUTIVE, "Changing priority", case.id)
            if priority == case.priority:
                logger.info("case %s already at priority %s; SLA window kept", case.id, priority)
                return {"old_priority": priority, "new_priority": priority, "unchanged": True}
            old_priority, old_due = case.priority, case.sla_due_at
            case.priority = priority
            case.sla_started_at = at
            case.sla_due_at = self.policy.compute_due_date(case.case_type, priority, at)
            case.updated_at = at
            details = {
                "old_priority": old_priority,
                "new_priority": priority,
                "old_sla_due_at": old_due.isoformat(),
                "new_sla_due_at": case.sla_due_at.isoformat(),
            }
            if notes:
                details["notes"] = notes
            _event(case, "PRIORITY_CHANGE", actor_role, actor_id, at, details)
            logger.info("case %s priority %s -> %s by %s", case.id, old_priority, priority, actor_id)
            return details

        return self._mutate(case_id, "case_priority_change", actor_id, op, expected_version)

    def _assign(
        self,
        case: Case,
        officer_id: str,
        actor_role: str | ActorRole,
        actor_id: str,
        at: datetime,
        cid: str,
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        definition = get_definition(case.case_type)
        if definition.is_terminal(case.status):
            raise AlreadyTerminal(f"Case {case.id} is {case.status}", case_id=case.id)
        _require_role(actor_role, ActorRole.EXECUTIVE, "Assignment", case.id)
        details: dict[str, Any] = {
            "old_assigned_to": case.assigned_to,
            "new_assigned_to": officer_id,
            **(extra or {}),
        }
        case.assigned_to = officer_id
        case.updated_at = at
        _event(case, "ASSIGNMENT", actor_role, actor_id, at, details)
        entry = definition.assignment_entry_status
        if entry and case.status == definition.initial_status:
            apply_transition(
                case,
                entry,
                actor_role,
                actor_id,
                at,
                notes=f"Assigned to {officer_id}",
                correlation_id=cid,
                enforce_assignee=False,
            )
            details["status"] = entry
        logger.info("case %s assigned to %s by %s", case.id, officer_id, actor_id)
        return details

    def assign(
        self,
        case_id: str,
        officer_id: str,
        actor_role: str | ActorRole,
        actor_id: str,
        expected_version: int | None = None,
    ) -> CaseRecord:
        def op(session: Session, case: Case, at: datetime, cid: str) -> dict[str, Any]:
            return self._assign(case, officer_id, actor_role, actor_id, at, cid)

        return self._mutate(case_id, "case_assign", actor_id, op, expected_version)

    def auto_assign(
        self,
        case_id: str,
        candidate_ids: Iterable[str],
        actor_role: str | ActorRole,
        actor_id: str,
        strategy: str | None = None,
    ) -> CaseRecord:
        """Pick the least-loaded eligible candidate from current store workload and assign."""
        candidate_ids = list(candidate_ids)

        def op(session: Session, case: Case, at: datetime, cid: str) -> dict[str, Any]:
            counts = workload_counts(session, candidate_ids)
            officer_id = select_assignee(
                [Candidate(officer_id=o, workload=n) for o, n in counts.items()],
                strategy=strategy or self.strategy,
                max_workload=self.max_workload,
            )
            return self._assign(
                case, officer_id, actor_role, actor_id, at, cid, extra={"workloads": counts}
            )

        return self._mutate(case_id, "case_auto_assign", actor_id, op)

    def submit_stage1(
        self,
        case_id: str,
        actor_id: str,
        outcome: str,
        notes: str | None = None,
        actor_role: str | ActorRole = ActorRole.EXECUTIVE,
    ) -> CaseRecord:
        def op(session: Session, case: Case, at: datetime, cid: str) -> dict[str, Any]:
            gate = verification.submit_stage1(
                case, actor_id, outcome, notes, at, actor_role=actor_role, correlation_id=cid
            )
            details = {"stage": 1, "outcome": str(outcome), "gate_state": str(gate)}
            _event(case, "VERIFICATION", actor_role, actor_id, at, details)
            logger.info("case %s stage-1 %s by %s", case.id, outcome, actor_id)
            return details

        return self._mutate(case_id, "case_verify_stage1", actor_id, op)

    def forward_to_stage2(
        self, case_id: str, actor_role: str | ActorRole, actor_id: str
    ) -> CaseRecord:
        def op(session: Session, case: Case, at: datetime, cid: str) -> dict[str, Any]:
            gate = verification.forward_to_stage2(case, actor_role, at)
            details = {"stage": 2, "action": "forwarded", "gate_state": str(gate)}
            _event(case, "VERIFICATION", actor_role, actor_id, at, details)
            return details

        return self._mutate(case_id, "case_verify_forward", actor_id, op)

    def submit_stage2(
        self,
        case_id: str,
        actor_id: str,
        outcome: str,
        notes: str | None = None,
        actor_role: str | ActorRole = ActorRole.MASTER_ADMIN,
    ) -> CaseRecord:
        def op(session: Session, case: Case, at: datetime, cid: str) -> dict[str, Any]:
            gate = verification.submit_stage2(
                case, actor_id, outcome, notes, at, actor_role=actor_role, correlation_id=cid
            )
            details = {"stage": 2, "outcome": str(outcome), "gate_state": str(gate)}
            _event(case, "VERIFICATION", actor_role, actor_id, at, details)
            logger.info("case %s stage-2 %s by %s", case.id, outcome, actor_id)
            return details

        return self._mutate(case_id, "case_verify_stage2", actor_id, op)

    def add_note(self, case_id: str, note: str, actor_id: str) -> CaseRecord:
        """Attach a free-text comment. Allowed in any status, terminal included."""

        def op(session: Session, case: Case, at: datetime, cid: str) -> dict[str, Any]:
            row = CaseNote(note=note, created_at=at, actor=actor_id, correlation_id=cid)
            case.notes.append(row)
            case.updated_at = at
            session.flush()
            return {"case_note_id": row.id}

        return self._mutate(case_id, "case_note_add", actor_id, op)

    # --- reads ---
    def get_case(self, case_id: str) -> CaseRecord:
        with session_scope() as session:
            return case_to_record(self._load(session, case_id))

    def list_cases(
        self,
        case_type: str | None = None,
        status: str | None = None,
        assigned_to: str | None = None,
        sla_bucket: str | None = None,
        priority: str | None = None,
        limit: int | None = None,
    ) -> list[CaseSummary]:
        """Cases matching every given filter, newest first. sla_bucket is evaluated at call time."""
        bucket = None
        if sla_bucket is not None:
            try:
                bucket = SlaBucket(sla_bucket)
            except ValueError as e:
                raise InvalidFilter(
                    f"sla_bucket must be one of {[b.value for b in SlaBucket]}, got {sla_bucket!r}",
                    sla_bucket=sla_bucket,
                ) from e
        now = self._now()
        with session_scope() as session:
            stmt = select(Case).order_by(Case.created_at.desc(), Case.id)
            if case_type is not None:
                stmt = stmt.where(Case.case_type == str(parse_case_type(case_type)))
            if status is not None:
                stmt = stmt.where(Case.status == status)
            if assigned_to is not None:
                stmt = stmt.where(Case.assigned_to == assigned_to)
            if priority is not None:
                stmt = stmt.where(Case.priority == priority)
            out: list[CaseSummary] = []
            for case in session.execute(stmt).scalars():
                if bucket is not None and self.policy.evaluate(case, now) != bucket:
                    continue
                out.append(case_to_summary(case, now, self.policy))
                if limit is not None and len(out) >= limit:
                    break
            return out

    def aggregate(self, group_by: str = "case_type_status") -> list[dict[str, Any]]:
        if group_by not in projection.GROUP_BY_FIELDS:
            raise InvalidFilter(
                f"group_by must be one of {list(projection.GROUP_BY_FIELDS)}, got {group_by!r}",
                group_by=group_by,
            )
        now = self._now()
        with session_scope() as session:
            cases = session.execute(select(Case)).scalars().all()
            return projection.aggregate(cases, group_by, now, self.policy)

    def dashboard(self) -> dict[str, Any]:
        now = self._now()
        with session_scope() as session:
            cases = session.execute(select(Case)).scalars().all()
            return projection.dashboard(cases, now, self.policy)

    def sla_breaches(self) -> list[CaseSummary]:
        """Open cases past their due date, most overdue first."""
        now = self._now()
        with session_scope() as session:
            cases = session.execute(select(Case)).scalars().all()
            return [case_to_summary(c, now, self.policy) for c in projection.breached(cases, now, self.policy)]
