"""Cases API router: explicit registration for /cases endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from case_engine.auth import require_api_key
from case_engine.config import get_config
from case_engine.registry import ActorRole
from case_engine.schemas import (
    AssignmentRequest,
    AutoAssignmentRequest,
    CaseCreateRequest,
    CaseNoteRequest,
    CaseRecord,
    CaseSummary,
    ErrorResponse,
    PriorityChangeRequest,
    TransitionRequest,
    VerificationRequest,
)
from case_engine.service import CaseEngine

cases_router = APIRouter(
    tags=["cases"],
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)

Identity = tuple[str, ActorRole]


def get_case_engine() -> CaseEngine:
    """Engine built from the resolved config; tests override this dependency."""
    return CaseEngine.from_config(get_config())


def _if_match(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip().strip('"'))
    except ValueError as e:
        raise HTTPException(status_code=400, detail="If-Match must be a case version number") from e


@cases_router.post("/cases", response_model=CaseRecord, status_code=201)
def create_case(
    body: CaseCreateRequest,
    identity: Identity = Depends(require_api_key),
    engine: CaseEngine = Depends(get_case_engine),
) -> CaseRecord:
    """Create a case in its type's initial status. Audited."""
    actor, role = identity
    return engine.create_case(
        body.case_type,
        role,
        actor,
        priority=body.priority,
        case_id=body.id,
        title=body.title,
        district=body.district,
        citizen_ref=body.citizen_ref,
        attributes=body.attributes,
        note=body.note,
    )


@cases_router.get("/cases", response_model=list[CaseSummary])
def list_cases(
    case_type: str | None = Query(None),
    status: str | None = Query(None),
    assigned_to: str | None = Query(None),
    sla_bucket: str | None = Query(None, pattern="^(WITHIN_SLA|AT_RISK|BREACHED)$"),
    priority: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    engine: CaseEngine = Depends(get_case_engine),
) -> list[CaseSummary]:
    """List cases with optional filters."""
    return engine.list_cases(
        case_type=case_type,
        status=status,
        assigned_to=assigned_to,
        sla_bucket=sla_bucket,
        priority=priority,
        limit=limit,
    )


@cases_router.get("/cases/{case_id}", response_model=CaseRecord)
def get_case(case_id: str, engine: CaseEngine = Depends(get_case_engine)) -> CaseRecord:
    """Get case by ID with history, events, verification and notes."""
    return engine.get_case(case_id)


@cases_router.post("/cases/{case_id}/transitions", response_model=CaseRecord)
def transition_case(
    case_id: str,
    body: TransitionRequest,
    if_match: str | None = Header(None),
    identity: Identity = Depends(require_api_key),
    engine: CaseEngine = Depends(get_case_engine),
) -> CaseRecord:
    """Move a case to another status. If-Match or expected_version pins the version."""
    actor, role = identity
    expected = body.expected_version if body.expected_version is not None else _if_match(if_match)
    return engine.transition(case_id, body.to_status, role, actor, body.notes, expected)


@cases_router.post("/cases/{case_id}/priority", response_model=CaseRecord)
def change_priority(
    case_id: str,
    body: PriorityChangeRequest,
    identity: Identity = Depends(require_api_key),
    engine: CaseEngine = Depends(get_case_engine),
) -> CaseRecord:
    actor, role = identity
    return engine.change_priority(
        case_id, body.priority, role, actor, body.notes, body.expected_version
    )


@cases_router.post("/cases/{case_id}/assignment", response_model=CaseRecord)
def assign_case(
    case_id: str,
    body: AssignmentRequest,
    identity: Identity = Depends(require_api_key),
    engine: CaseEngine = Depends(get_case_engine),
) -> CaseRecord:
    actor, role = identity
    return engine.assign(case_id, body.officer_id, role, actor, body.expected_version)


@cases_router.post("/cases/{case_id}/auto-assignment", response_model=CaseRecord)
def auto_assign_case(
    case_id: str,
    body: AutoAssignmentRequest,
    identity: Identity = Depends(require_api_key),
    engine: CaseEngine = Depends(get_case_engine),
) -> CaseRecord:
    """Assign to the least-loaded eligible candidate."""
    actor, role = identity
    return engine.auto_assign(case_id, body.candidates, role, actor, strategy=body.strategy)


@cases_router.post("/cases/{case_id}/verification/stage1", response_model=CaseRecord)
def verify_stage1(
    case_id: str,
    body: VerificationRequest,
    identity: Identity = Depends(require_api_key),
    engine: CaseEngine = Depends(get_case_engine),
) -> CaseRecord:
    actor, role = identity
    return engine.submit_stage1(case_id, actor, body.outcome, body.notes, actor_role=role)


@cases_router.post("/cases/{case_id}/verification/forward", response_model=CaseRecord)
def verify_forward(
    case_id: str,
    identity: Identity = Depends(require_api_key),
    engine: CaseEngine = Depends(get_case_engine),
) -> CaseRecord:
    actor, role = identity
    return engine.forward_to_stage2(case_id, role, actor)


@cases_router.post("/cases/{case_id}/verification/stage2", response_model=CaseRecord)
def verify_stage2(
    case_id: str,
    body: VerificationRequest,
    identity: Identity = Depends(require_api_key),
    engine: CaseEngine = Depends(get_case_engine),
) -> CaseRecord:
    actor, role = identity
    return engine.submit_stage2(case_id, actor, body.outcome, body.notes, actor_role=role)


@cases_router.post("/cases/{case_id}/notes", response_model=CaseRecord, status_code=201)
def add_case_note(
    case_id: str,
    body: CaseNoteRequest,
    identity: Identity = Depends(require_api_key),
    engine: CaseEngine = Depends(get_case_engine),
) -> CaseRecord:
    """Add a note to a case. Audited."""
    actor, _role = identity
    return engine.add_note(case_id, body.note, actor)
