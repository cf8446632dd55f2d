"""Pydantic v2 schemas for engine results and the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from case_engine.sla import as_utc


class _UtcModel(BaseModel):
    """Normalizes naive datetimes from the store to UTC."""

    @field_validator("*", mode="after")
    @classmethod
    def _utc(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return as_utc(v)
        return v


# --- Engine results ---
class StatusHistoryEntry(_UtcModel):
    from_status: str | None
    to_status: str
    actor_role: str
    actor_id: str
    at: datetime
    notes: str | None = None

    model_config = {"from_attributes": True}


class CaseEventEntry(_UtcModel):
    kind: str
    actor_role: str
    actor_id: str
    at: datetime
    details: dict[str, Any] | None = Field(default=None, validation_alias="details_json")

    model_config = {"from_attributes": True, "populate_by_name": True}


class VerificationRecordOut(_UtcModel):
    by: str
    at: datetime
    notes: str | None = None
    outcome: str

    model_config = {"from_attributes": True}


class VerificationOut(BaseModel):
    gate_state: str
    stage1: VerificationRecordOut | None = None
    stage2: VerificationRecordOut | None = None


class CaseNoteOut(_UtcModel):
    id: int
    note: str
    created_at: datetime
    actor: str
    correlation_id: str

    model_config = {"from_attributes": True}


class CaseRecord(_UtcModel):
    """Snapshot of a case returned by every engine operation."""

    id: str
    case_type: str
    status: str
    priority: str
    title: str | None = None
    district: str | None = None
    citizen_ref: str | None = None
    attributes: dict[str, Any] | None = None
    assigned_to: str | None = None
    verification: VerificationOut
    sla_started_at: datetime
    sla_due_at: datetime
    created_at: datetime
    updated_at: datetime | None = None
    closed_at: datetime | None = None
    version: int
    status_history: list[StatusHistoryEntry] = []
    events: list[CaseEventEntry] = []
    notes: list[CaseNoteOut] = []


class CaseSummary(_UtcModel):
    """List-view row: a case with its current SLA bucket, without history."""

    id: str
    case_type: str
    status: str
    priority: str
    title: str | None = None
    district: str | None = None
    assigned_to: str | None = None
    gate_state: str
    sla_due_at: datetime
    sla_bucket: str
    created_at: datetime
    closed_at: datetime | None = None
    version: int


class AggregateRow(BaseModel):
    key: str
    count: int


class DashboardResponse(BaseModel):
    total: int
    open: int
    closed: int
    by_priority: dict[str, int]
    by_sla_bucket: dict[str, int]
    by_case_type: dict[str, int]
    by_case_type_status: list[AggregateRow]
    generated_at: datetime


# --- API input ---
class CaseCreateRequest(BaseModel):
    """Body for POST /cases."""

    case_type: str
    priority: str | None = None
    id: str | None = Field(None, description="Caller-assigned identifier; generated when omitted")
    title: str | None = Field(None, max_length=255)
    district: str | None = None
    citizen_ref: str | None = None
    attributes: dict[str, Any] | None = None
    note: str | None = None

    @field_validator("case_type")
    @classmethod
    def case_type_enum(cls, v: str) -> str:
        from case_engine.registry import CaseType

        if v not in CaseType.__members__:
            raise ValueError(f"case_type must be one of {[t.value for t in CaseType]}")
        return v


class TransitionRequest(BaseModel):
    """Body for POST /cases/{id}/transitions."""

    to_status: str
    notes: str | None = None
    expected_version: int | None = None


class PriorityChangeRequest(BaseModel):
    priority: str
    notes: str | None = None
    expected_version: int | None = None


class AssignmentRequest(BaseModel):
    officer_id: str = Field(..., min_length=1, max_length=128)
    expected_version: int | None = None


class AutoAssignmentRequest(BaseModel):
    candidates: list[str] = []
    strategy: str = "least_loaded"


class VerificationRequest(BaseModel):
    outcome: str = Field(..., pattern="^(APPROVED|REJECTED)$")
    notes: str | None = None


class CaseNoteRequest(BaseModel):
    """Body for POST /cases/{id}/notes."""

    note: str = Field(..., min_length=1)


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = {}
