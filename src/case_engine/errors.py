"""Typed failures raised by the case engine.

Every failure carries a stable ``code`` so wrapping layers (HTTP, CLI) can map it
without string matching. Only ``StorageUnavailable`` is retryable.
"""

from __future__ import annotations

from typing import Any


class CaseEngineError(Exception):
    """Base class for all engine failures."""

    code = "case_engine_error"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class UnknownCaseType(CaseEngineError):
    code = "unknown_case_type"


class InvalidStatus(CaseEngineError):
    code = "invalid_status"


class InvalidPriority(CaseEngineError):
    code = "invalid_priority"


class IllegalTransition(CaseEngineError):
    code = "illegal_transition"


class AlreadyTerminal(CaseEngineError):
    code = "already_terminal"


class VerificationRequired(CaseEngineError):
    code = "verification_required"


class Stage1NotComplete(CaseEngineError):
    code = "stage1_not_complete"


class Forbidden(CaseEngineError):
    code = "forbidden"


class NoEligibleOfficers(CaseEngineError):
    code = "no_eligible_officers"


class ConcurrentModification(CaseEngineError):
    code = "concurrent_modification"


class NotFound(CaseEngineError):
    code = "not_found"


class DuplicateCaseId(CaseEngineError):
    code = "duplicate_case_id"


class StorageUnavailable(CaseEngineError):
    code = "storage_unavailable"
    retryable = True


class InvalidFilter(CaseEngineError):
    code = "invalid_filter"
