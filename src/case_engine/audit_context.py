"""Audit context: correlation_id, actor id and actor role for traceability (CLI run or API request)."""

from __future__ import annotations

import uuid
from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("audit_correlation_id", default=None)
_actor: ContextVar[str | None] = ContextVar("audit_actor", default=None)
_role: ContextVar[str | None] = ContextVar("audit_role", default=None)


def set_audit_context(
    correlation_id: str | None, actor: str | None = None, role: str | None = None
) -> None:
    """Set correlation_id, actor and role for the current context (e.g. CLI run or API request)."""
    _correlation_id.set(correlation_id)
    _actor.set(actor)
    _role.set(role)


def set_actor(actor: str, role: str | None = None) -> None:
    """Set the actor (and optionally role) after authentication. Leaves correlation_id unchanged."""
    _actor.set(actor)
    if role is not None:
        _role.set(role)


def get_audit_context() -> tuple[str, str]:
    """Return (correlation_id, actor). Generates correlation_id if not set; actor defaults to 'system'."""
    cid = _correlation_id.get()
    if cid is None:
        cid = str(uuid.uuid4())
        _correlation_id.set(cid)
    act = _actor.get()
    if act is None:
        act = "system"
    return cid, act


def get_correlation_id() -> str:
    """Return current correlation_id, generating one if not set."""
    cid, _ = get_audit_context()
    return cid


def get_actor() -> str:
    """Return current actor, default 'system' if not set."""
    _, act = get_audit_context()
    return act


def get_role() -> str | None:
    """Return the current actor role, None when unauthenticated."""
    return _role.get()
