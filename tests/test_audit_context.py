"""Tests for audit context (correlation_id, actor and role traceability)."""

from case_engine.audit_context import (
    get_actor,
    get_audit_context,
    get_correlation_id,
    get_role,
    set_actor,
    set_audit_context,
)


def test_set_and_get_context() -> None:
    """When context is set, get_audit_context and get_correlation_id/get_actor return those values."""
    set_audit_context("corr-123", "exec1", "L2_EXEC_ADMIN")
    cid, actor = get_audit_context()
    assert cid == "corr-123"
    assert actor == "exec1"
    assert get_correlation_id() == "corr-123"
    assert get_actor() == "exec1"
    assert get_role() == "L2_EXEC_ADMIN"


def test_get_correlation_id_generated_when_unset() -> None:
    """When correlation_id is not set, get_correlation_id returns a generated UUID."""
    set_audit_context(None, "system")
    cid = get_correlation_id()
    assert cid is not None
    assert len(cid) == 36
    assert cid.count("-") == 4


def test_get_actor_default_system_when_unset() -> None:
    set_audit_context("x", None)
    assert get_actor() == "system"
    assert get_role() is None
    set_audit_context(None, None)
    _, actor = get_audit_context()
    assert actor == "system"


def test_set_actor_keeps_correlation_id() -> None:
    set_audit_context("req-9", "anonymous")
    set_actor("admin1", "L1_MASTER_ADMIN")
    assert get_correlation_id() == "req-9"
    assert get_actor() == "admin1"
    assert get_role() == "L1_MASTER_ADMIN"
    set_actor("admin2")
    assert get_role() == "L1_MASTER_ADMIN"


def test_correlation_id_stable_within_context() -> None:
    set_audit_context("run-456", "cli")
    assert get_correlation_id() == get_correlation_id()
    assert get_correlation_id() == "run-456"
