"""SQLAlchemy 2.x engine and session (SQLite and Postgres)."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from logging import getLogger

from sqlalchemy import create_engine, event, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from case_engine.errors import ConcurrentModification, StorageUnavailable
from case_engine.models import AuditLog, Base

logger = getLogger(__name__)

# Module-level engine/session_factory; set via init_db()
_engine = None
_SessionLocal: sessionmaker[Session] | None = None
_audit_hook_installed = False


def _audit_row_canonical(row: AuditLog) -> str:
    """Canonical string for hashing (excludes id, prev_hash, row_hash)."""
    ts = row.ts
    if ts is not None and ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    ts_str = ts.isoformat() if ts else ""
    details = json.dumps(row.details_json or {}, sort_keys=True, default=str)
    return f"{row.correlation_id or ''}|{row.action}|{row.entity_type}|{row.entity_id}|{ts_str}|{row.actor}|{details}"


def _compute_audit_chain(session: Session) -> None:
    """Set prev_hash and row_hash on new AuditLog instances (tamper resistance)."""
    new_logs = [o for o in session.new if isinstance(o, AuditLog)]
    if not new_logs:
        return
    prev_hash: str | None = None
    stmt = select(AuditLog.row_hash).order_by(AuditLog.id.desc()).limit(1)
    result = session.execute(stmt).scalar_one_or_none()
    if result is not None:
        prev_hash = result
    for row in new_logs:
        if row.ts is None:
            row.ts = datetime.now(UTC)
        if row.actor is None:
            row.actor = "system"
        row.prev_hash = prev_hash
        payload = (prev_hash or "") + _audit_row_canonical(row)
        row.row_hash = hashlib.sha256(payload.encode()).hexdigest()
        prev_hash = row.row_hash


def verify_audit_chain(session: Session) -> list[int]:
    """Return ids of audit rows whose hash does not match the chain (empty when intact)."""
    broken: list[int] = []
    prev_hash: str | None = None
    for row in session.execute(select(AuditLog).order_by(AuditLog.id)).scalars():
        expected = hashlib.sha256(((prev_hash or "") + _audit_row_canonical(row)).encode()).hexdigest()
        if row.prev_hash != prev_hash or row.row_hash != expected:
            broken.append(row.id)
        prev_hash = row.row_hash
    return broken


def init_db(database_url: str, echo: bool = False, timeout_seconds: float = 5.0) -> None:
    """Create engine and session factory. Call once at startup.
    SQLite: create_all. Postgres: engine only (schema via Alembic).
    """
    global _engine, _SessionLocal, _audit_hook_installed
    is_sqlite = database_url.startswith("sqlite")
    kwargs: dict = {}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout_seconds}
    else:
        kwargs["connect_args"] = {"connect_timeout": int(timeout_seconds)}
        kwargs["pool_timeout"] = timeout_seconds
        kwargs["pool_pre_ping"] = True
    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(database_url, echo=echo, **kwargs)
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    if not _audit_hook_installed:

        @event.listens_for(Session, "before_flush")
        def _before_flush_audit_chain(session, flush_context, instances):
            _compute_audit_chain(session)

        _audit_hook_installed = True

    if is_sqlite:
        Base.metadata.create_all(bind=_engine)
    # Postgres: schema is applied via Alembic (migrate target); do not create_all here


def get_engine():
    """Return the global engine. Raises if init_db() was not called."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope for a block.

    Stale version writes and unique-key collisions surface as
    ConcurrentModification; connection and timeout failures as
    StorageUnavailable.
    """
    factory = get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except StaleDataError as e:
        session.rollback()
        logger.warning("Stale write rejected: %s", e)
        raise ConcurrentModification(
            "Record was modified concurrently; re-read and retry"
        ) from e
    except IntegrityError as e:
        session.rollback()
        logger.warning("Conflicting insert rejected: %s", e.orig)
        raise ConcurrentModification(
            "A row with the same key was written concurrently; re-read and retry"
        ) from e
    except (OperationalError, PoolTimeoutError) as e:
        session.rollback()
        logger.warning("Storage unavailable: %s", e.__class__.__name__)
        raise StorageUnavailable("Storage unavailable; retry with backoff") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
