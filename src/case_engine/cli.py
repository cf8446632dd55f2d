"""Typer CLI: create-case, transition, assign, auto-assign, verify, list-cases, dashboard, sla-breaches, serve-api, validate-id."""

from __future__ import annotations

import json
import os
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import typer

from case_engine.audit_context import get_actor, get_role, set_audit_context
from case_engine.config import get_config
from case_engine.db import init_db
from case_engine.errors import CaseEngineError
from case_engine.identifiers import parse_id, validate_id
from case_engine.logging_config import setup_logging
from case_engine.registry import ActorRole
from case_engine.resilience import call_with_storage_retry
from case_engine.service import CaseEngine

app = typer.Typer(help="Citizen case lifecycle CLI")

T = TypeVar("T")


def _ensure_db(config_path: str | None = None) -> CaseEngine:
    config = get_config(config_path)
    db = config.get("database", {})
    db_url = db.get("url", "sqlite:///./data/cases.db")
    if db_url.startswith("sqlite:///") and ":memory:" not in db_url:
        Path(db_url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    setup_logging(config.get("app", {}).get("log_level", "INFO"))
    init_db(db_url, echo=db.get("echo", False), timeout_seconds=float(db.get("timeout_seconds", 5)))
    set_audit_context(
        str(uuid.uuid4()),
        os.environ.get("CASE_ENGINE_ACTOR", "cli"),
        os.environ.get("CASE_ENGINE_ROLE", ActorRole.MASTER_ADMIN.value),
    )
    return CaseEngine.from_config(config)


def _run(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call an engine operation, backing off on storage failures; print other errors and exit 1."""
    try:
        return call_with_storage_retry(fn, *args, **kwargs)
    except CaseEngineError as e:
        typer.echo(f"{e.code}: {e.message}", err=True)
        raise typer.Exit(1) from e


def _echo_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, indent=2, default=str))


@app.command("create-case")
def create_case(
    case_type: str = typer.Argument(..., help="GRIEVANCE, DISPUTE, TEMPLE_LETTER, CM_RELIEF, ..."),
    priority: str | None = typer.Option(None, "--priority", "-p", help="Defaults per case type"),
    district: str | None = typer.Option(None, "--district", "-d"),
    title: str | None = typer.Option(None, "--title", "-t"),
    citizen_ref: str | None = typer.Option(None, "--citizen-ref"),
    case_id: str | None = typer.Option(None, "--id", help="Caller-assigned identifier"),
    note: str | None = typer.Option(None, "--note", "-n"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Create a case in its type's initial status."""
    engine = _ensure_db(config)
    record = _run(
        engine.create_case,
        case_type,
        get_role(),
        get_actor(),
        priority=priority,
        case_id=case_id,
        title=title,
        district=district,
        citizen_ref=citizen_ref,
        note=note,
    )
    typer.echo(f"Created {record.id} ({record.case_type}) status={record.status} due={record.sla_due_at.isoformat()}")


@app.command()
def transition(
    case_id: str = typer.Argument(...),
    to_status: str = typer.Argument(...),
    notes: str | None = typer.Option(None, "--notes", "-n"),
    expected_version: int | None = typer.Option(None, "--expected-version"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Move a case to another status (validated against its type's edges)."""
    engine = _ensure_db(config)
    record = _run(engine.transition, case_id, to_status, get_role(), get_actor(), notes, expected_version)
    typer.echo(f"Case {record.id} status={record.status} version={record.version}")


@app.command()
def assign(
    case_id: str = typer.Argument(...),
    officer_id: str = typer.Argument(...),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Assign a case to an officer."""
    engine = _ensure_db(config)
    record = _run(engine.assign, case_id, officer_id, get_role(), get_actor())
    typer.echo(f"Case {record.id} assigned_to={record.assigned_to} status={record.status}")


@app.command("auto-assign")
def auto_assign(
    case_id: str = typer.Argument(...),
    candidates: list[str] = typer.Option(..., "--candidate", "-o", help="Candidate officer id (repeatable)"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Assign a case to the least-loaded candidate officer."""
    engine = _ensure_db(config)
    record = _run(engine.auto_assign, case_id, candidates, get_role(), get_actor())
    typer.echo(f"Case {record.id} assigned_to={record.assigned_to} status={record.status}")


@app.command()
def verify(
    case_id: str = typer.Argument(...),
    stage: str = typer.Argument(..., help="1, forward or 2"),
    outcome: str = typer.Option("APPROVED", "--outcome", help="APPROVED or REJECTED"),
    notes: str | None = typer.Option(None, "--notes", "-n"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Record a verification sign-off (stage 1 or 2) or forward a case to stage 2."""
    if stage not in ("1", "2", "forward"):
        typer.echo("stage must be 1, forward or 2", err=True)
        raise typer.Exit(1)
    if outcome not in ("APPROVED", "REJECTED"):
        typer.echo("outcome must be APPROVED or REJECTED", err=True)
        raise typer.Exit(1)
    engine = _ensure_db(config)
    role, actor = get_role(), get_actor()
    if stage == "1":
        record = _run(engine.submit_stage1, case_id, actor, outcome, notes, actor_role=role)
    elif stage == "forward":
        record = _run(engine.forward_to_stage2, case_id, role, actor)
    else:
        record = _run(engine.submit_stage2, case_id, actor, outcome, notes, actor_role=role)
    typer.echo(f"Case {record.id} gate={record.verification.gate_state} status={record.status}")


@app.command("list-cases")
def list_cases(
    case_type: str | None = typer.Option(None, "--case-type"),
    status: str | None = typer.Option(None, "--status"),
    assigned_to: str | None = typer.Option(None, "--assigned-to"),
    sla_bucket: str | None = typer.Option(None, "--sla-bucket", help="WITHIN_SLA, AT_RISK or BREACHED"),
    priority: str | None = typer.Option(None, "--priority"),
    limit: int = typer.Option(100, "--limit"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """List cases matching the given filters."""
    engine = _ensure_db(config)
    rows = _run(
        engine.list_cases,
        case_type=case_type,
        status=status,
        assigned_to=assigned_to,
        sla_bucket=sla_bucket,
        priority=priority,
        limit=limit,
    )
    for row in rows:
        typer.echo(
            f"{row.id}\t{row.case_type}\t{row.status}\t{row.priority}\t"
            f"{row.assigned_to or '-'}\t{row.sla_bucket}"
        )
    typer.echo(f"{len(rows)} case(s).")


@app.command()
def dashboard(
    group_by: str | None = typer.Option(None, "--group-by", help="Aggregate by one field instead"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Print dashboard totals as JSON."""
    engine = _ensure_db(config)
    if group_by:
        _echo_json(_run(engine.aggregate, group_by))
        return
    _echo_json(_run(engine.dashboard))


@app.command("sla-breaches")
def sla_breaches(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """List open cases past their SLA due date, most overdue first."""
    engine = _ensure_db(config)
    rows = _run(engine.sla_breaches)
    for row in rows:
        typer.echo(f"{row.id}\t{row.case_type}\t{row.status}\t{row.priority}\tdue={row.sla_due_at.isoformat()}")
    typer.echo(f"{len(rows)} breached case(s).")


@app.command("serve-api")
def serve_api(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
    host: str | None = typer.Option(None, "--host", "-h", help="Bind host"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
) -> None:
    """Start the FastAPI server."""
    cfg = get_config(config)
    h = host or os.environ.get("CASE_ENGINE_API_HOST") or cfg.get("api", {}).get("host", "0.0.0.0")
    _pe = os.environ.get("CASE_ENGINE_API_PORT", "")
    p = (
        port
        if port is not None
        else (int(_pe) if _pe and _pe.isdigit() else None) or cfg.get("api", {}).get("port", 8000)
    )
    if config:
        os.environ["CASE_ENGINE_CONFIG_PATH"] = config
    import uvicorn

    uvicorn.run(
        "case_engine.api:app",
        host=h,
        port=p,
        reload=False,
    )


@app.command("validate-id")
def validate_id_cmd(case_id: str = typer.Argument(...)) -> None:
    """Check an identifier's format and check characters."""
    parsed = parse_id(case_id)
    if parsed is None:
        typer.echo(f"{case_id}: malformed", err=True)
        raise typer.Exit(1)
    if not validate_id(case_id):
        typer.echo(f"{case_id}: checksum mismatch", err=True)
        raise typer.Exit(1)
    typer.echo(
        f"{case_id}: ok (prefix={parsed.prefix} state={parsed.state} "
        f"district={parsed.district} year={parsed.year} seq={parsed.sequence})"
    )


if __name__ == "__main__":
    app()
