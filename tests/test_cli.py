"""CLI tests via typer's CliRunner against a temp config and file DB."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from case_engine.cli import app
from case_engine.identifiers import checksum

runner = CliRunner()


@pytest.fixture
def cli(config_path: str, monkeypatch):
    monkeypatch.setenv("CASE_ENGINE_ACTOR", "admin-cli")
    monkeypatch.setenv("CASE_ENGINE_ROLE", "L1_MASTER_ADMIN")
    # Logs go to stdout; keep command output parseable.
    monkeypatch.setenv("CASE_ENGINE_LOG_LEVEL", "WARNING")

    def invoke(*args: str):
        return runner.invoke(app, [*args, "--config", config_path])

    return invoke


def _created_id(output: str) -> str:
    assert output.startswith("Created ")
    return output.split()[1]


def test_validate_id() -> None:
    base = "GRV-AP-NLR-2025-000001"
    good = f"{base}-{checksum(base)}"
    result = runner.invoke(app, ["validate-id", good])
    assert result.exit_code == 0
    assert "district=NLR" in result.output

    assert runner.invoke(app, ["validate-id", "GRV-1"]).exit_code == 1
    bad_check = "00" if checksum(base) != "00" else "11"
    assert runner.invoke(app, ["validate-id", f"{base}-{bad_check}"]).exit_code == 1


def test_create_transition_list(cli) -> None:
    result = cli("create-case", "GRIEVANCE", "--priority", "P1", "--district", "Guntur")
    assert result.exit_code == 0, result.output
    case_id = _created_id(result.output)
    assert case_id.startswith("GRV-AP-GTR-")

    result = cli("transition", case_id, "TRIAGED", "--notes", "looked at")
    assert result.exit_code == 0, result.output
    assert "status=TRIAGED version=2" in result.output

    result = cli("assign", case_id, "exec1")
    assert result.exit_code == 0
    assert "assigned_to=exec1 status=ASSIGNED" in result.output

    result = cli("list-cases", "--assigned-to", "exec1")
    assert result.exit_code == 0
    assert case_id in result.output
    assert "1 case(s)." in result.output


def test_illegal_transition_exits_1(cli) -> None:
    case_id = _created_id(cli("create-case", "DISPUTE").output)
    result = cli("transition", case_id, "SETTLED")
    assert result.exit_code == 1
    assert "illegal_transition" in result.output


def test_unknown_sla_bucket_exits_1(cli) -> None:
    cli("create-case", "GRIEVANCE")
    result = cli("list-cases", "--sla-bucket", "LATE")
    assert result.exit_code == 1
    assert "invalid_filter" in result.output
    assert "Traceback" not in result.output


def test_unknown_case_type_exits_1(cli) -> None:
    result = cli("create-case", "PARKING")
    assert result.exit_code == 1
    assert "unknown_case_type" in result.output


def test_verify_and_auto_assign(cli) -> None:
    case_id = _created_id(cli("create-case", "TEMPLE_LETTER", "--priority", "P2").output)
    result = cli("auto-assign", case_id, "-o", "exec-a", "-o", "exec-b")
    assert result.exit_code == 0, result.output
    assert "assigned_to=exec-a status=UNDER_REVIEW" in result.output

    assert cli("verify", case_id, "1").exit_code == 0
    assert "gate=STAGE2_PENDING" in cli("verify", case_id, "forward").output
    result = cli("verify", case_id, "2", "--outcome", "REJECTED", "--notes", "temple closed")
    assert "gate=STAGE2_REJECTED" in result.output
    assert cli("verify", case_id, "3").exit_code == 1


def test_dashboard_json(cli) -> None:
    cli("create-case", "GRIEVANCE")
    cli("create-case", "APPOINTMENT")
    result = cli("dashboard")
    assert result.exit_code == 0
    board = json.loads(result.output)
    assert board["total"] == 2
    assert board["by_case_type"] == {"APPOINTMENT": 1, "GRIEVANCE": 1}

    rows = json.loads(cli("dashboard", "--group-by", "status").output)
    assert rows == [{"key": "NEW", "count": 1}, {"key": "REQUESTED", "count": 1}]
    assert cli("dashboard", "--group-by", "district").exit_code == 1


def test_sla_breaches_empty(cli) -> None:
    cli("create-case", "GRIEVANCE")
    result = cli("sla-breaches")
    assert result.exit_code == 0
    assert "0 breached case(s)." in result.output
