"""Tests for case identifier generation and checksum validation."""

from case_engine.db import session_scope
from case_engine.identifiers import (
    checksum,
    district_code,
    format_id,
    next_case_id,
    parse_id,
    validate_id,
)


def test_format_and_validate() -> None:
    cid = format_id("GRV", "AP", "NLR", 2025, 123)
    assert cid.startswith("GRV-AP-NLR-2025-000123-")
    assert len(cid.rsplit("-", 1)[1]) == 2
    assert validate_id(cid)


def test_parse_id() -> None:
    cid = format_id("CMR", "AP", "GTR", 2024, 7)
    parsed = parse_id(cid)
    assert parsed is not None
    assert (parsed.prefix, parsed.state, parsed.district, parsed.year, parsed.sequence) == (
        "CMR",
        "AP",
        "GTR",
        2024,
        7,
    )
    assert str(parsed) == cid


def test_malformed_ids() -> None:
    assert parse_id("GRV-2025-1") is None
    assert not validate_id("grv-ap-nlr-2025-000123-AB")
    assert not validate_id("")


def test_single_character_change_detected() -> None:
    cid = format_id("TDL", "AP", "VSP", 2025, 4521)
    tampered = cid.replace("004521", "004531")
    assert not validate_id(tampered)
    assert checksum("TDL-AP-VSP-2025-004521") != checksum("TDL-AP-VSP-2025-004531")


def test_district_code() -> None:
    assert district_code("SPSR Nellore") == "NLR"
    assert district_code("gtr") == "GTR"
    assert district_code("Atlantis") == "UNK"
    assert district_code(None) == "UNK"


def test_next_case_id_increments_per_key(db) -> None:
    with session_scope() as session:
        first = next_case_id(session, "GRIEVANCE", "Guntur", 2025)
        second = next_case_id(session, "GRIEVANCE", "Guntur", 2025)
        other = next_case_id(session, "DISPUTE", "Guntur", 2025)
    assert parse_id(first).sequence == 1
    assert parse_id(second).sequence == 2
    assert parse_id(other).sequence == 1
    assert other.startswith("DSP-AP-GTR-2025-")
    with session_scope() as session:
        third = next_case_id(session, "GRIEVANCE", "Guntur", 2025)
    assert parse_id(third).sequence == 3
    assert all(validate_id(c) for c in (first, second, third, other))
