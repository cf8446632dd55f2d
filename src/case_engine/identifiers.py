"""Human-readable case identifiers: <PREFIX>-<STATE>-<DISTRICT>-<YYYY>-<SEQ>-<CHK>.

Once assigned an identifier is opaque to the engine; this module only issues new
ones and checks the trailing mod-36 check characters.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from case_engine.models import IdSequence
from case_engine.registry import CaseType, get_definition

_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
DEFAULT_STATE = "AP"
UNKNOWN_DISTRICT = "UNK"

DISTRICT_CODES: dict[str, str] = {
    "SPSR Nellore": "NLR",
    "Guntur": "GTR",
    "Vijayawada": "VJW",
    "Visakhapatnam": "VSP",
    "Krishna": "KRS",
    "West Godavari": "WGD",
    "East Godavari": "EGD",
    "Chittoor": "CTR",
    "Kadapa": "KDP",
    "Anantapur": "ATP",
    "Kurnool": "KNL",
    "Prakasam": "PKM",
    "Srikakulam": "SKL",
    "Vizianagaram": "VZM",
}

ID_PATTERN = re.compile(r"^([A-Z]{3})-([A-Z]{2})-([A-Z]{3})-(\d{4})-(\d{6})-([A-Z0-9]{2})$")


@dataclass(frozen=True)
class CaseId:
    prefix: str
    state: str
    district: str
    year: int
    sequence: int
    checksum: str

    @property
    def base(self) -> str:
        return f"{self.prefix}-{self.state}-{self.district}-{self.year}-{self.sequence:06d}"

    def __str__(self) -> str:
        return f"{self.base}-{self.checksum}"


def _luhn36(chars: str) -> str:
    total = 0
    double = True
    for ch in reversed(chars):
        n = _ALPHABET.index(ch)
        if double:
            n *= 2
            if n >= 36:
                n = n // 36 + n % 36
        total += n
        double = not double
    return _ALPHABET[(36 - total % 36) % 36]


def checksum(base: str) -> str:
    """Two mod-36 check characters over the alphanumeric content of base."""
    chars = "".join(c for c in base.upper() if c in _ALPHABET)
    first = _luhn36(chars)
    return first + _luhn36(chars + first)


def district_code(district: str | None) -> str:
    """Three-letter code for a district name or code; UNK when unknown."""
    if not district:
        return UNKNOWN_DISTRICT
    if district in DISTRICT_CODES:
        return DISTRICT_CODES[district]
    upper = district.strip().upper()
    if upper in DISTRICT_CODES.values():
        return upper
    return UNKNOWN_DISTRICT


def format_id(prefix: str, state: str, district: str, year: int, sequence: int) -> str:
    base = f"{prefix}-{state}-{district}-{year}-{sequence:06d}"
    return f"{base}-{checksum(base)}"


def parse_id(case_id: str) -> CaseId | None:
    """Split an identifier into its parts; None when it does not match the format."""
    m = ID_PATTERN.match(case_id)
    if not m:
        return None
    return CaseId(
        prefix=m.group(1),
        state=m.group(2),
        district=m.group(3),
        year=int(m.group(4)),
        sequence=int(m.group(5)),
        checksum=m.group(6),
    )


def validate_id(case_id: str) -> bool:
    parsed = parse_id(case_id)
    if parsed is None:
        return False
    return checksum(parsed.base) == parsed.checksum


def next_case_id(
    session: Session,
    case_type: CaseType | str,
    district: str | None,
    year: int,
    state: str = DEFAULT_STATE,
) -> str:
    """Issue the next identifier for (type prefix, state, district, year) from the store."""
    prefix = get_definition(case_type).id_prefix
    code = district_code(district)
    key = f"{prefix}-{state}-{code}-{year}"
    seq = session.get(IdSequence, key)
    if seq is None:
        seq = IdSequence(key=key, value=0)
        session.add(seq)
    seq.value += 1
    session.flush()
    return format_id(prefix, state, code, year, seq.value)
