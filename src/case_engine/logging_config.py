"""Logging setup: stdout, no secrets, citizen PII redacted before any handler writes."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

# Redact secrets
REDACT_FIELDS = frozenset({"password", "secret", "token", "api_key", "authorization"})
# Citizen PII: log case and officer ids, never personal details
PII_REDACT_KEYS = frozenset(
    {
        "citizen_name",
        "applicant_name",
        "patient_name",
        "phone",
        "mobile",
        "email",
        "aadhaar",
        "aadhaar_number",
        "address",
    }
)
PII_KEY_PATTERN = re.compile(
    r"(\b" + "|".join(re.escape(k) for k in sorted(PII_REDACT_KEYS, key=len, reverse=True)) + r")[\s=:]+[^\s,\)\]]+",
    re.IGNORECASE,
)
# Bare values that identify a citizen even without a key in front.
AADHAAR_PATTERN = re.compile(r"(?<![\d-])\d{4}[ ]?\d{4}[ ]?\d{4}(?![\d-])")
MOBILE_PATTERN = re.compile(r"(?<![\d-])(?:\+91[ -]?)?[6-9]\d{9}(?![\d-])")


def sanitize_fields(fields: dict[str, Any] | None) -> dict[str, Any]:
    """Copy of fields with secret and PII values masked (for audit details and log extras)."""
    if not fields:
        return {}
    out: dict[str, Any] = {}
    for k, v in fields.items():
        key_lower = k.lower()
        if any(r in key_lower for r in REDACT_FIELDS):
            out[k] = "***"
        elif any(p in key_lower for p in PII_REDACT_KEYS):
            out[k] = "[REDACTED]"
        else:
            out[k] = v
    return out


def redact_text(text: str) -> str:
    """Mask key=value PII, then bare Aadhaar and mobile numbers."""
    text = PII_KEY_PATTERN.sub(r"\1=[REDACTED]", text)
    text = AADHAAR_PATTERN.sub("[AADHAAR]", text)
    return MOBILE_PATTERN.sub("[MOBILE]", text)


class PIIRedactionFilter(logging.Filter):
    """Handler filter; string args are redacted, other args keep their type for %d/%f."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_text(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(redact_text(a) if isinstance(a, str) else a for a in record.args)
        elif isinstance(record.args, dict):
            record.args = sanitize_fields(record.args)
        return True


def setup_logging(log_level: str = "INFO") -> None:
    """Configure root logger on stdout with the redaction filter on every root handler."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
        stream=sys.stdout,
        force=True,
    )
    # Logger filters do not see records propagated from child loggers; handler filters do.
    for handler in logging.getLogger().handlers:
        handler.addFilter(PIIRedactionFilter())
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for module `name` (PII redaction applied at the root handlers)."""
    return logging.getLogger(name)
