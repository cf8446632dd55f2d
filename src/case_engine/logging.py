"""Re-export logging utilities (see logging_config for implementation)."""

from case_engine.logging_config import get_logger, sanitize_fields, setup_logging

__all__ = ["get_logger", "sanitize_fields", "setup_logging"]
