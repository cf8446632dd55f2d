"""Caller-side backoff for transient storage failures."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from case_engine.errors import StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def storage_retry(
    max_attempts: int = 4,
    min_wait: float = 0.5,
    max_wait: float = 8,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Retry only on StorageUnavailable; every other engine error surfaces immediately."""
    return retry(
        retry=retry_if_exception_type(StorageUnavailable),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def call_with_storage_retry(fn: Callable[..., T], *args, max_attempts: int = 4, **kwargs) -> T:
    return storage_retry(max_attempts=max_attempts)(fn)(*args, **kwargs)
