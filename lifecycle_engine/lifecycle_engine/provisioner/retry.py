"""Retry with exponential backoff for provisioning-tool invocations.

Only failures the caller marks as transient (state-lock contention, for
example) are retried; everything else propagates on the first attempt.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Tuneable parameters for retry behaviour."""

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt.")
    base_delay: float = Field(default=2.0, gt=0.0, description="Base delay in seconds.")
    max_delay: float = Field(default=60.0, gt=0.0, description="Upper bound on a single delay.")
    jitter: bool = Field(default=True, description="Randomise each delay within [0.5x, 1.5x].")


def compute_delay(attempt: int, config: RetryConfig) -> float:
    """Return the backoff delay before retry number *attempt* (0-based)."""
    delay: float = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


def retry_with_backoff(
    fn: Callable[[], T],
    config: RetryConfig,
    is_transient: Callable[[Exception], bool],
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *fn* until it succeeds, a permanent error occurs, or retries run out.

    Parameters
    ----------
    fn:
        Zero-argument callable; invoked from scratch on every attempt.
    config:
        Retry parameters.
    is_transient:
        Predicate deciding whether an exception is worth retrying.
    label:
        Name used in log messages.
    sleep:
        Sleep function, injectable for tests.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as exc:
            if not is_transient(exc) or attempt >= config.max_retries:
                raise
            delay = compute_delay(attempt, config)
            attempt += 1
            logger.warning(
                "%s failed transiently, retry %d/%d in %.1fs: %s",
                label,
                attempt,
                config.max_retries,
                delay,
                exc,
            )
            sleep(delay)
