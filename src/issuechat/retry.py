"""Centralized retry / backoff helpers for HTTP collaborators.

``run_with_retries`` wraps a thunk with exponential backoff plus jitter. Only
:class:`TransientError` triggers a retry (HTTP 429/5xx responses and
connection-level failures); every other exception propagates immediately.

Environment overrides:
  ISSUECHAT_RETRY_ATTEMPTS (default 3)
  ISSUECHAT_RETRY_BASE (seconds base, default 0.5)
  ISSUECHAT_RETRY_MAX_SLEEP (cap per sleep, optional)
"""

from __future__ import annotations

import logging
import os
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T")

TRANSIENT_STATUS = frozenset({429, 502, 503, 504})

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_JITTER = random.SystemRandom()

logger = logging.getLogger(__name__)


class TransientError(RuntimeError):
    """Raised by a thunk to request another attempt."""

    def __init__(self, message: str, *, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


def parse_retry_after(text: str | None) -> float | None:
    """Extract a positive backoff (seconds) from a header value or error text."""
    if not text:
        return None
    text = text.strip()
    if text.isdigit():
        val = float(text)
        return val if val > 0 else None
    m = _RE_RETRY_AFTER.search(text)
    if m:
        val = float(m.group(1))
        return val if val > 0 else None
    return None


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: int(os.environ.get("ISSUECHAT_RETRY_ATTEMPTS", "3")))
    base_sleep: float = field(default_factory=lambda: float(os.environ.get("ISSUECHAT_RETRY_BASE", "0.5")))


def _compute_sleep(attempt: int, cfg: RetryConfig, exc: TransientError) -> float:
    explicit = exc.retry_after if exc.retry_after else parse_retry_after(str(exc))
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("ISSUECHAT_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def run_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except TransientError as exc:
            if attempt >= attempts:
                raise
            sleep_for = _compute_sleep(attempt, cfg, exc)
            logger.info(
                "[retry] transient error, attempt %d/%d, sleeping %.2fs: %s",
                attempt,
                attempts,
                sleep_for,
                exc,
            )
            sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "TransientError", "TRANSIENT_STATUS", "parse_retry_after", "run_with_retries"]
