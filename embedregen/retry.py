"""
Retry policy for batch requests to the embedding backend.

Failures are classified against a fixed list of patterns, but only for the
log line: every failure, transient-looking or not, is retried at the same
offset after the same fixed delay. There is no attempt limit and no
backoff growth; a permanently failing job keeps running, visibly degraded,
until an operator stops it.
"""

import re
import time
from typing import Callable, Optional

from .errors import BackendError

TRANSIENT_ERROR_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"502",
        r"503",
        r"504",
        r"timeout",
        r"network",
        r"connection",
        r"cloudflare",
        r"bad gateway",
        r"service unavailable",
    )
]


def is_transient_error(error_text: Optional[str]) -> bool:
    """
    Determine if failure text looks infrastructure-related.

    Args:
        error_text: Response body, payload error or exception message

    Returns:
        True if any transient pattern matches (case-insensitive)
    """
    if not error_text:
        return False
    return any(pattern.search(error_text) for pattern in TRANSIENT_ERROR_PATTERNS)


def classify_failure(error: BaseException) -> str:
    """Return the failure class used for logging and metrics."""
    if isinstance(error, BackendError):
        return error.category
    if is_transient_error(str(error)):
        return "transient"
    return "unexpected"


class RetryPolicy:
    """
    Fixed-delay, unbounded retry.

    The attempt counter lives only in memory for log messages ("retry N")
    and is cleared by the next success.
    """

    def __init__(self, delay: float = 5.0, sleep: Callable[[float], None] = time.sleep):
        self.delay = delay
        self._sleep = sleep
        self.retry_count = 0

    def should_retry(self, error: BaseException) -> bool:
        # Every class is retried; a stricter policy would stop on auth or
        # malformed-request failures here.
        return True

    def record_failure(self, error: BaseException) -> int:
        """Count a failed attempt and return the retry number it leads to."""
        self.retry_count += 1
        return self.retry_count

    def record_success(self) -> int:
        """Clear the counter; returns how many retries preceded the success."""
        previous = self.retry_count
        self.retry_count = 0
        return previous

    def wait(self) -> None:
        self._sleep(self.delay)
