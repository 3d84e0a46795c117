"""Retry decisions and HTTP outcome classification."""

from __future__ import annotations

import random
from dataclasses import dataclass

from switchboard.core.error_types import RETRYABLE_KINDS, ErrorKind

# Substrings providers put in refusal bodies when a safety filter fires.
CONTENT_POLICY_MARKERS = (
    "content_filter",
    "content_policy",
    "content management policy",
    "safety",
)


def classify_status(status_code: int, body: str = "") -> ErrorKind:
    """Map an HTTP status (and error body) to an ErrorKind."""
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 408 or status_code >= 500:
        return ErrorKind.TRANSIENT_SERVER
    if 400 <= status_code < 500:
        lowered = body.lower()
        if any(marker in lowered for marker in CONTENT_POLICY_MARKERS):
            return ErrorKind.CONTENT_POLICY
        if status_code in (401, 403):
            return ErrorKind.AUTH_ERROR
        return ErrorKind.INVALID_REQUEST
    return ErrorKind.UNEXPECTED


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_ms: float = 0.0


class RetryPolicy:
    """Exponential backoff with jitter for retryable error kinds.

    ``max_attempts`` counts the first attempt, so the default of 3 means
    at most two retries against the same provider.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: float = 1000.0,
        max_delay_ms: float = 60000.0,
        jitter: float = 0.2,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter = jitter
        self._rng = rng or random.Random()

    def should_retry(self, attempt_number: int, error_kind: ErrorKind) -> RetryDecision:
        """Decide what to do after attempt ``attempt_number`` (1-based) failed."""
        if error_kind not in RETRYABLE_KINDS or attempt_number >= self.max_attempts:
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay_ms=self.backoff_ms(attempt_number))

    def backoff_ms(self, attempt_number: int) -> float:
        factor = 1 + self._rng.uniform(-self.jitter, self.jitter)
        delay = self.base_delay_ms * (2 ** (attempt_number - 1)) * factor
        return min(self.max_delay_ms, delay)
