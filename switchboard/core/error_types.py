"""Error kind enumeration for Switchboard.

Provides type-safe error categorization for retry decisions, attempt
records and error responses.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Error kind categories.

    These kinds are used throughout the codebase for:
    - RetryPolicy decisions (retryable vs. deterministic failures)
    - AttemptRecord.error_kind in telemetry
    - Error aggregation and reporting

    When adding new error kinds:
    1. Add the enum value here
    2. Decide whether it belongs in RETRYABLE_KINDS or REQUEST_SHAPED_KINDS
    3. Document when the kind is used
    """

    # Provider call outcomes
    TIMEOUT = "timeout"  # Provider did not answer in time
    RATE_LIMITED = "rate_limited"  # Provider returned 429
    TRANSIENT_SERVER = "transient_server"  # 5xx or network failure

    # Deterministic failures
    AUTH_ERROR = "auth_error"  # 401/403, bad or revoked key
    INVALID_REQUEST = "invalid_request"  # Malformed request (4xx)
    CONTENT_POLICY = "content_policy"  # Refused by provider safety filters

    # Orchestration outcomes
    NO_KEY_AVAILABLE = "no_key_available"  # Zero active credentials
    CAPACITY_REJECTED = "capacity_rejected"  # Rate gate queue is full
    CANCELLED = "cancelled"  # Caller cancelled the request
    ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"  # Terminal failure

    # Catch-all
    UNEXPECTED = "unexpected"  # Unhandled/unexpected error


RETRYABLE_KINDS = frozenset(
    {ErrorKind.TIMEOUT, ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT_SERVER}
)

# Failures caused by the request itself; no other provider can do better.
REQUEST_SHAPED_KINDS = frozenset({ErrorKind.INVALID_REQUEST, ErrorKind.CONTENT_POLICY})
