"""
Exception hierarchy for the orchestration engine.

All request-path exceptions inherit from OrchestrationError, allowing
callers to catch every engine failure with a single except clause and
to show ``user_message`` to end users.

Example:
    >>> try:
    ...     await orchestrator.complete(spec)
    ... except OrchestrationError as e:
    ...     reply(e.user_message)
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from switchboard.core.error_types import RETRYABLE_KINDS, REQUEST_SHAPED_KINDS, ErrorKind

if TYPE_CHECKING:
    from switchboard.core.providers import Provider


class OrchestrationError(Exception):
    """Base exception for all request-path failures.

    Attributes:
        kind: The ErrorKind recorded for this failure
        user_message: Short human-readable summary safe to show to end users
    """

    kind: ErrorKind = ErrorKind.UNEXPECTED
    user_message: str = "The assistant is unavailable right now. Please try again later."


class NoKeyAvailable(OrchestrationError):
    """Raised by KeyPool.issue when a provider has zero active credentials.

    This is a configuration problem, not a transient one: the orchestrator
    falls back immediately instead of retrying.
    """

    kind = ErrorKind.NO_KEY_AVAILABLE
    user_message = "No AI provider credentials are configured."

    def __init__(self, provider: Provider) -> None:
        self.provider = provider
        super().__init__(f"No active API key for provider '{provider.value}'")


class CapacityRejected(OrchestrationError):
    """Raised by RateGate.admit when the provider queue is full.

    Backpressure signal: the caller should try again later.
    """

    kind = ErrorKind.CAPACITY_REJECTED
    user_message = "The assistant is busy right now. Please try again in a moment."

    def __init__(self, provider: Provider, queue_size: int, max_queue_depth: int | None) -> None:
        self.provider = provider
        self.queue_size = queue_size
        self.max_queue_depth = max_queue_depth
        super().__init__(
            f"Queue for provider '{provider.value}' is full "
            f"({queue_size}/{max_queue_depth} waiting)"
        )


class ProviderError(OrchestrationError):
    """Raised by provider clients when an outbound call fails.

    Attributes:
        kind: Classified ErrorKind of the failure
        provider: Provider that failed
        status_code: HTTP status code if the provider answered
        message: Provider-supplied or transport error message
    """

    def __init__(
        self,
        kind: ErrorKind,
        provider: Provider,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
        self.message = message
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{provider.value} {kind.value}{status}: {message}")

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @classmethod
    def from_kind(
        cls,
        kind: ErrorKind,
        provider: Provider,
        message: str,
        status_code: int | None = None,
    ) -> ProviderError:
        """Build the most specific ProviderError subclass for ``kind``."""
        if kind in RETRYABLE_KINDS:
            return TransientProviderError(kind, provider, message, status_code)
        if kind in REQUEST_SHAPED_KINDS or kind is ErrorKind.AUTH_ERROR:
            return PermanentRequestError(kind, provider, message, status_code)
        return cls(kind, provider, message, status_code)


class TransientProviderError(ProviderError):
    """Timeout, 5xx or 429: worth retrying."""


class PermanentRequestError(ProviderError):
    """4xx other than 429, or a content-policy refusal: never retried."""

    @property
    def user_message(self) -> str:  # type: ignore[override]
        if self.kind is ErrorKind.CONTENT_POLICY:
            return "The request was refused by the AI provider's content policy."
        return "The request could not be processed by the AI provider."


class AllProvidersExhausted(OrchestrationError):
    """Terminal failure: every candidate provider was tried or had no key.

    Attributes:
        failures: Ordered (provider, error_kind) pairs, one per provider tried
    """

    kind = ErrorKind.ALL_PROVIDERS_EXHAUSTED

    def __init__(self, failures: Sequence[tuple[Provider, ErrorKind]]) -> None:
        self.failures = list(failures)
        if self.failures:
            detail = ", ".join(f"{p.value}: {k.value}" for p, k in self.failures)
        else:
            detail = "no provider has an active API key"
        super().__init__(f"All providers exhausted ({detail})")

    @property
    def providers(self) -> list[Provider]:
        return [provider for provider, _ in self.failures]

    @property
    def user_message(self) -> str:  # type: ignore[override]
        if all(kind is ErrorKind.NO_KEY_AVAILABLE for _, kind in self.failures):
            return NoKeyAvailable.user_message
        return OrchestrationError.user_message


class CredentialNotFound(LookupError):
    """Raised by administrative key operations on an unknown credential id."""

    def __init__(self, credential_id: str) -> None:
        self.credential_id = credential_id
        super().__init__(f"Credential '{credential_id}' not found")


class StorageError(Exception):
    """Raised when the key-value storage boundary cannot load or save."""


__all__ = [
    "OrchestrationError",
    "NoKeyAvailable",
    "CapacityRejected",
    "ProviderError",
    "TransientProviderError",
    "PermanentRequestError",
    "AllProvidersExhausted",
    "CredentialNotFound",
    "StorageError",
]
