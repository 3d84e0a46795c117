"""Ordered provider fallback."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from switchboard.core.error_types import REQUEST_SHAPED_KINDS, ErrorKind
from switchboard.core.key_pool import KeyPool
from switchboard.core.providers import DEFAULT_FALLBACK_ORDER, Provider

logger = logging.getLogger(__name__)

ProviderFilter = Callable[[Provider], bool]


class FallbackChain:
    """Picks the next provider to try after a provider-level failure.

    Providers listed in ``order`` are consulted first; any provider left
    out of ``order`` is never used as a fallback.
    """

    def __init__(self, key_pool: KeyPool, order: Sequence[Provider] = DEFAULT_FALLBACK_ORDER) -> None:
        if len(set(order)) != len(order):
            raise ValueError("Fallback order must not repeat providers")
        self._key_pool = key_pool
        self._order = tuple(order)

    @property
    def order(self) -> tuple[Provider, ...]:
        return self._order

    def next_candidate(
        self,
        exhausted: Provider | None,
        tried: Iterable[Provider],
        error_kind: ErrorKind | None = None,
        eligible: ProviderFilter | None = None,
    ) -> Provider | None:
        """Return the next provider to try, or None when the chain is exhausted.

        Request-shaped failures end the chain at once: the same request
        would be rejected by every provider.
        """
        if error_kind in REQUEST_SHAPED_KINDS:
            return None
        skip = set(tried)
        if exhausted is not None:
            skip.add(exhausted)
        for provider in self.candidates(eligible):
            if provider not in skip:
                if exhausted is not None:
                    logger.info(f"↪️ Falling back from {exhausted.value} to {provider.value}")
                return provider
        return None

    def candidates(self, eligible: ProviderFilter | None = None) -> list[Provider]:
        """Providers in chain order that currently hold an active key."""
        return [
            provider
            for provider in self._order
            if (eligible is None or eligible(provider)) and self._key_pool.has_active(provider)
        ]

    def resolve_active(self, preferred: Provider | None = None) -> Provider | None:
        """The provider requests go to when none is named explicitly.

        ``preferred`` wins while it has an active key; otherwise the first
        provider in chain order with an active key.
        """
        if preferred is not None and self._key_pool.has_active(preferred):
            return preferred
        candidates = self.candidates()
        return candidates[0] if candidates else None
