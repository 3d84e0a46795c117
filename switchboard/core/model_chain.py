"""Per-provider chain of chat models with quota tracking."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from switchboard.core.providers import Provider, ProviderCapability

logger = logging.getLogger(__name__)

# Daily provider quotas; an exhausted model is retried after this long.
QUOTA_RESET_SECONDS = 24 * 3600


@dataclass(frozen=True)
class QuotaStatus:
    provider: Provider
    model: str
    exceeded_at: float
    reset_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "model": self.model,
            "exceeded_at": self.exceeded_at,
            "reset_at": self.reset_at,
        }


class ModelChain:
    """Ordered chat models per provider, skipping models out of quota.

    Each chain starts with the provider's default model. A model marked
    as quota-exceeded is skipped until ``reset_seconds`` have passed.
    """

    def __init__(
        self,
        chains: Mapping[Provider, Sequence[str]],
        reset_seconds: float = QUOTA_RESET_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chains = {provider: tuple(dict.fromkeys(models)) for provider, models in chains.items()}
        self._reset_seconds = reset_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._exceeded: dict[tuple[Provider, str], QuotaStatus] = {}

    @classmethod
    def from_capabilities(
        cls,
        capabilities: Mapping[Provider, ProviderCapability],
        reset_seconds: float = QUOTA_RESET_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> ModelChain:
        chains = {
            provider: (capability.default_model, *capability.fallback_models)
            for provider, capability in capabilities.items()
        }
        return cls(chains, reset_seconds=reset_seconds, clock=clock)

    def chain(self, provider: Provider) -> tuple[str, ...]:
        return self._chains.get(provider, ())

    def mark_quota_exceeded(self, provider: Provider, model: str) -> QuotaStatus:
        now = self._clock()
        status = QuotaStatus(provider, model, exceeded_at=now, reset_at=now + self._reset_seconds)
        with self._lock:
            self._exceeded[(provider, model)] = status
        logger.warning(f"⚠️ Quota exceeded for {provider.value}/{model}, skipping it until reset")
        return status

    def is_quota_exceeded(self, provider: Provider, model: str) -> bool:
        with self._lock:
            return self._is_exceeded(provider, model)

    def next_model(self, provider: Provider, current: str) -> str | None:
        """The first model after ``current`` in the chain that still has quota.

        None when ``current`` is the last usable model or is not part of the
        provider's chain.
        """
        chain = self.chain(provider)
        if current not in chain:
            return None
        with self._lock:
            for model in chain[chain.index(current) + 1 :]:
                if not self._is_exceeded(provider, model):
                    logger.info(f"🔄 Model fallback on {provider.value}: {current} → {model}")
                    return model
        return None

    def first_available(self, provider: Provider, default: str) -> str:
        """The first model in the chain with quota left.

        Falls back to ``default`` when the provider has no chain or every
        model in it is exhausted, so the provider's own error surfaces.
        """
        with self._lock:
            for model in self.chain(provider):
                if not self._is_exceeded(provider, model):
                    return model
        return default

    def quota_stats(self) -> dict[str, Any]:
        with self._lock:
            exceeded = [
                status
                for (provider, model), status in list(self._exceeded.items())
                if self._is_exceeded(provider, model)
            ]
        total = sum(len(models) for models in self._chains.values())
        chained = sum(1 for status in exceeded if status.model in self.chain(status.provider))
        return {
            "total": total,
            "exceeded": chained,
            "available": total - chained,
            "exceeded_models": [status.to_dict() for status in exceeded],
        }

    def reset(self) -> None:
        with self._lock:
            self._exceeded.clear()

    def _is_exceeded(self, provider: Provider, model: str) -> bool:
        status = self._exceeded.get((provider, model))
        if status is None:
            return False
        if self._clock() >= status.reset_at:
            del self._exceeded[(provider, model)]
            logger.info(f"✅ Quota reset for {provider.value}/{model}")
            return False
        return True
