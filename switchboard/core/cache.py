"""Content-addressed response cache with frequency-aware eviction.

Two independent instances are used at runtime: one for chat responses and
one for embeddings, each with its own capacity and TTL.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from switchboard.core.models import RequestSpec
from switchboard.core.providers import Provider

logger = logging.getLogger(__name__)

T = TypeVar("T")

TEMPERATURE_PRECISION = 2

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, trim and collapse whitespace."""
    return _WHITESPACE.sub(" ", text.strip().lower())


def _digest(material: dict[str, object]) -> str:
    encoded = json.dumps(material, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def fingerprint_request(spec: RequestSpec, provider: Provider, model: str) -> str:
    """Fingerprint of everything that determines a chat response.

    ``provider`` and ``model`` are the resolved values; the request may
    leave them to defaults.
    """
    return _digest(
        {
            "provider": provider.value,
            "model": model,
            "messages": [
                [m["role"], normalize_text(m["content"])] for m in spec.to_messages()
            ],
            "temperature": round(spec.temperature, TEMPERATURE_PRECISION),
            "tenant": spec.tenant_id,
            "extra": spec.cache_key_material,
        }
    )


def fingerprint_text(provider: Provider, model: str, text: str) -> str:
    """Fingerprint for an embedding of ``text``."""
    return _digest({"provider": provider.value, "model": model, "text": normalize_text(text)})


@dataclass
class CacheEntry(Generic[T]):
    fingerprint: str
    payload: T
    created_at: float
    hit_count: int = 0
    scope: str | None = None


@dataclass(frozen=True)
class CacheStats:
    name: str
    size: int
    hits: int
    misses: int
    capacity: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class ResponseCache(Generic[T]):
    """Bounded cache keyed by request fingerprint.

    On overflow the victim is the entry with the oldest ``created_at``
    among entries in the lowest ``hit_count`` quartile, so frequently
    repeated answers survive a burst of one-off writes.
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.name = name
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry[T]] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, fingerprint: str) -> CacheEntry[T] | None:
        """Return the entry for ``fingerprint`` or None on a miss."""
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None and self._is_expired(entry):
                del self._entries[fingerprint]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            entry.hit_count += 1
            self._hits += 1
            logger.debug(f"✅ {self.name} cache hit ({fingerprint[:8]}...)")
            return entry

    def put(self, fingerprint: str, payload: T, scope: str | None = None) -> CacheEntry[T]:
        """Store ``payload``; identical re-writes only bump ``hit_count``."""
        with self._lock:
            existing = self._entries.get(fingerprint)
            if existing is not None and not self._is_expired(existing):
                if existing.payload == payload:
                    existing.hit_count += 1
                    return existing
                existing.payload = payload
                existing.hit_count = 0
                existing.created_at = self._clock()
                existing.scope = scope
                return existing

            if existing is None and len(self._entries) >= self.capacity:
                self._evict_one()

            entry = CacheEntry(
                fingerprint=fingerprint,
                payload=payload,
                created_at=self._clock(),
                scope=scope,
            )
            self._entries[fingerprint] = entry
            logger.debug(f"💾 {self.name} cache stored ({fingerprint[:8]}...)")
            return entry

    def invalidate(self, predicate: Callable[[CacheEntry[T]], bool]) -> int:
        with self._lock:
            doomed = [fp for fp, entry in self._entries.items() if predicate(entry)]
            for fp in doomed:
                del self._entries[fp]
        if doomed:
            logger.info(f"🗑️ {self.name} cache invalidated {len(doomed)} entr(ies)")
        return len(doomed)

    def invalidate_scope(self, scope: str) -> int:
        """Drop every entry written for tenant ``scope``."""
        return self.invalidate(lambda entry: entry.scope == scope)

    def purge_expired(self) -> int:
        return self.invalidate(self._is_expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                name=self.name,
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                capacity=self.capacity,
                evictions=self._evictions,
            )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._entries

    def _is_expired(self, entry: CacheEntry[T]) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - entry.created_at > self.ttl_seconds

    def _evict_one(self) -> None:
        # Caller holds the lock.
        counts = sorted(entry.hit_count for entry in self._entries.values())
        quartile_index = max(0, math.ceil(len(counts) / 4) - 1)
        threshold = counts[quartile_index]
        victim = min(
            (entry for entry in self._entries.values() if entry.hit_count <= threshold),
            key=lambda entry: entry.created_at,
        )
        del self._entries[victim.fingerprint]
        self._evictions += 1
        logger.debug(
            f"🗑️ {self.name} cache evicted {victim.fingerprint[:8]}... (hits={victim.hit_count})"
        )
