"""Credential pool with least-recently-used issuance per provider."""

from __future__ import annotations

import itertools
import logging
import threading
import time
import uuid
from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from switchboard.core.exceptions import CredentialNotFound, NoKeyAvailable
from switchboard.core.models import MAX_HEALTH_SCORE, Credential
from switchboard.core.providers import Provider
from switchboard.core.storage import KeyValueStore

logger = logging.getLogger(__name__)

STORE_KEY = "api_keys"

# Health recovers slowly on success and drops fast on failure.
HEALTH_RECOVERY = 1
HEALTH_PENALTY = 10


@dataclass(frozen=True)
class KeyPoolStats:
    total_keys: int
    active_keys: int
    total_usage: int
    per_key_usage: dict[str, int] = field(default_factory=dict)
    total_errors: int = 0
    average_health_score: float = 0.0
    per_key_health: dict[str, int] = field(default_factory=dict)


class KeyPool:
    """Thread-safe credential pool, one pool per provider.

    Responsibilities:
    - Own every Credential and its usage counters
    - Issue the least-recently-used active key for a provider
    - Record successful use (usage_count, last_used_at)
    - Record failed use (error counters and a 0-100 health score)
    - Administrative add/remove/toggle and persistence snapshots

    Issuance order is tracked with an internal sequence rather than
    ``last_used_at`` so that two consecutive issues never return the same
    key while another active key exists, even if neither call succeeded.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._keys: dict[str, Credential] = {}
        self._insertion: dict[str, int] = {}
        self._last_issued: dict[str, int] = {}
        self._order = itertools.count()
        self._issue_seq = itertools.count(1)

    # === Hot path ===

    def issue(self, provider: Provider, exclude: Collection[str] = ()) -> Credential:
        """Issue the next credential for ``provider``.

        Selection: least recently issued active key, ties broken by lowest
        usage_count, then by insertion order. Keys whose id is in
        ``exclude`` are skipped.

        Raises:
            NoKeyAvailable: If the provider has no active credential outside ``exclude``.
        """
        with self._lock:
            candidates = self._active(provider, exclude)
            if not candidates:
                raise NoKeyAvailable(provider)

            chosen = min(
                candidates,
                key=lambda k: (
                    self._last_issued.get(k.id, 0),
                    k.usage_count,
                    self._insertion[k.id],
                ),
            )
            self._last_issued[chosen.id] = next(self._issue_seq)
            return replace(chosen)

    def mark_used(self, credential_id: str) -> None:
        """Record one successful provider call made with ``credential_id``.

        A credential removed while its call was in flight is ignored.
        """
        with self._lock:
            key = self._keys.get(credential_id)
            if key is None:
                logger.debug(f"mark_used for removed credential {credential_id}")
                return
            key.usage_count += 1
            key.last_used_at = self._clock()
            key.consecutive_errors = 0
            key.health_score = min(MAX_HEALTH_SCORE, key.health_score + HEALTH_RECOVERY)

    def mark_failed(self, credential_id: str) -> None:
        """Record one failed provider call made with ``credential_id``.

        Failures never deactivate a key; the health score only reports them.
        """
        with self._lock:
            key = self._keys.get(credential_id)
            if key is None:
                logger.debug(f"mark_failed for removed credential {credential_id}")
                return
            key.error_count += 1
            key.consecutive_errors += 1
            key.last_error_at = self._clock()
            key.health_score = max(0, key.health_score - HEALTH_PENALTY)

    def has_active(self, provider: Provider, exclude: Collection[str] = ()) -> bool:
        with self._lock:
            return bool(self._active(provider, exclude))

    # === Administration ===

    def add(self, provider: Provider, secret: str, label: str | None = None) -> Credential:
        secret = secret.strip()
        if not secret:
            raise ValueError("API key must not be empty")

        credential = Credential(
            id=f"{provider.value}_{uuid.uuid4().hex[:12]}",
            provider=provider,
            secret=secret,
            label=label or f"{provider.value} key",
            created_at=self._clock(),
        )
        with self._lock:
            self._insert(credential)
        logger.info(f"🔑 Added key {credential.label} ({credential.masked_secret}) for {provider.value}")
        return replace(credential)

    def add_many(
        self, provider: Provider, secrets: Iterable[str], label_prefix: str | None = None
    ) -> list[Credential]:
        added = []
        for index, secret in enumerate(secrets, start=1):
            label = f"{label_prefix} #{index}" if label_prefix else None
            added.append(self.add(provider, secret, label))
        return added

    def remove(self, credential_id: str) -> Credential:
        with self._lock:
            credential = self._keys.pop(credential_id, None)
            if credential is None:
                raise CredentialNotFound(credential_id)
            self._insertion.pop(credential_id, None)
            self._last_issued.pop(credential_id, None)
        logger.info(f"🗑️ Removed key {credential.label} for {credential.provider.value}")
        return credential

    def toggle_active(self, credential_id: str) -> Credential:
        with self._lock:
            credential = self._keys.get(credential_id)
            if credential is None:
                raise CredentialNotFound(credential_id)
            credential.is_active = not credential.is_active
            state = "activated" if credential.is_active else "deactivated"
            logger.info(f"🔑 Key {credential.label} {state}")
            return replace(credential)

    def get(self, credential_id: str) -> Credential:
        with self._lock:
            credential = self._keys.get(credential_id)
            if credential is None:
                raise CredentialNotFound(credential_id)
            return replace(credential)

    def list_keys(self, provider: Provider | None = None) -> list[Credential]:
        with self._lock:
            keys = sorted(self._keys.values(), key=lambda k: self._insertion[k.id])
            return [replace(k) for k in keys if provider is None or k.provider is provider]

    def contains_secret(self, provider: Provider, secret: str) -> bool:
        with self._lock:
            return any(k.provider is provider and k.secret == secret for k in self._keys.values())

    def remove_duplicates(self) -> int:
        """Drop credentials repeating an earlier (provider, secret) pair."""
        with self._lock:
            seen: set[tuple[Provider, str]] = set()
            duplicates = []
            for key in sorted(self._keys.values(), key=lambda k: self._insertion[k.id]):
                signature = (key.provider, key.secret)
                if signature in seen:
                    duplicates.append(key.id)
                else:
                    seen.add(signature)
            for credential_id in duplicates:
                del self._keys[credential_id]
                self._insertion.pop(credential_id, None)
                self._last_issued.pop(credential_id, None)
        if duplicates:
            logger.info(f"🗑️ Removed {len(duplicates)} duplicate key(s)")
        return len(duplicates)

    def reset(self) -> None:
        with self._lock:
            self._keys.clear()
            self._insertion.clear()
            self._last_issued.clear()

    # === Statistics ===

    def stats(self, provider: Provider) -> KeyPoolStats:
        with self._lock:
            keys = [k for k in self._keys.values() if k.provider is provider]
            return KeyPoolStats(
                total_keys=len(keys),
                active_keys=sum(1 for k in keys if k.is_active),
                total_usage=sum(k.usage_count for k in keys),
                per_key_usage={k.id: k.usage_count for k in keys},
                total_errors=sum(k.error_count for k in keys),
                average_health_score=_average_health(keys),
                per_key_health={k.id: k.health_score for k in keys},
            )

    def aggregated_stats(self) -> dict[str, Any]:
        with self._lock:
            keys_by_provider: dict[str, int] = {}
            for key in self._keys.values():
                keys_by_provider[key.provider.value] = keys_by_provider.get(key.provider.value, 0) + 1
            return {
                "total_keys": len(self._keys),
                "active_keys": sum(1 for k in self._keys.values() if k.is_active),
                "total_usage": sum(k.usage_count for k in self._keys.values()),
                "total_errors": sum(k.error_count for k in self._keys.values()),
                "average_health_score": _average_health(self._keys.values()),
                "keys_by_provider": keys_by_provider,
            }

    # === Persistence ===

    def snapshot(self) -> list[dict[str, Any]]:
        return [key.to_dict() for key in self.list_keys()]

    def restore(self, records: Iterable[dict[str, Any]]) -> int:
        """Replace the pool contents with ``records``; returns the count loaded."""
        credentials = [Credential.from_dict(record) for record in records]
        with self._lock:
            self._keys.clear()
            self._insertion.clear()
            self._last_issued.clear()
            for credential in credentials:
                self._insert(credential)
        return len(credentials)

    def load(self, store: KeyValueStore) -> int:
        records = store.load(STORE_KEY) or []
        count = self.restore(records)
        logger.info(f"🔑 {count} API key(s) loaded")
        return count

    def save(self, store: KeyValueStore) -> None:
        store.save(STORE_KEY, self.snapshot())

    def _insert(self, credential: Credential) -> None:
        self._keys[credential.id] = credential
        self._insertion[credential.id] = next(self._order)

    def _active(self, provider: Provider, exclude: Collection[str]) -> list[Credential]:
        return [
            key
            for key in self._keys.values()
            if key.provider is provider and key.is_active and key.id not in exclude
        ]


def _average_health(keys: Iterable[Credential]) -> float:
    scores = [key.health_score for key in keys]
    return round(sum(scores) / len(scores), 2) if scores else 0.0
