"""Attempt recording, windowed statistics and debounced alerts."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import defaultdict, deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from switchboard.core.models import Alert, AttemptRecord, Outcome
from switchboard.core.providers import Provider

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 3_600_000
DEFAULT_RETENTION_SECONDS = 7 * 24 * 3600
RECENT_ERRORS_LIMIT = 10


@dataclass(frozen=True)
class AlertThresholds:
    error_rate: float = 0.25
    window_seconds: float = 300.0
    cooldown_seconds: float = 600.0
    latency_ms: float = 5000.0
    min_samples: int = 10


@dataclass(frozen=True)
class Aggregate:
    total_requests: int = 0
    success_rate: float = 0.0
    average_latency_ms: float = 0.0
    error_rate: float = 0.0
    total_tokens: int = 0
    total_cost: float = 0.0
    recent_errors: tuple[AttemptRecord, ...] = ()
    by_provider: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "success_rate": round(self.success_rate, 4),
            "average_latency_ms": round(self.average_latency_ms, 2),
            "error_rate": round(self.error_rate, 4),
            "total_tokens": self.total_tokens,
            "total_cost": round(self.total_cost, 6),
            "recent_errors": [
                {
                    "endpoint": r.endpoint,
                    "provider": r.provider.value,
                    "error_kind": r.error_kind.value if r.error_kind else "unknown",
                    "timestamp": r.timestamp_start,
                }
                for r in self.recent_errors
            ],
            "by_provider": dict(self.by_provider),
        }


@dataclass
class SummaryMetrics:
    """Running totals between two summary log lines."""

    total_requests: int = 0
    total_errors: int = 0
    total_latency_ms: float = 0.0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cost: float = 0.0
    cache_hits: int = 0
    provider_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    error_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def add(self, record: AttemptRecord) -> None:
        self.total_requests += 1
        self.total_latency_ms += record.latency_ms
        self.total_tokens_in += record.tokens_in
        self.total_tokens_out += record.tokens_out
        self.total_cost += record.cost_estimate
        self.provider_counts[record.provider.value] += 1
        if record.cached:
            self.cache_hits += 1
        if not record.success:
            self.total_errors += 1
            kind = record.error_kind.value if record.error_kind else record.outcome.value
            self.error_counts[kind] += 1


class Telemetry:
    """Bounded, time-windowed store of AttemptRecords.

    Records live in a ring buffer that drops the oldest entry once either
    ``max_records`` or the retention window binds. Every statistics call
    recomputes from the live buffer.
    """

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        max_records: int = 10_000,
        thresholds: AlertThresholds | None = None,
        max_alerts: int = 100,
        summary_interval: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retention_seconds = retention_seconds
        self.thresholds = thresholds or AlertThresholds()
        self.summary_interval = summary_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._records: deque[AttemptRecord] = deque(maxlen=max_records)
        self._alerts: deque[Alert] = deque(maxlen=max_alerts)
        self._last_alert_at: dict[tuple[str, Provider | None], float] = {}
        self._summary = SummaryMetrics()

    # === Recording ===

    def submit(self, record: AttemptRecord) -> None:
        """Record without blocking the caller.

        Inside an event loop the record is handed to ``call_soon`` so the
        request path never pays for aggregation or alert checks.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.record(record)
            return
        loop.call_soon(self._record_safely, record)

    def _record_safely(self, record: AttemptRecord) -> None:
        try:
            self.record(record)
        except Exception:
            logger.exception("Failed to record attempt")

    def record(self, record: AttemptRecord) -> None:
        with self._lock:
            self._records.append(record)
            self._prune_locked(self._clock())
            self._summary.add(record)
            emit_summary = (
                self.summary_interval > 0
                and self._summary.total_requests >= self.summary_interval
            )
            if emit_summary:
                summary, self._summary = self._summary, SummaryMetrics()
        if emit_summary:
            self._emit_summary(summary)
        self._check_alerts(record)

    def prune(self) -> int:
        """Drop records older than the retention window; returns the count dropped."""
        with self._lock:
            return self._prune_locked(self._clock())

    def _prune_locked(self, now: float) -> int:
        cutoff = now - self.retention_seconds
        dropped = 0
        while self._records and self._records[0].timestamp_start < cutoff:
            self._records.popleft()
            dropped += 1
        return dropped

    def __len__(self) -> int:
        return len(self._records)

    # === Statistics ===

    def stats_for_endpoint(self, name: str, window_ms: float = DEFAULT_WINDOW_MS) -> Aggregate:
        return self._aggregate(self._window(window_ms, lambda r: r.endpoint == name))

    def stats_for_provider(self, provider: Provider, window_ms: float = DEFAULT_WINDOW_MS) -> Aggregate:
        return self._aggregate(self._window(window_ms, lambda r: r.provider is provider))

    def stats_for_user(self, user_id: str, window_ms: float = DEFAULT_WINDOW_MS) -> Aggregate:
        records = self._window(window_ms, lambda r: r.user_id == user_id)
        by_provider: dict[str, int] = defaultdict(int)
        for record in records:
            by_provider[record.provider.value] += 1
        aggregate = self._aggregate(records)
        return Aggregate(
            total_requests=aggregate.total_requests,
            success_rate=aggregate.success_rate,
            average_latency_ms=aggregate.average_latency_ms,
            error_rate=aggregate.error_rate,
            total_tokens=aggregate.total_tokens,
            total_cost=aggregate.total_cost,
            recent_errors=aggregate.recent_errors,
            by_provider=dict(by_provider),
        )

    def recent_alerts(self, limit: int = 20) -> list[Alert]:
        """Most recent alerts first."""
        with self._lock:
            alerts = list(self._alerts)
        return list(reversed(alerts[-limit:])) if limit > 0 else []

    def _window(
        self, window_ms: float, predicate: Callable[[AttemptRecord], bool]
    ) -> list[AttemptRecord]:
        cutoff = self._clock() - window_ms / 1000
        with self._lock:
            return [r for r in self._records if r.timestamp_start >= cutoff and predicate(r)]

    @staticmethod
    def _aggregate(records: Iterable[AttemptRecord]) -> Aggregate:
        records = list(records)
        if not records:
            return Aggregate()
        total = len(records)
        successes = sum(1 for r in records if r.success)
        errors = [r for r in records if not r.success]
        return Aggregate(
            total_requests=total,
            success_rate=successes / total,
            average_latency_ms=sum(r.latency_ms for r in records) / total,
            error_rate=len(errors) / total,
            total_tokens=sum(r.total_tokens for r in records),
            total_cost=sum(r.cost_estimate for r in records),
            recent_errors=tuple(reversed(errors[-RECENT_ERRORS_LIMIT:])),
        )

    # === Alerting ===

    def _check_alerts(self, record: AttemptRecord) -> None:
        thresholds = self.thresholds

        if record.success and not record.cached and record.latency_ms > thresholds.latency_ms:
            severity = "critical" if record.latency_ms >= 2 * thresholds.latency_ms else "warning"
            self._raise_alert(
                "high_latency",
                record.provider,
                f"High latency: {record.latency_ms:.0f}ms for {record.endpoint} ({record.provider.value})",
                severity,
            )

        samples = self._window(
            thresholds.window_seconds * 1000,
            lambda r: r.provider is record.provider and not r.cached and r.outcome is not Outcome.CANCELLED,
        )
        if len(samples) < thresholds.min_samples:
            return
        error_rate = sum(1 for r in samples if not r.success) / len(samples)
        if error_rate > thresholds.error_rate:
            severity = "critical" if error_rate >= 2 * thresholds.error_rate else "warning"
            self._raise_alert(
                "high_error_rate",
                record.provider,
                f"High error rate: {error_rate * 100:.1f}% for {record.provider.value} "
                f"over {len(samples)} requests",
                severity,
            )

    def _raise_alert(self, alert_type: str, provider: Provider | None, message: str, severity: str) -> None:
        now = self._clock()
        key = (alert_type, provider)
        with self._lock:
            last = self._last_alert_at.get(key)
            if last is not None and now - last < self.thresholds.cooldown_seconds:
                return
            self._last_alert_at[key] = now
            self._alerts.append(
                Alert(type=alert_type, message=message, timestamp=now, severity=severity, provider=provider)
            )
        log = logger.error if severity == "critical" else logger.warning
        log(f"🚨 ALERT [{alert_type}]: {message}")

    def _emit_summary(self, summary: SummaryMetrics) -> None:
        logger.info(
            f"📊 SUMMARY (last {summary.total_requests} attempts) | "
            f"Errors: {summary.total_errors} | "
            f"Avg Latency: {summary.total_latency_ms / max(1, summary.total_requests):.0f}ms | "
            f"Input Tokens: {summary.total_tokens_in:,} | "
            f"Output Tokens: {summary.total_tokens_out:,} | "
            f"Cost: ${summary.total_cost:.4f} | "
            f"Cache Hits: {summary.cache_hits}"
        )

        if summary.provider_counts:
            provider_dist = " | ".join(
                f"{provider}: {count}" for provider, count in summary.provider_counts.items()
            )
            logger.info(f"📊 PROVIDERS | {provider_dist}")

        if summary.error_counts:
            error_dist = " | ".join(f"{error}: {count}" for error, count in summary.error_counts.items())
            logger.warning(f"📊 ERRORS | {error_dist}")
