"""Per-provider admission control.

Each provider has a lane holding a sliding 60-second window of admission
timestamps, a count of in-flight requests and a FIFO queue of waiters.
A request is admitted only when both the requests-per-minute ceiling and
the concurrency ceiling allow it and nobody is queued ahead of it.

All counter updates happen under one lock and never await, so the rate
ceiling holds even with many concurrent callers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field

from switchboard.core.exceptions import CapacityRejected
from switchboard.core.providers import DEFAULT_CAPABILITIES, Provider

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0
WAIT_EMA_ALPHA = 0.2


@dataclass(frozen=True)
class GateLimits:
    rate_limit_rpm: int
    concurrency: int
    max_queue_depth: int | None = None

    def __post_init__(self) -> None:
        if self.rate_limit_rpm < 1 or self.concurrency < 1:
            raise ValueError("rate_limit_rpm and concurrency must be at least 1")
        if self.max_queue_depth is not None and self.max_queue_depth < 0:
            raise ValueError("max_queue_depth must not be negative")


@dataclass(eq=False)
class QueueTicket:
    """One admitted-or-waiting request inside the gate."""

    provider: Provider
    enqueued_at: float
    admitted_at: float | None = None
    future: asyncio.Future[QueueTicket] | None = field(default=None, repr=False)

    @property
    def granted(self) -> bool:
        return self.admitted_at is not None

    @property
    def wait_ms(self) -> float:
        if self.admitted_at is None:
            return 0.0
        return (self.admitted_at - self.enqueued_at) * 1000


@dataclass(frozen=True)
class QueueStats:
    provider: Provider
    queue_size: int
    processing: int
    concurrency_limit: int
    rate_limit_rpm: int
    current_rpm: int
    average_wait_time_ms: float

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["provider"] = self.provider.value
        return data


@dataclass
class _Lane:
    limits: GateLimits
    admissions: deque[float] = field(default_factory=deque)
    waiters: deque[QueueTicket] = field(default_factory=deque)
    processing: int = 0
    penalty_ceiling: int | None = None
    penalty_until: float = 0.0
    average_wait_ms: float = 0.0
    completed: int = 0
    timer: asyncio.TimerHandle | None = None


class RateGate:
    """FIFO admission queue enforcing rpm and concurrency per provider."""

    def __init__(
        self,
        limits: dict[Provider, GateLimits] | None = None,
        max_queue_depth: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._default_queue_depth = max_queue_depth
        self._lanes: dict[Provider, _Lane] = {}
        for provider, provider_limits in (limits or {}).items():
            self._lanes[provider] = _Lane(limits=provider_limits)

    # === Admission ===

    async def admit(self, provider: Provider) -> QueueTicket:
        """Wait until ``provider`` has capacity and take one slot.

        Raises:
            CapacityRejected: If the provider queue is at its depth ceiling,
                or the queue was cleared while waiting.
        """
        with self._lock:
            lane = self._lane(provider)
            now = self._clock()
            self._expire(lane, now)
            ticket = QueueTicket(provider=provider, enqueued_at=now)

            if not lane.waiters and self._has_capacity(lane, now):
                self._grant(lane, ticket, now)
                return ticket

            depth = self._queue_depth(lane)
            if depth is not None and len(lane.waiters) >= depth:
                raise CapacityRejected(provider, len(lane.waiters), depth)

            ticket.future = asyncio.get_running_loop().create_future()
            lane.waiters.append(ticket)
            self._schedule_wakeup(provider, lane, now)
            message = (
                f"⏳ {provider.value} at capacity "
                f"(rpm {len(lane.admissions)}/{self._ceiling(lane, now)}, "
                f"processing {lane.processing}/{lane.limits.concurrency}), "
                f"queued at position {len(lane.waiters)}"
            )

        logger.info(message)
        try:
            await ticket.future
        except asyncio.CancelledError:
            with self._lock:
                if ticket in lane.waiters:
                    lane.waiters.remove(ticket)
                    holds_slot = False
                else:
                    holds_slot = ticket.granted
            if holds_slot:
                self.release(provider)
            raise
        return ticket

    def release(self, provider: Provider) -> None:
        """Return one concurrency slot and wake the next waiter."""
        with self._lock:
            lane = self._lane(provider)
            if lane.processing == 0:
                logger.warning(f"release() for {provider.value} without a held slot")
            else:
                lane.processing -= 1
            self._pump_lane(provider, lane)

    @asynccontextmanager
    async def slot(self, provider: Provider) -> AsyncIterator[QueueTicket]:
        """Hold one admission for the duration of the block."""
        ticket = await self.admit(provider)
        try:
            yield ticket
        finally:
            self.release(provider)

    def pump(self, provider: Provider | None = None) -> None:
        """Re-evaluate queued waiters against the current window."""
        with self._lock:
            providers = [provider] if provider is not None else list(self._lanes)
            for p in providers:
                self._pump_lane(p, self._lane(p))

    # === Feedback and administration ===

    def penalize(self, provider: Provider) -> None:
        """Shrink the ceiling to the current window count until it rolls over.

        Called when the provider itself answered 429, which is stronger
        evidence than the local counter.
        """
        with self._lock:
            lane = self._lane(provider)
            now = self._clock()
            self._expire(lane, now)
            lane.penalty_ceiling = max(1, len(lane.admissions))
            lane.penalty_until = now + WINDOW_SECONDS
        logger.warning(
            f"🚦 {provider.value} signalled rate limiting; "
            f"ceiling lowered to {lane.penalty_ceiling} rpm for {WINDOW_SECONDS:.0f}s"
        )

    def configure(self, provider: Provider, limits: GateLimits) -> None:
        with self._lock:
            lane = self._lane(provider)
            lane.limits = limits
            self._pump_lane(provider, lane)

    def limits(self, provider: Provider) -> GateLimits:
        with self._lock:
            return self._lane(provider).limits

    def clear_queue(self, provider: Provider) -> int:
        """Reject every waiter for ``provider``; returns how many were dropped."""
        with self._lock:
            lane = self._lane(provider)
            dropped = list(lane.waiters)
            lane.waiters.clear()
            depth = self._queue_depth(lane)
            for ticket in dropped:
                if ticket.future is not None and not ticket.future.done():
                    ticket.future.set_exception(CapacityRejected(provider, len(dropped), depth))
        if dropped:
            logger.info(f"🗑️ Cleared {len(dropped)} queued request(s) for {provider.value}")
        return len(dropped)

    def close(self) -> None:
        with self._lock:
            for lane in self._lanes.values():
                if lane.timer is not None:
                    lane.timer.cancel()
                    lane.timer = None

    # === Statistics ===

    def stats(self, provider: Provider) -> QueueStats:
        with self._lock:
            lane = self._lane(provider)
            now = self._clock()
            self._expire(lane, now)
            return QueueStats(
                provider=provider,
                queue_size=len(lane.waiters),
                processing=lane.processing,
                concurrency_limit=lane.limits.concurrency,
                rate_limit_rpm=lane.limits.rate_limit_rpm,
                current_rpm=len(lane.admissions),
                average_wait_time_ms=round(lane.average_wait_ms, 2),
            )

    def all_stats(self) -> dict[Provider, QueueStats]:
        with self._lock:
            providers = list(self._lanes)
        return {provider: self.stats(provider) for provider in providers}

    # === Internals (caller holds the lock) ===

    def _lane(self, provider: Provider) -> _Lane:
        lane = self._lanes.get(provider)
        if lane is None:
            capability = DEFAULT_CAPABILITIES[provider]
            lane = _Lane(
                limits=GateLimits(
                    rate_limit_rpm=capability.rate_limit_rpm,
                    concurrency=capability.concurrency,
                )
            )
            self._lanes[provider] = lane
        return lane

    def _queue_depth(self, lane: _Lane) -> int | None:
        if lane.limits.max_queue_depth is not None:
            return lane.limits.max_queue_depth
        return self._default_queue_depth

    def _ceiling(self, lane: _Lane, now: float) -> int:
        if lane.penalty_ceiling is not None:
            if now < lane.penalty_until:
                return min(lane.limits.rate_limit_rpm, lane.penalty_ceiling)
            lane.penalty_ceiling = None
        return lane.limits.rate_limit_rpm

    def _expire(self, lane: _Lane, now: float) -> None:
        cutoff = now - WINDOW_SECONDS
        while lane.admissions and lane.admissions[0] <= cutoff:
            lane.admissions.popleft()

    def _has_capacity(self, lane: _Lane, now: float) -> bool:
        return (
            len(lane.admissions) < self._ceiling(lane, now)
            and lane.processing < lane.limits.concurrency
        )

    def _grant(self, lane: _Lane, ticket: QueueTicket, now: float) -> None:
        lane.admissions.append(now)
        lane.processing += 1
        ticket.admitted_at = now

        wait_ms = ticket.wait_ms
        if lane.completed == 0:
            lane.average_wait_ms = wait_ms
        else:
            lane.average_wait_ms = WAIT_EMA_ALPHA * wait_ms + (1 - WAIT_EMA_ALPHA) * lane.average_wait_ms
        lane.completed += 1

        if ticket.future is not None and not ticket.future.done():
            ticket.future.set_result(ticket)

    def _pump_lane(self, provider: Provider, lane: _Lane) -> None:
        now = self._clock()
        self._expire(lane, now)
        while lane.waiters and self._has_capacity(lane, now):
            ticket = lane.waiters.popleft()
            if ticket.future is not None and ticket.future.done():
                # Cancelled while queued.
                continue
            self._grant(lane, ticket, now)
            logger.debug(f"🚦 {provider.value} admitted queued request after {ticket.wait_ms:.0f}ms")
        if lane.waiters:
            self._schedule_wakeup(provider, lane, now)
        elif lane.timer is not None:
            lane.timer.cancel()
            lane.timer = None

    def _schedule_wakeup(self, provider: Provider, lane: _Lane, now: float) -> None:
        """Arm a timer for the moment the window next frees a slot.

        When the blocker is concurrency, ``release`` does the waking.
        """
        if len(lane.admissions) < self._ceiling(lane, now):
            return
        head = lane.waiters[0].future if lane.waiters else None
        if head is None:
            return

        delay = lane.admissions[0] + WINDOW_SECONDS - now
        if lane.penalty_ceiling is not None:
            delay = min(delay, lane.penalty_until - now)
        delay = max(delay, 0.0)

        if lane.timer is not None:
            lane.timer.cancel()
        lane.timer = head.get_loop().call_later(delay, self.pump, provider)
