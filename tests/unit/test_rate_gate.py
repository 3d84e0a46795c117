"""Unit tests for RateGate admission control."""

import asyncio
import random

import pytest

from switchboard.core.exceptions import CapacityRejected
from switchboard.core.providers import Provider
from switchboard.core.rate_gate import WINDOW_SECONDS, GateLimits, RateGate
from tests.fixtures.engine import FakeClock, drain

P = Provider.OPENAI


def _gate(rpm: int, concurrency: int, clock: FakeClock, max_queue_depth: int | None = None) -> RateGate:
    return RateGate({P: GateLimits(rpm, concurrency)}, max_queue_depth=max_queue_depth, clock=clock)


@pytest.mark.unit
def test_gate_limits_validation():
    with pytest.raises(ValueError):
        GateLimits(rate_limit_rpm=0, concurrency=1)
    with pytest.raises(ValueError):
        GateLimits(rate_limit_rpm=1, concurrency=1, max_queue_depth=-1)


@pytest.mark.unit
@pytest.mark.asyncio
class TestAdmission:
    async def test_admits_immediately_under_capacity(self, fake_clock):
        gate = _gate(10, 2, fake_clock)
        ticket = await gate.admit(P)
        assert ticket.granted
        assert ticket.wait_ms == 0

        stats = gate.stats(P)
        assert stats.processing == 1
        assert stats.current_rpm == 1
        assert stats.queue_size == 0

        gate.release(P)
        assert gate.stats(P).processing == 0

    async def test_slot_releases_on_error(self, fake_clock):
        gate = _gate(10, 1, fake_clock)
        with pytest.raises(RuntimeError):
            async with gate.slot(P):
                raise RuntimeError("boom")
        assert gate.stats(P).processing == 0

    async def test_fifo_order_under_concurrency_limit(self, fake_clock):
        gate = _gate(100, 1, fake_clock)
        order: list[str] = []
        holder = await gate.admit(P)
        assert holder.granted

        async def worker(name: str) -> None:
            async with gate.slot(P):
                order.append(name)

        tasks = []
        for name in ("b", "c", "d"):
            tasks.append(asyncio.create_task(worker(name)))
            await drain(2)
        assert gate.stats(P).queue_size == 3

        gate.release(P)
        await asyncio.gather(*tasks)
        assert order == ["b", "c", "d"]
        gate.close()

    async def test_rejects_when_queue_is_full(self, fake_clock):
        gate = _gate(100, 1, fake_clock, max_queue_depth=1)
        await gate.admit(P)
        waiter = asyncio.create_task(gate.admit(P))
        await drain()

        with pytest.raises(CapacityRejected) as exc_info:
            await gate.admit(P)
        assert exc_info.value.queue_size == 1
        assert exc_info.value.max_queue_depth == 1

        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        gate.close()

    async def test_zero_queue_depth_rejects_instead_of_waiting(self, fake_clock):
        gate = _gate(1, 5, fake_clock, max_queue_depth=0)
        async with gate.slot(P):
            pass
        with pytest.raises(CapacityRejected):
            await gate.admit(P)

    async def test_cancelled_waiter_leaves_no_trace(self, fake_clock):
        gate = _gate(100, 1, fake_clock)
        await gate.admit(P)
        waiter = asyncio.create_task(gate.admit(P))
        await drain()
        assert gate.stats(P).queue_size == 1

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert gate.stats(P).queue_size == 0

        gate.release(P)
        stats = gate.stats(P)
        assert stats.processing == 0
        assert stats.current_rpm == 1
        gate.close()

    async def test_clear_queue_rejects_waiters(self, fake_clock):
        gate = _gate(100, 1, fake_clock)
        await gate.admit(P)
        waiter = asyncio.create_task(gate.admit(P))
        await drain()

        assert gate.clear_queue(P) == 1
        with pytest.raises(CapacityRejected):
            await waiter
        gate.close()

    async def test_rpm_window_slides(self, fake_clock):
        gate = _gate(2, 10, fake_clock)
        for _ in range(2):
            async with gate.slot(P):
                pass

        waiter = asyncio.create_task(gate.admit(P))
        await drain()
        assert gate.stats(P).queue_size == 1

        fake_clock.advance(WINDOW_SECONDS + 0.1)
        gate.pump(P)
        ticket = await waiter
        assert ticket.wait_ms == pytest.approx((WINDOW_SECONDS + 0.1) * 1000)
        assert gate.stats(P).current_rpm == 1
        gate.close()

    async def test_rpm_never_exceeds_ceiling(self, fake_clock):
        rpm = 5
        gate = _gate(rpm, 100, fake_clock)
        admitted_at: list[float] = []
        rng = random.Random(7)

        async def worker() -> None:
            async with gate.slot(P):
                admitted_at.append(fake_clock())

        tasks = [asyncio.create_task(worker()) for _ in range(40)]
        await drain()

        for _ in range(200):
            assert gate.stats(P).current_rpm <= rpm
            if all(task.done() for task in tasks):
                break
            fake_clock.advance(rng.uniform(0.5, 15))
            gate.pump(P)
            await drain(5)

        await asyncio.gather(*tasks)
        assert len(admitted_at) == 40
        for start in admitted_at:
            in_window = [t for t in admitted_at if start <= t < start + WINDOW_SECONDS]
            assert len(in_window) <= rpm
        gate.close()

    async def test_penalize_shrinks_ceiling_until_window_rolls(self, fake_clock):
        gate = _gate(10, 10, fake_clock)
        for _ in range(3):
            async with gate.slot(P):
                pass

        gate.penalize(P)
        waiter = asyncio.create_task(gate.admit(P))
        await drain()
        assert gate.stats(P).queue_size == 1

        fake_clock.advance(WINDOW_SECONDS)
        gate.pump(P)
        await waiter
        assert gate.stats(P).queue_size == 0
        gate.close()

    async def test_penalize_with_empty_window_allows_one(self, fake_clock):
        gate = _gate(10, 10, fake_clock)
        gate.penalize(P)
        async with gate.slot(P):
            pass
        waiter = asyncio.create_task(gate.admit(P))
        await drain()
        assert gate.stats(P).queue_size == 1
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        gate.close()

    async def test_configure_raises_limits_and_wakes_waiters(self, fake_clock):
        gate = _gate(100, 1, fake_clock)
        await gate.admit(P)
        waiter = asyncio.create_task(gate.admit(P))
        await drain()

        gate.configure(P, GateLimits(100, 2))
        await waiter
        assert gate.stats(P).processing == 2
        assert gate.limits(P).concurrency == 2
        gate.close()

    async def test_unknown_provider_uses_default_capabilities(self, fake_clock):
        gate = RateGate(clock=fake_clock)
        stats = gate.stats(Provider.GEMINI)
        assert stats.rate_limit_rpm == 12
        assert stats.concurrency_limit == 2
        assert Provider.GEMINI in gate.all_stats()

    async def test_queue_stats_dict(self, fake_clock):
        gate = _gate(10, 2, fake_clock)
        data = gate.stats(P).to_dict()
        assert data["provider"] == "openai"
        assert data["rate_limit_rpm"] == 10
        assert set(data) >= {"queue_size", "processing", "current_rpm", "average_wait_time_ms"}
