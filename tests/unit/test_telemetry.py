"""Unit tests for Telemetry aggregates and alert debouncing."""

import asyncio
import logging

import pytest

from switchboard.core.error_types import ErrorKind
from switchboard.core.models import AttemptRecord, Outcome
from switchboard.core.providers import Provider
from switchboard.core.telemetry import AlertThresholds, Telemetry
from tests.fixtures.engine import FakeClock


def _record(
    clock: FakeClock,
    outcome: Outcome = Outcome.SUCCESS,
    provider: Provider = Provider.OPENAI,
    **kwargs,
) -> AttemptRecord:
    defaults = {
        "endpoint": "complete",
        "latency_ms": 100.0,
        "tokens_in": 10,
        "tokens_out": 5,
        "cost_estimate": 0.001,
    }
    defaults.update(kwargs)
    if outcome is not Outcome.SUCCESS:
        defaults.setdefault("error_kind", ErrorKind.TRANSIENT_SERVER)
    return AttemptRecord(provider=provider, outcome=outcome, timestamp_start=clock(), **defaults)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def telemetry(clock):
    return Telemetry(clock=clock, summary_interval=0)


@pytest.mark.unit
class TestAggregates:
    def test_empty_aggregate(self, telemetry):
        stats = telemetry.stats_for_endpoint("complete")
        assert stats.total_requests == 0
        assert stats.success_rate == 0.0
        assert stats.recent_errors == ()

    def test_endpoint_aggregate(self, telemetry, clock):
        for latency in (100.0, 200.0, 300.0):
            telemetry.record(_record(clock, latency_ms=latency))
        telemetry.record(_record(clock, Outcome.ERROR, latency_ms=400.0, tokens_in=0, tokens_out=0, cost_estimate=0.0))

        stats = telemetry.stats_for_endpoint("complete")
        assert stats.total_requests == 4
        assert stats.success_rate == 0.75
        assert stats.error_rate == 0.25
        assert stats.average_latency_ms == 250.0
        assert stats.total_tokens == 45
        assert stats.total_cost == pytest.approx(0.003)
        assert len(stats.recent_errors) == 1
        assert stats.recent_errors[0].error_kind is ErrorKind.TRANSIENT_SERVER

    def test_window_excludes_old_records(self, telemetry, clock):
        telemetry.record(_record(clock))
        clock.advance(120)
        telemetry.record(_record(clock))
        assert telemetry.stats_for_endpoint("complete", window_ms=60_000).total_requests == 1
        assert telemetry.stats_for_endpoint("complete").total_requests == 2

    def test_provider_aggregate(self, telemetry, clock):
        telemetry.record(_record(clock, provider=Provider.OPENAI))
        telemetry.record(_record(clock, provider=Provider.CLAUDE))
        assert telemetry.stats_for_provider(Provider.CLAUDE).total_requests == 1

    def test_user_aggregate_breaks_down_by_provider(self, telemetry, clock):
        telemetry.record(_record(clock, provider=Provider.OPENAI, user_id="u1"))
        telemetry.record(_record(clock, provider=Provider.OPENAI, user_id="u1"))
        telemetry.record(_record(clock, provider=Provider.GEMINI, user_id="u1"))
        telemetry.record(_record(clock, provider=Provider.GEMINI, user_id="u2"))

        stats = telemetry.stats_for_user("u1")
        assert stats.total_requests == 3
        assert stats.by_provider == {"openai": 2, "gemini": 1}
        assert stats.to_dict()["by_provider"] == {"openai": 2, "gemini": 1}

    def test_recent_errors_newest_first_and_bounded(self, telemetry, clock):
        for index in range(15):
            telemetry.record(_record(clock, Outcome.ERROR, endpoint="complete", user_id=f"u{index}"))
            clock.advance(1)
        errors = telemetry.stats_for_endpoint("complete").recent_errors
        assert len(errors) == 10
        assert errors[0].user_id == "u14"

    def test_retention_drops_old_records(self, clock):
        telemetry = Telemetry(retention_seconds=3600, clock=clock, summary_interval=0)
        telemetry.record(_record(clock))
        clock.advance(3601)
        assert telemetry.prune() == 1
        assert len(telemetry) == 0

    def test_ring_buffer_is_bounded(self, clock):
        telemetry = Telemetry(max_records=5, clock=clock, summary_interval=0)
        for _ in range(8):
            telemetry.record(_record(clock))
        assert len(telemetry) == 5

    def test_to_dict_rounds(self, telemetry, clock):
        telemetry.record(_record(clock, latency_ms=123.456))
        data = telemetry.stats_for_endpoint("complete").to_dict()
        assert data["average_latency_ms"] == 123.46
        assert data["total_requests"] == 1


@pytest.mark.unit
class TestAlerts:
    def test_hundred_failures_produce_one_alert(self, telemetry, clock):
        for _ in range(100):
            telemetry.record(_record(clock, Outcome.ERROR))
            clock.advance(0.5)

        alerts = [a for a in telemetry.recent_alerts(100) if a.type == "high_error_rate"]
        assert len(alerts) == 1
        assert alerts[0].provider is Provider.OPENAI
        assert alerts[0].severity == "critical"

    def test_alert_fires_again_after_cooldown(self, clock):
        telemetry = Telemetry(
            thresholds=AlertThresholds(window_seconds=60, cooldown_seconds=120),
            clock=clock,
            summary_interval=0,
        )
        for _ in range(10):
            telemetry.record(_record(clock, Outcome.ERROR))
        clock.advance(121)
        for _ in range(10):
            telemetry.record(_record(clock, Outcome.ERROR))

        assert len(telemetry.recent_alerts()) == 2

    def test_debounce_is_per_provider(self, telemetry, clock):
        for provider in (Provider.OPENAI, Provider.CLAUDE):
            for _ in range(10):
                telemetry.record(_record(clock, Outcome.ERROR, provider=provider))
        assert {a.provider for a in telemetry.recent_alerts()} == {Provider.OPENAI, Provider.CLAUDE}

    def test_needs_minimum_samples(self, telemetry, clock):
        for _ in range(9):
            telemetry.record(_record(clock, Outcome.ERROR))
        assert telemetry.recent_alerts() == []

    def test_error_rate_below_threshold_is_quiet(self, telemetry, clock):
        for index in range(20):
            outcome = Outcome.ERROR if index % 10 == 0 else Outcome.SUCCESS
            telemetry.record(_record(clock, outcome))
        assert telemetry.recent_alerts() == []

    def test_cached_records_do_not_dilute_error_rate(self, telemetry, clock):
        for _ in range(50):
            telemetry.record(_record(clock, cached=True, latency_ms=0.0))
        for _ in range(10):
            telemetry.record(_record(clock, Outcome.ERROR))
        assert [a.type for a in telemetry.recent_alerts()] == ["high_error_rate"]

    def test_high_latency_warning(self, telemetry, clock):
        telemetry.record(_record(clock, latency_ms=6000.0))
        alerts = telemetry.recent_alerts()
        assert [(a.type, a.severity) for a in alerts] == [("high_latency", "warning")]

    def test_high_latency_critical(self, telemetry, clock):
        telemetry.record(_record(clock, latency_ms=12000.0))
        assert telemetry.recent_alerts()[0].severity == "critical"

    def test_recent_alerts_newest_first(self, telemetry, clock):
        telemetry.record(_record(clock, latency_ms=6000.0, provider=Provider.OPENAI))
        clock.advance(1)
        telemetry.record(_record(clock, latency_ms=6000.0, provider=Provider.CLAUDE))
        alerts = telemetry.recent_alerts(limit=1)
        assert len(alerts) == 1
        assert alerts[0].provider is Provider.CLAUDE

    def test_alert_is_logged(self, telemetry, clock, caplog):
        with caplog.at_level(logging.WARNING, logger="switchboard.core.telemetry"):
            telemetry.record(_record(clock, latency_ms=6000.0))
        assert "🚨 ALERT [high_latency]" in caplog.text

    def test_alert_to_dict(self, telemetry, clock):
        telemetry.record(_record(clock, latency_ms=6000.0))
        data = telemetry.recent_alerts()[0].to_dict()
        assert data["provider"] == "openai"
        assert data["type"] == "high_latency"


@pytest.mark.unit
class TestRecording:
    def test_submit_outside_loop_records_immediately(self, telemetry, clock):
        telemetry.submit(_record(clock))
        assert len(telemetry) == 1

    @pytest.mark.asyncio
    async def test_submit_inside_loop_is_deferred(self, telemetry, clock):
        telemetry.submit(_record(clock))
        assert len(telemetry) == 0
        await asyncio.sleep(0)
        assert len(telemetry) == 1

    def test_summary_line_every_interval(self, clock, caplog):
        telemetry = Telemetry(clock=clock, summary_interval=3)
        with caplog.at_level(logging.INFO, logger="switchboard.core.telemetry"):
            telemetry.record(_record(clock))
            telemetry.record(_record(clock, cached=True))
            assert "📊 SUMMARY" not in caplog.text
            telemetry.record(_record(clock, Outcome.ERROR))

        assert "📊 SUMMARY (last 3 attempts)" in caplog.text
        assert "Cache Hits: 1" in caplog.text
        assert "transient_server: 1" in caplog.text
