"""Unit tests for per-provider model chains and quota tracking."""

import pytest

from switchboard.core.model_chain import QUOTA_RESET_SECONDS, ModelChain
from switchboard.core.providers import DEFAULT_CAPABILITIES, Provider
from tests.fixtures.engine import FakeClock

GEMINI_CHAIN = ("gemini-2.0-flash", "gemini-2.0-flash-lite", "gemini-2.5-flash-lite")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chain(clock):
    return ModelChain({Provider.GEMINI: GEMINI_CHAIN, Provider.OPENAI: ("gpt-4o",)}, clock=clock)


@pytest.mark.unit
class TestNextModel:
    def test_walks_the_chain_in_order(self, chain):
        assert chain.next_model(Provider.GEMINI, "gemini-2.0-flash") == "gemini-2.0-flash-lite"
        assert chain.next_model(Provider.GEMINI, "gemini-2.0-flash-lite") == "gemini-2.5-flash-lite"
        assert chain.next_model(Provider.GEMINI, "gemini-2.5-flash-lite") is None

    def test_skips_models_out_of_quota(self, chain):
        chain.mark_quota_exceeded(Provider.GEMINI, "gemini-2.0-flash-lite")
        assert chain.next_model(Provider.GEMINI, "gemini-2.0-flash") == "gemini-2.5-flash-lite"

    def test_single_model_chain_has_no_successor(self, chain):
        assert chain.next_model(Provider.OPENAI, "gpt-4o") is None

    def test_model_outside_the_chain_has_no_successor(self, chain):
        assert chain.next_model(Provider.GEMINI, "gemini-custom") is None
        assert chain.next_model(Provider.CLAUDE, "claude-3-haiku-20240307") is None


@pytest.mark.unit
class TestQuota:
    def test_exceeded_until_reset(self, chain, clock):
        status = chain.mark_quota_exceeded(Provider.GEMINI, "gemini-2.0-flash")
        assert status.reset_at == clock() + QUOTA_RESET_SECONDS
        assert chain.is_quota_exceeded(Provider.GEMINI, "gemini-2.0-flash")

        clock.advance(QUOTA_RESET_SECONDS - 1)
        assert chain.is_quota_exceeded(Provider.GEMINI, "gemini-2.0-flash")

        clock.advance(1)
        assert not chain.is_quota_exceeded(Provider.GEMINI, "gemini-2.0-flash")

    def test_first_available(self, chain):
        assert chain.first_available(Provider.GEMINI, "fallback") == "gemini-2.0-flash"
        chain.mark_quota_exceeded(Provider.GEMINI, "gemini-2.0-flash")
        assert chain.first_available(Provider.GEMINI, "fallback") == "gemini-2.0-flash-lite"

    def test_first_available_when_everything_is_exhausted(self, chain):
        for model in GEMINI_CHAIN:
            chain.mark_quota_exceeded(Provider.GEMINI, model)
        assert chain.first_available(Provider.GEMINI, "gemini-2.0-flash") == "gemini-2.0-flash"
        assert chain.first_available(Provider.CLAUDE, "claude-default") == "claude-default"

    def test_quota_stats(self, chain, clock):
        chain.mark_quota_exceeded(Provider.GEMINI, "gemini-2.0-flash")
        chain.mark_quota_exceeded(Provider.GEMINI, "not-in-any-chain")

        stats = chain.quota_stats()
        assert stats["total"] == 4
        assert stats["exceeded"] == 1
        assert stats["available"] == 3
        assert {entry["model"] for entry in stats["exceeded_models"]} == {
            "gemini-2.0-flash",
            "not-in-any-chain",
        }

        clock.advance(QUOTA_RESET_SECONDS)
        assert chain.quota_stats()["exceeded"] == 0
        assert chain.quota_stats()["exceeded_models"] == []

    def test_reset(self, chain):
        chain.mark_quota_exceeded(Provider.OPENAI, "gpt-4o")
        chain.reset()
        assert not chain.is_quota_exceeded(Provider.OPENAI, "gpt-4o")


@pytest.mark.unit
def test_from_capabilities_starts_with_default_model():
    capabilities = {
        Provider.OPENAI: DEFAULT_CAPABILITIES[Provider.OPENAI].with_overrides(
            default_model="gpt-4o", fallback_models=("gpt-4o-mini", "gpt-4o")
        ),
        Provider.CLAUDE: DEFAULT_CAPABILITIES[Provider.CLAUDE],
    }
    chain = ModelChain.from_capabilities(capabilities)
    assert chain.chain(Provider.OPENAI) == ("gpt-4o", "gpt-4o-mini")
    assert chain.chain(Provider.CLAUDE) == ("claude-3-sonnet-20240229", "claude-3-haiku-20240307")
    assert chain.chain(Provider.GEMINI) == ()
