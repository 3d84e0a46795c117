"""Provider identities and their capability descriptors."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class Provider(str, Enum):
    """Closed set of supported LLM providers."""

    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    OPENROUTER = "openrouter"

    @classmethod
    def parse(cls, value: str | Provider) -> Provider:
        """Parse a provider name case-insensitively.

        Raises:
            ValueError: If the name is not a known provider.
        """
        if isinstance(value, Provider):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            known = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown provider '{value}'. Known providers: {known}") from None


@dataclass(frozen=True)
class ProviderCapability:
    """Static facts about a provider that the engine needs.

    Pricing is USD per 1K tokens and only feeds cost estimates.
    ``fallback_models`` are tried, in order, once ``default_model`` runs
    out of quota.
    """

    provider: Provider
    default_model: str
    base_url: str
    rate_limit_rpm: int
    concurrency: int
    input_cost_per_1k: float = 0.0
    output_cost_per_1k: float = 0.0
    embedding_model: str | None = None
    fallback_models: tuple[str, ...] = ()

    @property
    def supports_embeddings(self) -> bool:
        return self.embedding_model is not None

    def estimate_cost(self, tokens_in: int, tokens_out: int) -> float:
        cost = (tokens_in / 1000) * self.input_cost_per_1k
        cost += (tokens_out / 1000) * self.output_cost_per_1k
        return round(cost, 6)

    def with_overrides(self, **changes: object) -> ProviderCapability:
        """Return a copy with the non-None ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# Conservative limits below the providers' published free/low tiers.
DEFAULT_CAPABILITIES: dict[Provider, ProviderCapability] = {
    Provider.OPENAI: ProviderCapability(
        provider=Provider.OPENAI,
        default_model="gpt-4-turbo-preview",
        base_url="https://api.openai.com/v1",
        rate_limit_rpm=50,
        concurrency=3,
        input_cost_per_1k=0.01,
        output_cost_per_1k=0.03,
        embedding_model="text-embedding-3-small",
        fallback_models=("gpt-3.5-turbo",),
    ),
    Provider.CLAUDE: ProviderCapability(
        provider=Provider.CLAUDE,
        default_model="claude-3-sonnet-20240229",
        base_url="https://api.anthropic.com/v1",
        rate_limit_rpm=40,
        concurrency=2,
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.015,
        fallback_models=("claude-3-haiku-20240307",),
    ),
    Provider.GEMINI: ProviderCapability(
        provider=Provider.GEMINI,
        default_model="gemini-2.0-flash",
        base_url="https://generativelanguage.googleapis.com/v1beta/openai",
        rate_limit_rpm=12,
        concurrency=2,
        input_cost_per_1k=0.0001,
        output_cost_per_1k=0.0004,
        embedding_model="text-embedding-004",
        fallback_models=("gemini-2.0-flash-lite", "gemini-2.5-flash-lite"),
    ),
    Provider.OPENROUTER: ProviderCapability(
        provider=Provider.OPENROUTER,
        default_model="openai/gpt-4-turbo-preview",
        base_url="https://openrouter.ai/api/v1",
        rate_limit_rpm=30,
        concurrency=2,
        input_cost_per_1k=0.01,
        output_cost_per_1k=0.03,
        fallback_models=("anthropic/claude-3-haiku",),
    ),
}

DEFAULT_FALLBACK_ORDER: tuple[Provider, ...] = (
    Provider.OPENAI,
    Provider.CLAUDE,
    Provider.GEMINI,
    Provider.OPENROUTER,
)
