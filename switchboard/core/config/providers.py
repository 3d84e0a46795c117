"""Per-provider configuration scanned from ``<PROVIDER>_*`` variables."""

import logging
from dataclasses import dataclass

from switchboard.core.config.schema import provider_spec
from switchboard.core.config.validation import load_env_var
from switchboard.core.providers import DEFAULT_CAPABILITIES, Provider, ProviderCapability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderEnvConfig:
    """Environment overrides for one provider."""

    provider: Provider
    api_keys: tuple[str, ...] = ()
    base_url: str | None = None
    model: str | None = None
    fallback_models: tuple[str, ...] = ()
    rate_limit_rpm: int | None = None
    concurrency: int | None = None

    @classmethod
    def load(cls, provider: Provider) -> "ProviderEnvConfig":
        return cls(
            provider=provider,
            api_keys=load_env_var(provider_spec(provider, "API_KEY")),
            base_url=load_env_var(provider_spec(provider, "BASE_URL")),
            model=load_env_var(provider_spec(provider, "MODEL")),
            fallback_models=load_env_var(provider_spec(provider, "FALLBACK_MODELS")),
            rate_limit_rpm=load_env_var(provider_spec(provider, "RATE_LIMIT_RPM")),
            concurrency=load_env_var(provider_spec(provider, "CONCURRENCY")),
        )

    def capability(self) -> ProviderCapability:
        """Default capability with this provider's overrides applied."""
        return DEFAULT_CAPABILITIES[self.provider].with_overrides(
            base_url=self.base_url,
            default_model=self.model,
            fallback_models=self.fallback_models or None,
            rate_limit_rpm=self.rate_limit_rpm,
            concurrency=self.concurrency,
        )


@dataclass(frozen=True)
class ProviderSettings:
    providers: dict[Provider, ProviderEnvConfig]

    @classmethod
    def load(cls) -> "ProviderSettings":
        providers = {provider: ProviderEnvConfig.load(provider) for provider in Provider}
        configured = [p.value for p, c in providers.items() if c.api_keys]
        if configured:
            logger.debug(f"API keys found in environment for: {', '.join(configured)}")
        return cls(providers=providers)

    def capabilities(self) -> dict[Provider, ProviderCapability]:
        return {provider: cfg.capability() for provider, cfg in self.providers.items()}

    def env_keys(self, provider: Provider) -> tuple[str, ...]:
        return self.providers[provider].api_keys
