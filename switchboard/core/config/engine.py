"""Orchestration engine settings: provider selection, retries, admission."""

from dataclasses import dataclass

from switchboard.core.config.schema import ConfigSchema
from switchboard.core.config.validation import load_env_var
from switchboard.core.providers import Provider


@dataclass(frozen=True)
class EngineSettings:
    active_provider: Provider | None
    fallback_order: tuple[Provider, ...]
    key_store_path: str
    request_timeout: float
    max_attempts: int
    retry_base_delay_ms: float
    retry_max_delay_ms: float
    queue_max_depth: int | None

    @classmethod
    def load(cls) -> "EngineSettings":
        active = load_env_var(ConfigSchema.ACTIVE_PROVIDER)
        order: list[Provider] = []
        for name in load_env_var(ConfigSchema.FALLBACK_ORDER):
            provider = Provider.parse(name)
            if provider not in order:
                order.append(provider)
        return cls(
            active_provider=Provider.parse(active) if active else None,
            fallback_order=tuple(order),
            key_store_path=load_env_var(ConfigSchema.KEY_STORE_PATH),
            request_timeout=load_env_var(ConfigSchema.REQUEST_TIMEOUT),
            max_attempts=load_env_var(ConfigSchema.MAX_ATTEMPTS),
            retry_base_delay_ms=load_env_var(ConfigSchema.RETRY_BASE_DELAY_MS),
            retry_max_delay_ms=load_env_var(ConfigSchema.RETRY_MAX_DELAY_MS),
            queue_max_depth=load_env_var(ConfigSchema.QUEUE_MAX_DEPTH),
        )
