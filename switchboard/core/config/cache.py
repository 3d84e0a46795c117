"""Cache configuration settings."""

from dataclasses import dataclass

from switchboard.core.config.schema import ConfigSchema
from switchboard.core.config.validation import load_env_var


@dataclass(frozen=True)
class CacheSettings:
    response_cache_max_size: int
    response_cache_ttl_seconds: float
    embedding_cache_max_size: int
    embedding_cache_ttl_seconds: float

    @classmethod
    def load(cls) -> "CacheSettings":
        return cls(
            response_cache_max_size=load_env_var(ConfigSchema.RESPONSE_CACHE_MAX_SIZE),
            response_cache_ttl_seconds=load_env_var(ConfigSchema.RESPONSE_CACHE_TTL_SECONDS),
            embedding_cache_max_size=load_env_var(ConfigSchema.EMBEDDING_CACHE_MAX_SIZE),
            embedding_cache_ttl_seconds=load_env_var(ConfigSchema.EMBEDDING_CACHE_TTL_SECONDS),
        )
