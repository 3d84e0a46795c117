"""Server configuration settings."""

from dataclasses import dataclass

from switchboard.core.config.schema import ConfigSchema
from switchboard.core.config.validation import load_env_var


@dataclass(frozen=True)
class ServerSettings:
    """Server configuration: where to bind, how loudly to log, who may call."""

    host: str
    port: int
    log_level: str
    api_key: str | None

    @classmethod
    def load(cls) -> "ServerSettings":
        return cls(
            host=load_env_var(ConfigSchema.HOST),
            port=load_env_var(ConfigSchema.PORT),
            log_level=load_env_var(ConfigSchema.LOG_LEVEL),
            api_key=load_env_var(ConfigSchema.SWITCHBOARD_API_KEY),
        )

    def validate_client_api_key(self, client_api_key: str | None) -> bool:
        """True when no key is configured or ``client_api_key`` matches it."""
        if not self.api_key:
            return True
        return client_api_key == self.api_key
