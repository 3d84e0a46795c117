"""Configuration singleton for Switchboard.

Configuration is organized into focused modules:
- server: Server settings (host, port, log level, HTTP api key)
- engine: Provider selection, retry and admission settings
- providers: Per-provider keys and capability overrides
- cache: Response and embedding cache sizing
- telemetry: Retention and alert thresholds
"""

import hashlib

from switchboard.core.config.cache import CacheSettings
from switchboard.core.config.engine import EngineSettings
from switchboard.core.config.providers import ProviderSettings
from switchboard.core.config.server import ServerSettings
from switchboard.core.config.telemetry import TelemetrySettings
from switchboard.core.providers import Provider, ProviderCapability


class Config:
    """Configuration with direct access to all settings.

    All values are loaded at initialization time from environment variables
    using schema-based validation; a bad value raises ConfigError here rather
    than at first use.
    """

    def __init__(self) -> None:
        self.server = ServerSettings.load()
        self.engine = EngineSettings.load()
        self.providers = ProviderSettings.load()
        self.cache = CacheSettings.load()
        self.telemetry = TelemetrySettings.load()

    # Server settings
    @property
    def host(self) -> str:
        return self.server.host

    @property
    def port(self) -> int:
        return self.server.port

    @property
    def log_level(self) -> str:
        return self.server.log_level

    @property
    def api_key(self) -> str | None:
        return self.server.api_key

    def validate_client_api_key(self, client_api_key: str | None) -> bool:
        return self.server.validate_client_api_key(client_api_key)

    @property
    def api_key_hash(self) -> str:
        return (
            "<not-set>"
            if not self.api_key
            else "sha256:" + hashlib.sha256(self.api_key.encode()).hexdigest()[:16] + "..."
        )

    # Engine settings
    @property
    def active_provider(self) -> Provider | None:
        return self.engine.active_provider

    @property
    def fallback_order(self) -> tuple[Provider, ...]:
        return self.engine.fallback_order

    @property
    def key_store_path(self) -> str:
        return self.engine.key_store_path

    @property
    def request_timeout(self) -> float:
        return self.engine.request_timeout

    # Provider settings
    def capabilities(self) -> dict[Provider, ProviderCapability]:
        return self.providers.capabilities()

    def env_keys(self, provider: Provider) -> tuple[str, ...]:
        return self.providers.env_keys(provider)

    @classmethod
    def reset_singleton(cls) -> None:
        """Reset the global config singleton for test isolation.

        Recreates the config singleton after the test environment has been
        modified. Never call this in production code.
        """
        global config
        config = cls()


def get_config() -> Config:
    """Return the current singleton (survives ``reset_singleton``)."""
    return config


# Module-level singleton
config = Config()
