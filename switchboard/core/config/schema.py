"""Declarative schema for environment variable configuration.

This module provides a single source of truth for all environment variables,
including automatic type coercion, validation, and documentation generation.

Per-provider variables (``<PROVIDER>_API_KEY`` and friends) follow a fixed
naming template and are built on demand by ``provider_spec``.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from switchboard.core.logging import VALID_LOG_LEVELS
from switchboard.core.providers import DEFAULT_FALLBACK_ORDER, Provider


@dataclass(frozen=True)
class EnvVarSpec:
    """Specification for a single environment variable.

    Attributes:
        name: Environment variable name (e.g., "PORT", "LOG_LEVEL")
        default: Default value if env var not set
        type_hint: Type for validation (int, str, float, bool, tuple)
        description: Human-readable description for docs
        validator: Optional custom validation function
        coerce: Optional function to convert string to target type
    """

    name: str
    default: Any
    type_hint: type
    description: str
    validator: Callable[[Any], bool] | None = None
    coerce: Callable[[str], Any] | None = None


def _is_provider_name(value: str) -> bool:
    return value.strip().lower() in {p.value for p in Provider}


def _is_provider_list(value: tuple[str, ...]) -> bool:
    return len(value) > 0 and all(_is_provider_name(v) for v in value)


# (suffix, type, description) of every templated per-provider variable.
PROVIDER_VAR_TEMPLATES: tuple[tuple[str, type, str], ...] = (
    ("API_KEY", tuple, "Comma-separated API keys, seeded into the key pool at startup"),
    ("BASE_URL", str, "OpenAI-compatible base URL override"),
    ("MODEL", str, "Default chat model override"),
    ("FALLBACK_MODELS", tuple, "Comma-separated chat models tried after the default model runs out of quota"),
    ("RATE_LIMIT_RPM", int, "Requests-per-minute ceiling override"),
    ("CONCURRENCY", int, "Concurrent in-flight request ceiling override"),
)


def provider_spec(provider: Provider, suffix: str) -> EnvVarSpec:
    """Build the EnvVarSpec for ``<PROVIDER>_<suffix>``."""
    for template_suffix, type_hint, description in PROVIDER_VAR_TEMPLATES:
        if template_suffix == suffix:
            validator = (lambda x: x is None or x > 0) if type_hint is int else None
            return EnvVarSpec(
                name=f"{provider.value.upper()}_{suffix}",
                default=() if type_hint is tuple else None,
                type_hint=type_hint,
                description=description,
                validator=validator,
            )
    raise KeyError(f"Unknown provider variable suffix: {suffix}")


class ConfigSchema:
    """Registry of all configuration environment variables."""

    # === Server Settings ===

    HOST = EnvVarSpec(
        name="HOST",
        default="0.0.0.0",
        type_hint=str,
        description="Server host address to bind to",
    )

    PORT = EnvVarSpec(
        name="PORT",
        default=8090,
        type_hint=int,
        description="Server port number",
        validator=lambda x: 1 <= x <= 65535,
    )

    LOG_LEVEL = EnvVarSpec(
        name="LOG_LEVEL",
        default="INFO",
        type_hint=str,
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        validator=lambda x: bool(x.split()) and x.split()[0].upper() in VALID_LOG_LEVELS,
    )

    SWITCHBOARD_API_KEY = EnvVarSpec(
        name="SWITCHBOARD_API_KEY",
        default=None,
        type_hint=str,
        description="Optional API key required by the HTTP surface (x-api-key or Bearer)",
    )

    # === Provider Selection ===

    ACTIVE_PROVIDER = EnvVarSpec(
        name="ACTIVE_PROVIDER",
        default=None,
        type_hint=str,
        description="Provider used when a request names none (auto-configured if unset)",
        validator=lambda x: x is None or _is_provider_name(x),
    )

    FALLBACK_ORDER = EnvVarSpec(
        name="FALLBACK_ORDER",
        default=tuple(p.value for p in DEFAULT_FALLBACK_ORDER),
        type_hint=tuple,
        description="Comma-separated provider order consulted on fallback",
        validator=_is_provider_list,
    )

    KEY_STORE_PATH = EnvVarSpec(
        name="KEY_STORE_PATH",
        default="~/.config/switchboard/keys.json",
        type_hint=str,
        description="JSON file holding the API key pool",
    )

    # === Retry & Admission ===

    REQUEST_TIMEOUT = EnvVarSpec(
        name="REQUEST_TIMEOUT",
        default=90.0,
        type_hint=float,
        description="Provider request timeout in seconds",
        validator=lambda x: x > 0,
    )

    MAX_ATTEMPTS = EnvVarSpec(
        name="MAX_ATTEMPTS",
        default=3,
        type_hint=int,
        description="Attempts per provider, including the first, for retryable failures",
        validator=lambda x: x >= 1,
    )

    RETRY_BASE_DELAY_MS = EnvVarSpec(
        name="RETRY_BASE_DELAY_MS",
        default=1000.0,
        type_hint=float,
        description="Base backoff delay in milliseconds",
        validator=lambda x: x >= 0,
    )

    RETRY_MAX_DELAY_MS = EnvVarSpec(
        name="RETRY_MAX_DELAY_MS",
        default=60000.0,
        type_hint=float,
        description="Backoff delay cap in milliseconds",
        validator=lambda x: x >= 0,
    )

    QUEUE_MAX_DEPTH = EnvVarSpec(
        name="QUEUE_MAX_DEPTH",
        default=None,
        type_hint=int,
        description="Maximum waiters per provider queue before rejecting (unset = unbounded)",
        validator=lambda x: x is None or x >= 0,
    )

    # === Cache Settings ===

    RESPONSE_CACHE_MAX_SIZE = EnvVarSpec(
        name="RESPONSE_CACHE_MAX_SIZE",
        default=1000,
        type_hint=int,
        description="Maximum entries in the chat response cache",
        validator=lambda x: x > 0,
    )

    RESPONSE_CACHE_TTL_SECONDS = EnvVarSpec(
        name="RESPONSE_CACHE_TTL_SECONDS",
        default=3600.0,
        type_hint=float,
        description="Chat response cache TTL in seconds",
        validator=lambda x: x > 0,
    )

    EMBEDDING_CACHE_MAX_SIZE = EnvVarSpec(
        name="EMBEDDING_CACHE_MAX_SIZE",
        default=5000,
        type_hint=int,
        description="Maximum entries in the embedding cache",
        validator=lambda x: x > 0,
    )

    EMBEDDING_CACHE_TTL_SECONDS = EnvVarSpec(
        name="EMBEDDING_CACHE_TTL_SECONDS",
        default=86400.0,
        type_hint=float,
        description="Embedding cache TTL in seconds",
        validator=lambda x: x > 0,
    )

    # === Telemetry & Alerts ===

    TELEMETRY_RETENTION_HOURS = EnvVarSpec(
        name="TELEMETRY_RETENTION_HOURS",
        default=168.0,
        type_hint=float,
        description="How long attempt records are retained",
        validator=lambda x: x > 0,
    )

    TELEMETRY_MAX_RECORDS = EnvVarSpec(
        name="TELEMETRY_MAX_RECORDS",
        default=10000,
        type_hint=int,
        description="Maximum attempt records retained",
        validator=lambda x: x > 0,
    )

    ALERT_ERROR_RATE_THRESHOLD = EnvVarSpec(
        name="ALERT_ERROR_RATE_THRESHOLD",
        default=0.25,
        type_hint=float,
        description="Per-provider error rate above which an alert fires",
        validator=lambda x: 0 < x <= 1,
    )

    ALERT_WINDOW_SECONDS = EnvVarSpec(
        name="ALERT_WINDOW_SECONDS",
        default=300.0,
        type_hint=float,
        description="Window over which the alerting error rate is computed",
        validator=lambda x: x > 0,
    )

    ALERT_COOLDOWN_SECONDS = EnvVarSpec(
        name="ALERT_COOLDOWN_SECONDS",
        default=600.0,
        type_hint=float,
        description="Minimum interval between two alerts of the same type and provider",
        validator=lambda x: x >= 0,
    )

    ALERT_LATENCY_MS = EnvVarSpec(
        name="ALERT_LATENCY_MS",
        default=5000.0,
        type_hint=float,
        description="Latency above which a high_latency alert fires",
        validator=lambda x: x > 0,
    )

    MAX_ALERTS = EnvVarSpec(
        name="MAX_ALERTS",
        default=100,
        type_hint=int,
        description="Number of most recent alerts retained",
        validator=lambda x: x > 0,
    )

    LOG_SUMMARY_INTERVAL = EnvVarSpec(
        name="LOG_SUMMARY_INTERVAL",
        default=100,
        type_hint=int,
        description="Emit a summary log line every N attempts (0 disables)",
        validator=lambda x: x >= 0,
    )

    @classmethod
    def all_specs(cls) -> dict[str, EnvVarSpec]:
        """Get all environment variable specifications.

        Returns:
            Dictionary mapping spec names to EnvVarSpec objects
        """
        return {
            name: getattr(cls, name)
            for name in dir(cls)
            if isinstance(getattr(cls, name), EnvVarSpec)
        }

    @classmethod
    def get_spec(cls, name: str) -> EnvVarSpec | None:
        for spec in cls.all_specs().values():
            if spec.name == name:
                return spec
        return None

    @classmethod
    def generate_markdown_docs(cls) -> str:
        """Generate Markdown documentation for all environment variables."""
        lines = ["# Configuration Options\n\n"]
        lines.extend(
            [
                "This document is auto-generated from `ConfigSchema`.\n\n",
                "## Environment Variables\n\n",
            ]
        )

        specs = cls.all_specs()
        for _name, spec in sorted(specs.items()):
            default_repr = f"`{spec.default}`" if spec.default is not None else "None"
            lines.extend(
                [
                    f"### `{spec.name}`\n\n",
                    f"- **Type**: `{spec.type_hint.__name__}`\n",
                    f"- **Default**: {default_repr}\n",
                    f"- **Description**: {spec.description}\n\n",
                ]
            )

        lines.append("## Per-Provider Variables\n\n")
        providers = ", ".join(f"`{p.value.upper()}`" for p in Provider)
        lines.append(f"`<PROVIDER>` is one of {providers}.\n\n")
        for suffix, type_hint, description in PROVIDER_VAR_TEMPLATES:
            lines.extend(
                [
                    f"### `<PROVIDER>_{suffix}`\n\n",
                    f"- **Type**: `{type_hint.__name__}`\n",
                    f"- **Description**: {description}\n\n",
                ]
            )

        return "\n".join(lines)
