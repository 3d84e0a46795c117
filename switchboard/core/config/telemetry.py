"""Telemetry retention and alerting settings."""

from dataclasses import dataclass

from switchboard.core.config.schema import ConfigSchema
from switchboard.core.config.validation import load_env_var


@dataclass(frozen=True)
class TelemetrySettings:
    retention_hours: float
    max_records: int
    alert_error_rate_threshold: float
    alert_window_seconds: float
    alert_cooldown_seconds: float
    alert_latency_ms: float
    max_alerts: int
    log_summary_interval: int

    @classmethod
    def load(cls) -> "TelemetrySettings":
        return cls(
            retention_hours=load_env_var(ConfigSchema.TELEMETRY_RETENTION_HOURS),
            max_records=load_env_var(ConfigSchema.TELEMETRY_MAX_RECORDS),
            alert_error_rate_threshold=load_env_var(ConfigSchema.ALERT_ERROR_RATE_THRESHOLD),
            alert_window_seconds=load_env_var(ConfigSchema.ALERT_WINDOW_SECONDS),
            alert_cooldown_seconds=load_env_var(ConfigSchema.ALERT_COOLDOWN_SECONDS),
            alert_latency_ms=load_env_var(ConfigSchema.ALERT_LATENCY_MS),
            max_alerts=load_env_var(ConfigSchema.MAX_ALERTS),
            log_summary_interval=load_env_var(ConfigSchema.LOG_SUMMARY_INTERVAL),
        )
