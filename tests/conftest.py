"""Shared pytest configuration and fixtures for Switchboard tests."""

import pytest

from switchboard.core.config import Config, ConfigSchema
from switchboard.core.config.schema import PROVIDER_VAR_TEMPLATES, provider_spec
from switchboard.core.providers import Provider

# Import HTTP mocking fixtures and engine fakes from fixtures modules
pytest_plugins = ["tests.fixtures.mock_http", "tests.fixtures.engine"]


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests (fast, no external deps)")
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires services)"
    )


@pytest.fixture(scope="function", autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Run every test against a clean environment and a throwaway key store.

    Real provider keys or a developer's .env must never leak into tests;
    all HTTP calls are served by RESPX or fake clients.
    """
    for spec in ConfigSchema.all_specs().values():
        monkeypatch.delenv(spec.name, raising=False)
    for provider in Provider:
        for suffix, _type_hint, _description in PROVIDER_VAR_TEMPLATES:
            monkeypatch.delenv(provider_spec(provider, suffix).name, raising=False)

    monkeypatch.setenv("KEY_STORE_PATH", str(tmp_path / "keys.json"))
    Config.reset_singleton()
    yield
    monkeypatch.undo()
    Config.reset_singleton()
