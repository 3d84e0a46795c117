"""Tests for the swb command line interface."""

import json

import pytest
from typer.testing import CliRunner

from switchboard import __version__
from switchboard.cli.main import app

runner = CliRunner()


def _stored_keys(path):
    return json.loads(path.read_text())["api_keys"]


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "cli-keys.json"


@pytest.mark.unit
class TestKeysCommands:
    def test_add_and_list(self, store_path):
        result = runner.invoke(
            app, ["keys", "add", "openai", "sk-openai-000000001", "--label", "primary", "--store", str(store_path)]
        )
        assert result.exit_code == 0, result.output
        assert "Added" in result.output

        keys = _stored_keys(store_path)
        assert len(keys) == 1
        assert keys[0]["provider"] == "openai"
        assert keys[0]["label"] == "primary"

        listed = runner.invoke(app, ["keys", "list", "--store", str(store_path)], env={"COLUMNS": "200"})
        assert listed.exit_code == 0
        assert "sk-o...0001" in listed.output
        assert "sk-openai-000000001" not in listed.output

    def test_duplicate_is_skipped(self, store_path):
        args = ["keys", "add", "claude", "sk-ant-000000001", "--store", str(store_path)]
        runner.invoke(app, args)
        result = runner.invoke(app, args)

        assert result.exit_code == 0
        assert "Key already present" in result.output
        assert len(_stored_keys(store_path)) == 1

    def test_unknown_provider(self, store_path):
        result = runner.invoke(app, ["keys", "add", "skynet", "sk-whatever-001", "--store", str(store_path)])
        assert result.exit_code != 0
        assert not store_path.exists()

    def test_toggle_and_remove(self, store_path):
        runner.invoke(app, ["keys", "add", "gemini", "gm-key-000000001", "--store", str(store_path)])
        key_id = _stored_keys(store_path)[0]["id"]

        toggled = runner.invoke(app, ["keys", "toggle", key_id, "--store", str(store_path)])
        assert toggled.exit_code == 0
        assert "inactive" in toggled.output
        assert _stored_keys(store_path)[0]["is_active"] is False

        removed = runner.invoke(app, ["keys", "remove", key_id, "--store", str(store_path)])
        assert removed.exit_code == 0
        assert _stored_keys(store_path) == []

    @pytest.mark.parametrize("command", ["toggle", "remove"])
    def test_unknown_id_exits_1(self, store_path, command):
        result = runner.invoke(app, ["keys", command, "openai_missing", "--store", str(store_path)])
        assert result.exit_code == 1

    def test_stats(self, store_path):
        runner.invoke(app, ["keys", "add", "openai", "sk-openai-000000001", "--store", str(store_path)])
        runner.invoke(app, ["keys", "add", "openai", "sk-openai-000000002", "--store", str(store_path)])

        result = runner.invoke(app, ["keys", "stats", "--store", str(store_path)], env={"COLUMNS": "200"})
        assert result.exit_code == 0
        assert "openai" in result.output
        assert "openrouter" in result.output
        assert "Health" in result.output
        assert "100" in result.output

    def test_corrupt_store_exits_1(self, store_path):
        store_path.write_text("{not json")
        result = runner.invoke(app, ["keys", "list", "--store", str(store_path)])
        assert result.exit_code == 1

    def test_defaults_to_key_store_path(self, tmp_path):
        result = runner.invoke(app, ["keys", "add", "openai", "sk-openai-000000009"])
        assert result.exit_code == 0
        assert len(_stored_keys(tmp_path / "keys.json")) == 1


@pytest.mark.unit
class TestConfigCommands:
    def test_show(self):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "Fallback Order" in result.output
        assert "gemini" in result.output

    def test_validate_ok(self):
        result = runner.invoke(app, ["config", "validate"])
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_validate_reports_errors(self, monkeypatch):
        monkeypatch.setenv("PORT", "99999")
        result = runner.invoke(app, ["config", "validate"])
        monkeypatch.delenv("PORT")

        assert result.exit_code == 1
        assert "PORT" in result.output

    def test_docs(self):
        result = runner.invoke(app, ["config", "docs"])
        assert result.exit_code == 0
        assert "# Configuration Options" in result.output
        assert "<PROVIDER>_API_KEY" in result.output


@pytest.mark.unit
class TestTestConnection:
    def test_unknown_provider_exits_2(self):
        result = runner.invoke(app, ["test", "connection", "skynet"])
        assert result.exit_code == 2
        assert "Unknown provider" in result.output

    def test_short_override_key_exits_1(self):
        result = runner.invoke(app, ["test", "connection", "openai", "--api-key", "short"])
        assert result.exit_code == 1
        assert "incomplete" in result.output

    def test_no_pooled_key_exits_1(self):
        result = runner.invoke(app, ["test", "connection", "claude"])
        assert result.exit_code == 1
        assert "No active API key" in result.output


@pytest.mark.unit
def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output
