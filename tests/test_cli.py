"""Tests for the command line interface."""

import pytest
from typer.testing import CliRunner

from vaultseek import config as config_module
from vaultseek.main import app

runner = CliRunner()


@pytest.fixture
def vault_dir(tmp_path, monkeypatch):
    monkeypatch.delenv("VAULTSEEK_OPENROUTER_API_KEY", raising=False)
    monkeypatch.setenv("VAULTSEEK_VAULT_PATH", str(tmp_path))
    monkeypatch.setenv("VAULTSEEK_LOG_LEVEL", "WARNING")
    (tmp_path / "piano.md").write_text("Piano scales practice. #music", encoding="utf-8")
    (tmp_path / "bread.md").write_text("Sourdough bread.", encoding="utf-8")
    config_module.reload_settings()
    yield tmp_path
    config_module.reload_settings()


def test_search_prints_results(vault_dir):
    result = runner.invoke(app, ["search", "piano scales"])
    assert result.exit_code == 0
    assert "piano.md" in result.output


def test_search_json(vault_dir):
    result = runner.invoke(app, ["search", "anything", "--tag", "#music", "--json"])
    assert result.exit_code == 0
    assert '"path": "piano.md"' in result.output
    assert '"source": "tag-match"' in result.output


def test_invalid_date_exits(vault_dir):
    result = runner.invoke(app, ["search", "piano", "--since", "yesterday"])
    assert result.exit_code == 1


def test_missing_vault_exits(vault_dir, tmp_path):
    result = runner.invoke(app, ["--vault", str(tmp_path / "missing"), "search", "piano"])
    assert result.exit_code == 1


def test_index_commands_without_key(vault_dir):
    assert runner.invoke(app, ["index", "rebuild"]).exit_code == 1
    status = runner.invoke(app, ["index", "status"])
    assert status.exit_code == 0
    assert "No index found" in status.output
