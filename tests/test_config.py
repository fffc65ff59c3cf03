from pathlib import Path

import pytest

from vaultseek import config as config_module
from vaultseek.core.models import SearchOptions


@pytest.fixture(autouse=True)
def restore_settings_cache():
    """
    Ensure the settings cache is cleared between tests.
    """
    config_module.reload_settings()
    yield
    config_module.reload_settings()


def test_settings_read_from_environment(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("VAULTSEEK_VAULT_PATH", str(tmp_path))
    monkeypatch.setenv("VAULTSEEK_CO_CITATION_THRESHOLD", "7")
    monkeypatch.setenv("VAULTSEEK_EXCLUSIONS", "private,%23secret")
    monkeypatch.delenv("VAULTSEEK_INDEX_DIR", raising=False)

    settings = config_module.reload_settings()

    assert settings.vault_path == tmp_path
    assert settings.co_citation_threshold == 7
    assert settings.exclusions == "private,%23secret"
    assert settings.get_index_dir() == tmp_path / ".vaultseek"


def test_defaults(settings) -> None:
    assert settings.llm_timeout_seconds == 5.0
    assert settings.daily_note_max_days == 365
    assert settings.max_partition_bytes == 150 * 1024 * 1024
    assert not settings.is_model_configured
    assert settings.get_index_dir().name == "index"


def test_log_level_is_validated(monkeypatch) -> None:
    monkeypatch.setenv("VAULTSEEK_LOG_LEVEL", "debug")
    assert config_module.reload_settings().log_level == "DEBUG"

    monkeypatch.setenv("VAULTSEEK_LOG_LEVEL", "chatty")
    with pytest.raises(ValueError):
        config_module.reload_settings()


def test_search_options_follow_settings(settings) -> None:
    settings.max_results = 12
    settings.enable_semantic = True

    options = SearchOptions.from_settings(settings, enable_semantic=False)

    assert options.max_results == 12
    assert options.enable_semantic is False
    assert options.rrf_k == settings.rrf_k


def test_graph_hops_setting_is_bounded(monkeypatch) -> None:
    monkeypatch.setenv("VAULTSEEK_GRAPH_HOPS", "3")
    settings = config_module.reload_settings()
    assert SearchOptions.from_settings(settings).graph_hops == 3

    monkeypatch.setenv("VAULTSEEK_GRAPH_HOPS", "5")
    with pytest.raises(ValueError):
        config_module.reload_settings()
