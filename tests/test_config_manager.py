# tests/test_config_manager.py

import json

import pytest

from ollama_assistant.core.errors import ConfigurationError
from ollama_assistant.utils.config_manager import (
    ENV_ENDPOINT,
    ENV_MODEL,
    AssistantConfig,
    ConfigManager,
)


def test_defaults():
    cfg = AssistantConfig()
    assert cfg.endpoint == "http://localhost:11434"
    assert cfg.model == "codellama"
    assert (cfg.lines_up, cfg.lines_down, cfg.history_depth) == (3, 2, 3)
    assert cfg.min_confidence == 0.7
    assert cfg.debounce_ms == 500
    assert cfg.max_concurrent_requests == 3
    assert cfg.circuit_breaker_threshold == 5
    assert cfg.request_timeout_s == 30.0


def test_out_of_range_values_are_clamped():
    cfg = AssistantConfig(request_timeout_ms=10, lines_up=-3, min_confidence=1.5, history_depth=0)
    assert cfg.request_timeout_ms == 5_000
    assert cfg.lines_up == 0
    assert cfg.min_confidence == 1.0
    assert cfg.history_depth == 1
    assert AssistantConfig(request_timeout_ms=10 ** 9).request_timeout_ms == 300_000


def test_alias_names_the_same_switch():
    cfg = AssistantConfig.from_dict({"code_prediction_enabled": False, "ollama_model": "starcoder"})
    assert cfg.enable_auto_suggestions is False
    assert cfg.code_prediction_enabled is False
    assert cfg.model == "starcoder"


def test_unknown_option_and_bad_values_rejected():
    with pytest.raises(ConfigurationError):
        AssistantConfig.from_dict({"nope": 1})
    with pytest.raises(ConfigurationError):
        AssistantConfig(throttle_mode="drop")
    with pytest.raises(ConfigurationError):
        AssistantConfig(endpoint="ftp://host")


def test_with_changes_returns_new_snapshot():
    cfg = AssistantConfig()
    new = cfg.with_changes(debounce_ms=250)
    assert cfg.debounce_ms == 500
    assert new.debounce_ms == 250


def test_manager_set_persists(tmp_path):
    path = tmp_path / "config.json"
    mgr = ConfigManager(str(path), use_env=False)
    mgr.set("debounce_ms", "300")
    mgr.set("streaming", "on")

    saved = json.loads(path.read_text())
    assert saved["debounce_ms"] == 300
    assert saved["streaming"] is True

    reloaded = ConfigManager(str(path), use_env=False)
    assert reloaded.config.debounce_ms == 300
    assert reloaded.config.streaming is True


def test_manager_set_rejects_bad_input(tmp_path):
    mgr = ConfigManager(str(tmp_path / "c.json"), use_env=False)
    with pytest.raises(ConfigurationError):
        mgr.set("missing", "1")
    with pytest.raises(ConfigurationError):
        mgr.set("streaming", "maybe")
    with pytest.raises(ConfigurationError):
        mgr.set("debounce_ms", "soon")
    assert mgr.config.debounce_ms == 500


def test_manager_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"model": "from-file"}))
    monkeypatch.setenv(ENV_ENDPOINT, "http://gpu-box:11434")
    monkeypatch.setenv(ENV_MODEL, "from-env")
    mgr = ConfigManager(str(path))
    assert mgr.config.endpoint == "http://gpu-box:11434"
    assert mgr.config.model == "from-env"


def test_manager_bad_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(ConfigurationError):
        ConfigManager(str(path), use_env=False)
    path.write_text("[1, 2]")
    with pytest.raises(ConfigurationError):
        ConfigManager(str(path), use_env=False)


@pytest.mark.parametrize("data", [{"lines_up": "abc"}, {"min_confidence": None}, {"cache_size": [3]}])
def test_badly_typed_file_values_are_config_errors(tmp_path, data):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data))
    with pytest.raises(ConfigurationError):
        ConfigManager(str(path), use_env=False)


def test_cache_options_are_clamped():
    cfg = AssistantConfig(cache_size=0, cache_ttl_s=-5)
    assert cfg.cache_size == 1
    assert cfg.cache_ttl_s == 0.0
    assert AssistantConfig().enable_suggestion_cache is True
