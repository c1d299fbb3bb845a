"""Tests for config loading."""

from __future__ import annotations

from localchat.config.loader import Config, _deep_merge, _load_yaml, get_config


def test_load_yaml_missing(tmp_path):
    assert _load_yaml(tmp_path / "nonexistent.yaml") == {}


def test_default_config():
    config = Config.load()
    assert config.model.provider == "ollama"
    assert config.model.name == "llama3.2"
    assert config.model.base_url == "http://localhost:11434"
    assert config.transport.system_prompt is None
    assert config.logging.use_json is True


def test_config_load_from_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "model:\n  name: qwen2.5:0.5b\n  keep_alive: 30m\ntransport:\n  system_prompt: Answer in French.\n"
    )
    config = Config.load(config_path=path)
    assert config.model.name == "qwen2.5:0.5b"
    assert config.model.keep_alive == "30m"
    assert config.transport.system_prompt == "Answer in French."


def test_ollama_host_env_override(monkeypatch):
    monkeypatch.setenv("OLLAMA_HOST", "127.0.0.1:11500")
    config = Config.load()
    assert config.model.base_url == "http://127.0.0.1:11500"


def test_model_and_log_level_env_override(monkeypatch):
    monkeypatch.setenv("LOCALCHAT_MODEL", "phi3")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    config = Config.load()
    assert config.model.name == "phi3"
    assert config.logging.level == "DEBUG"


def test_redis_env_override(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://test:6379/5")
    config = Config.load()
    assert config.redis.url == "redis://test:6379/5"


def test_deep_merge():
    base = {"a": 1, "b": {"x": 10, "y": 20}}
    override = {"b": {"y": 22, "z": 30}, "c": 3}
    out = _deep_merge(base, override)
    assert out == {"a": 1, "b": {"x": 10, "y": 22, "z": 30}, "c": 3}
    assert base["b"] == {"x": 10, "y": 20}


def test_env_prefix_merges_overlay(monkeypatch, tmp_path):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "dev.yaml").write_text("model:\n  name: tinyllama\n")
    monkeypatch.setenv("LOCALCHAT_ENV_PREFIX", "dev")
    monkeypatch.chdir(tmp_path)
    config = Config.load()
    assert config.model.name == "tinyllama"
    assert config.model.base_url == "http://localhost:11434"


def test_get_config(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("model:\n  name: fromfile\n")
    assert get_config(config_path=str(path)).model.name == "fromfile"
