import json

import pytest

from flowchat.config import (
    DEFAULT_PROVIDER_CONFIGS,
    ProviderConfig,
    UserPreferences,
    get_api_key,
    get_default_provider_config,
    get_preferences,
    get_provider_config,
    get_provider_configs,
    load_config,
    put_provider_config,
    save_last_used,
    save_preferences,
)


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config.json"


@pytest.fixture(autouse=True)
def no_env_keys(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)


def test_defaults_without_config_file(config_path):
    configs = get_provider_configs(config_path)
    assert {c.id for c in configs} == {c.id for c in DEFAULT_PROVIDER_CONFIGS.values()}
    assert len(configs) == 4
    assert get_default_provider_config(config_path).id == "openai_default"


def test_put_provider_config_overrides_default(config_path):
    custom = ProviderConfig(id="ollama_default", provider="ollama", name="My Ollama",
                            base_url="http://gpu-box:11434", models=["qwen2.5"])
    put_provider_config(custom, config_path)

    stored = get_provider_config("ollama_default", config_path)
    assert stored.name == "My Ollama"
    assert stored.base_url == "http://gpu-box:11434"
    assert len(get_provider_configs(config_path)) == 4

    raw = json.loads(config_path.read_text(encoding="utf-8"))
    assert "providers_updated_at" in raw


def test_defaults_are_not_shared(config_path):
    configs = get_provider_configs(config_path)
    configs[0].models.append("mutated")
    assert "mutated" not in get_provider_configs(config_path)[0].models


def test_env_key_wins_over_stored(config_path, monkeypatch):
    put_provider_config(ProviderConfig(id="openai_default", provider="openai", name="OpenAI",
                                       api_key="sk-stored"), config_path)
    assert get_api_key("openai", config_path) == "sk-stored"

    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    assert get_api_key("openai", config_path) == "sk-env"
    assert get_api_key("anthropic", config_path) is None


def test_corrupt_config_is_ignored(config_path, caplog):
    config_path.write_text("{oops", encoding="utf-8")
    assert load_config(config_path) == {}
    assert len(get_provider_configs(config_path)) == 4
    assert "unreadable config" in caplog.text


def test_malformed_provider_entry_skipped(config_path):
    config_path.write_text(json.dumps({"providers": [{"name": "no id"}]}), encoding="utf-8")
    assert len(get_provider_configs(config_path)) == 4


def test_preferences_round_trip(config_path):
    prefs = UserPreferences(temperature=0.2, system_prompt="Be concise", default_provider="anthropic_default")
    save_preferences(prefs, config_path)

    loaded = get_preferences(config_path)
    assert loaded.temperature == 0.2
    assert loaded.system_prompt == "Be concise"
    assert get_default_provider_config(config_path).id == "anthropic_default"


def test_bad_temperature_falls_back(config_path):
    config_path.write_text(json.dumps({"preferences": {"temperature": "warm", "unknown": 1}}), encoding="utf-8")
    prefs = get_preferences(config_path)
    assert prefs.temperature == 0.7
    assert not hasattr(prefs, "unknown")


def test_save_last_used(config_path):
    save_last_used("ollama_default", "llama3.1", config_path)
    prefs = get_preferences(config_path)
    assert (prefs.last_used_provider, prefs.last_used_model) == ("ollama_default", "llama3.1")
