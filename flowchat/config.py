"""
Configuration management for FlowChat.

Handles persistent configuration including:
- Provider configurations (OpenAI, Anthropic, Ollama, LM Studio) and API keys
- User preferences (temperature, system prompt, last used model)

Config is stored in config.json next to the executable/project root.
Environment variables (optionally loaded from .env) take priority for API keys.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from flowchat.paths import get_config_path

logger = logging.getLogger(__name__)

load_dotenv()

PROVIDER_OPENAI = "openai"
PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_OLLAMA = "ollama"
PROVIDER_LMSTUDIO = "lmstudio"

SUPPORTED_PROVIDERS = (PROVIDER_OPENAI, PROVIDER_ANTHROPIC, PROVIDER_OLLAMA, PROVIDER_LMSTUDIO)

# Environment variable consulted first for each provider's key
API_KEY_ENV_VARS = {
    PROVIDER_OPENAI: "OPENAI_API_KEY",
    PROVIDER_ANTHROPIC: "ANTHROPIC_API_KEY",
}

DEFAULT_TEMPERATURE = 0.7


@dataclass
class ProviderConfig:
    """A configured completion provider."""
    id: str
    provider: str
    name: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    is_default: bool = False
    default_model: Optional[str] = None
    models: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderConfig":
        return cls(
            id=data["id"],
            provider=data.get("provider", PROVIDER_OPENAI),
            name=data.get("name", data["id"]),
            api_key=data.get("api_key"),
            base_url=data.get("base_url"),
            is_default=bool(data.get("is_default", False)),
            default_model=data.get("default_model"),
            models=list(data.get("models", [])),
        )


DEFAULT_PROVIDER_CONFIGS: Dict[str, ProviderConfig] = {
    PROVIDER_OPENAI: ProviderConfig(
        id="openai_default", provider=PROVIDER_OPENAI, name="OpenAI",
        is_default=True, default_model="gpt-4o",
        models=["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
    ),
    PROVIDER_ANTHROPIC: ProviderConfig(
        id="anthropic_default", provider=PROVIDER_ANTHROPIC, name="Anthropic",
        default_model="claude-3-5-sonnet-20241022",
        models=["claude-3-5-sonnet-20241022", "claude-3-5-haiku-20241022", "claude-3-opus-20240229"],
    ),
    PROVIDER_OLLAMA: ProviderConfig(
        id="ollama_default", provider=PROVIDER_OLLAMA, name="Ollama",
        base_url="http://localhost:11434", default_model="llama3.1",
        models=["llama3.1", "llama3.1:8b", "llama3.1:70b", "qwen2.5", "mistral", "codellama"],
    ),
    PROVIDER_LMSTUDIO: ProviderConfig(
        id="lmstudio_default", provider=PROVIDER_LMSTUDIO, name="LM Studio",
        base_url="http://localhost:1234",
    ),
}


@dataclass
class UserPreferences:
    """Preferences that influence new requests."""
    default_provider: str = ""
    temperature: float = DEFAULT_TEMPERATURE
    system_prompt: str = ""
    last_used_provider: str = ""
    last_used_model: str = ""
    storage_backend: str = "file"


def load_config(config_path: Optional[Path] = None) -> dict:
    """Load configuration from config.json."""
    config_path = config_path or get_config_path()
    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Ignoring unreadable config {config_path}: {e}")
            return {}
    return {}


def save_config(config: dict, config_path: Optional[Path] = None) -> None:
    """Save configuration to config.json."""
    config_path = config_path or get_config_path()
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=2)


def get_api_key(provider: str, config_path: Optional[Path] = None) -> Optional[str]:
    """
    Get the API key for a provider.

    Priority:
    1. Environment variable (OPENAI_API_KEY / ANTHROPIC_API_KEY)
    2. Stored in config.json under the provider's config
    """
    env_var = API_KEY_ENV_VARS.get(provider)
    if env_var:
        env_key = os.environ.get(env_var)
        if env_key:
            return env_key

    for cfg in get_provider_configs(config_path):
        if cfg.provider == provider and cfg.api_key:
            return cfg.api_key
    return None


def get_provider_configs(config_path: Optional[Path] = None) -> List[ProviderConfig]:
    """
    Return all provider configs.

    Stored configs override the built-in defaults by id; defaults that were
    never customised are still listed.
    """
    config = load_config(config_path)
    stored = {}
    for raw in config.get("providers", []):
        try:
            cfg = ProviderConfig.from_dict(raw)
        except (KeyError, TypeError) as e:
            logger.warning(f"Skipping malformed provider config {raw!r}: {e}")
            continue
        stored[cfg.id] = cfg

    merged = {d.id: ProviderConfig.from_dict(d.to_dict()) for d in DEFAULT_PROVIDER_CONFIGS.values()}
    merged.update(stored)
    return list(merged.values())


def put_provider_config(provider_config: ProviderConfig, config_path: Optional[Path] = None) -> None:
    """Insert or replace a provider config."""
    config = load_config(config_path)
    providers = [p for p in config.get("providers", []) if p.get("id") != provider_config.id]
    providers.append(provider_config.to_dict())
    config["providers"] = providers
    config["providers_updated_at"] = datetime.now(timezone.utc).isoformat()
    save_config(config, config_path)


def get_provider_config(provider_id: str, config_path: Optional[Path] = None) -> Optional[ProviderConfig]:
    for cfg in get_provider_configs(config_path):
        if cfg.id == provider_id:
            return cfg
    return None


def get_preferences(config_path: Optional[Path] = None) -> UserPreferences:
    """Load user preferences, falling back to defaults for missing keys."""
    raw = load_config(config_path).get("preferences", {})
    prefs = UserPreferences()
    for key, value in raw.items():
        if hasattr(prefs, key):
            setattr(prefs, key, value)
    try:
        prefs.temperature = float(prefs.temperature)
    except (TypeError, ValueError):
        prefs.temperature = DEFAULT_TEMPERATURE
    return prefs


def save_preferences(preferences: UserPreferences, config_path: Optional[Path] = None) -> None:
    config = load_config(config_path)
    config["preferences"] = asdict(preferences)
    save_config(config, config_path)


def save_last_used(provider_id: str, model: str, config_path: Optional[Path] = None) -> None:
    """Remember the provider/model used for the most recent request."""
    prefs = get_preferences(config_path)
    prefs.last_used_provider = provider_id
    prefs.last_used_model = model
    save_preferences(prefs, config_path)


def get_default_provider_config(config_path: Optional[Path] = None) -> Optional[ProviderConfig]:
    """
    Resolve the provider to preselect.

    Preferred default from preferences first, then the first config flagged
    default, then OpenAI, then anything.
    """
    configs = get_provider_configs(config_path)
    if not configs:
        return None
    prefs = get_preferences(config_path)
    if prefs.default_provider:
        for cfg in configs:
            if cfg.id == prefs.default_provider:
                return cfg
    for cfg in configs:
        if cfg.is_default:
            return cfg
    for cfg in configs:
        if cfg.provider == PROVIDER_OPENAI:
            return cfg
    return configs[0]
