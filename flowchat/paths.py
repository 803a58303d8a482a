"""
Where FlowChat keeps its files.

Everything lives under one data directory: the project root by default, or
FLOWCHAT_HOME when set.

    {home}/config.json              provider settings and preferences
    {home}/db/conversations/*.json  one document per conversation
"""

import os
from pathlib import Path

HOME_ENV = "FLOWCHAT_HOME"


def get_app_dir() -> Path:
    """FLOWCHAT_HOME if set, else the project root (parent of flowchat/)."""
    home = os.environ.get(HOME_ENV)
    if home:
        return Path(home).expanduser()
    return Path(__file__).parent.parent


def get_conversations_dir() -> Path:
    return get_app_dir() / "db" / "conversations"


def get_config_path() -> Path:
    return get_app_dir() / "config.json"


def ensure_data_dirs() -> Path:
    """Create the conversations directory if needed and return it."""
    conversations_dir = get_conversations_dir()
    conversations_dir.mkdir(parents=True, exist_ok=True)
    return conversations_dir
