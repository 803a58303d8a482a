"""
Backend Factory for FlowChat.

Creates the storage backend named in the user preferences.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from flowchat.storage.file_backend import FileBackend
from flowchat.storage.memory_backend import MemoryBackend
from flowchat.storage.protocol import ConversationBackend

logger = logging.getLogger(__name__)

# Default backend type
DEFAULT_BACKEND = "file"

BACKEND_TYPES = ("file", "memory")


def get_backend_type(config: Optional[dict] = None) -> str:
    """
    Get the storage backend type from a loaded config.json dict.

    Args:
        config: Parsed config; `preferences.storage_backend` wins over a
                top-level `storage_backend` key

    Returns:
        'file' or 'memory'
    """
    config = config or {}
    prefs = config.get("preferences") or {}
    backend_type = prefs.get("storage_backend") or config.get("storage_backend") or DEFAULT_BACKEND
    if backend_type not in BACKEND_TYPES:
        logger.warning(f"Unknown storage backend '{backend_type}', using {DEFAULT_BACKEND}")
        return DEFAULT_BACKEND
    return backend_type


def create_backend(backend_type: Optional[str] = None,
                   path: Optional[Union[str, Path]] = None) -> ConversationBackend:
    """
    Create a storage backend instance.

    Args:
        backend_type: 'file' or 'memory'; defaults to 'file'
        path: Directory for the file backend

    Returns:
        ConversationBackend instance
    """
    backend_type = backend_type or DEFAULT_BACKEND
    if backend_type == "memory":
        return MemoryBackend()
    if backend_type != "file":
        raise ValueError(f"Unknown storage backend: {backend_type}")
    return FileBackend(path)
