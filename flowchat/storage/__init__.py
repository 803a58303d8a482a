"""
Conversation persistence for FlowChat.

Supports multiple storage backends:
- FileBackend: one JSON file per conversation on local disk (default)
- MemoryBackend: in-process dict, for tests and throwaway sessions
"""

from flowchat.storage.protocol import ConversationBackend
from flowchat.storage.file_backend import FileBackend
from flowchat.storage.memory_backend import MemoryBackend
from flowchat.storage.factory import create_backend, get_backend_type

__all__ = [
    'ConversationBackend',
    'FileBackend',
    'MemoryBackend',
    'create_backend',
    'get_backend_type',
]
