"""In-memory storage backend."""

import logging
from typing import Dict, List

from flowchat.models import Conversation

logger = logging.getLogger(__name__)


class MemoryBackend:
    """Keeps conversations in a dict for the lifetime of the process."""

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}

    @property
    def backend_type(self) -> str:
        return "memory"

    def load_all(self) -> List[Conversation]:
        return list(self._conversations.values())

    def save(self, conversation: Conversation) -> None:
        self._conversations[conversation.id] = conversation

    def delete(self, conversation_id: str) -> None:
        if self._conversations.pop(conversation_id, None) is None:
            logger.debug(f"Delete of unknown conversation {conversation_id}")
