"""
ConversationBackend Protocol Definition.

The interface every persistence backend implements. The host shell calls
`save` after each published change; the engine itself never touches storage.
"""

from typing import List, Protocol, runtime_checkable

from flowchat.models import Conversation


@runtime_checkable
class ConversationBackend(Protocol):
    """Load, save and delete whole conversations."""

    @property
    def backend_type(self) -> str:
        """Return the backend type identifier ('file' or 'memory')."""
        ...

    def load_all(self) -> List[Conversation]:
        """
        Load every stored conversation.

        Entries that cannot be read are skipped rather than failing the
        whole load.
        """
        ...

    def save(self, conversation: Conversation) -> None:
        """Insert or replace a conversation."""
        ...

    def delete(self, conversation_id: str) -> None:
        """Remove a conversation. Unknown ids are ignored."""
        ...
