"""
Conversation Manager for FlowChat.

Handles the list of conversations shown in the sidebar and which one is open.
The open conversation lives in the shared ConversationCell; the manager
listens to it and saves every published change through the storage backend.
Closed conversations are written through `update_conversation`, which is how
the mutation engine finishes a cascade or a streamed reply after the user has
switched away.

Storage failures are logged and never raised into the UI: losing one save is
better than a broken canvas.
"""

import logging
from typing import Dict, List, Optional, Tuple

from flowchat.models import ROLE_USER, ChatNode, Conversation, new_id
from flowchat.mutation_manager import ConversationCell
from flowchat.storage.protocol import ConversationBackend

logger = logging.getLogger(__name__)


class ConversationManager:
    """Sidebar-level operations over all conversations."""

    def __init__(self, backend: ConversationBackend, cell: Optional[ConversationCell] = None):
        self.backend = backend
        self.cell = cell or ConversationCell()
        self._conversations: Dict[str, Conversation] = {}
        self._unsubscribe = self.cell.subscribe(self._on_publish)

    @property
    def conversations(self) -> List[Conversation]:
        """All conversations, most recently modified first."""
        return sorted(self._conversations.values(), key=lambda c: c.last_modified, reverse=True)

    @property
    def current(self) -> Optional[Conversation]:
        return self.cell.current

    def get(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    def _save(self, conversation: Conversation) -> None:
        try:
            self.backend.save(conversation)
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to save conversation {conversation.id}: {e}")

    def _on_publish(self, conversation: Optional[Conversation]) -> None:
        if conversation is None:
            return
        if self._conversations.get(conversation.id) is conversation:
            return
        self._conversations[conversation.id] = conversation
        self._save(conversation)

    def load(self) -> List[Conversation]:
        """Load all stored conversations and open the newest one."""
        try:
            loaded = self.backend.load_all()
        except OSError as e:
            logger.error(f"Failed to load conversations: {e}")
            loaded = []
        self._conversations = {c.id: c for c in loaded}
        logger.info(f"Loaded {len(loaded)} conversations from {self.backend.backend_type} backend")
        conversations = self.conversations
        if conversations and self.cell.current is None:
            self.cell.publish(conversations[0])
        return conversations

    def create_conversation(self, initial_pos: Optional[Tuple[float, float]] = None) -> Conversation:
        """
        Create, save and open a new conversation.

        With `initial_pos` the conversation starts with one empty editing
        root there.
        """
        nodes = []
        if initial_pos is not None:
            x, y = initial_pos
            nodes.append(ChatNode(id=new_id(), role=ROLE_USER, x=float(x), y=float(y), editing=True))
        conversation = Conversation.create(nodes=nodes)
        self.cell.publish(conversation)
        return conversation

    def update_conversation(self, snapshot: Conversation) -> None:
        """Replace a conversation wholesale."""
        if self.cell.current is not None and self.cell.current.id == snapshot.id:
            self.cell.publish(snapshot)
            return
        self._conversations[snapshot.id] = snapshot
        self._save(snapshot)

    def select_conversation(self, conversation_id: str) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            logger.debug(f"select: conversation {conversation_id} not found")
            return None
        if self.cell.current is not conversation:
            self.cell.publish(conversation)
        return conversation

    def rename_conversation(self, conversation_id: str, title: str) -> Optional[Conversation]:
        """Set a new title; blank titles are ignored."""
        title = (title or "").strip()
        conversation = self._conversations.get(conversation_id)
        if conversation is None or not title or title == conversation.title:
            return conversation
        renamed = conversation.with_title(title)
        self.update_conversation(renamed)
        return renamed

    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation; if it was open, open the next newest."""
        if self._conversations.pop(conversation_id, None) is None:
            logger.debug(f"delete: conversation {conversation_id} not found")
            return
        try:
            self.backend.delete(conversation_id)
        except OSError as e:
            logger.error(f"Failed to delete conversation {conversation_id}: {e}")
        current = self.cell.current
        if current is not None and current.id == conversation_id:
            remaining = self.conversations
            self.cell.publish(remaining[0] if remaining else None)

    def close(self) -> None:
        self._unsubscribe()
