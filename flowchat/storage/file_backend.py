"""
File-based Storage Backend for FlowChat.

Implements the ConversationBackend protocol with one JSON document per
conversation. Writes go to a temporary file first and are then renamed over
the target, so a crash mid-write never leaves a truncated conversation.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from flowchat.graph import find_invariant_violations
from flowchat.models import Conversation
from flowchat.paths import get_conversations_dir

logger = logging.getLogger(__name__)


class FileBackend:
    """
    Local file storage.

    Structure:
    - {root}/{conversation_id}.json: Conversation files
    """

    def __init__(self, root: Optional[Union[str, Path]] = None):
        """
        Initialize FileBackend.

        Args:
            root: Directory holding conversation files; defaults to
                  db/conversations beside the app
        """
        self.root = Path(root) if root is not None else get_conversations_dir()
        self.root.mkdir(parents=True, exist_ok=True)

    @property
    def backend_type(self) -> str:
        return "file"

    def _path(self, conversation_id: str) -> Path:
        safe_id = "".join(c for c in conversation_id if c.isalnum() or c in ("-", "_"))
        return self.root / f"{safe_id}.json"

    def load_all(self) -> List[Conversation]:
        """Load all conversations, skipping unreadable or inconsistent files."""
        conversations = []
        for conv_file in sorted(self.root.glob("*.json")):
            try:
                with open(conv_file, "r", encoding="utf-8") as f:
                    conversation = Conversation.from_dict(json.load(f))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Failed to load conversation file {conv_file}: {e}")
                continue
            problems = find_invariant_violations(conversation.nodes)
            if problems:
                logger.warning(f"Skipping inconsistent conversation file {conv_file}: {'; '.join(problems)}")
                continue
            conversations.append(conversation)
        return conversations

    def save(self, conversation: Conversation) -> None:
        path = self._path(conversation.id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(conversation.to_dict(), f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)

    def delete(self, conversation_id: str) -> None:
        path = self._path(conversation_id)
        if path.exists():
            path.unlink()
        else:
            logger.debug(f"Delete of unknown conversation {conversation_id}")
