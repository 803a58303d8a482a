"""
Reply-to-selection support.

When the user selects text inside a node, the node is frozen (layout and
non-stream content writes leave it alone so the browser keeps its highlight)
and a Reply button is anchored above the selection. Replying creates a child
whose content starts with the selection as a markdown blockquote.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from flowchat.layout.constants import REHEAT_ALPHA

logger = logging.getLogger(__name__)

MAX_QUOTE_CHARS = 1200
ELLIPSIS = "…"
# Reply button sits this far above the selection
ANCHOR_OFFSET_Y = 40.0
# Screen-space offset of the reply hint from the selection's right edge
REPLY_HINT_OFFSET_X = 200.0


@dataclass(frozen=True)
class SelectionRect:
    """Screen-space bounding box of a text selection."""
    left: float
    top: float
    right: float
    bottom: float


@dataclass(frozen=True)
class TextSelection:
    node_id: str
    text: str
    rect: SelectionRect


def build_quote(text: str, max_chars: int = MAX_QUOTE_CHARS) -> str:
    """
    Markdown blockquote of `text` followed by a blank line.

    Text past `max_chars` is cut and marked with an ellipsis. Blank lines
    become a bare '>'.
    """
    if len(text) > max_chars:
        text = text[:max_chars] + ELLIPSIS
    lines = text.replace("\r\n", "\n").split("\n")
    quoted = "\n".join(f"> {line}" if line.strip() else ">" for line in lines)
    return f"{quoted}\n\n"


class SelectionBridge:
    """Tracks the active selection and turns it into a quoted reply."""

    def __init__(self, engine, simulation=None, viewport=None):
        self.engine = engine
        self.simulation = simulation
        self.viewport = viewport
        self._selection: Optional[TextSelection] = None

    @property
    def selection(self) -> Optional[TextSelection]:
        return self._selection

    def anchor(self) -> Optional[Tuple[float, float]]:
        """Screen position of the Reply button, if a selection is active."""
        if self._selection is None:
            return None
        rect = self._selection.rect
        return (rect.right, rect.top - ANCHOR_OFFSET_Y)

    def select(self, node_id: str, text: str, rect: SelectionRect) -> Optional[Tuple[float, float]]:
        """Register a selection in `node_id` and freeze that node."""
        if not text or not text.strip():
            return None
        if self.engine.get(node_id) is None:
            logger.debug(f"Selection in unknown node {node_id}")
            return None
        if self._selection is not None and self._selection.node_id != node_id:
            self.clear()
        self._selection = TextSelection(node_id=node_id, text=text, rect=rect)
        self.engine.freeze(node_id)
        return self.anchor()

    def clear(self) -> None:
        """Drop the selection and let layout move the node again."""
        selection = self._selection
        if selection is None:
            return
        self._selection = None
        self.engine.unfreeze(selection.node_id)
        node = self.engine.get(selection.node_id)
        if self.simulation is not None and node is not None and not node.pinned:
            self.simulation.reheat(REHEAT_ALPHA)

    def _hint(self, rect: SelectionRect) -> Tuple[float, float]:
        sx, sy = rect.right + REPLY_HINT_OFFSET_X, rect.top
        if self.viewport is None:
            return (sx, sy)
        return self.viewport.screen_to_world(sx, sy)

    def reply(self):
        """Create the quoted child of the selected node. Returns it, or None."""
        selection = self._selection
        if selection is None:
            return None
        child = self.engine.add_child(
            selection.node_id,
            hint=self._hint(selection.rect),
            initial_content=build_quote(selection.text),
        )
        self.clear()
        return child
