"""
Mutation engine for FlowChat conversations.

The ConversationCell is the single mutable slot holding the current
Conversation snapshot. MutationEngine is its only writer: every operation reads
the most recently published snapshot, builds a new one, and publishes it whole.
Readers holding an older snapshot never see a partial edit.

This module exposes:
- ConversationCell(conversation=None): current, publish(), subscribe()
- MutationEngine(cell, cascade=None, archive=None):
    create_root(x, y) -> ChatNode
    add_child(parent_id, hint=None, node=None, initial_content="", conversation_id=None) -> Optional[ChatNode]
    update_content(node_id, patch, from_stream=False, conversation_id=None) -> Optional[ChatNode]
    move_node(node_id, x, y) -> Optional[ChatNode]
    apply_positions({node_id: (x, y)}) -> int
    delete_subtree(node_id) -> bool
    remove_nodes(ids, conversation_id=None)
    branch(node_id) -> List[str]
    rename(conversation_id, title)
    freeze(node_id) / unfreeze(node_id) / frozen_ids

Operations referencing a node that does not exist are no-ops; they can race
with a cascade removing that node.

Work that finishes later than it starts (cascade removals, streamed replies)
passes the id of the conversation it began in. When that conversation is no
longer open, the write goes to `archive` (the ConversationManager) instead of
the cell, so switching conversations never drops it.
"""

import logging
import math
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from flowchat.graph import collect_subtree, path_to_root
from flowchat.layout.constants import BRANCH_ROW_HEIGHT
from flowchat.layout.placement import branch_origin, seed_child_position
from flowchat.models import ROLE_USER, ChatNode, Conversation, new_id

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = ("content", "thinking", "thinking_time_seconds", "editing")

Listener = Callable[[Optional[Conversation]], None]


class ConversationCell:
    """Holds the latest Conversation snapshot and notifies subscribers."""

    def __init__(self, conversation: Optional[Conversation] = None):
        self._current = conversation
        self._listeners: List[Listener] = []

    @property
    def current(self) -> Optional[Conversation]:
        return self._current

    def publish(self, conversation: Optional[Conversation]) -> None:
        self._current = conversation
        for listener in list(self._listeners):
            try:
                listener(conversation)
            except Exception:
                logger.exception(f"Conversation listener {listener!r} failed")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe


class MutationEngine:
    """The only writer of conversation structure, content and positions."""

    def __init__(self, cell: ConversationCell, cascade=None, archive=None):
        self.cell = cell
        # CascadeScheduler; attached after construction when it needs remove_nodes
        self.cascade = cascade
        # get(conversation_id) / update_conversation(snapshot) for closed conversations
        self.archive = archive
        self._frozen: Set[str] = set()

    @property
    def conversation(self) -> Optional[Conversation]:
        return self.cell.current

    @property
    def frozen_ids(self) -> FrozenSet[str]:
        return frozenset(self._frozen)

    def get(self, node_id: Optional[str], conversation_id: Optional[str] = None) -> Optional[ChatNode]:
        conversation = self._target(conversation_id)
        if conversation is None:
            return None
        return conversation.get(node_id)

    def _is_open(self, conversation_id: str) -> bool:
        current = self.cell.current
        return current is not None and current.id == conversation_id

    def _target(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        """Latest snapshot of `conversation_id`; the open conversation when None."""
        if conversation_id is None or self._is_open(conversation_id):
            return self.cell.current
        if self.archive is None:
            logger.debug(f"Conversation {conversation_id} is closed and there is no archive")
            return None
        return self.archive.get(conversation_id)

    def _commit(self, conversation: Conversation, nodes: Dict[str, ChatNode]) -> Conversation:
        updated = conversation.with_nodes(nodes)
        if self._is_open(conversation.id):
            self.cell.publish(updated)
        else:
            self.archive.update_conversation(updated)
            logger.debug(f"Wrote closed conversation {conversation.id}")
        return updated

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_root(self, x: float, y: float) -> Optional[ChatNode]:
        """New empty, editing user node with no parent at world (x, y)."""
        conversation = self.cell.current
        if conversation is None:
            return None
        if not (math.isfinite(x) and math.isfinite(y)):
            logger.warning(f"Root requested at non-finite position ({x}, {y}); using origin")
            x, y = 0.0, 0.0
        node = ChatNode(id=new_id(), role=ROLE_USER, x=float(x), y=float(y), editing=True)
        nodes = dict(conversation.nodes)
        nodes[node.id] = node
        self._commit(conversation, nodes)
        logger.debug(f"Created root {node.id} at ({x:.0f}, {y:.0f})")
        return node

    def add_child(self, parent_id: str, hint: Optional[Tuple[float, float]] = None,
                  node: Optional[ChatNode] = None, initial_content: str = "",
                  conversation_id: Optional[str] = None) -> Optional[ChatNode]:
        """
        Append a child under `parent_id`.

        With `node` given (assistant placeholder, error reply) that node is
        linked as-is; otherwise a new editing user node holding
        `initial_content` is created. The position always comes from seed
        placement; `hint` only applies when the parent has no usable position.
        """
        conversation = self._target(conversation_id)
        if conversation is None:
            return None
        parent = conversation.nodes.get(parent_id)
        if parent is None:
            logger.debug(f"add_child: parent {parent_id} not found")
            return None
        if self.cascade is not None and self.cascade.is_pending(parent_id):
            logger.debug(f"add_child: parent {parent_id} is being deleted")
            return None

        if node is None:
            child = ChatNode(id=new_id(), content=initial_content, role=ROLE_USER, editing=True)
        elif node.id in conversation.nodes:
            logger.warning(f"add_child: node id {node.id} already exists")
            return None
        else:
            child = node

        if parent.has_finite_position:
            x, y = seed_child_position(conversation.nodes, parent)
        elif hint is not None and all(math.isfinite(v) for v in hint):
            x, y = hint
        else:
            x, y = 0.0, 0.0
        child = child.evolve(parent_id=parent_id, child_ids=(), x=x, y=y)

        nodes = dict(conversation.nodes)
        nodes[parent_id] = parent.evolve(child_ids=parent.child_ids + (child.id,))
        nodes[child.id] = child
        self._commit(conversation, nodes)
        return child

    # ------------------------------------------------------------------
    # Content and position
    # ------------------------------------------------------------------

    def update_content(self, node_id: str, patch: Mapping[str, object],
                       from_stream: bool = False,
                       conversation_id: Optional[str] = None) -> Optional[ChatNode]:
        """
        Merge `patch` into a node. Never touches structure.

        Applying the same patch twice publishes once. Non-stream patches to a
        node frozen by a text selection are dropped.
        """
        unknown = set(patch) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot patch fields: {', '.join(sorted(unknown))}")

        conversation = self._target(conversation_id)
        if conversation is None:
            return None
        node = conversation.nodes.get(node_id)
        if node is None:
            logger.debug(f"update_content: node {node_id} not found")
            return None
        if not from_stream and node_id in self._frozen:
            logger.debug(f"update_content: {node_id} is frozen by a selection")
            return node

        changes = {k: v for k, v in patch.items() if getattr(node, k) != v}
        if not changes:
            return node
        updated = node.evolve(**changes)
        nodes = dict(conversation.nodes)
        nodes[node_id] = updated
        self._commit(conversation, nodes)
        return updated

    def move_node(self, node_id: str, x: float, y: float) -> Optional[ChatNode]:
        """Manual drag: set the position and pin the node."""
        if not (math.isfinite(x) and math.isfinite(y)):
            logger.warning(f"move_node: rejecting non-finite position ({x}, {y})")
            return None
        conversation = self.cell.current
        if conversation is None:
            return None
        node = conversation.nodes.get(node_id)
        if node is None:
            logger.debug(f"move_node: node {node_id} not found")
            return None
        updated = node.evolve(x=float(x), y=float(y), pinned=True)
        if updated == node:
            return node
        nodes = dict(conversation.nodes)
        nodes[node_id] = updated
        self._commit(conversation, nodes)
        return updated

    def apply_positions(self, positions: Mapping[str, Tuple[float, float]]) -> int:
        """
        Layout write path. Pinned, frozen and missing nodes are skipped.

        Returns the number of nodes moved; all moves land in one publish.
        """
        conversation = self.cell.current
        if conversation is None:
            return 0
        nodes = dict(conversation.nodes)
        moved = 0
        for node_id, (x, y) in positions.items():
            node = nodes.get(node_id)
            if node is None or node.pinned or node_id in self._frozen:
                continue
            if not (math.isfinite(x) and math.isfinite(y)):
                continue
            if (x, y) == node.position:
                continue
            nodes[node_id] = node.evolve(x=x, y=y)
            moved += 1
        if moved:
            self._commit(conversation, nodes)
        return moved

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def delete_subtree(self, node_id: str) -> bool:
        """
        Delete a node and all its descendants.

        With a cascade attached the removal is staggered and happens later;
        without one it is immediate. Returns whether the request was accepted.
        """
        conversation = self.cell.current
        if conversation is None or node_id not in conversation.nodes:
            logger.debug(f"delete_subtree: node {node_id} not found")
            return False
        if self.cascade is None:
            self.remove_nodes(collect_subtree(conversation.nodes, node_id))
            return True
        return self.cascade.request(conversation.nodes, node_id, conversation_id=conversation.id)

    def remove_nodes(self, ids: Iterable[str], conversation_id: Optional[str] = None) -> None:
        """
        Drop `ids` and every reference to them.

        Surviving children of a removed node lose their parent link, so the
        snapshot stays consistent between cascade levels.
        """
        doomed = set(ids)
        conversation = self._target(conversation_id)
        if conversation is None or not doomed:
            return
        nodes: Dict[str, ChatNode] = {}
        changed = False
        for nid, node in conversation.nodes.items():
            if nid in doomed:
                changed = True
                continue
            child_ids = tuple(c for c in node.child_ids if c not in doomed)
            parent_id = None if node.parent_id in doomed else node.parent_id
            if child_ids != node.child_ids or parent_id != node.parent_id:
                node = node.evolve(child_ids=child_ids, parent_id=parent_id)
                changed = True
            nodes[nid] = node
        self._frozen -= doomed
        if changed:
            self._commit(conversation, nodes)

    # ------------------------------------------------------------------
    # Branching and metadata
    # ------------------------------------------------------------------

    def branch(self, node_id: str) -> List[str]:
        """
        Clone the root -> node path into a new parallel chain.

        The clone of the root starts on the node's band, one spacing right of
        the rightmost node there, and each later clone stacks
        BRANCH_ROW_HEIGHT below the previous one. Only the last clone is
        editing. Returns the new ids in root -> tip order.
        """
        conversation = self.cell.current
        if conversation is None:
            return []
        node = conversation.nodes.get(node_id)
        if node is None:
            logger.debug(f"branch: node {node_id} not found")
            return []
        path = path_to_root(conversation.nodes, node_id)
        origin_x = branch_origin(conversation.nodes, node)
        base_y = node.y if math.isfinite(node.y) else 0.0

        new_ids = [new_id() for _ in path]
        nodes = dict(conversation.nodes)
        last = len(path) - 1
        for i, original in enumerate(path):
            nodes[new_ids[i]] = ChatNode(
                id=new_ids[i],
                content=original.content,
                role=original.role,
                x=origin_x,
                y=base_y + i * BRANCH_ROW_HEIGHT,
                parent_id=new_ids[i - 1] if i > 0 else None,
                child_ids=(new_ids[i + 1],) if i < last else (),
                editing=(i == last),
                model=original.model,
                provider_id=original.provider_id,
            )
        self._commit(conversation, nodes)
        logger.info(f"Branched {len(path)} nodes from {node_id}")
        return new_ids

    def rename(self, conversation_id: str, title: str) -> None:
        conversation = self.cell.current
        if conversation is None or conversation.id != conversation_id:
            logger.debug(f"rename: conversation {conversation_id} is not current")
            return
        title = (title or "").strip()
        if not title or title == conversation.title:
            return
        self.cell.publish(conversation.with_title(title))

    # ------------------------------------------------------------------
    # Selection freeze
    # ------------------------------------------------------------------

    def freeze(self, node_id: str) -> None:
        if self.get(node_id) is not None:
            self._frozen.add(node_id)

    def unfreeze(self, node_id: str) -> None:
        self._frozen.discard(node_id)
