"""
Tree queries over a conversation's node mapping.

All helpers take the flat `{id: ChatNode}` mapping and never mutate it. They
are tolerant of partially inconsistent data (dangling child ids, broken parent
chains) because they may run against a snapshot that a cascade is removing.
"""

import logging
from collections import deque
from typing import Dict, List, Mapping, Tuple

import networkx as nx

from flowchat.models import ChatNode

logger = logging.getLogger(__name__)


def path_to_root(nodes: Mapping[str, ChatNode], node_id: str) -> List[ChatNode]:
    """
    Return the root -> node path ending at `node_id`.

    Walks parent_id links for at most len(nodes) hops, so a corrupted cycle
    cannot loop forever. A missing start node yields an empty list.
    """
    path: List[ChatNode] = []
    current = nodes.get(node_id)
    hops = 0
    while current is not None and hops <= len(nodes):
        path.append(current)
        if current.parent_id is None:
            break
        current = nodes.get(current.parent_id)
        hops += 1
    path.reverse()
    return path


def collect_subtree(nodes: Mapping[str, ChatNode], node_id: str) -> Dict[str, int]:
    """
    Collect `node_id` and all transitive descendants with their relative depth.

    Depth 0 is the node itself. A child id that no longer exists is recorded
    as a leaf so it still gets stripped from its parent later on.
    """
    depths: Dict[str, int] = {}
    if node_id not in nodes:
        return depths
    queue = deque([(node_id, 0)])
    while queue:
        current_id, depth = queue.popleft()
        if current_id in depths:
            continue
        depths[current_id] = depth
        node = nodes.get(current_id)
        if node is None:
            logger.debug(f"Dangling child id {current_id} treated as leaf")
            continue
        for child_id in node.child_ids:
            if child_id not in depths:
                queue.append((child_id, depth + 1))
    return depths


def group_by_depth(depths: Mapping[str, int]) -> Dict[int, List[str]]:
    grouped: Dict[int, List[str]] = {}
    for nid, depth in depths.items():
        grouped.setdefault(depth, []).append(nid)
    return grouped


def structure_signature(nodes: Mapping[str, ChatNode]) -> str:
    """
    Stable signature of the tree shape: ids plus child lists.

    Positions and content are deliberately excluded; only a change here
    restarts the force layout.
    """
    return "|".join(sorted(f"{n.id}:{','.join(n.child_ids)}" for n in nodes.values()))


def build_links(nodes: Mapping[str, ChatNode]) -> List[Tuple[str, str]]:
    """(parent_id, child_id) pairs whose endpoints both exist."""
    links = []
    for node in nodes.values():
        for child_id in node.child_ids:
            if child_id in nodes:
                links.append((node.id, child_id))
    return links


def to_networkx(nodes: Mapping[str, ChatNode]) -> nx.DiGraph:
    """Build a directed parent -> child graph from parent_id references."""
    G = nx.DiGraph()
    for node in nodes.values():
        G.add_node(node.id, role=node.role, x=node.x, y=node.y)
    for node in nodes.values():
        if node.parent_id is not None and node.parent_id in nodes:
            G.add_edge(node.parent_id, node.id)
    return G


def find_invariant_violations(nodes: Mapping[str, ChatNode]) -> List[str]:
    """
    Check the structural invariants of a conversation.

    Returns a list of human-readable problems; empty means consistent:
    - every key matches its node's id
    - child_ids and parent_id agree in both directions
    - parent links form a forest (no cycles, at most one parent)
    """
    problems = []
    for key, node in nodes.items():
        if key != node.id:
            problems.append(f"key {key} holds node {node.id}")

    for node in nodes.values():
        for child_id in node.child_ids:
            child = nodes.get(child_id)
            if child is None:
                problems.append(f"{node.id} lists missing child {child_id}")
            elif child.parent_id != node.id:
                problems.append(f"{node.id} lists {child_id} whose parent is {child.parent_id}")
        if len(set(node.child_ids)) != len(node.child_ids):
            problems.append(f"{node.id} lists a child twice")
        if node.parent_id is not None:
            parent = nodes.get(node.parent_id)
            if parent is None:
                problems.append(f"{node.id} points at missing parent {node.parent_id}")
            elif node.id not in parent.child_ids:
                problems.append(f"{node.id} is not listed by its parent {node.parent_id}")

    if nodes and not nx.is_branching(to_networkx(nodes)):
        problems.append("parent links contain a cycle")
    return problems


def conversation_history(nodes: Mapping[str, ChatNode], node_id: str) -> List[Dict[str, str]]:
    """
    Messages along the root -> node path, in provider chat format.

    Empty messages (placeholders, unsent inputs) are skipped.
    """
    history = []
    for node in path_to_root(nodes, node_id):
        if not node.content.strip():
            continue
        history.append({"role": node.role, "content": node.content})
    return history
