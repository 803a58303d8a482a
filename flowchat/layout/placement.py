"""
Deterministic seed placement for brand-new nodes.

Runs the instant a node is created, before any simulation tick, so a new
node never appears on top of its parent.
"""

import bisect
from typing import Mapping, Optional, Tuple

from flowchat.models import ChatNode
from flowchat.layout.constants import (
    BASE_NODE_HEIGHT,
    HEIGHT_BANDS,
    HEIGHT_STEP,
    VERTICAL_GAP,
    HORIZONTAL_SPACING,
    NODE_WIDTH,
    BAND_TOLERANCE,
    COLLISION_PADDING,
)


def estimate_height(content: str) -> float:
    """
    Estimate a node's rendered height from its text length.

    Short content gets BASE_NODE_HEIGHT; every length bracket passed adds
    another HEIGHT_STEP.
    """
    brackets_passed = bisect.bisect_right(HEIGHT_BANDS, len(content or ""))
    return BASE_NODE_HEIGHT + brackets_passed * HEIGHT_STEP


def collision_radius(node: ChatNode) -> float:
    """Approximate on-screen radius used by the collision force."""
    return max(NODE_WIDTH, estimate_height(node.content)) / 2 + COLLISION_PADDING


def seed_child_position(nodes: Mapping[str, ChatNode], parent: ChatNode,
                        exclude_id: Optional[str] = None) -> Tuple[float, float]:
    """
    Position for a new child of `parent`.

    The first child goes directly below the parent; later siblings go one
    HORIZONTAL_SPACING right of the current rightmost sibling, on the same band.
    """
    band_y = parent.y + estimate_height(parent.content) + VERTICAL_GAP
    siblings = [
        nodes[cid] for cid in parent.child_ids
        if cid in nodes and cid != exclude_id
    ]
    if not siblings:
        return (parent.x, band_y)
    rightmost = max(siblings, key=lambda n: n.x)
    return (rightmost.x + HORIZONTAL_SPACING, band_y)


def branch_origin(nodes: Mapping[str, ChatNode], node: ChatNode) -> float:
    """x coordinate one spacing right of the rightmost node in `node`'s band."""
    in_band = [n for n in nodes.values() if abs(n.y - node.y) <= BAND_TOLERANCE]
    rightmost_x = max((n.x for n in in_band), default=node.x)
    return rightmost_x + HORIZONTAL_SPACING


def node_at(nodes: Mapping[str, ChatNode], wx: float, wy: float) -> Optional[ChatNode]:
    """Topmost node whose estimated box contains world point (wx, wy)."""
    hit = None
    for node in nodes.values():
        if node.x <= wx <= node.x + NODE_WIDTH and node.y <= wy <= node.y + estimate_height(node.content):
            hit = node
    return hit
