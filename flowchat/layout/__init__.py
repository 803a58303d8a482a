"""
Layout engine for the conversation canvas.

This package provides:
- placement: deterministic seed positions for brand-new nodes
- forces: the pure force relaxation step
- LayoutSimulation: tick driver with throttled write-back
- edges: parent -> child edge routing

Usage:
    from flowchat.layout import LayoutSimulation, seed_child_position
"""

from flowchat.layout.constants import (
    NODE_WIDTH,
    BASE_NODE_HEIGHT,
    HORIZONTAL_SPACING,
    VERTICAL_GAP,
    BRANCH_ROW_HEIGHT,
    REHEAT_ALPHA,
)
from flowchat.layout.placement import (
    estimate_height,
    collision_radius,
    seed_child_position,
    branch_origin,
    node_at,
)
from flowchat.layout.forces import Body, ForceParams, step
from flowchat.layout.simulation import LayoutSimulation
from flowchat.layout.edges import EdgeRoute, route_edge, curveness

__all__ = [
    'LayoutSimulation',
    'Body',
    'ForceParams',
    'step',
    'EdgeRoute',
    'route_edge',
    'curveness',
    'estimate_height',
    'collision_radius',
    'seed_child_position',
    'branch_origin',
    'node_at',
    'NODE_WIDTH',
    'BASE_NODE_HEIGHT',
    'HORIZONTAL_SPACING',
    'VERTICAL_GAP',
    'BRANCH_ROW_HEIGHT',
    'REHEAT_ALPHA',
]
