"""
Edge routing between a parent bubble and its child.

Node positions are top-left corners. An edge leaves the parent's bottom centre,
enters the child's top centre, and bends through two control points on the
horizontal midline, so it reads as an S-curve when the nodes are offset.
"""

import math
from dataclasses import dataclass
from typing import Tuple

from flowchat.models import ChatNode
from flowchat.layout.constants import NODE_WIDTH, BASE_NODE_HEIGHT

# Clearance between the node border and the edge endpoints
EDGE_OFFSET = 10.0
# Coordinates closer than this are treated as shared
GEOMETRY_EPSILON = 1e-6

Point = Tuple[float, float]


@dataclass(frozen=True)
class EdgeRoute:
    """A cubic Bezier edge plus the arrow head angle (radians) at `end`."""
    start: Point
    control1: Point
    control2: Point
    end: Point
    angle: float

    @property
    def is_straight(self) -> bool:
        return self.control1 == self.start and self.control2 == self.end


def _finite(value: float, fallback: float = 0.0) -> float:
    return value if math.isfinite(value) else fallback


def route_edge(parent: ChatNode, child: ChatNode) -> EdgeRoute:
    """
    Route the edge parent -> child.

    When both centres share x the edge is a straight vertical segment. When
    the endpoints share y the midline would collapse onto them, so the
    controls move to the horizontal midpoint instead. Output is always finite.
    """
    sx = _finite(parent.x) + NODE_WIDTH / 2
    sy = _finite(parent.y) + BASE_NODE_HEIGHT + EDGE_OFFSET
    ex = _finite(child.x) + NODE_WIDTH / 2
    ey = _finite(child.y) - EDGE_OFFSET
    start, end = (sx, sy), (ex, ey)

    if abs(ex - sx) < GEOMETRY_EPSILON:
        angle = math.pi / 2 if ey >= sy else -math.pi / 2
        return EdgeRoute(start, start, end, end, angle)

    if abs(ey - sy) < GEOMETRY_EPSILON:
        mid_x = (sx + ex) / 2
        angle = 0.0 if ex > sx else math.pi
        return EdgeRoute(start, (mid_x, sy), (mid_x, ey), end, angle)

    mid_y = (sy + ey) / 2
    # Tangent at t=1 runs from control2 straight down/up into the endpoint
    angle = math.atan2(ey - mid_y, 0.0)
    return EdgeRoute(start, (sx, mid_y), (ex, mid_y), end, angle)


def curveness(route: EdgeRoute) -> float:
    """
    Approximate the route as an ECharts edge curveness in [-0.5, 0.5].

    ECharts bends a quadratic curve by curveness * length; a wide horizontal
    offset relative to the edge length bends more.
    """
    if route.is_straight:
        return 0.0
    dx = route.end[0] - route.start[0]
    dy = route.end[1] - route.start[1]
    length = math.hypot(dx, dy)
    if length < GEOMETRY_EPSILON:
        return 0.0
    value = 0.5 * (dx / length) * (1 if dy >= 0 else -1)
    return max(-0.5, min(0.5, value * 0.6))
