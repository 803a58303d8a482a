"""
Viewport and canvas gesture handling.

world = (screen - pan) / zoom

The Viewport only holds pan/zoom and converts coordinates. CanvasController
is the gesture state machine the app feeds raw pointer/wheel events into: it
decides whether a press starts a pan, whether a wheel zooms, and whether a
double-click creates a root.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

ZOOM_MIN = 0.1
ZOOM_MAX = 3.0
ZOOM_IN_RATIO = 1.1
ZOOM_OUT_RATIO = 0.9
PAN_LIMIT = 1_000_000.0

# What the pointer is over
TARGET_CANVAS = "canvas"
TARGET_NODE = "node"
TARGET_CONTROL = "control"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class Viewport:
    """Pan offset (screen px) and zoom factor."""

    def __init__(self, pan_x: float = 0.0, pan_y: float = 0.0, zoom: float = 1.0):
        self.pan_x = 0.0
        self.pan_y = 0.0
        self.zoom = 1.0
        self.set_pan(pan_x, pan_y)
        self.set_zoom(zoom)

    @property
    def pan(self) -> Tuple[float, float]:
        return (self.pan_x, self.pan_y)

    def screen_to_world(self, sx: float, sy: float) -> Tuple[float, float]:
        return ((sx - self.pan_x) / self.zoom, (sy - self.pan_y) / self.zoom)

    def world_to_screen(self, wx: float, wy: float) -> Tuple[float, float]:
        return (wx * self.zoom + self.pan_x, wy * self.zoom + self.pan_y)

    def set_zoom(self, zoom: float) -> float:
        if not math.isfinite(zoom):
            logger.debug(f"Ignoring non-finite zoom {zoom}")
            return self.zoom
        self.zoom = _clamp(zoom, ZOOM_MIN, ZOOM_MAX)
        return self.zoom

    def zoom_by(self, ratio: float) -> float:
        """Scale zoom by `ratio` about the viewport origin, clamped to range."""
        return self.set_zoom(self.zoom * ratio)

    def set_pan(self, x: float, y: float) -> None:
        if not (math.isfinite(x) and math.isfinite(y)):
            logger.debug(f"Ignoring non-finite pan ({x}, {y})")
            return
        self.pan_x = _clamp(x, -PAN_LIMIT, PAN_LIMIT)
        self.pan_y = _clamp(y, -PAN_LIMIT, PAN_LIMIT)

    def pan_by(self, dx: float, dy: float) -> None:
        self.set_pan(self.pan_x + dx, self.pan_y + dy)


@dataclass
class GestureState:
    """Snapshot of the pointer gesture in progress."""
    panning: bool = False
    last_x: float = 0
    last_y: float = 0
    moved: bool = False
    dragging_node_id: Optional[str] = None
    # World-space offset from the pointer to the dragged node's origin
    grab_dx: float = 0
    grab_dy: float = 0


class CanvasController:
    """Translates raw canvas events into viewport changes, node drags and root creation."""

    def __init__(self, viewport: Viewport,
                 on_create_root: Optional[Callable[[float, float], None]] = None,
                 on_move_node: Optional[Callable[[str, float, float], None]] = None):
        self.viewport = viewport
        self._on_create_root = on_create_root
        self._on_move_node = on_move_node
        self._state = GestureState()

    @property
    def state(self) -> GestureState:
        return self._state

    @property
    def is_panning(self) -> bool:
        return self._state.panning

    def pointer_down(self, x: float, y: float, target: str = TARGET_CANVAS,
                     node_id: Optional[str] = None,
                     node_position: Optional[Tuple[float, float]] = None) -> bool:
        """
        Start a gesture.

        On empty canvas this starts a pan. On a node, when its id and position
        are given, it starts dragging that node. Controls never start anything.
        """
        if target == TARGET_CANVAS:
            self._state = GestureState(panning=True, last_x=x, last_y=y)
            return True
        if target == TARGET_NODE and node_id is not None and node_position is not None:
            wx, wy = self.viewport.screen_to_world(x, y)
            self._state = GestureState(
                last_x=x, last_y=y, dragging_node_id=node_id,
                grab_dx=node_position[0] - wx, grab_dy=node_position[1] - wy,
            )
            return True
        return False

    def pointer_move(self, x: float, y: float) -> None:
        state = self._state
        dx = x - state.last_x
        dy = y - state.last_y
        if state.dragging_node_id is not None:
            if dx or dy:
                state.moved = True
                wx, wy = self.viewport.screen_to_world(x, y)
                if self._on_move_node is not None:
                    self._on_move_node(state.dragging_node_id, wx + state.grab_dx, wy + state.grab_dy)
        elif state.panning:
            self.viewport.pan_by(dx, dy)
            if dx or dy:
                state.moved = True
        else:
            return
        state.last_x = x
        state.last_y = y

    def pointer_up(self) -> bool:
        """End the gesture. Returns whether the pointer actually dragged."""
        moved = self._state.moved
        self._state = GestureState()
        return moved

    def wheel(self, delta_y: float, target: str = TARGET_CANVAS) -> bool:
        """
        Zoom in for negative delta, out for positive.

        Returns False when the event is over an interactive control, which
        means the app must let it bubble (scroll the dropdown, etc).
        """
        if target == TARGET_CONTROL:
            return False
        if delta_y == 0:
            return True
        self.viewport.zoom_by(ZOOM_OUT_RATIO if delta_y > 0 else ZOOM_IN_RATIO)
        return True

    def double_click(self, x: float, y: float, target: str = TARGET_CANVAS) -> Optional[Tuple[float, float]]:
        """Create a root at the world point under (x, y) on empty canvas."""
        if target != TARGET_CANVAS or self._state.panning:
            return None
        world = self.viewport.screen_to_world(x, y)
        if self._on_create_root is not None:
            self._on_create_root(*world)
        return world
