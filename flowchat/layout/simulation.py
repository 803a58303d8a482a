"""
Force layout driver.

LayoutSimulation owns the bodies fed to `forces.step` and writes settled
positions back through the mutation engine. It is driven externally: the app
calls `tick()` from a ui.timer, tests call `run_until_settled()`.

Restart rules:
- only a change of the structure signature (ids + child lists) restarts
- content edits and position write-backs never restart
- nothing restarts if every node is pinned
"""

import logging
import math
import time
from dataclasses import replace
from typing import Callable, Dict, Optional, Set, Tuple

from flowchat.graph import build_links, structure_signature
from flowchat.layout import constants as C
from flowchat.layout.forces import Body, ForceParams, decay_alpha, step
from flowchat.layout.placement import collision_radius
from flowchat.models import Conversation

logger = logging.getLogger(__name__)


class LayoutSimulation:
    """Runs force relaxation for the conversation held by the engine's cell."""

    def __init__(self, engine, params: ForceParams = ForceParams(),
                 clock: Callable[[], float] = time.monotonic,
                 write_interval: float = C.WRITE_INTERVAL_SECONDS,
                 epsilon: float = C.POSITION_EPSILON):
        self.engine = engine
        self.params = params
        self._clock = clock
        self._write_interval = write_interval
        self._epsilon = epsilon

        self._bodies: Dict[str, Body] = {}
        self._links = []
        self._signature: Optional[str] = None
        self._alpha = 0.0
        self._running = False
        self._last_write: Optional[float] = None
        self.ticks = 0

        self._unsubscribe = engine.cell.subscribe(self.sync)
        if engine.cell.current is not None:
            self.sync(engine.cell.current)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def alpha(self) -> float:
        return self._alpha

    def positions(self) -> Dict[str, Tuple[float, float]]:
        """Current simulated positions, including unflushed ones."""
        return {nid: (b.x, b.y) for nid, b in self._bodies.items()}

    def close(self) -> None:
        self.stop()
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Snapshot tracking
    # ------------------------------------------------------------------

    def _pinned_ids(self, conversation: Conversation) -> Set[str]:
        pinned = {n.id for n in conversation.nodes.values() if n.pinned}
        return pinned | (set(self.engine.frozen_ids) & set(conversation.nodes))

    def _has_free_node(self, conversation: Conversation) -> bool:
        return bool(set(conversation.nodes) - self._pinned_ids(conversation))

    def sync(self, conversation: Optional[Conversation]) -> None:
        """Cell listener: rebuild bodies on structural change only."""
        if conversation is None:
            self._bodies = {}
            self._links = []
            self._signature = None
            self._running = False
            return

        signature = structure_signature(conversation.nodes)
        if signature == self._signature:
            self._refresh_pinned(conversation)
            return

        self._signature = signature
        bodies = {}
        for node in conversation.nodes.values():
            x = node.x if math.isfinite(node.x) else 0.0
            y = node.y if math.isfinite(node.y) else 0.0
            previous = self._bodies.get(node.id)
            vx, vy = (previous.vx, previous.vy) if previous else (0.0, 0.0)
            bodies[node.id] = Body(x=x, y=y, vx=vx, vy=vy, radius=collision_radius(node))
        self._bodies = bodies
        self._links = build_links(conversation.nodes)

        if self._has_free_node(conversation):
            logger.debug(f"Structure changed, restarting layout for {len(bodies)} nodes")
            self._alpha = C.ALPHA_START
            self._running = True
        else:
            self._running = False

    def _refresh_pinned(self, conversation: Conversation) -> None:
        for nid in self._pinned_ids(conversation):
            node = conversation.nodes[nid]
            body = self._bodies.get(nid)
            if body is not None and (body.x, body.y) != (node.x, node.y):
                self._bodies[nid] = replace(body, x=node.x, y=node.y, vx=0.0, vy=0.0)

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """Advance one step. Returns whether the simulation is still running."""
        if not self._running:
            return False
        conversation = self.engine.cell.current
        if conversation is None:
            self._running = False
            return False

        self._refresh_pinned(conversation)
        pinned = self._pinned_ids(conversation)
        self._bodies = step(self._bodies, self._links, pinned, self._alpha, self.params)
        self._alpha = decay_alpha(self._alpha, self.params)
        self.ticks += 1

        if self._alpha < self.params.alpha_min:
            self._running = False
            self._flush()
            logger.debug(f"Layout settled after {self.ticks} ticks")
            return False

        now = self._clock()
        if self._last_write is None or now - self._last_write >= self._write_interval:
            self._flush()
        return True

    def _flush(self) -> None:
        conversation = self.engine.cell.current
        self._last_write = self._clock()
        if conversation is None:
            return
        positions = {}
        for nid, body in self._bodies.items():
            node = conversation.nodes.get(nid)
            if node is None:
                continue
            if abs(body.x - node.x) > self._epsilon or abs(body.y - node.y) > self._epsilon:
                positions[nid] = (body.x, body.y)
        if positions:
            self.engine.apply_positions(positions)

    def stop(self) -> None:
        """Halt relaxation and write back whatever moved."""
        if self._running:
            self._running = False
            self._flush()

    def reheat(self, alpha: float = C.REHEAT_ALPHA) -> None:
        """Resume relaxation at temperature `alpha` without a structure change."""
        conversation = self.engine.cell.current
        if conversation is None or not self._has_free_node(conversation):
            return
        self._alpha = max(self._alpha, alpha)
        self._running = True

    def run_until_settled(self, max_ticks: int = 1000) -> int:
        """Tick until alpha falls below the threshold. Returns ticks taken."""
        taken = 0
        while self._running and taken < max_ticks:
            self.tick()
            taken += 1
        return taken
