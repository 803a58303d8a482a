"""
Staggered subtree deletion.

A deletion request walks PENDING -> ANIMATING(depth) -> REMOVED. Each depth
level is marked as animating `depth * stagger` seconds after the request and
removed `duration` seconds after its mark, so deeper levels fade out one after
another like a chain reaction.

Timers go through a Scheduler so tests can advance virtual time instead of
sleeping:

    clock = VirtualScheduler()
    cascade = CascadeScheduler(engine.remove_nodes, clock)
    clock.advance(1.0)
"""

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from flowchat.graph import collect_subtree, group_by_depth
from flowchat.models import ChatNode

logger = logging.getLogger(__name__)

STAGGER_SECONDS = 0.15
ANIMATION_SECONDS = 0.3


@runtime_checkable
class Scheduler(Protocol):
    """Minimal timer interface used by the cascade."""

    def now(self) -> float:
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        ...


class VirtualScheduler:
    """Deterministic scheduler whose clock only moves on `advance`."""

    def __init__(self):
        self._now = 0.0
        self._queue: List = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        heapq.heappush(self._queue, (self._now + max(0.0, delay), next(self._seq), callback))

    @property
    def pending(self) -> int:
        return len(self._queue)

    def advance(self, seconds: float) -> None:
        """Run every callback due within the next `seconds`, in time order."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, callback = heapq.heappop(self._queue)
            self._now = when
            callback()
        self._now = target


class AsyncioScheduler:
    """Scheduler backed by the running asyncio loop (NiceGUI's loop in the app)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self._get_loop().time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        self._get_loop().call_later(delay, callback)


class CascadePhase(Enum):
    PENDING = "pending"
    ANIMATING = "animating"
    REMOVED = "removed"


@dataclass
class CascadeRequest:
    """One accepted deletion and its progress."""
    root_id: str
    depths: Dict[str, int]
    conversation_id: Optional[str] = None
    phase: CascadePhase = CascadePhase.PENDING
    current_depth: int = -1
    levels: Dict[int, List[str]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.levels:
            self.levels = group_by_depth(self.depths)

    @property
    def max_depth(self) -> int:
        return max(self.levels) if self.levels else 0


class CascadeScheduler:
    """
    Runs deletion requests against a removal callback.

    `remove_nodes(ids, conversation_id)` is called once per depth level with
    the ids of that level and the conversation the request was made in; the
    mutation engine's `remove_nodes` is the intended target. A request that
    touches nodes already being removed is rejected.
    """

    def __init__(self, remove_nodes: Callable[[Iterable[str], Optional[str]], None], scheduler: Scheduler,
                 stagger: float = STAGGER_SECONDS, duration: float = ANIMATION_SECONDS,
                 on_change: Optional[Callable[[], None]] = None):
        self._remove_nodes = remove_nodes
        self._scheduler = scheduler
        self.stagger = stagger
        self.duration = duration
        self._on_change = on_change
        self._requests: List[CascadeRequest] = []
        self._animating: Dict[str, int] = {}

    @property
    def animating(self) -> Dict[str, int]:
        """{node_id: depth} for nodes currently fading out."""
        return dict(self._animating)

    @property
    def active_requests(self) -> List[CascadeRequest]:
        return list(self._requests)

    def is_pending(self, node_id: str) -> bool:
        return any(node_id in req.depths for req in self._requests)

    def request(self, nodes: Mapping[str, ChatNode], node_id: str,
                conversation_id: Optional[str] = None) -> bool:
        """Start deleting `node_id` and its descendants. Returns False if rejected."""
        if node_id not in nodes:
            logger.debug(f"Ignoring delete of missing node {node_id}")
            return False
        depths = collect_subtree(nodes, node_id)
        if any(self.is_pending(nid) for nid in depths):
            logger.warning(f"Rejecting delete of {node_id}: overlaps a cascade in progress")
            return False

        req = CascadeRequest(root_id=node_id, depths=depths, conversation_id=conversation_id)
        self._requests.append(req)
        logger.info(f"Cascade delete of {node_id}: {len(depths)} nodes over {req.max_depth + 1} levels")

        for depth in sorted(req.levels):
            start = depth * self.stagger
            self._scheduler.call_later(start, partial(self._mark, req, depth))
            self._scheduler.call_later(start + self.duration, partial(self._remove, req, depth))
        return True

    def _mark(self, req: CascadeRequest, depth: int) -> None:
        req.phase = CascadePhase.ANIMATING
        req.current_depth = depth
        for nid in req.levels[depth]:
            self._animating[nid] = depth
        self._notify()

    def _remove(self, req: CascadeRequest, depth: int) -> None:
        self._remove_nodes(req.levels[depth], req.conversation_id)
        if depth == req.max_depth:
            req.phase = CascadePhase.REMOVED
            for nid in req.depths:
                self._animating.pop(nid, None)
            self._requests.remove(req)
            logger.debug(f"Cascade of {req.root_id} complete")
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()
