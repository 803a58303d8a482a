"""
Force relaxation step for the conversation layout.

`step` is a pure function: it takes the current bodies, the parent -> child
links and the set of pinned ids, and returns a new mapping of bodies. Nothing
is mutated in place, which keeps it testable without any UI.

Forces (applied in this order, d3-force style):
- link: springs pull parent/child pairs toward LINK_DISTANCE
- charge: every pair repels, up to CHARGE_DISTANCE_MAX
- center: the free nodes' centroid drifts toward the origin
- collision: overlapping radii push apart

Pinned bodies take part in every force as fixed anchors but are never moved.
"""

import math
from dataclasses import dataclass, replace
from typing import AbstractSet, Dict, Iterable, Mapping, Tuple

from flowchat.layout import constants as C


@dataclass(frozen=True)
class Body:
    """Simulation state of one node."""
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    radius: float = C.NODE_WIDTH / 2 + C.COLLISION_PADDING


@dataclass(frozen=True)
class ForceParams:
    link_distance: float = C.LINK_DISTANCE
    link_strength: float = C.LINK_STRENGTH
    charge_strength: float = C.CHARGE_STRENGTH
    charge_distance_max: float = C.CHARGE_DISTANCE_MAX
    charge_distance_min: float = C.CHARGE_DISTANCE_MIN
    center_x: float = 0.0
    center_y: float = 0.0
    center_strength: float = C.CENTER_STRENGTH
    collision_strength: float = C.COLLISION_STRENGTH
    alpha_decay: float = C.ALPHA_DECAY
    alpha_min: float = C.ALPHA_MIN
    velocity_decay: float = C.VELOCITY_DECAY


def decay_alpha(alpha: float, params: ForceParams) -> float:
    """Cool the simulation one tick toward zero."""
    return alpha + (0.0 - alpha) * params.alpha_decay


def _jiggle(a: int, b: int) -> Tuple[float, float]:
    # Deterministic nudge for coincident points
    return ((a % 7 + 1) * 1e-6, (b % 5 + 1) * 1e-6)


def step(bodies: Mapping[str, Body],
         links: Iterable[Tuple[str, str]],
         pinned_ids: AbstractSet[str],
         alpha: float,
         params: ForceParams = ForceParams()) -> Dict[str, Body]:
    """Advance the simulation by one tick at temperature `alpha`."""
    ids = list(bodies)
    px = {i: bodies[i].x for i in ids}
    py = {i: bodies[i].y for i in ids}
    vx = {i: bodies[i].vx for i in ids}
    vy = {i: bodies[i].vy for i in ids}

    # --- link ---
    valid_links = [(s, t) for s, t in links if s in bodies and t in bodies and s != t]
    degree = {i: 0 for i in ids}
    for s, t in valid_links:
        degree[s] += 1
        degree[t] += 1
    for index, (s, t) in enumerate(valid_links):
        dx = px[t] + vx[t] - px[s] - vx[s]
        dy = py[t] + vy[t] - py[s] - vy[s]
        if dx == 0 and dy == 0:
            dx, dy = _jiggle(index, index + 1)
        dist = math.hypot(dx, dy)
        k = (dist - params.link_distance) / dist * alpha * params.link_strength
        dx *= k
        dy *= k
        bias = degree[s] / (degree[s] + degree[t])
        vx[t] -= dx * bias
        vy[t] -= dy * bias
        vx[s] += dx * (1 - bias)
        vy[s] += dy * (1 - bias)

    # --- charge ---
    max2 = params.charge_distance_max ** 2
    min2 = params.charge_distance_min ** 2
    for a in range(len(ids)):
        i = ids[a]
        for b in range(a + 1, len(ids)):
            j = ids[b]
            dx = px[j] - px[i]
            dy = py[j] - py[i]
            d2 = dx * dx + dy * dy
            if d2 >= max2:
                continue
            if d2 == 0:
                dx, dy = _jiggle(a, b)
                d2 = dx * dx + dy * dy
            if d2 < min2:
                d2 = math.sqrt(min2 * d2)
            w = params.charge_strength * alpha / d2
            vx[i] += dx * w
            vy[i] += dy * w
            vx[j] -= dx * w
            vy[j] -= dy * w

    # --- center ---
    free = [i for i in ids if i not in pinned_ids]
    if free:
        mean_x = sum(px[i] for i in free) / len(free)
        mean_y = sum(py[i] for i in free) / len(free)
        shift_x = (mean_x - params.center_x) * params.center_strength * alpha
        shift_y = (mean_y - params.center_y) * params.center_strength * alpha
        for i in free:
            px[i] -= shift_x
            py[i] -= shift_y

    # --- collision ---
    for a in range(len(ids)):
        i = ids[a]
        ri = bodies[i].radius
        for b in range(a + 1, len(ids)):
            j = ids[b]
            rj = bodies[j].radius
            r = ri + rj
            dx = px[i] + vx[i] - px[j] - vx[j]
            dy = py[i] + vy[i] - py[j] - vy[j]
            d2 = dx * dx + dy * dy
            if d2 >= r * r:
                continue
            if d2 == 0:
                dx, dy = _jiggle(a, b)
                d2 = dx * dx + dy * dy
            dist = math.sqrt(d2)
            k = (r - dist) / dist * params.collision_strength
            dx *= k
            dy *= k
            share = (rj * rj) / (ri * ri + rj * rj)
            vx[i] += dx * share
            vy[i] += dy * share
            vx[j] -= dx * (1 - share)
            vy[j] -= dy * (1 - share)

    # --- integrate ---
    result: Dict[str, Body] = {}
    damping = 1 - params.velocity_decay
    for i in ids:
        body = bodies[i]
        if i in pinned_ids:
            result[i] = replace(body, vx=0.0, vy=0.0)
            continue
        nvx = vx[i] * damping
        nvy = vy[i] * damping
        result[i] = replace(body, x=px[i] + nvx, y=py[i] + nvy, vx=nvx, vy=nvy)
    return result
