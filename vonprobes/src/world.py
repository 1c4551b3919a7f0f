"""Toroidal world geometry: wrapping, shortest deltas, swap-removal."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")


def wrap(value: float, size: float) -> float:
    """Map a position back into [0, size).

    Positions move at most one world-size per tick, so a single add or
    subtract is enough; true modulo is only used for larger jumps.
    """
    if value < 0:
        value += size
    elif value >= size:
        value -= size
    if value < 0 or value >= size:
        value = value % size
        # -1e-17 % size rounds up to size
        if value >= size:
            value = 0.0
    return value


def wrapped_delta(d: float, size: float) -> float:
    """Signed shortest-path difference in (-size/2, size/2]."""
    half = size * 0.5
    if d > half:
        d -= size
    elif d <= -half:
        d += size
    if d > half or d <= -half:
        d = (d + half) % size - half
        if d <= -half:
            d += size
    return d


def ramp(value: float, span: float, lo: float, hi: float) -> float:
    """Linear ramp from lo at 0 to hi at span, clamped at both ends."""
    if value <= 0:
        return lo
    if value >= span:
        return hi
    return lo + (hi - lo) * (value / span)


def swap_remove(items: list[T], pos: int, relink: Callable[[T, int], None]) -> T:
    """Remove items[pos] in O(1) by moving the last element into its slot.

    ``relink(moved, new_pos)`` is called for the element that moved so its
    owner can update the back-reference it keeps into ``items``.
    """
    removed = items[pos]
    last = items.pop()
    if pos < len(items):
        items[pos] = last
        relink(last, pos)
    return removed


@dataclass(frozen=True)
class World:
    """Fixed-size rectangle with periodic boundaries on both axes."""

    width: float
    height: float

    @classmethod
    def from_config(cls, config: dict) -> World:
        return cls(width=float(config["width"]), height=float(config["height"]))

    @property
    def center(self) -> tuple[float, float]:
        return self.width * 0.5, self.height * 0.5

    def wrap(self, x: float, y: float) -> tuple[float, float]:
        return wrap(x, self.width), wrap(y, self.height)

    def delta(self, ax: float, ay: float, bx: float, by: float) -> tuple[float, float]:
        """Shortest (dx, dy) pointing from a to b."""
        return wrapped_delta(bx - ax, self.width), wrapped_delta(by - ay, self.height)

    def distance_sq(self, ax: float, ay: float, bx: float, by: float) -> float:
        dx = wrapped_delta(bx - ax, self.width)
        dy = wrapped_delta(by - ay, self.height)
        return dx * dx + dy * dy

    def distance(self, ax: float, ay: float, bx: float, by: float) -> float:
        return math.sqrt(self.distance_sq(ax, ay, bx, by))

    def random_point(self, rng: random.Random) -> tuple[float, float]:
        return rng.uniform(0, self.width) % self.width, rng.uniform(0, self.height) % self.height

    def to_dict(self) -> dict:
        return {"width": self.width, "height": self.height}


def wrapped_distance(a: tuple[float, float], b: tuple[float, float], world: World) -> float:
    """Euclidean norm of the per-axis wrapped delta between two points."""
    return world.distance(a[0], a[1], b[0], b[1])
