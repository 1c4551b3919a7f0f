"""Resource pool: system spawning, activation bookkeeping, harvest accounting."""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from enum import IntEnum

from .grid import SpatialGrid
from .world import World, swap_remove, wrap, wrapped_delta

logger = logging.getLogger(__name__)

# Amounts at or below this are treated as fully depleted.
DEPLETED_EPSILON = 0.001


class ResourceKind(IntEnum):
    COMMON = 0
    RICH = 1


@dataclass
class Resource:
    """A stationary deposit. Kind, position and capacity never change."""
    id: int
    kind: ResourceKind
    x: float
    y: float
    amount: float
    max_amount: float
    radius: float
    active: bool = False
    active_slot: int = -1
    grid_cell: int = -1
    grid_slot: int = -1

    @property
    def depleted(self) -> bool:
        return self.amount <= DEPLETED_EPSILON

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.name.lower(),
            "x": round(self.x, 2),
            "y": round(self.y, 2),
            "amount": round(self.amount, 3),
            "max_amount": round(self.max_amount, 3),
            "radius": round(self.radius, 3),
            "active": self.active,
        }


@dataclass
class Cluster:
    """Gaussian placement centre for clustered resources."""
    x: float
    y: float
    spread: float
    weight: float


def pick_weighted_cluster(clusters: list[Cluster], rng: random.Random) -> Cluster | None:
    """Pick by cumulative weight. None when there is nothing to pick from."""
    total = sum(c.weight for c in clusters)
    if not clusters or total <= 0:
        return None
    r = rng.uniform(0, total)
    for cluster in clusters:
        r -= cluster.weight
        if r <= 0:
            return cluster
    return clusters[-1]


class ResourcePool:
    """Dense resource store plus a swap-compacted list of active indices.

    The pool and its grid jointly own resource identity: both hold plain
    indices into ``resources``. ``remaining_total`` is maintained
    incrementally and only recomputed by scanning at spawn time.
    """

    def __init__(self, config: dict, world: World, radar_range: float,
                 rng: random.Random | None = None):
        self.config = config
        self.world = world
        self.radar_range = float(radar_range)
        self.rng = rng or random.Random()
        self.resources: list[Resource] = []
        self.active: list[int] = []
        self.grid = SpatialGrid(world, config["cell_size"], self.resources, self.radar_range)
        self.initial_total = 0.0
        self.remaining_total = 0.0
        self.system_index = 0

    # ── System lifecycle ────────────────────────────────────────

    def spawn_system(self) -> None:
        """Discard the current field and generate a fresh one."""
        self.resources = []
        self.active = []
        self.initial_total = 0.0
        self.remaining_total = 0.0
        self.grid = SpatialGrid(
            self.world, self.config["cell_size"], self.resources, self.radar_range,
        )
        self.system_index += 1

        clusters = self._make_clusters()
        next_id = 0
        for kind, key in ((ResourceKind.COMMON, "common_count"), (ResourceKind.RICH, "rich_count")):
            for _ in range(self.config.get(key, 0)):
                resource = self._make_resource(next_id, kind, clusters)
                next_id += 1
                self.resources.append(resource)
                self.activate(len(self.resources) - 1)
                self.initial_total += resource.max_amount

        self.remaining_total = self.initial_total
        logger.info(
            "System %d spawned: %d resources, %.1f total",
            self.system_index, len(self.resources), self.initial_total,
        )

    def activate(self, idx: int) -> None:
        r = self.resources[idx]
        if r.active:
            return
        r.active = True
        r.active_slot = len(self.active)
        self.active.append(idx)
        self.grid.insert(idx)

    def deactivate(self, idx: int) -> None:
        r = self.resources[idx]
        if not r.active:
            return
        self.grid.remove(idx)
        swap_remove(self.active, r.active_slot, self._relink_active)
        r.active = False
        r.active_slot = -1

    # ── Queries ─────────────────────────────────────────────────

    def get(self, idx: int) -> Resource | None:
        """Revalidate a held index: None if stale or depleted."""
        if idx < 0 or idx >= len(self.resources):
            return None
        r = self.resources[idx]
        if r.depleted:
            return None
        return r

    @property
    def remaining_fraction(self) -> float:
        if self.initial_total <= 0:
            return 0.0
        return self.remaining_total / self.initial_total

    @property
    def depletion(self) -> float:
        if self.initial_total <= 0:
            return 0.0
        return 1.0 - self.remaining_fraction

    def nearest_in_range(self, x: float, y: float, range_sq: float) -> int:
        """Nearest active resource within range, scanning the radar ring."""
        if not self.active:
            return -1
        neighbors = self.grid.radar_neighbors[self.grid.cell_index(x, y)]
        return self._scan(neighbors, x, y, range_sq, 0.0)

    def nearest_touching(self, x: float, y: float, reach: float) -> int:
        """Nearest active resource whose radius + reach covers (x, y)."""
        if not self.active:
            return -1
        neighbors = self.grid.harvest_neighbors[self.grid.cell_index(x, y)]
        return self._scan(neighbors, x, y, None, reach)

    def sum_amounts(self) -> float:
        return math.fsum(r.amount for r in self.resources)

    # ── Mutation ────────────────────────────────────────────────

    def take(self, idx: int, amount: float) -> float:
        """Remove up to ``amount`` from a resource; returns what was taken."""
        r = self.get(idx)
        if r is None or amount <= 0:
            return 0.0
        taken = min(r.amount, amount)
        r.amount -= taken
        self.remaining_total = max(0.0, self.remaining_total - taken)
        if r.amount <= DEPLETED_EPSILON:
            # The sliver under epsilon leaves with the resource.
            self.remaining_total = max(0.0, self.remaining_total - r.amount)
            r.amount = 0.0
            self.deactivate(idx)
        return taken

    def to_dict(self, include_resources: bool = False) -> dict:
        data = {
            "system": self.system_index,
            "initial_total": round(self.initial_total, 3),
            "remaining_total": round(self.remaining_total, 3),
            "active": len(self.active),
            "count": len(self.resources),
        }
        if include_resources:
            data["resources"] = [self.resources[i].to_dict() for i in self.active]
        return data

    # ── Private ─────────────────────────────────────────────────

    def _relink_active(self, moved_idx: int, slot: int) -> None:
        self.resources[moved_idx].active_slot = slot

    def _scan(self, neighbors: tuple[int, ...], x: float, y: float,
              range_sq: float | None, reach: float) -> int:
        # Ties go to the first resource found in cell order.
        width, height = self.world.width, self.world.height
        resources = self.resources
        best = -1
        best_d2 = math.inf
        for ci in neighbors:
            for ridx in self.grid.cells[ci]:
                r = resources[ridx]
                if r.amount <= DEPLETED_EPSILON:
                    continue
                dx = wrapped_delta(r.x - x, width)
                dy = wrapped_delta(r.y - y, height)
                d2 = dx * dx + dy * dy
                if range_sq is None:
                    touch = reach + r.radius
                    limit = touch * touch
                else:
                    limit = range_sq
                if d2 <= limit and d2 < best_d2:
                    best_d2 = d2
                    best = ridx
        return best

    def _make_clusters(self) -> list[Cluster]:
        cfg = self.config.get("clusters", {})
        count = self.rng.randint(cfg.get("count_min", 24), cfg.get("count_max", 42))
        clusters = []
        for _ in range(count):
            x, y = self.world.random_point(self.rng)
            clusters.append(Cluster(
                x=x,
                y=y,
                spread=self.rng.uniform(cfg.get("spread_min", 220), cfg.get("spread_max", 780)),
                weight=self.rng.uniform(cfg.get("weight_min", 0.6), cfg.get("weight_max", 1.6)),
            ))
        return clusters

    def _make_resource(self, rid: int, kind: ResourceKind, clusters: list[Cluster]) -> Resource:
        kind_cfg = self.config["common" if kind is ResourceKind.COMMON else "rich"]

        cluster = None
        if self.rng.random() < kind_cfg.get("cluster_prob", 0.0):
            cluster = pick_weighted_cluster(clusters, self.rng)

        if cluster is None:
            x, y = self.world.random_point(self.rng)
        else:
            x = wrap(cluster.x + self.rng.gauss(0.0, 1.0) * cluster.spread, self.world.width)
            y = wrap(cluster.y + self.rng.gauss(0.0, 1.0) * cluster.spread, self.world.height)

        capacity = self.rng.uniform(kind_cfg["amount_min"], kind_cfg["amount_max"])
        return Resource(
            id=rid,
            kind=kind,
            x=x,
            y=y,
            amount=capacity,
            max_amount=capacity,
            radius=self.config.get("base_radius", 8) + math.sqrt(capacity) * kind_cfg["radius_factor"],
        )
