"""Uniform spatial grid over the world, bucketing active resource indices."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from .world import World, swap_remove

if TYPE_CHECKING:
    from .resources import Resource


class SpatialGrid:
    """Cells hold resource indices; resources carry (cell, slot) back-references.

    Topology is static for the lifetime of a system, so the neighbour cell
    lists for the radar ring and the 3x3 harvest block are built once.
    """

    def __init__(self, world: World, cell_size: float, resources: list[Resource],
                 radar_range: float):
        if cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        self.world = world
        self.cell_size = float(cell_size)
        self.cols = math.ceil(world.width / self.cell_size)
        self.rows = math.ceil(world.height / self.cell_size)
        self.cells: list[list[int]] = [[] for _ in range(self.cols * self.rows)]
        self._resources = resources

        ring = math.ceil(radar_range / self.cell_size) + 1
        self.radar_neighbors = self._build_neighbors(ring)
        self.harvest_neighbors = self._build_neighbors(1)

    def cell_index(self, x: float, y: float) -> int:
        """Owning cell of an already-wrapped position."""
        cx = int(x // self.cell_size)
        cy = int(y // self.cell_size)
        if cx >= self.cols:
            cx = self.cols - 1
        elif cx < 0:
            cx = 0
        if cy >= self.rows:
            cy = self.rows - 1
        elif cy < 0:
            cy = 0
        return cx + cy * self.cols

    def insert(self, idx: int) -> None:
        r = self._resources[idx]
        ci = self.cell_index(r.x, r.y)
        cell = self.cells[ci]
        r.grid_cell = ci
        r.grid_slot = len(cell)
        cell.append(idx)

    def remove(self, idx: int) -> None:
        r = self._resources[idx]
        if r.grid_cell < 0 or r.grid_slot < 0:
            return
        swap_remove(self.cells[r.grid_cell], r.grid_slot, self._relink)
        r.grid_cell = -1
        r.grid_slot = -1

    def _relink(self, moved_idx: int, slot: int) -> None:
        self._resources[moved_idx].grid_slot = slot

    def _build_neighbors(self, ring: int) -> list[tuple[int, ...]]:
        # Small grids wrap onto themselves; keep each cell once.
        neighbors: list[tuple[int, ...]] = []
        for cy in range(self.rows):
            for cx in range(self.cols):
                seen: dict[int, None] = {}
                for oy in range(-ring, ring + 1):
                    ny = (cy + oy) % self.rows
                    for ox in range(-ring, ring + 1):
                        nx = (cx + ox) % self.cols
                        seen[nx + ny * self.cols] = None
                neighbors.append(tuple(seen))
        return neighbors
