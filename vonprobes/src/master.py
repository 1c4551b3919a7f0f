"""Master AI: the global rally / build / charge / warp orchestration cycle."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .selection import select_k_closest_in_place

if TYPE_CHECKING:
    from .state import SimulationState

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    NORMAL = "NORMAL"
    RALLY = "RALLY"
    BUILD = "BUILD"
    CHARGE = "CHARGE"
    WARP = "WARP"


@dataclass(frozen=True)
class MasterSettings:
    """Thresholds and timings read from the ``master`` config section."""
    trigger_depletion: float = 0.90
    rally_radius: float = 260.0
    rally_fraction: float = 0.65
    rally_relaxed_fraction: float = 0.45
    rally_timeout: float = 22.0
    sacrifice_fraction: float = 0.10
    charge_time: float = 5.5
    warp_radius: tuple[float, float] = (40.0, 560.0)
    warp_speed: tuple[float, float] = (10.0, 70.0)

    @classmethod
    def from_config(cls, config: dict) -> MasterSettings:
        return cls(
            trigger_depletion=config.get("trigger_depletion", 0.90),
            rally_radius=config.get("rally_radius", 260.0),
            rally_fraction=config.get("rally_fraction", 0.65),
            rally_relaxed_fraction=config.get("rally_relaxed_fraction", 0.45),
            rally_timeout=config.get("rally_timeout", 22.0),
            sacrifice_fraction=config.get("sacrifice_fraction", 0.10),
            charge_time=config.get("charge_time", 5.5),
            warp_radius=(config.get("warp_radius_min", 40.0), config.get("warp_radius_max", 560.0)),
            warp_speed=(config.get("warp_speed_min", 10.0), config.get("warp_speed_max", 70.0)),
        )


@dataclass
class WarpStructure:
    """The machine built at the rally point. Spin and pulse only animate it."""
    x: float
    y: float
    mode: Phase = Phase.BUILD
    spin: float = 0.0
    pulse: float = 0.0

    def update(self, dt: float) -> None:
        if dt <= 0:
            return
        self.spin += dt * (1.6 if self.mode is Phase.CHARGE else 0.8)
        self.pulse += dt * 2.2

    def to_dict(self) -> dict:
        return {
            "x": round(self.x, 2),
            "y": round(self.y, 2),
            "mode": self.mode.value,
            "spin": round(self.spin, 4),
            "pulse": round(self.pulse, 4),
        }


@dataclass
class MasterAI:
    """Orchestration state. Only the functions in this module mutate it."""
    phase: Phase = Phase.NORMAL
    elapsed: float = 0.0
    waypoint: tuple[float, float] | None = None
    sacrificed: int = 0
    to_sacrifice: int = 0
    structure: WarpStructure | None = None

    @property
    def active(self) -> bool:
        """True while a non-NORMAL phase is steering probes to a waypoint."""
        return self.phase is not Phase.NORMAL and self.waypoint is not None

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "elapsed": round(self.elapsed, 4),
            "waypoint": list(self.waypoint) if self.waypoint else None,
            "sacrificed": self.sacrificed,
            "to_sacrifice": self.to_sacrifice,
            "structure": self.structure.to_dict() if self.structure else None,
        }


# ── Transition function ─────────────────────────────────────────


def master_update(state: SimulationState, dt: float) -> None:
    """Evaluate the phase transitions once per fixed tick."""
    if dt <= 0:
        return

    master = state.master
    settings = state.master_settings

    if master.structure is not None:
        master.structure.update(dt)

    if master.phase is Phase.NORMAL:
        pool = state.pool
        if (
            pool.initial_total > 0
            and pool.depletion >= settings.trigger_depletion
            and len(state.probes) >= 1
        ):
            start_rally(state)
        return

    master.elapsed += dt

    if master.phase is Phase.RALLY:
        alive = len(state.probes)
        arrived = count_arrived(state, settings.rally_radius ** 2)
        need = max(1, math.floor(alive * settings.rally_fraction))
        relaxed = (
            master.elapsed >= settings.rally_timeout
            and arrived >= max(1, math.floor(alive * settings.rally_relaxed_fraction))
        )
        if arrived >= need or relaxed:
            logger.info(
                "Rally complete: %d/%d arrived after %.1fs%s",
                arrived, alive, master.elapsed, " (relaxed)" if arrived < need else "",
            )
            start_build(state)
    elif master.phase is Phase.BUILD:
        if master.sacrificed >= master.to_sacrifice:
            start_charge(state)
    elif master.phase is Phase.CHARGE:
        if master.elapsed >= settings.charge_time:
            perform_warp(state)


def start_rally(state: SimulationState) -> None:
    master = state.master
    master.phase = Phase.RALLY
    master.elapsed = 0.0
    master.sacrificed = 0
    master.to_sacrifice = 0
    master.structure = None
    master.waypoint = state.world.random_point(state.rng)

    for probe in state.probes:
        if not probe.dead:
            probe.waypoint = master.waypoint

    logger.info(
        "System %d depleted to %.1f%%: rally at (%.0f, %.0f) for %d probes",
        state.pool.system_index, state.pool.remaining_fraction * 100,
        master.waypoint[0], master.waypoint[1], len(state.probes),
    )


def start_build(state: SimulationState) -> None:
    master = state.master
    master.phase = Phase.BUILD
    master.elapsed = 0.0
    master.sacrificed = 0

    if master.waypoint is None:
        master.waypoint = state.world.center
    master.structure = WarpStructure(x=master.waypoint[0], y=master.waypoint[1])

    candidates = [
        p for p in state.probes if not p.is_player and not p.dead and not p.sacrificing
    ]
    count = math.floor(len(candidates) * state.master_settings.sacrifice_fraction)
    master.to_sacrifice = count
    logger.info("Building warp structure: %d of %d probes to sacrifice", count, len(candidates))

    if count <= 0:
        start_charge(state)
        return

    select_k_closest_in_place(candidates, count, master.waypoint, state.world)
    for probe in candidates[:count]:
        probe.begin_sacrifice(master.waypoint, state.rng)


def start_charge(state: SimulationState) -> None:
    master = state.master
    master.phase = Phase.CHARGE
    master.elapsed = 0.0
    if master.structure is not None:
        master.structure.mode = Phase.CHARGE
    logger.info("Warp structure charging (%d sacrificed)", master.sacrificed)


def perform_warp(state: SimulationState) -> None:
    """Regenerate the field and relocate every survivor near its centre."""
    master = state.master
    settings = state.master_settings
    master.phase = Phase.WARP
    master.elapsed = 0.0

    state.pool.spawn_system()
    center = state.world.center
    for probe in state.probes:
        probe.reset_after_warp(state, center, settings.warp_radius, settings.warp_speed)

    logger.info("Warp consumed %d probes", master.sacrificed)
    master.waypoint = None
    master.structure = None
    master.sacrificed = 0
    master.to_sacrifice = 0
    master.phase = Phase.NORMAL
    master.elapsed = 0.0
    state.focus = state.player

    logger.info(
        "Warped to system %d with %d probes", state.pool.system_index, len(state.probes),
    )


def count_arrived(state: SimulationState, radius_sq: float) -> int:
    """Living probes within the rally radius of the current waypoint."""
    waypoint = state.master.waypoint
    if waypoint is None:
        return 0
    wx, wy = waypoint
    distance_sq = state.world.distance_sq
    return sum(
        1 for p in state.probes
        if not p.dead and distance_sq(wx, wy, p.x, p.y) <= radius_sq
    )


def status_line(state: SimulationState) -> str | None:
    """Human-readable description of the current phase, None while NORMAL."""
    master = state.master
    if master.phase is Phase.RALLY:
        player = state.player
        d = 0.0
        if master.waypoint and player is not None:
            d = state.world.distance(player.x, player.y, *master.waypoint)
        return f"Master AI: RALLY at waypoint (distance: {d:.0f})"
    if master.phase is Phase.BUILD:
        return (
            f"Master AI: BUILDING warp machine "
            f"(sacrificed: {master.sacrificed}/{master.to_sacrifice})"
        )
    if master.phase is Phase.CHARGE:
        remaining = max(0.0, state.master_settings.charge_time - master.elapsed)
        return f"Master AI: WARP CHARGING ({remaining:.1f}s)"
    if master.phase is Phase.WARP:
        return "Master AI: WARPING..."
    return None
