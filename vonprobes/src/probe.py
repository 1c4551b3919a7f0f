"""Probe entities: genome, kinematics, behavior state machine, harvest, replication."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from .master import Phase
from .world import ramp

if TYPE_CHECKING:
    from .resources import Resource
    from .state import SimulationState

TWO_PI = 2 * math.pi

# Steering fractions of a probe's base acceleration.
WANDER_ACCEL = 0.33
CHASE_ACCEL = 0.78
WAYPOINT_ACCEL = 0.75
AUTOPILOT_ACCEL = 0.85
SACRIFICE_ACCEL = 1.1

# Easing: (distance over which thrust ramps up, thrust fraction at contact)
CHASE_EASE = (240.0, 0.2)
WAYPOINT_EASE = (420.0, 0.25)

HEADING_JITTER_CHANCE = 0.03
HEADING_JITTER = 0.7
SACRIFICE_SPEED = 1.15
SACRIFICE_TIMER = (0.7, 1.25)
PLAYER_BOOST = 1.55
TARGET_DROP_FACTOR = 3.2

GENOME_FIELDS = ("max_speed", "accel", "harvest_rate")


class ProbeMode(Enum):
    SACRIFICING = "sacrificing"
    PLAYER_CONTROLLED = "player"
    AI_AUTONOMOUS = "autonomous"


@dataclass(frozen=True)
class Genome:
    """Heritable parameters, copied with mutation on replication."""
    max_speed: float
    accel: float
    harvest_rate: float

    @classmethod
    def random(cls, rng: random.Random, ranges: dict) -> Genome:
        return cls(**{name: rng.uniform(*ranges[name]) for name in GENOME_FIELDS})

    def mutated(self, rng: random.Random, factors: dict, limits: dict) -> Genome:
        """Scale each field by its own random factor, then clamp."""
        values = {}
        for name in GENOME_FIELDS:
            lo, hi = limits[name]
            value = getattr(self, name) * rng.uniform(*factors[name])
            values[name] = min(max(value, lo), hi)
        return replace(self, **values)

    def to_dict(self) -> dict:
        return {name: round(getattr(self, name), 3) for name in GENOME_FIELDS}


@dataclass(frozen=True)
class ProbeParams:
    """Probe tuning read once from the ``probes`` config section."""
    initial_ai: int
    radius: float
    touch_pad: float
    radar_range: float
    radar_cooldown: tuple[float, float]
    wander: tuple[float, float]
    replicate_cost: float
    replicate_margin: float
    replicate_cooldown: tuple[float, float]
    child_start_resources: float
    hard_cap: int
    genome_ranges: dict
    player_genome: Genome
    mutation: dict
    genome_limits: dict

    @classmethod
    def from_config(cls, config: dict) -> ProbeParams:
        return cls(
            initial_ai=config.get("initial_ai", 0),
            radius=config.get("radius", 10),
            touch_pad=config.get("touch_pad", 6),
            radar_range=config["radar_range"],
            radar_cooldown=(config["radar_cooldown_min"], config["radar_cooldown_max"]),
            wander=(config["wander_min"], config["wander_max"]),
            replicate_cost=config["replicate_cost"],
            replicate_margin=config.get("replicate_margin", 1.0),
            replicate_cooldown=(config["replicate_cooldown_min"], config["replicate_cooldown_max"]),
            child_start_resources=config["child_start_resources"],
            hard_cap=config["hard_cap"],
            genome_ranges=config["genome"],
            player_genome=Genome(**config["player_genome"]),
            mutation=config["mutation"],
            genome_limits=config["genome_limits"],
        )

    @property
    def radar_range_sq(self) -> float:
        return self.radar_range * self.radar_range

    @property
    def reach(self) -> float:
        """Probe radius plus contact pad; add a resource's radius for touch range."""
        return self.radius + self.touch_pad


@dataclass(eq=False)
class Probe:
    """One self-replicating agent. ``target`` is a resource index, revalidated each use."""

    id: int
    x: float
    y: float
    genome: Genome
    is_player: bool = False
    vx: float = 0.0
    vy: float = 0.0
    heading: float = 0.0
    resources: float = 0.0
    target: int = -1
    radar_cooldown: float = 0.0
    wander_timer: float = 0.0
    replication_cooldown: float = 0.0
    waypoint: tuple[float, float] | None = None
    sacrificing: bool = False
    sacrifice_timer: float = 0.0
    dead: bool = False

    @property
    def mode(self) -> ProbeMode:
        if self.sacrificing:
            return ProbeMode.SACRIFICING
        if self.is_player:
            return ProbeMode.PLAYER_CONTROLLED
        return ProbeMode.AI_AUTONOMOUS

    # ── Per-tick phases ─────────────────────────────────────────

    def update(self, state: SimulationState, dt: float) -> None:
        """Run behavior for the current mode, then integrate, damp and wrap."""
        if self.dead or dt <= 0:
            return

        mode = self.mode
        if mode is ProbeMode.SACRIFICING:
            self._sacrifice_behavior(state, dt)
        elif mode is ProbeMode.PLAYER_CONTROLLED:
            self._player_control(state, dt)
        else:
            self._ai_control(state, dt)

        self.x += self.vx * dt
        self.y += self.vy * dt
        self.vx *= state.damping
        self.vy *= state.damping
        self.x, self.y = state.world.wrap(self.x, self.y)

    def harvest(self, state: SimulationState, dt: float) -> None:
        """Harvest the touched target, else the nearest touching resource."""
        pool = state.pool
        if self.dead or dt <= 0 or not pool.active:
            return

        reach = state.params.reach
        if self.target >= 0:
            r = pool.get(self.target)
            if r is None:
                self.target = -1
            else:
                touch = reach + r.radius
                if state.world.distance_sq(self.x, self.y, r.x, r.y) <= touch * touch:
                    self._harvest_from(state, self.target, dt)
                    return

        best = pool.nearest_touching(self.x, self.y, reach)
        if best >= 0:
            self._harvest_from(state, best, dt)

    def try_auto_replicate(self, state: SimulationState) -> Probe | None:
        """Autonomous replication once carried resources clear cost plus margin."""
        if self.dead or self.is_player or self.sacrificing:
            return None
        if state.master.phase is not Phase.NORMAL:
            return None
        if self.replication_cooldown > 0:
            return None
        params = state.params
        if len(state.probes) >= params.hard_cap:
            return None
        if self.resources < params.replicate_cost * params.replicate_margin:
            return None

        child = self.replicate(state)
        self.replication_cooldown = state.rng.uniform(*params.replicate_cooldown)
        return child

    def replicate(self, state: SimulationState) -> Probe | None:
        """Pay the fixed cost and spawn a mutated child nearby.

        Only allowed in NORMAL with enough carried resources and room under
        the population cap; otherwise returns None without charging.
        """
        params = state.params
        cost = params.replicate_cost
        if self.dead or state.master.phase is not Phase.NORMAL:
            return None
        if self.resources < cost or len(state.probes) >= params.hard_cap:
            return None

        rng = state.rng
        self.resources -= cost

        angle = rng.uniform(0, TWO_PI)
        offset = rng.uniform(22, 45)
        cx, cy = state.world.wrap(
            self.x + math.cos(angle) * offset,
            self.y + math.sin(angle) * offset,
        )
        child = spawn_probe(
            state, cx, cy, self.genome.mutated(rng, params.mutation, params.genome_limits),
        )
        child.resources = params.child_start_resources

        angle = rng.uniform(0, TWO_PI)
        speed = rng.uniform(30, 90)
        child.vx = math.cos(angle) * speed
        child.vy = math.sin(angle) * speed

        state.probes.append(child)
        return child

    # ── Master AI hooks ─────────────────────────────────────────

    def begin_sacrifice(self, waypoint: tuple[float, float], rng: random.Random) -> bool:
        if self.is_player or self.dead:
            return False
        self.sacrificing = True
        self.sacrifice_timer = rng.uniform(*SACRIFICE_TIMER)
        self.waypoint = waypoint
        self.target = -1
        return True

    def reset_after_warp(self, state: SimulationState, center: tuple[float, float],
                         radius: tuple[float, float], speed: tuple[float, float]) -> None:
        """Scatter around the new system's centre and clear transient behavior."""
        rng = state.rng
        angle = rng.uniform(0, TWO_PI)
        dist = rng.uniform(*radius)
        self.x, self.y = state.world.wrap(
            center[0] + math.cos(angle) * dist,
            center[1] + math.sin(angle) * dist,
        )
        angle = rng.uniform(0, TWO_PI)
        v = rng.uniform(*speed)
        self.vx = math.cos(angle) * v
        self.vy = math.sin(angle) * v

        self.target = -1
        self.waypoint = None
        if not self.is_player:
            self.radar_cooldown = rng.uniform(0.2, 1.1)
            self.wander_timer = rng.uniform(0.2, 0.9)
            self.heading = rng.uniform(0, TWO_PI)
        self.replication_cooldown = max(self.replication_cooldown, 0.5)

    # ── Behaviors ───────────────────────────────────────────────

    def _ai_control(self, state: SimulationState, dt: float) -> None:
        self.replication_cooldown = max(0.0, self.replication_cooldown - dt)

        master = state.master
        if master.active:
            self.waypoint = master.waypoint
            self._steer_to_waypoint(state, dt)
            return

        if self.target >= 0:
            r = state.pool.get(self.target)
            if r is not None:
                self._chase(state, dt, r)
                far = state.params.radar_range_sq * TARGET_DROP_FACTOR
                if state.world.distance_sq(self.x, self.y, r.x, r.y) > far:
                    self.target = -1
                return
            self.target = -1

        rng = state.rng
        params = state.params
        self.radar_cooldown -= dt
        self.wander_timer = max(0.0, self.wander_timer - dt)

        if self.radar_cooldown <= 0:
            found = state.pool.nearest_in_range(self.x, self.y, params.radar_range_sq)
            if found >= 0:
                self.target = found
                self.radar_cooldown = rng.uniform(*params.radar_cooldown)
                return
            # Miss: fly straight for a while, then ping again.
            self.heading = rng.uniform(0, TWO_PI)
            self.wander_timer = rng.uniform(*params.wander)
            self.radar_cooldown = self.wander_timer + rng.uniform(*params.radar_cooldown)

        if self.wander_timer <= 0 and rng.random() < HEADING_JITTER_CHANCE:
            self.heading += rng.uniform(-HEADING_JITTER, HEADING_JITTER)

        accel = self.genome.accel * WANDER_ACCEL
        self.vx += math.cos(self.heading) * accel * dt
        self.vy += math.sin(self.heading) * accel * dt
        self._clamp_speed(self.genome.max_speed)

    def _chase(self, state: SimulationState, dt: float, r: Resource) -> None:
        dx, dy = state.world.delta(self.x, self.y, r.x, r.y)
        d2 = dx * dx + dy * dy
        if d2 < 1e-6:
            return
        self._thrust_toward(dx, dy, d2, CHASE_ACCEL, CHASE_EASE, dt)
        self._clamp_speed(self.genome.max_speed)

    def _steer_to_waypoint(self, state: SimulationState, dt: float) -> None:
        if self.waypoint is None:
            return
        dx, dy = state.world.delta(self.x, self.y, *self.waypoint)
        d2 = dx * dx + dy * dy
        if d2 < 1:
            return
        self._thrust_toward(dx, dy, d2, WAYPOINT_ACCEL, WAYPOINT_EASE, dt)
        self._clamp_speed(self.genome.max_speed)

    def _player_control(self, state: SimulationState, dt: float) -> None:
        controls = state.controls
        ax, ay = controls.ax, controls.ay
        boost = PLAYER_BOOST if controls.boost else 1.0

        master = state.master
        if master.active and ax == 0 and ay == 0:
            # Light autopilot toward the rally point while idle.
            dx, dy = state.world.delta(self.x, self.y, *master.waypoint)
            d2 = dx * dx + dy * dy
            if d2 > 1e-6:
                self._thrust_toward(dx, dy, d2, AUTOPILOT_ACCEL, None, dt)

        if ax != 0 or ay != 0:
            mag = math.hypot(ax, ay)
            ux, uy = ax / mag, ay / mag
            accel = self.genome.accel * boost
            self.vx += ux * accel * dt
            self.vy += uy * accel * dt
            self.heading = math.atan2(uy, ux)

        self._clamp_speed(self.genome.max_speed * boost)

    def _sacrifice_behavior(self, state: SimulationState, dt: float) -> None:
        if self.waypoint is not None:
            dx, dy = state.world.delta(self.x, self.y, *self.waypoint)
            d2 = dx * dx + dy * dy
            if d2 > 1:
                self._thrust_toward(dx, dy, d2, SACRIFICE_ACCEL, None, dt)

        self._clamp_speed(self.genome.max_speed * SACRIFICE_SPEED)

        self.sacrifice_timer -= dt
        if self.sacrifice_timer <= 0:
            self.dead = True

    # ── Kinematics helpers ──────────────────────────────────────

    def _thrust_toward(self, dx: float, dy: float, d2: float, fraction: float,
                       ease: tuple[float, float] | None, dt: float) -> None:
        dist = math.sqrt(d2)
        ux, uy = dx / dist, dy / dist
        if ease is not None:
            span, floor = ease
            fraction *= ramp(dist, span, floor, 1.0)
        accel = self.genome.accel * fraction
        self.vx += ux * accel * dt
        self.vy += uy * accel * dt
        self.heading = math.atan2(uy, ux)

    def _clamp_speed(self, max_speed: float) -> None:
        v2 = self.vx * self.vx + self.vy * self.vy
        if v2 > max_speed * max_speed:
            scale = max_speed / math.sqrt(v2)
            self.vx *= scale
            self.vy *= scale

    def _harvest_from(self, state: SimulationState, idx: int, dt: float) -> None:
        pool = state.pool
        self.resources += pool.take(idx, self.genome.harvest_rate * dt)
        if not pool.resources[idx].active and self.target == idx:
            self.target = -1

    # ── Serialization ───────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "x": round(self.x, 2),
            "y": round(self.y, 2),
            "heading": round(self.heading, 4),
            "resources": round(self.resources, 3),
            "player": self.is_player,
            "mode": self.mode.value,
            "sacrificing": self.sacrificing,
            "dead": self.dead,
            "target": self.target,
            "genome": self.genome.to_dict(),
        }


def spawn_probe(state: SimulationState, x: float, y: float, genome: Genome,
                is_player: bool = False) -> Probe:
    """Create a probe with fresh behavior timers. Does not add it to the population."""
    rng = state.rng
    angle = rng.uniform(0, TWO_PI)
    return Probe(
        id=0 if is_player else state.next_probe_id(),
        x=x,
        y=y,
        genome=genome,
        is_player=is_player,
        vx=math.cos(angle) * 20,
        vy=math.sin(angle) * 20,
        heading=rng.uniform(0, TWO_PI),
        resources=0.0 if is_player else rng.uniform(0, 8),
        radar_cooldown=rng.uniform(0.2, 1.2),
        wander_timer=rng.uniform(0.2, 1.2),
    )
