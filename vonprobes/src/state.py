"""Simulation state aggregate shared by every per-tick subsystem."""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from .master import MasterAI, MasterSettings
from .probe import Genome, Probe, ProbeParams, spawn_probe
from .resources import ResourcePool
from .world import World


@dataclass
class PlayerInput:
    """Latest thrust intent for the player probe, consumed every tick."""
    ax: float = 0.0
    ay: float = 0.0
    boost: bool = False


@dataclass
class SimulationState:
    """Everything one tick reads and writes. Presentation only reads it."""

    world: World
    pool: ResourcePool
    params: ProbeParams
    master_settings: MasterSettings
    rng: random.Random
    fixed_dt: float
    damping: float
    master: MasterAI = field(default_factory=MasterAI)
    probes: list[Probe] = field(default_factory=list)
    player: Probe | None = None
    focus: Probe | None = None
    controls: PlayerInput = field(default_factory=PlayerInput)
    tick: int = 0
    _last_probe_id: int = 0

    @classmethod
    def from_config(cls, config: dict, rng: random.Random | None = None) -> SimulationState:
        """Build an empty state (no system, no probes) from a full config dict."""
        sim = config["simulation"]
        if rng is None:
            rng = random.Random(sim.get("seed"))
        world = World.from_config(config["world"])
        params = ProbeParams.from_config(config["probes"])
        fixed_dt = sim.get("fixed_dt", 1 / 50)
        return cls(
            world=world,
            pool=ResourcePool(config["resources"], world, params.radar_range, rng),
            params=params,
            master_settings=MasterSettings.from_config(config.get("master", {})),
            rng=rng,
            fixed_dt=fixed_dt,
            damping=sim.get("damping_base", 0.35) ** fixed_dt,
        )

    def next_probe_id(self) -> int:
        self._last_probe_id += 1
        return self._last_probe_id

    def spawn_player(self) -> Probe:
        cx, cy = self.world.center
        player = spawn_probe(self, cx, cy, self.params.player_genome, is_player=True)
        self.probes.append(player)
        self.player = player
        self.focus = player
        return player

    def spawn_ai(self, count: int) -> list[Probe]:
        """Add autonomous probes at random positions with random genomes."""
        spawned = []
        for _ in range(count):
            x, y = self.world.random_point(self.rng)
            genome = Genome.random(self.rng, self.params.genome_ranges)
            probe = spawn_probe(self, x, y, genome)
            self.probes.append(probe)
            spawned.append(probe)
        return spawned

    @property
    def population(self) -> int:
        return len(self.probes)

    @property
    def ai_population(self) -> int:
        return sum(1 for p in self.probes if not p.is_player and not p.dead)

    @property
    def remaining_percent(self) -> float:
        return self.pool.remaining_fraction * 100.0
