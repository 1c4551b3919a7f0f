"""Shared test fixtures for the probe swarm simulation tests."""

from __future__ import annotations

import copy
import random
from pathlib import Path

import pytest
import yaml

from vonprobes.src.probe import Genome, Probe, spawn_probe
from vonprobes.src.resources import Resource, ResourceKind, ResourcePool
from vonprobes.src.state import SimulationState


# ── Config fixtures ─────────────────────────────────────────────


@pytest.fixture
def default_config():
    """Load the real default.yaml config."""
    config_path = Path(__file__).parent.parent / "config" / "default.yaml"
    with open(config_path) as f:
        return yaml.safe_load(f)


@pytest.fixture
def test_config(default_config):
    """Small config for fast tests: 4200x4200 world (6x6 grid), 6 AI probes."""
    cfg = copy.deepcopy(default_config)
    cfg["simulation"].update({
        "seed": 42,
        "ticks": 200,
        "snapshot_every": 50,
    })
    cfg["world"] = {"width": 4200, "height": 4200}
    cfg["resources"].update({
        "common_count": 60,
        "rich_count": 8,
    })
    cfg["probes"]["initial_ai"] = 6
    cfg["metrics"] = {"extract_every": 10}
    return cfg


@pytest.fixture
def empty_config(test_config):
    """Test config whose systems contain no resources."""
    cfg = copy.deepcopy(test_config)
    cfg["resources"]["common_count"] = 0
    cfg["resources"]["rich_count"] = 0
    cfg["probes"]["initial_ai"] = 0
    return cfg


# ── State fixtures ──────────────────────────────────────────────


@pytest.fixture
def state(empty_config):
    """A state with an empty resource system and no probes."""
    s = SimulationState.from_config(empty_config, rng=random.Random(7))
    s.pool.spawn_system()
    return s


@pytest.fixture
def seeded_state(test_config):
    """A state with a generated resource field, the player and 6 AI probes."""
    s = SimulationState.from_config(test_config, rng=random.Random(42))
    s.pool.spawn_system()
    s.spawn_player()
    s.spawn_ai(6)
    return s


# ── Helpers ─────────────────────────────────────────────────────


def add_resource(pool: ResourcePool, x: float, y: float, amount: float,
                 kind: ResourceKind = ResourceKind.COMMON, radius: float = 12.0) -> int:
    """Place a resource by hand into the current system; returns its index."""
    idx = len(pool.resources)
    pool.resources.append(Resource(
        id=idx, kind=kind, x=x, y=y, amount=amount, max_amount=amount, radius=radius,
    ))
    pool.activate(idx)
    pool.initial_total += amount
    pool.remaining_total += amount
    return idx


def add_probe(state: SimulationState, x: float, y: float, resources: float = 0.0,
              genome: Genome | None = None) -> Probe:
    """Add a still, autonomous probe with quiet timers at (x, y)."""
    probe = spawn_probe(state, x, y, genome or Genome(max_speed=220, accel=440, harvest_rate=20))
    probe.vx = probe.vy = 0.0
    probe.resources = resources
    state.probes.append(probe)
    return probe


def add_player(state: SimulationState, x: float, y: float) -> Probe:
    player = state.spawn_player()
    player.x, player.y = x, y
    player.vx = player.vy = 0.0
    return player
