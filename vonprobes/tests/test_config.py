"""Tests for YAML config loading, inheritance and CLI overrides."""

import argparse
from pathlib import Path

import pytest

from vonprobes.run import _deep_merge, apply_overrides, load_config
from vonprobes.src.state import SimulationState

CONFIG_DIR = Path(__file__).parent.parent / "config"


class TestDeepMerge:
    """Test recursive dict merging."""

    def test_simple_override(self):
        result = _deep_merge({"a": 1, "b": 2}, {"b": 3})
        assert result == {"a": 1, "b": 3}

    def test_nested_merge(self):
        base = {"a": {"x": 1, "y": 2}, "b": 3}
        result = _deep_merge(base, {"a": {"y": 99}})
        assert result == {"a": {"x": 1, "y": 99}, "b": 3}

    def test_deep_nested_merge(self):
        base = {"a": {"b": {"c": 1, "d": 2}}}
        result = _deep_merge(base, {"a": {"b": {"c": 99}}})
        assert result["a"]["b"]["c"] == 99
        assert result["a"]["b"]["d"] == 2

    def test_list_replaced_not_merged(self):
        result = _deep_merge({"range": [190, 260]}, {"range": [200, 210]})
        assert result["range"] == [200, 210]

    def test_original_not_mutated(self):
        base = {"a": {"x": 1}}
        _deep_merge(base, {"a": {"y": 2}})
        assert "y" not in base["a"]

    def test_empty_override(self):
        assert _deep_merge({"a": 1, "b": 2}, {}) == {"a": 1, "b": 2}


class TestLoadConfig:
    """Test YAML loading with inheritance."""

    def test_load_default_config(self):
        config = load_config(CONFIG_DIR / "default.yaml")
        for section in ("simulation", "world", "resources", "probes", "master", "metrics"):
            assert section in config

    def test_default_config_values(self):
        config = load_config(CONFIG_DIR / "default.yaml")
        assert config["simulation"]["seed"] is None
        assert config["simulation"]["fixed_dt"] == 0.02
        assert config["simulation"]["max_steps_per_frame"] == 5
        assert config["world"]["width"] == 24000
        assert config["resources"]["cell_size"] == 700
        assert config["probes"]["radar_range"] == 1000
        assert config["probes"]["replicate_cost"] == 100
        assert config["probes"]["child_start_resources"] == 12
        assert config["master"]["trigger_depletion"] == 0.90
        assert config["master"]["charge_time"] == 5.5

    def test_small_field_inherits_default(self):
        config = load_config(CONFIG_DIR / "experiments" / "small_field.yaml")
        assert "inherits" not in config
        assert config["world"]["width"] == 6000
        assert config["resources"]["common_count"] == 160
        # Untouched keys come from default.yaml
        assert config["resources"]["cell_size"] == 700
        assert config["probes"]["radar_range"] == 1000
        assert config["master"]["rally_radius"] == 260

    def test_swarm_config(self):
        config = load_config(CONFIG_DIR / "experiments" / "swarm.yaml")
        assert config["probes"]["initial_ai"] == 5000
        assert config["metrics"]["extract_every"] == 100
        assert config["world"]["width"] == 24000

    def test_all_experiment_configs_build_a_state(self):
        """Every experiment config should load and produce a usable state."""
        for yaml_file in (CONFIG_DIR / "experiments").glob("*.yaml"):
            config = load_config(yaml_file)
            state = SimulationState.from_config(config)
            assert state.fixed_dt > 0, f"{yaml_file.name} has no timestep"
            assert state.pool.grid.cols > 0

    def test_inherits_from_sibling_directory(self, tmp_path):
        (tmp_path / "base.yaml").write_text("simulation:\n  ticks: 10\n  seed: 1\n")
        (tmp_path / "experiments").mkdir()
        child = tmp_path / "experiments" / "child.yaml"
        child.write_text("inherits: base\nsimulation:\n  ticks: 99\n")
        config = load_config(child)
        assert config == {"simulation": {"ticks": 99, "seed": 1}}


class TestOverrides:
    def _args(self, **kwargs):
        defaults = {"ticks": None, "seed": None, "ai": None}
        defaults.update(kwargs)
        return argparse.Namespace(**defaults)

    @pytest.fixture
    def config(self):
        return load_config(CONFIG_DIR / "default.yaml")

    def test_no_overrides(self, config):
        before = {k: dict(v) for k, v in config.items() if isinstance(v, dict)}
        apply_overrides(config, self._args())
        assert config["simulation"] == before["simulation"]

    def test_ticks_seed_ai(self, config):
        apply_overrides(config, self._args(ticks=500, seed=0, ai=3))
        assert config["simulation"]["ticks"] == 500
        assert config["simulation"]["seed"] == 0
        assert config["probes"]["initial_ai"] == 3

    def test_seeded_states_are_reproducible(self, config):
        apply_overrides(config, self._args(seed=123))
        a = SimulationState.from_config(config)
        b = SimulationState.from_config(config)
        assert a.rng.random() == b.rng.random()
