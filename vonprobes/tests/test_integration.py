"""End-to-end integration tests: full depletion/warp cycles and the live loop."""

import asyncio
import json
import math

import pytest

from vonprobes.analysis.analyze import load_metrics, system_summary
from vonprobes.src.engine import Engine
from vonprobes.src.live_server import LiveServer
from vonprobes.src.master import Phase
from vonprobes.src.replay import replay


@pytest.fixture
def integration_config():
    """Small, fast config for integration testing."""
    return {
        "simulation": {
            "seed": 42,
            "ticks": 300,
            "fixed_dt": 0.02,
            "max_steps_per_frame": 5,
            "max_frame_dt": 0.25,
            "damping_base": 0.35,
            "snapshot_every": 100,
            "snapshot_probe_limit": 50,
            "frame_delay_ms": 0,
        },
        "world": {"width": 3000, "height": 3000},
        "resources": {
            "common_count": 40,
            "rich_count": 4,
            "cell_size": 700,
            "base_radius": 8,
            "common": {"amount_min": 18, "amount_max": 110, "radius_factor": 0.52, "cluster_prob": 0.35},
            "rich": {"amount_min": 140, "amount_max": 420, "radius_factor": 0.62, "cluster_prob": 0.8},
            "clusters": {
                "count_min": 3, "count_max": 5,
                "spread_min": 100, "spread_max": 300,
                "weight_min": 0.6, "weight_max": 1.6,
            },
        },
        "probes": {
            "initial_ai": 20,
            "radius": 10,
            "touch_pad": 6,
            "radar_range": 1000,
            "radar_cooldown_min": 0.85,
            "radar_cooldown_max": 1.55,
            "wander_min": 0.6,
            "wander_max": 2.4,
            "replicate_cost": 100,
            "replicate_margin": 1.08,
            "replicate_cooldown_min": 1.8,
            "replicate_cooldown_max": 3.4,
            "child_start_resources": 12,
            "hard_cap": 500,
            "genome": {"max_speed": [190, 260], "accel": [360, 520], "harvest_rate": [16, 26]},
            "player_genome": {"max_speed": 260, "accel": 520, "harvest_rate": 22},
            "mutation": {"max_speed": [0.97, 1.03], "accel": [0.96, 1.04], "harvest_rate": [0.95, 1.06]},
            "genome_limits": {"max_speed": [140, 320], "accel": [260, 700], "harvest_rate": [8, 40]},
        },
        "master": {
            "trigger_depletion": 0.9,
            "rally_radius": 260,
            "rally_fraction": 0.65,
            "rally_relaxed_fraction": 0.45,
            "rally_timeout": 22,
            "sacrifice_fraction": 0.1,
            "charge_time": 5.5,
            "warp_radius_min": 40,
            "warp_radius_max": 560,
            "warp_speed_min": 10,
            "warp_speed_max": 70,
        },
        "metrics": {"extract_every": 10},
    }


def _strip_field(engine):
    pool = engine.state.pool
    for idx in list(pool.active):
        pool.take(idx, float("inf"))


class FakeLiveServer:
    """Stands in for LiveServer: single-steps while paused and records broadcasts."""

    def __init__(self, commands=None, paused=False):
        self.sent = []
        self.paused = paused
        self.step_requested = False
        self.frame_delay_ms = 0
        self._pending = list(commands or [])

    async def process_commands(self):
        pending, self._pending = self._pending, []
        return pending

    async def handle_pause_loop(self):
        self.step_requested = True
        return []

    async def broadcast(self, data):
        self.sent.append(data)


# ── Full cycle ──────────────────────────────────────────────────


class TestWarpCycle:
    """Depletion -> rally -> build -> charge -> warp, through Engine.step()."""

    def _run_until_warp(self, engine, limit=6000):
        phases = []
        self.consumed = 0
        for _ in range(limit):
            engine.step()
            master = engine.state.master
            if master.phase is Phase.CHARGE:
                self.consumed = master.sacrificed
            if not phases or phases[-1] is not master.phase:
                phases.append(master.phase)
            if engine.state.pool.system_index == 2:
                break
        return phases

    def test_cycle_completes(self, integration_config):
        engine = Engine(integration_config)
        engine.setup()
        _strip_field(engine)
        phases = self._run_until_warp(engine)

        state = engine.state
        assert state.pool.system_index == 2
        assert phases[:3] == [Phase.RALLY, Phase.BUILD, Phase.CHARGE]
        assert phases[-1] is Phase.NORMAL
        # floor(20 * 0.10) autonomous probes were consumed by the build
        assert self.consumed == 2
        assert state.population == 19
        assert state.player in state.probes
        assert state.focus is state.player

    def test_new_system_is_full(self, integration_config):
        engine = Engine(integration_config)
        engine.setup()
        _strip_field(engine)
        self._run_until_warp(engine)
        pool = engine.state.pool
        assert pool.initial_total > 0
        assert pool.remaining_total == pytest.approx(pool.initial_total)
        assert len(pool.active) == len(pool.resources)

    def test_survivors_regroup_at_center(self, integration_config):
        engine = Engine(integration_config)
        engine.setup()
        _strip_field(engine)
        self._run_until_warp(engine)
        state = engine.state
        center = state.world.center
        for p in state.probes:
            assert state.world.distance(p.x, p.y, *center) <= 560 + 1e-6
            assert not p.sacrificing

    def test_warp_clears_sacrifice_counters(self, integration_config):
        engine = Engine(integration_config)
        engine.setup()
        _strip_field(engine)
        self._run_until_warp(engine)
        assert engine.state.master.sacrificed == 0
        assert engine.state.master.to_sacrifice == 0

    def test_player_never_sacrificed(self, integration_config):
        engine = Engine(integration_config)
        engine.setup()
        _strip_field(engine)
        player = engine.state.player
        for _ in range(6000):
            engine.step()
            assert not player.sacrificing
            if engine.state.pool.system_index == 2:
                break


class TestHarvestDrivenCycle:
    """The swarm exhausts its field by harvesting alone, then warps."""

    @pytest.fixture
    def engine(self, integration_config):
        integration_config["resources"]["common_count"] = 20
        integration_config["resources"]["rich_count"] = 2
        engine = Engine(integration_config)
        engine.setup()
        return engine

    def _assert_pool_consistent(self, pool):
        assert pool.remaining_total == pytest.approx(pool.sum_amounts(), abs=1e-6)
        in_cells = sorted(idx for cell in pool.grid.cells for idx in cell)
        assert in_cells == sorted(pool.active)

    def test_depletion_rally_and_warp(self, engine):
        state = engine.state
        pool = state.pool
        trigger = state.master_settings.trigger_depletion
        rally_tick = None
        rally_population = None
        consumed = 0
        last_remaining = pool.remaining_total

        for _ in range(30000):
            engine.step()
            phase = state.master.phase
            if pool.system_index == 2:
                break

            assert pool.remaining_total <= last_remaining + 1e-9
            last_remaining = pool.remaining_total
            self._assert_pool_consistent(pool)

            if rally_tick is None:
                if pool.depletion < trigger:
                    assert phase is Phase.NORMAL
                else:
                    # Crossed the threshold this tick: the rally starts now.
                    assert phase is Phase.RALLY
                    rally_tick = state.tick
                    rally_population = state.population
            if phase is Phase.CHARGE:
                consumed = state.master.sacrificed

        assert rally_tick is not None
        assert pool.system_index == 2
        assert state.master.phase is Phase.NORMAL
        # Everyone but the player is a candidate; nobody replicates after NORMAL.
        assert consumed == math.floor((rally_population - 1) * 0.1)
        assert state.population == rally_population - consumed
        self._assert_pool_consistent(pool)
        assert pool.remaining_total == pytest.approx(pool.initial_total)


# ── Recorded runs ───────────────────────────────────────────────


class TestRecordedRun:
    @pytest.mark.asyncio
    async def test_run_completes(self, integration_config, tmp_path):
        engine = Engine(integration_config, tmp_path)
        engine.setup()
        await engine.run()
        assert engine.tick == 300

    @pytest.mark.asyncio
    async def test_snapshots_saved(self, integration_config, tmp_path):
        engine = Engine(integration_config, tmp_path)
        engine.setup()
        await engine.run()
        ticks_dir = tmp_path / "logs" / "ticks"
        ticks = sorted(int(f.stem) for f in ticks_dir.glob("*.json"))
        assert ticks == [0, 100, 200, 300]
        final = json.loads((ticks_dir / "000300.json").read_text())
        assert final["tick"] == 300
        assert len(final["probes"]) <= 50

    @pytest.mark.asyncio
    async def test_metrics_feed_analysis(self, integration_config, tmp_path):
        engine = Engine(integration_config, tmp_path)
        engine.setup()
        await engine.run()
        metrics = load_metrics(tmp_path)
        assert len(metrics) == 30
        summary = system_summary(metrics)
        assert list(summary) == [1]
        assert summary[1]["last_tick"] == 300

    @pytest.mark.asyncio
    async def test_replay_reads_recording(self, integration_config, tmp_path, capsys):
        engine = Engine(integration_config, tmp_path)
        engine.setup()
        await engine.run()
        replay(tmp_path)
        out = capsys.readouterr().out
        assert "Tick       0" in out
        assert "Tick     300" in out
        assert "PLAYER" in out


# ── Live loop ───────────────────────────────────────────────────


class TestLiveLoop:
    @pytest.mark.asyncio
    async def test_paused_loop_single_steps(self, integration_config):
        integration_config["simulation"]["ticks"] = 3
        live = FakeLiveServer(paused=True)
        engine = Engine(integration_config, live_server=live)
        engine.setup()
        await engine.run()
        assert engine.tick == 3
        ticks = [m for m in live.sent if m["type"] == "tick"]
        assert [m["tick"] for m in ticks] == [1, 2, 3]
        assert live.sent[-1]["type"] == "complete"
        assert live.sent[-1]["population"] == engine.state.population

    @pytest.mark.asyncio
    async def test_input_commands_reach_player(self, integration_config):
        integration_config["simulation"]["ticks"] = 1
        live = FakeLiveServer(
            commands=[{"action": "thrust", "x": 1, "y": 0, "boost": True}],
            paused=True,
        )
        engine = Engine(integration_config, live_server=live)
        engine.setup()
        await engine.run()
        controls = engine.state.controls
        assert (controls.ax, controls.ay, controls.boost) == (1.0, 0.0, True)

    @pytest.mark.asyncio
    async def test_real_time_loop(self, integration_config):
        integration_config["simulation"]["ticks"] = 5
        live = FakeLiveServer()
        live.frame_delay_ms = 5
        engine = Engine(integration_config, live_server=live)
        engine.setup()
        await asyncio.wait_for(engine.run(), timeout=10)
        assert engine.tick >= 5
        assert live.sent[-1]["type"] == "complete"


class TestLiveServerCommands:
    @pytest.mark.asyncio
    async def test_control_and_input_are_separated(self):
        server = LiveServer()
        await server.submit({"action": "pause"})
        await server.submit({"action": "thrust", "x": 1, "y": 0})
        await server.submit({"action": "speed", "delay_ms": 40})
        inputs = await server.process_commands()
        assert inputs == [{"action": "thrust", "x": 1, "y": 0}]
        assert server.paused is True
        assert server.frame_delay_ms == 40

    @pytest.mark.asyncio
    async def test_step_while_paused(self):
        server = LiveServer()
        server.paused = True
        await server.submit({"action": "focus"})
        await server.submit({"action": "step"})
        inputs = await server.handle_pause_loop()
        assert inputs == [{"action": "focus"}]
        assert server.step_requested is True

    @pytest.mark.asyncio
    async def test_step_while_running_is_ignored(self):
        server = LiveServer()
        await server.submit({"action": "step"})
        await server.process_commands()
        assert server.step_requested is False

        await server.submit({"action": "pause"})
        await server.process_commands()
        await server.submit({"action": "resume"})
        # Must block for the resume rather than return on a leftover step.
        assert await asyncio.wait_for(server.handle_pause_loop(), timeout=2) == []
        assert server.step_requested is False
        assert server.paused is False

    @pytest.mark.asyncio
    async def test_pause_discards_pending_step(self):
        server = LiveServer()
        server.paused = True
        server.step_requested = True
        await server.submit({"action": "resume"})
        await server.submit({"action": "pause"})
        await server.process_commands()
        assert server.paused is True
        assert server.step_requested is False

    @pytest.mark.asyncio
    async def test_resume_ends_pause(self):
        server = LiveServer()
        server.paused = True
        await server.submit({"action": "resume"})
        assert await server.handle_pause_loop() == []
        assert server.paused is False

    @pytest.mark.asyncio
    async def test_stop_cancels(self):
        server = LiveServer()
        await server.submit({"action": "stop"})
        with pytest.raises(asyncio.CancelledError):
            await server.process_commands()

    @pytest.mark.asyncio
    async def test_wait_times_out(self):
        server = LiveServer()
        assert await server.wait_for_command(timeout=0.01) is None

    def test_runs_api(self, tmp_path):
        run = tmp_path / "run_20260101_000000"
        (run / "logs" / "ticks").mkdir(parents=True)
        (run / "logs" / "ticks" / "000000.json").write_text(json.dumps({"tick": 0}))
        (run / "logs" / "ticks" / "000500.json").write_text(json.dumps({"tick": 500}))
        (run / "config.yaml").write_text("simulation:\n  ticks: 500\nprobes:\n  initial_ai: 3\n")
        (tmp_path / "scratch").mkdir()

        server = LiveServer(runs_dir=tmp_path)
        runs = json.loads(server._api_list_runs().body)
        assert [r["name"] for r in runs] == [run.name]
        assert runs[0]["snapshots"] == 2
        assert runs[0]["last_tick"] == 500
        assert runs[0]["initial_ai"] == 3

        tick = server._api_get_tick(f"/api/runs/{run.name}/tick/500")
        assert json.loads(tick.body) == {"tick": 500}
        assert server._api_get_tick(f"/api/runs/{run.name}/tick/7").status_code == 404
        config = server._api_get_config(f"/api/runs/{run.name}/config")
        assert json.loads(config.body)["simulation"]["ticks"] == 500
