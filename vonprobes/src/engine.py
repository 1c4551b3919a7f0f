"""Fixed-step simulation driver: tick phases, accumulator, run loop, snapshot I/O."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import random
import time
from pathlib import Path

import yaml

from .master import Phase, master_update, status_line
from .metrics import extract_metrics
from .probe import Probe
from .state import SimulationState

logger = logging.getLogger(__name__)


class Engine:
    """Advances a SimulationState at a constant timestep, independent of frame rate."""

    def __init__(self, config: dict, data_dir: Path | None = None,
                 live_server=None, rng: random.Random | None = None):
        self.config = config
        self.data_dir = data_dir
        self.state = SimulationState.from_config(config, rng)
        sim = config["simulation"]
        self.max_steps_per_frame = sim.get("max_steps_per_frame", 5)
        self.max_frame_dt = sim.get("max_frame_dt", 0.25)
        self.accumulator = 0.0
        self.live_server = live_server
        self._recording = False

    @property
    def tick(self) -> int:
        return self.state.tick

    # ── Lifecycle ───────────────────────────────────────────────

    def setup(self) -> None:
        """Spawn system 1 and the starting population; create data dirs if recording."""
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            (self.data_dir / "world").mkdir(exist_ok=True)
            (self.data_dir / "logs" / "ticks").mkdir(parents=True, exist_ok=True)
            (self.data_dir / "analysis").mkdir(exist_ok=True)

            # Save resolved config for replay/analysis
            config_path = self.data_dir / "config.yaml"
            config_path.write_text(yaml.dump(self.config, default_flow_style=False))
            self._recording = True

        state = self.state
        state.pool.spawn_system()
        state.spawn_player()
        state.spawn_ai(state.params.initial_ai)
        logger.info("Spawned player and %d autonomous probes", state.params.initial_ai)

        if self._recording:
            self._save_snapshot()

    def step(self) -> None:
        """Run one fixed tick: update, harvest, replicate, orchestrate, compact."""
        state = self.state
        dt = state.fixed_dt
        probes = state.probes

        for probe in probes:
            probe.update(state, dt)

        for probe in probes:
            probe.harvest(state, dt)

        if state.master.phase is Phase.NORMAL:
            # Children appended this tick are not offered a replication turn.
            for i in range(len(probes)):
                probes[i].try_auto_replicate(state)

        master_update(state, dt)
        self.purge_dead()
        state.tick += 1

        if self._recording:
            self._record_tick()

    def advance(self, frame_dt: float) -> int:
        """Add real elapsed time and drain whole fixed ticks. Returns ticks run."""
        if not math.isfinite(frame_dt) or frame_dt < 0:
            frame_dt = 0.0
        self.accumulator += min(frame_dt, self.max_frame_dt)

        dt = self.state.fixed_dt
        steps = 0
        while self.accumulator >= dt and steps < self.max_steps_per_frame:
            self.step()
            self.accumulator -= dt
            steps += 1

        # Falling behind: drop the backlog rather than spiral.
        if steps == self.max_steps_per_frame:
            self.accumulator = 0.0
        return steps

    def purge_dead(self) -> int:
        """Drop dead probes in one stable pass; they count as sacrificed."""
        state = self.state
        probes = state.probes
        write = 0
        for probe in probes:
            if not probe.dead:
                probes[write] = probe
                write += 1
        died = len(probes) - write
        if died:
            del probes[write:]
            state.master.sacrificed += died
            if state.focus is None or state.focus.dead:
                state.focus = state.player
        return died

    async def run(self) -> None:
        """Headless: run ``simulation.ticks`` ticks. Live: real-time frame loop."""
        max_ticks = self.config["simulation"]["ticks"]
        logger.info("Running %d ticks (%s)", max_ticks, "live" if self.live_server else "headless")

        if self.live_server:
            await self._run_live(max_ticks)
        else:
            while self.tick < max_ticks:
                self.step()
                if self.tick % 1000 == 0:
                    logger.debug(
                        "Tick %d: %d probes, %.1f%% remaining, %s",
                        self.tick, self.state.population, self.state.remaining_percent,
                        status_line(self.state) or self.state.master.phase.value,
                    )
                    # Let other tasks breathe on long runs.
                    await asyncio.sleep(0)

        if self._recording:
            self._save_snapshot()

        logger.info(
            "Simulation complete: %d ticks, system %d, %d probes",
            self.tick, self.state.pool.system_index, self.state.population,
        )

    # ── Input ───────────────────────────────────────────────────

    def set_player_input(self, ax: float, ay: float, boost: bool = False) -> None:
        controls = self.state.controls
        controls.ax = float(ax)
        controls.ay = float(ay)
        controls.boost = bool(boost)

    def request_replicate(self) -> bool:
        """Manual replicate command for the player. False if not allowed right now."""
        player = self.state.player
        if player is None:
            return False
        return player.replicate(self.state) is not None

    def cycle_focus(self) -> Probe | None:
        """Move focus to the next living probe in collection order."""
        state = self.state
        probes = state.probes
        if len(probes) <= 1:
            state.focus = state.player
            return state.focus

        try:
            idx = next(i for i, p in enumerate(probes) if p is state.focus)
        except StopIteration:
            state.focus = state.player
            return state.focus

        for offset in range(1, len(probes) + 1):
            candidate = probes[(idx + offset) % len(probes)]
            if not candidate.dead:
                state.focus = candidate
                return candidate

        state.focus = state.player
        return state.focus

    def apply_command(self, cmd: dict) -> None:
        """Apply an input command received from a client."""
        action = cmd.get("action")
        if action == "thrust":
            self.set_player_input(cmd.get("x", 0.0), cmd.get("y", 0.0), cmd.get("boost", False))
        elif action == "replicate":
            self.request_replicate()
        elif action == "focus":
            self.cycle_focus()
        else:
            logger.warning("Unknown command: %s", action)

    # ── Presentation view ───────────────────────────────────────

    def view(self, include_resources: bool = True) -> dict:
        """Read-only snapshot of everything presentation may draw."""
        state = self.state
        limit = self.config["simulation"].get("snapshot_probe_limit", 2000)
        focus = state.focus
        return {
            "tick": state.tick,
            "system": state.pool.system_index,
            "world": state.world.to_dict(),
            "master": state.master.to_dict(),
            "status": status_line(state),
            "resources": state.pool.to_dict(include_resources=include_resources),
            "remaining_pct": round(state.remaining_percent, 3),
            "population": state.population,
            "ai_population": state.ai_population,
            "focus": focus.id if focus is not None else None,
            "probes": [p.to_dict() for p in state.probes[:limit]],
            "probes_truncated": state.population > limit,
        }

    # ── Private helpers ─────────────────────────────────────────

    async def _run_live(self, max_ticks: int) -> None:
        live = self.live_server
        last = time.monotonic()
        while self.tick < max_ticks:
            for cmd in await live.process_commands():
                self.apply_command(cmd)

            if live.paused:
                for cmd in await live.handle_pause_loop():
                    self.apply_command(cmd)
                if live.step_requested:
                    live.step_requested = False
                    self.step()
                last = time.monotonic()
            else:
                now = time.monotonic()
                self.advance(now - last)
                last = now

            await live.broadcast({"type": "tick", **self.view()})

            delay = live.frame_delay_ms
            if delay > 0:
                await asyncio.sleep(delay / 1000)

        await live.broadcast({
            "type": "complete",
            "tick": self.tick,
            "max_ticks": max_ticks,
            "system": self.state.pool.system_index,
            "population": self.state.population,
        })

    def _record_tick(self) -> None:
        every = self.config.get("metrics", {}).get("extract_every", 1)
        if every > 0 and self.tick % every == 0:
            extract_metrics(self.state, self.tick, self.data_dir)
        if self.tick % self.config["simulation"].get("snapshot_every", 100) == 0:
            self._save_snapshot()

    def _save_snapshot(self) -> None:
        """Write the presentation view to a tick snapshot file."""
        path = self.data_dir / "logs" / "ticks" / f"{self.tick:06d}.json"
        path.write_text(json.dumps(self.view(include_resources=False), indent=2))
