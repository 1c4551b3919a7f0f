"""Terminal replay mode: play back a recorded run snapshot by snapshot."""

from __future__ import annotations

import csv
import json
from pathlib import Path


def replay(
    data_dir: Path,
    probe_filter: int | None = None,
    tick_range: tuple[int, int] | None = None,
) -> None:
    """Replay a recorded simulation run to stdout.

    Parameters
    ----------
    data_dir : Path
        Root data directory of a run (e.g. data/run_20250101_120000).
    probe_filter : int | None
        If set, only display the probe with this id each snapshot.
    tick_range : tuple[int, int] | None
        If set, only replay ticks in [start, end] inclusive.
    """
    ticks_dir = data_dir / "logs" / "ticks"
    if not ticks_dir.exists():
        print(f"No tick snapshots found in {ticks_dir}")
        return

    snapshot_files = sorted(ticks_dir.glob("*.json"))
    if not snapshot_files:
        print(f"No snapshot files found in {ticks_dir}")
        return

    # Metrics rows keyed by tick, if the run recorded any
    metrics_by_tick: dict[int, dict] = {}
    metrics_path = data_dir / "analysis" / "metrics.csv"
    if metrics_path.exists():
        with open(metrics_path, newline="") as f:
            for row in csv.DictReader(f):
                metrics_by_tick[int(row["tick"])] = row

    previous_system = None
    for snapshot_file in snapshot_files:
        snapshot = json.loads(snapshot_file.read_text())
        tick_num = snapshot["tick"]

        if tick_range is not None and (tick_num < tick_range[0] or tick_num > tick_range[1]):
            continue

        system = snapshot.get("system", 0)
        master = snapshot.get("master", {})
        probes = snapshot.get("probes", [])
        population = snapshot.get("population", len(probes))
        remaining = snapshot.get("remaining_pct", 0.0)

        if previous_system is not None and system != previous_system:
            print(f"{'*' * 60}")
            print(f"  WARP: system {previous_system} -> {system}")
        previous_system = system

        print(f"{'=' * 60}")
        print(
            f"Tick {tick_num:>7}  |  System {system}  |  Probes: {population}  |  "
            f"Resources: {remaining:.1f}%  |  {master.get('phase', '?')}"
        )
        status = snapshot.get("status")
        if status:
            print(f"  {status}")
        print(f"{'-' * 60}")

        shown = 0
        for probe in probes:
            if probe_filter is not None and probe.get("id") != probe_filter:
                continue
            if probe_filter is None and shown >= 10:
                break
            label = "PLAYER" if probe.get("player") else f"#{probe.get('id', '?')}"
            print(
                f"  {label:<10} pos=({probe.get('x', 0):>8.1f},{probe.get('y', 0):>8.1f})  "
                f"carried={probe.get('resources', 0):>7.1f}  [{probe.get('mode', '?')}]"
            )
            shown += 1
        if probe_filter is None and len(probes) > shown:
            print(f"  ... {population - shown} more")

        metrics = metrics_by_tick.get(tick_num)
        if metrics:
            print(
                f"  mean genome: speed={float(metrics['mean_max_speed']):.1f} "
                f"accel={float(metrics['mean_accel']):.1f} "
                f"harvest={float(metrics['mean_harvest_rate']):.2f}"
            )

        print()
