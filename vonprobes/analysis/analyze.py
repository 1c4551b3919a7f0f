"""Summary analysis of a recorded run's metrics.

Uses only stdlib (csv) so it runs anywhere the simulation does.

CLI usage:
    python -m vonprobes.analysis.analyze data/run_xxx/
"""

from __future__ import annotations

import csv
import sys
from collections import defaultdict
from pathlib import Path

INT_FIELDS = (
    "tick", "system", "population", "ai_population", "sacrificing",
    "active_resources", "sacrificed", "to_sacrifice",
)
FLOAT_FIELDS = (
    "remaining_total", "initial_total", "remaining_pct", "mean_carried",
    "mean_max_speed", "mean_accel", "mean_harvest_rate",
)
GENOME_COLUMNS = ("mean_max_speed", "mean_accel", "mean_harvest_rate")


# ── Data loading ─────────────────────────────────────────────────


def load_metrics(data_dir: Path) -> list[dict]:
    """Load metrics CSV as list of dicts with numeric fields cast."""
    csv_path = data_dir / "analysis" / "metrics.csv"
    if not csv_path.exists():
        return []

    with open(csv_path, newline="") as f:
        return [_cast_row(row) for row in csv.DictReader(f)]


# ── Per-system summary ───────────────────────────────────────────


def system_summary(metrics: list[dict]) -> dict:
    """Summarize each system (one resource field between warps).

    Returns::

        {
            system_index: {
                "first_tick": int,
                "last_tick": int,
                "start_population": int,
                "peak_population": int,
                "end_population": int,
                "rally_tick": int | None,   # first row not in NORMAL
                "sacrificed": int,          # largest sacrifice count seen
                "min_remaining_pct": float,
            },
            ...
        }
    """
    by_system: dict[int, list[dict]] = defaultdict(list)
    for row in metrics:
        by_system[row["system"]].append(row)

    result: dict[int, dict] = {}
    for system, rows in sorted(by_system.items()):
        rows = sorted(rows, key=lambda r: r["tick"])
        rally_tick = next((r["tick"] for r in rows if r["phase"] != "NORMAL"), None)
        result[system] = {
            "first_tick": rows[0]["tick"],
            "last_tick": rows[-1]["tick"],
            "start_population": rows[0]["population"],
            "peak_population": max(r["population"] for r in rows),
            "end_population": rows[-1]["population"],
            "rally_tick": rally_tick,
            "sacrificed": max(r["sacrificed"] for r in rows),
            "min_remaining_pct": min(r["remaining_pct"] for r in rows),
        }
    return result


def genome_drift(metrics: list[dict]) -> dict:
    """Change in mean genome values between the first and last recorded rows."""
    if not metrics:
        return {}
    rows = sorted(metrics, key=lambda r: r["tick"])
    first, last = rows[0], rows[-1]
    return {
        column: {
            "start": first[column],
            "end": last[column],
            "delta": last[column] - first[column],
        }
        for column in GENOME_COLUMNS
    }


def phase_durations(metrics: list[dict]) -> dict[str, int]:
    """Number of recorded rows spent in each Master AI phase."""
    counts: dict[str, int] = defaultdict(int)
    for row in metrics:
        counts[row["phase"]] += 1
    return dict(counts)


# ── CLI main ─────────────────────────────────────────────────────


def main():
    """CLI: python -m vonprobes.analysis.analyze data/run_xxx/"""
    if len(sys.argv) < 2:
        print("Usage: python -m vonprobes.analysis.analyze <data_dir>")
        sys.exit(1)

    data_dir = Path(sys.argv[1])
    if not data_dir.exists():
        print(f"Error: {data_dir} does not exist")
        sys.exit(1)

    print(f"Analyzing run: {data_dir}\n")
    metrics = load_metrics(data_dir)
    print(f"Loaded {len(metrics)} metric rows\n")

    if not metrics:
        print("No metrics data found. Exiting.")
        sys.exit(0)

    print("=" * 60)
    print("SYSTEMS")
    print("=" * 60)
    for system, s in system_summary(metrics).items():
        rally = f"tick {s['rally_tick']}" if s["rally_tick"] is not None else "never"
        print(f"\n  System {system} (ticks {s['first_tick']}-{s['last_tick']}):")
        print(f"    Population:       {s['start_population']} -> {s['end_population']}"
              f" (peak {s['peak_population']})")
        print(f"    Rally began:      {rally}")
        print(f"    Sacrificed:       {s['sacrificed']}")
        print(f"    Min remaining:    {s['min_remaining_pct']:.1f}%")

    print(f"\n{'=' * 60}")
    print("GENOME DRIFT")
    print("=" * 60)
    for column, d in genome_drift(metrics).items():
        print(f"  {column:<20} {d['start']:>9.3f} -> {d['end']:>9.3f}  ({d['delta']:+.3f})")

    print(f"\n{'=' * 60}")
    print("PHASES (recorded rows)")
    print("=" * 60)
    for phase, count in sorted(phase_durations(metrics).items()):
        print(f"  {phase:<8} {count}")

    print()


# ── Private helpers ──────────────────────────────────────────────


def _cast_row(row: dict) -> dict:
    """Cast CSV string values to appropriate Python types."""
    cast = dict(row)
    for key in INT_FIELDS:
        if key in cast:
            try:
                cast[key] = int(cast[key])
            except (ValueError, TypeError):
                cast[key] = 0
    for key in FLOAT_FIELDS:
        if key in cast:
            try:
                cast[key] = float(cast[key])
            except (ValueError, TypeError):
                cast[key] = 0.0
    return cast


if __name__ == "__main__":
    main()
