"""Per-tick population and resource metrics appended to a CSV."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import TYPE_CHECKING

from .probe import GENOME_FIELDS

if TYPE_CHECKING:
    from .state import SimulationState

METRIC_FIELDS = [
    "tick",
    "system",
    "phase",
    "population",
    "ai_population",
    "sacrificing",
    "active_resources",
    "remaining_total",
    "initial_total",
    "remaining_pct",
    "mean_carried",
    "mean_max_speed",
    "mean_accel",
    "mean_harvest_rate",
    "sacrificed",
    "to_sacrifice",
]


def summarize(state: SimulationState) -> dict:
    """Aggregate one row of metrics from the current state."""
    probes = state.probes
    ai = [p for p in probes if not p.is_player]
    pool = state.pool
    master = state.master

    row = {
        "tick": state.tick,
        "system": pool.system_index,
        "phase": master.phase.value,
        "population": len(probes),
        "ai_population": len(ai),
        "sacrificing": sum(1 for p in ai if p.sacrificing),
        "active_resources": len(pool.active),
        "remaining_total": f"{pool.remaining_total:.3f}",
        "initial_total": f"{pool.initial_total:.3f}",
        "remaining_pct": f"{state.remaining_percent:.3f}",
        "mean_carried": f"{_mean([p.resources for p in probes]):.3f}",
        "sacrificed": master.sacrificed,
        "to_sacrifice": master.to_sacrifice,
    }
    # Genome means describe the heritable (non-player) population only.
    for name in GENOME_FIELDS:
        row[f"mean_{name}"] = f"{_mean([getattr(p.genome, name) for p in ai]):.3f}"
    return row


def extract_metrics(state: SimulationState, tick: int, data_dir: Path) -> None:
    """Append a metrics row for this tick."""
    csv_path = data_dir / "analysis" / "metrics.csv"
    write_header = not csv_path.exists()

    row = summarize(state)
    row["tick"] = tick

    with open(csv_path, "a", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=METRIC_FIELDS)
        if write_header:
            writer.writeheader()
        writer.writerow(row)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0
