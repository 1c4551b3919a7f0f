"""Matplotlib visualization for recorded probe swarm runs."""

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd


def plot_population(data_dir: Path, output_path: Path | None = None) -> None:
    """Population and remaining resources over time, warps marked."""
    df = pd.read_csv(data_dir / "analysis" / "metrics.csv")

    fig, axes = plt.subplots(2, 1, figsize=(12, 8), sharex=True)
    axes[0].plot(df["tick"], df["population"], color="tab:blue")
    axes[0].set_ylabel("Probes")
    axes[0].set_title("Population and Resources")
    axes[0].grid(True, alpha=0.3)

    axes[1].plot(df["tick"], df["remaining_pct"], color="tab:green")
    axes[1].set_ylabel("Resources remaining (%)")
    axes[1].set_xlabel("Tick")
    axes[1].grid(True, alpha=0.3)

    warps = df.loc[df["system"].diff() > 0, "tick"]
    for ax in axes:
        for tick in warps:
            ax.axvline(tick, color="tab:orange", alpha=0.5, linestyle="--")

    fig.tight_layout()
    if output_path:
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
    else:
        plt.show()


def plot_genome_drift(data_dir: Path, output_path: Path | None = None) -> None:
    """Mean genome values of the autonomous population (rolling average)."""
    df = pd.read_csv(data_dir / "analysis" / "metrics.csv")

    columns = [
        ("mean_max_speed", "Max speed"),
        ("mean_accel", "Acceleration"),
        ("mean_harvest_rate", "Harvest rate"),
    ]
    fig, axes = plt.subplots(len(columns), 1, figsize=(12, 9), sharex=True)
    for ax, (column, label) in zip(axes, columns):
        ax.plot(df["tick"], df[column].rolling(10, min_periods=1).mean())
        ax.set_ylabel(label)
        ax.grid(True, alpha=0.3)
    axes[0].set_title("Genome Drift (10-row avg)")
    axes[-1].set_xlabel("Tick")

    fig.tight_layout()
    if output_path:
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
    else:
        plt.show()


def plot_phase_timeline(data_dir: Path, output_path: Path | None = None) -> None:
    """Master AI phase per recorded row as a step plot."""
    df = pd.read_csv(data_dir / "analysis" / "metrics.csv")
    order = ["NORMAL", "RALLY", "BUILD", "CHARGE", "WARP"]
    codes = df["phase"].map({name: i for i, name in enumerate(order)})

    fig, ax = plt.subplots(figsize=(12, 3))
    ax.step(df["tick"], codes, where="post")
    ax.set_yticks(range(len(order)))
    ax.set_yticklabels(order)
    ax.set_xlabel("Tick")
    ax.set_title("Master AI Phases")
    ax.grid(True, alpha=0.3)

    if output_path:
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
    else:
        plt.show()
