"""CLI entrypoint for the probe swarm simulation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

import yaml

from vonprobes.src.engine import Engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path(__file__).parent / "config" / "default.yaml"


def load_config(config_path: Path) -> dict:
    """Load YAML config with inheritance support."""
    with open(config_path) as f:
        config = yaml.safe_load(f)

    # Handle inherits
    if "inherits" in config:
        base_name = config.pop("inherits")
        base_path = config_path.parent.parent / f"{base_name}.yaml"
        base = load_config(base_path)
        config = _deep_merge(base, config)

    return config


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    """Apply CLI overrides in place and return the config."""
    if args.ticks:
        config["simulation"]["ticks"] = args.ticks
    if args.seed is not None:
        config["simulation"]["seed"] = args.seed
    if args.ai is not None:
        config["probes"]["initial_ai"] = args.ai
    return config


def _new_data_dir() -> Path:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return Path("data") / f"run_{timestamp}"


async def _run_live(config: dict, port: int) -> None:
    """Run in real time, streaming state to WebSocket clients."""
    from vonprobes.src.live_server import LiveServer

    server = LiveServer(
        host="localhost",
        port=port,
        frame_delay_ms=config["simulation"].get("frame_delay_ms", 16),
    )
    await server.start()
    print(f"\n  Connect a viewer to ws://localhost:{port}\n")

    data_dir = _new_data_dir()
    engine = Engine(config, data_dir, live_server=server)
    engine.setup()
    await server.broadcast({"type": "status", "state": "running"})

    try:
        await engine.run()
    except asyncio.CancelledError:
        logger.info("Simulation stopped by client at tick %d", engine.tick)
        await server.broadcast({"type": "status", "state": "stopped"})
    finally:
        await server.stop()


def main():
    parser = argparse.ArgumentParser(description="Self-replicating probe swarm simulation")
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Path to experiment config YAML",
    )
    parser.add_argument("--ticks", type=int, help="Override tick count")
    parser.add_argument("--seed", type=int, help="Seed the random source")
    parser.add_argument("--ai", type=int, help="Override initial autonomous probe count")
    parser.add_argument("--replay", type=Path, help="Replay a recorded run")
    parser.add_argument("--probe", type=int, help="Probe id to filter (with --replay)")
    parser.add_argument("--tick-range", type=str, help="Tick range for replay (e.g., 100-200)")
    parser.add_argument("--live", action="store_true", help="Real-time WebSocket streaming")
    parser.add_argument("--port", type=int, default=8765, help="Port for --live server")

    args = parser.parse_args()

    # Handle --replay mode
    if args.replay:
        from vonprobes.src.replay import replay

        tick_range = None
        if args.tick_range:
            parts = args.tick_range.split("-")
            tick_range = (int(parts[0]), int(parts[1]))

        replay(args.replay, probe_filter=args.probe, tick_range=tick_range)
        sys.exit(0)

    config = apply_overrides(load_config(args.config or DEFAULT_CONFIG), args)

    if args.live:
        asyncio.run(_run_live(config, args.port))
        sys.exit(0)

    data_dir = _new_data_dir()
    logger.info("Starting run: %s", data_dir)
    engine = Engine(config, data_dir)
    engine.setup()
    asyncio.run(engine.run())
    logger.info("Run complete: %s", data_dir)


if __name__ == "__main__":
    main()
