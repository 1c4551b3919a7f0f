"""WebSocket server streaming simulation state and relaying player input."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import websockets
from websockets.datastructures import Headers
from websockets.http11 import Response

logger = logging.getLogger(__name__)

# Commands consumed by the server itself; everything else is player input.
CONTROL_ACTIONS = {"pause", "resume", "step", "speed", "stop"}


class LiveServer:
    """Broadcasts the presentation view over WebSocket and queues client commands."""

    def __init__(self, host: str = "localhost", port: int = 8765,
                 frame_delay_ms: int = 16, runs_dir: Path = Path("data")):
        self.host = host
        self.port = port
        self.runs_dir = runs_dir
        self.clients: set = set()
        self._command_queue: asyncio.Queue = asyncio.Queue()
        self._server = None
        self.paused = False
        self.step_requested = False
        self.frame_delay_ms = frame_delay_ms

    async def start(self) -> None:
        """Start the WebSocket server."""
        self._server = await websockets.serve(
            self._handler,
            self.host,
            self.port,
            process_request=self._serve_http,
        )
        logger.info("Live server running at ws://%s:%d", self.host, self.port)

    def _serve_http(self, connection, request):
        """Serve JSON history endpoints for plain HTTP requests."""
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None  # Let WebSocket handler take over

        path = request.path
        if path == "/api/runs":
            return self._api_list_runs()
        if path.startswith("/api/runs/") and "/tick/" in path:
            return self._api_get_tick(path)
        if path.startswith("/api/runs/") and path.endswith("/config"):
            return self._api_get_config(path)

        return self._not_found()

    def _json_response(self, data: dict | list) -> Response:
        body = json.dumps(data).encode()
        headers = Headers([
            ("Content-Type", "application/json"),
            ("Content-Length", str(len(body))),
            ("Access-Control-Allow-Origin", "*"),
        ])
        return Response(200, "OK", headers, body)

    def _not_found(self) -> Response:
        headers = Headers([("Content-Type", "application/json")])
        return Response(404, "Not Found", headers, b'{"error":"not found"}')

    def _api_list_runs(self) -> Response:
        """List recorded runs under the runs directory."""
        import yaml
        runs = []
        if self.runs_dir.exists():
            for d in sorted(self.runs_dir.iterdir(), reverse=True):
                if not (d.is_dir() and d.name.startswith("run_")):
                    continue
                run = {"name": d.name, "path": str(d)}
                config_path = d / "config.yaml"
                if config_path.exists():
                    try:
                        cfg = yaml.safe_load(config_path.read_text())
                    except yaml.YAMLError as e:
                        logger.warning("Unreadable config in %s: %s", d.name, e)
                    else:
                        run["ticks"] = cfg.get("simulation", {}).get("ticks", 0)
                        run["initial_ai"] = cfg.get("probes", {}).get("initial_ai", 0)
                ticks_dir = d / "logs" / "ticks"
                if ticks_dir.exists():
                    tick_files = list(ticks_dir.glob("*.json"))
                    run["snapshots"] = len(tick_files)
                    if tick_files:
                        run["last_tick"] = max(int(f.stem) for f in tick_files)
                runs.append(run)
        return self._json_response(runs)

    def _api_get_tick(self, path: str) -> Response:
        """/api/runs/<name>/tick/<n>"""
        parts = path.split("/")
        if len(parts) >= 6 and parts[5].isdigit():
            tick_path = self.runs_dir / parts[3] / "logs" / "ticks" / f"{int(parts[5]):06d}.json"
            if tick_path.exists():
                return self._json_response(json.loads(tick_path.read_text()))
        return self._not_found()

    def _api_get_config(self, path: str) -> Response:
        """/api/runs/<name>/config"""
        parts = path.split("/")
        if len(parts) >= 5:
            config_path = self.runs_dir / parts[3] / "config.yaml"
            if config_path.exists():
                import yaml
                return self._json_response(yaml.safe_load(config_path.read_text()))
        return self._not_found()

    async def _handler(self, ws) -> None:
        """Handle a single WebSocket client connection."""
        self.clients.add(ws)
        logger.info("Client connected (%d total)", len(self.clients))
        try:
            async for message in ws:
                try:
                    cmd = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from client: %s", message[:100])
                    continue
                if isinstance(cmd, dict):
                    await self._command_queue.put(cmd)
        except websockets.ConnectionClosed:
            pass
        finally:
            self.clients.discard(ws)
            logger.info("Client disconnected (%d remaining)", len(self.clients))

    async def broadcast(self, data: dict) -> None:
        """Send data to all connected clients."""
        if not self.clients:
            return
        msg = json.dumps(data)
        # Send to all, ignore individual failures
        await asyncio.gather(
            *[client.send(msg) for client in self.clients],
            return_exceptions=True,
        )

    async def submit(self, cmd: dict) -> None:
        """Queue a command as if a client had sent it."""
        await self._command_queue.put(cmd)

    async def drain_commands(self) -> list[dict]:
        """Get all pending commands."""
        commands = []
        while True:
            try:
                commands.append(self._command_queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return commands

    async def wait_for_command(self, timeout: float = 0.1) -> dict | None:
        """Blocking wait for a command with timeout."""
        try:
            return await asyncio.wait_for(self._command_queue.get(), timeout)
        except TimeoutError:
            return None

    async def handle_pause_loop(self) -> list[dict]:
        """Block until resume or step; returns input commands received meanwhile."""
        inputs: list[dict] = []
        while self.paused and not self.step_requested:
            cmd = await self.wait_for_command(timeout=0.1)
            if cmd is None:
                continue
            if cmd.get("action") in CONTROL_ACTIONS:
                await self._apply_control(cmd)
            else:
                inputs.append(cmd)
        return inputs

    async def process_commands(self) -> list[dict]:
        """Apply pending control commands; return the player-input ones. Call each frame."""
        inputs: list[dict] = []
        for cmd in await self.drain_commands():
            if cmd.get("action") in CONTROL_ACTIONS:
                await self._apply_control(cmd)
            else:
                inputs.append(cmd)
        return inputs

    async def _apply_control(self, cmd: dict) -> None:
        action = cmd.get("action")
        if action == "pause":
            self.paused = True
            self.step_requested = False
            await self.broadcast({"type": "status", "state": "paused"})
        elif action == "resume":
            self.paused = False
            self.step_requested = False
            await self.broadcast({"type": "status", "state": "running"})
        elif action == "step":
            # Only meaningful while paused; a running loop ignores it.
            if self.paused:
                self.step_requested = True
        elif action == "speed":
            self.frame_delay_ms = cmd.get("delay_ms", self.frame_delay_ms)
        elif action == "stop":
            raise asyncio.CancelledError("Stop requested")

    async def stop(self) -> None:
        """Shut down the server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            logger.info("Live server stopped")
