"""GPS source fed by location messages over a WebSocket."""

import asyncio
import json
import time
from typing import Optional

import websockets

from .config import CONFIG
from .errors import PositionError
from .gps import PositionOptions, optional_float
from .models import PositionSample


class WebSocketGPS:
    """GPS source that receives fixes pushed by WebSocket clients.

    Clients send ``{"type": "location", "data": {"lat": .., "lon": ..,
    "accuracy": .., "altitude": ..}}``. Malformed messages are ignored.
    """

    def __init__(self, host: str = "localhost", port: int = CONFIG["websocket_port"], logger=None):
        self.host = host
        self.port = port
        self.logger = logger
        self.queue: asyncio.Queue = asyncio.Queue()
        self.last_sample: Optional[PositionSample] = None
        self.consecutive_failures = 0
        self.connected_clients: set = set()
        self._server = None

    async def start(self):
        self._server = await websockets.serve(self._handler, self.host, self.port)
        if self.logger:
            self.logger.log("WebSocket GPS listening", {"host": self.host, "port": self.port})

    async def stop(self):
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handler(self, websocket):
        self.connected_clients.add(websocket)
        try:
            async for message in websocket:
                self.handle_message(message)
        finally:
            self.connected_clients.discard(websocket)

    def handle_message(self, message) -> Optional[PositionSample]:
        """Parse one client message and queue the fix it carries"""
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, TypeError):
            return None
        if not isinstance(data, dict) or data.get("type") != "location":
            return None
        loc = data.get("data") or {}
        try:
            sample = PositionSample(
                lat=float(loc["lat"]),
                lng=float(loc.get("lng", loc.get("lon"))),
                accuracy=float(loc.get("accuracy") or 0),
                timestamp=optional_float(loc.get("timestamp")) or time.time() * 1000,
                altitude=optional_float(loc.get("altitude")),
                altitude_accuracy=optional_float(loc.get("altitude_accuracy")),
            )
        except (KeyError, TypeError, ValueError):
            return None
        self.queue.put_nowait(sample)
        return sample

    async def read_sample(self, options: PositionOptions) -> PositionSample:
        """Wait for the next pushed fix"""
        try:
            sample = await asyncio.wait_for(self.queue.get(), timeout=options.timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            self.consecutive_failures += 1
            raise PositionError(PositionError.TIMEOUT, "no location received") from e
        self.last_sample = sample
        self.consecutive_failures = 0
        return sample

    def get_poll_interval(self) -> float:
        # Pushed fixes are consumed as they arrive
        return 0

    def get_status(self) -> str:
        return f"WebSocket GPS on port {self.port} ({len(self.connected_clients)} clients)"
