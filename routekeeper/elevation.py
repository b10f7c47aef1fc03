"""Elevation enrichment: device altitude first, throttled web lookup second."""

import asyncio
from typing import Optional

import requests

from .clock import Clock
from .config import CONFIG
from .models import PositionEntry, PositionSample


class ElevationLookup:
    """Fetch ground elevation from the Open-Meteo elevation API"""

    def __init__(self, url: str = CONFIG["elevation_url"],
                 timeout: float = CONFIG["elevation_timeout"],
                 session: Optional[requests.Session] = None, logger=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger

    def fetch(self, lat: float, lon: float) -> Optional[float]:
        """Blocking lookup; returns None when the service has no answer"""
        try:
            response = self.session.get(
                self.url, params={"latitude": lat, "longitude": lon}, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            if self.logger:
                self.logger.log("Elevation lookup failed", {"error": str(e)})
            return None

        elevation = data.get("elevation") if isinstance(data, dict) else None
        if isinstance(elevation, list) and elevation:
            return float(elevation[0])
        return None

    async def lookup(self, lat: float, lon: float) -> Optional[float]:
        return await asyncio.to_thread(self.fetch, lat, lon)


class ElevationEnricher:
    """Attach elevation to position entries without blocking sample acceptance.

    A usable device altitude wins and resets the web cache. Otherwise at
    most one lookup is issued per ``interval`` seconds; in between, the last
    looked-up value is reused and tagged ``api-cached``. A lookup result
    that arrives later is patched onto its entry by ``entry_id``.
    """

    def __init__(self, lookup, buffer, clock: Optional[Clock] = None,
                 interval: float = CONFIG["elevation_fetch_interval"], logger=None):
        self.lookup = lookup
        self.buffer = buffer
        self.clock = clock or Clock()
        self.interval_ms = interval * 1000
        self.logger = logger
        self.last_fetch_at: Optional[float] = None  # monotonic ms
        self.last_api_elevation: Optional[float] = None
        self._pending: set[asyncio.Task] = set()

    def apply_device(self, entry: PositionEntry, sample: PositionSample) -> bool:
        """Tag the entry with the device altitude, if the sample has one"""
        if not sample.has_altitude:
            return False
        entry.elevation = sample.altitude
        entry.elevation_accuracy = sample.altitude_accuracy
        entry.elevation_source = "device"
        self.last_api_elevation = None
        return True

    def request(self, entry: PositionEntry) -> Optional[asyncio.Task]:
        """Fill from cache or schedule a lookup for an entry already in the buffer"""
        now = self.clock.monotonic_ms()
        if self.last_fetch_at is not None and now - self.last_fetch_at < self.interval_ms:
            if self.last_api_elevation is not None:
                self.buffer.update_elevation(entry.entry_id, self.last_api_elevation, "api-cached")
            return None

        self.last_fetch_at = now
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        task = loop.create_task(self._fetch(entry.entry_id, entry.coords.lat, entry.coords.lng))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _fetch(self, entry_id: int, lat: float, lng: float) -> Optional[float]:
        try:
            elevation = await self.lookup(lat, lng)
        except Exception as e:
            # A missing elevation is a valid state; the failure stays here
            if self.logger:
                self.logger.log("Elevation lookup error", {"error": str(e)})
            return None
        if elevation is None:
            return None

        self.last_api_elevation = elevation
        patched = self.buffer.update_elevation(entry_id, elevation, "api")
        if self.logger:
            self.logger.log("API elevation", {"elevation": round(elevation, 1),
                                              "entry_id": entry_id, "patched": patched})
        return elevation

    async def drain(self):
        """Wait for in-flight lookups"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
