"""Global pytest fixtures & helpers.

Adds project root to path and provides a controllable clock, quiet
contexts backed by temporary storage, and stand-ins for the positioning
source and elevation service.
"""
from __future__ import annotations

import asyncio
import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from routekeeper.context import create_context
from routekeeper.geo import offset_north
from routekeeper.logger import Logger
from routekeeper.models import PositionSample


START_WALL_MS = 1_700_000_000_000.0
START_LAT, START_LNG = 51.5007, -0.1246


# --- Factory helpers -------------------------------------------------
class FakeClock:
    """Wall and monotonic time that only move when told to"""

    def __init__(self, wall_ms: float = START_WALL_MS):
        self.wall = wall_ms
        self.mono = 0.0

    def now_ms(self) -> float:
        return self.wall

    def monotonic_ms(self) -> float:
        return self.mono

    def advance(self, ms: float):
        self.wall += ms
        self.mono += ms

    def jump_wall(self, ms: float):
        """Device clock change: wall time moves, monotonic time does not"""
        self.wall += ms


class IdleSource:
    """Positioning source that never produces a fix; tests feed samples directly"""

    async def read_sample(self, options):
        await asyncio.Event().wait()

    def get_poll_interval(self) -> float:
        return 0


class FakeLookup:
    """Elevation service stand-in recording every request"""

    def __init__(self, value=42.0, error: Exception | None = None):
        self.value = value
        self.error = error
        self.calls: list[tuple[float, float]] = []

    async def __call__(self, lat: float, lng: float):
        self.calls.append((lat, lng))
        if self.error:
            raise self.error
        return self.value


def quiet_logger() -> Logger:
    return Logger(echo=False)


def make_context(tmp_path, clock, db_name="routes.db", fallback_name="fallback.json", **kwargs):
    db_path = db_name if db_name.startswith("/") else str(tmp_path / db_name)
    return create_context(
        db_path=db_path,
        fallback_path=str(tmp_path / fallback_name),
        logger=quiet_logger(),
        clock=clock,
        **kwargs,
    )


def walk_north(count: int, step_m: float = 10.0, lat: float = START_LAT, lng: float = START_LNG):
    """`count` coordinates spaced `step_m` meters apart, heading north"""
    points = []
    for _ in range(count):
        points.append((lat, lng))
        lat, lng = offset_north(lat, lng, step_m)
    return points


def sample_at(lat: float, lng: float, clock, accuracy: float = 5.0, altitude=None) -> PositionSample:
    return PositionSample(lat=lat, lng=lng, accuracy=accuracy, timestamp=clock.now_ms(),
                          altitude=altitude)


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def logger():
    return quiet_logger()


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def notifier(notifications):
    def notify(level: str, message: str):
        notifications.append((level, message))
    return notify
