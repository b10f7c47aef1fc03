"""Tests for elevation enrichment and the Open-Meteo lookup."""

from __future__ import annotations

import asyncio

import pytest
import requests

from routekeeper.elevation import ElevationEnricher, ElevationLookup
from routekeeper.models import Coords, PositionEntry, PositionSample
from routekeeper.state import RouteBuffer

from conftest import FakeLookup, quiet_logger


def _insert(buffer, lat=51.5, lng=-0.12) -> PositionEntry:
    return buffer.add_route_point(PositionEntry(coords=Coords(lat, lng), timestamp=1.0, accuracy=5.0))


def _sample(altitude=None) -> PositionSample:
    return PositionSample(lat=51.5, lng=-0.12, accuracy=5.0, timestamp=1.0, altitude=altitude,
                          altitude_accuracy=3.0 if altitude is not None else None)


@pytest.fixture
def buffer(clock):
    return RouteBuffer(clock=clock)


def test_device_altitude_wins(buffer, clock) -> None:
    enricher = ElevationEnricher(FakeLookup(), buffer, clock=clock)
    enricher.last_api_elevation = 10.0
    entry = PositionEntry(coords=Coords(51.5, -0.12), timestamp=1.0, accuracy=5.0)

    assert enricher.apply_device(entry, _sample(altitude=31.0))
    assert (entry.elevation, entry.elevation_source, entry.elevation_accuracy) == (31.0, "device", 3.0)
    assert enricher.last_api_elevation is None


def test_nan_altitude_is_unusable(buffer, clock) -> None:
    enricher = ElevationEnricher(FakeLookup(), buffer, clock=clock)
    entry = PositionEntry(coords=Coords(51.5, -0.12), timestamp=1.0, accuracy=5.0)
    assert not enricher.apply_device(entry, _sample(altitude=float("nan")))
    assert entry.elevation is None


def test_lookup_result_is_patched_by_entry_id(buffer, clock) -> None:
    lookup = FakeLookup(value=88.0)
    enricher = ElevationEnricher(lookup, buffer, clock=clock, logger=quiet_logger())

    async def run():
        entry = _insert(buffer)
        _insert(buffer)  # same coordinates, must stay untouched
        enricher.request(entry)
        await enricher.drain()

    asyncio.run(run())
    assert (buffer.entries[0].elevation, buffer.entries[0].elevation_source) == (88.0, "api")
    assert buffer.entries[1].elevation is None
    assert lookup.calls == [(51.5, -0.12)]


def test_requests_within_window_reuse_cached_value(buffer, clock) -> None:
    lookup = FakeLookup(value=12.0)
    enricher = ElevationEnricher(lookup, buffer, clock=clock, interval=10)

    async def run():
        enricher.request(_insert(buffer))
        await enricher.drain()
        clock.advance(4_000)
        cached = _insert(buffer)
        assert enricher.request(cached) is None
        clock.advance(7_000)
        enricher.request(_insert(buffer))
        await enricher.drain()

    asyncio.run(run())
    assert len(lookup.calls) == 2
    assert [e.elevation_source for e in buffer.entries] == ["api", "api-cached", "api"]


def test_window_without_cached_value_leaves_entry_empty(buffer, clock) -> None:
    lookup = FakeLookup(value=None)
    enricher = ElevationEnricher(lookup, buffer, clock=clock)

    async def run():
        enricher.request(_insert(buffer))
        await enricher.drain()
        enricher.request(_insert(buffer))

    asyncio.run(run())
    assert [e.elevation for e in buffer.entries] == [None, None]


def test_lookup_failure_never_propagates(buffer, clock) -> None:
    enricher = ElevationEnricher(FakeLookup(error=RuntimeError("offline")), buffer, clock=clock)

    async def run():
        task = enricher.request(_insert(buffer))
        return await task

    assert asyncio.run(run()) is None
    assert buffer.entries[0].elevation is None


def test_late_result_after_buffer_cleared_is_ignored(buffer, clock) -> None:
    enricher = ElevationEnricher(FakeLookup(value=5.0), buffer, clock=clock)

    async def run():
        enricher.request(_insert(buffer))
        buffer.clear()
        await enricher.drain()

    asyncio.run(run())
    assert len(buffer) == 0


# --- ElevationLookup ----------------------------------------------------
class _Response:
    def __init__(self, payload, status_error=None):
        self.payload = payload
        self.status_error = status_error

    def raise_for_status(self):
        if self.status_error:
            raise self.status_error

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class _Session:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params, timeout))
        if self.error:
            raise self.error
        return self.response


def test_lookup_reads_first_elevation() -> None:
    session = _Session(_Response({"elevation": [35.4]}))
    lookup = ElevationLookup("https://example.test/v1/elevation", timeout=3, session=session)

    assert lookup.fetch(51.5, -0.12) == 35.4
    assert session.requests == [
        ("https://example.test/v1/elevation", {"latitude": 51.5, "longitude": -0.12}, 3)]


@pytest.mark.parametrize(
    "session",
    [
        _Session(error=requests.ConnectionError("down")),
        _Session(_Response({}, status_error=requests.HTTPError("500"))),
        _Session(_Response(ValueError("not json"))),
        _Session(_Response({"elevation": []})),
        _Session(_Response(["unexpected"])),
    ],
)
def test_lookup_returns_none_on_failure(session) -> None:
    lookup = ElevationLookup(session=session, logger=quiet_logger())
    assert lookup.fetch(51.5, -0.12) is None


def test_async_lookup_runs_in_thread() -> None:
    lookup = ElevationLookup(session=_Session(_Response({"elevation": [7]})))
    assert asyncio.run(lookup.lookup(1.0, 2.0)) == 7.0
