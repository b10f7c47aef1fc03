"""Tests for the tracking state machine, capture pipeline and save flow."""

from __future__ import annotations

import asyncio

import pytest

from routekeeper.engine import RouteEngine
from routekeeper.errors import PositionError, RouteValidationError, StorageExhaustedError
from routekeeper.geo import offset_north
from routekeeper.models import Coords, FinalizedRoute, PositionEntry, Snapshot
from routekeeper.tracking import SaveDecision, SaveOutcome

from conftest import (
    FakeLookup,
    IdleSource,
    START_LAT,
    START_LNG,
    make_context,
    sample_at,
    walk_north,
)


def _engine(ctx, decision=SaveOutcome.CANCELLED, name=None, summaries=None, notifier=None,
            lookup=None) -> RouteEngine:
    async def save_flow(summary):
        if summaries is not None:
            summaries.append(summary)
        return SaveDecision(decision, name)

    return RouteEngine(ctx, IdleSource(), lookup=lookup or FakeLookup(),
                       save_flow=save_flow, notifier=notifier)


def _feed(engine, clock, points, step_ms=5_000, altitude=10.0):
    for lat, lng in points:
        clock.advance(step_ms)
        engine.tracking.handle_position_update(sample_at(lat, lng, clock, altitude=altitude))


def test_capture_scenario(tmp_path, clock) -> None:
    """12 moves of 10 m, threshold backup at the 10th entry, pause/resume timing"""
    backup_sizes = []

    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx)
        await engine.start()

        points = walk_north(13, step_m=10)
        _feed(engine, clock, points[:10])
        await ctx.backups.drain()
        backup_sizes.append((ctx.backups.writes, len((await ctx.store.get_backup())["entries"])))
        _feed(engine, clock, points[10:])

        assert engine.get_elapsed_time() == pytest.approx(65_000)
        engine.toggle_pause()
        clock.advance(300_000)  # paused time is not counted
        engine.toggle_pause()
        clock.advance(10_000)
        outcome = await engine.stop()
        return engine, outcome

    engine, outcome = asyncio.run(run())
    assert engine.get_total_distance() == pytest.approx(0.12, rel=1e-6)
    assert len(engine.get_route_data()) == 13
    assert backup_sizes == [(2, 10)]
    assert outcome == SaveOutcome.CANCELLED
    assert engine.get_elapsed_time() == pytest.approx(75_000, abs=1_000)
    assert engine.get_tracking_state() == {"is_tracking": False, "is_paused": False}


def test_jitter_and_low_accuracy_samples_change_nothing(tmp_path, clock) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx)
        await engine.start()
        _feed(engine, clock, walk_north(2, step_m=20))
        before = (engine.get_total_distance(), len(ctx.buffer.path), len(ctx.buffer))

        lat, lng = ctx.buffer.path[-1].lat, ctx.buffer.path[-1].lng
        jitter = offset_north(lat, lng, 2.0)
        engine.tracking.handle_position_update(sample_at(*jitter, clock))
        far = offset_north(lat, lng, 50)
        engine.tracking.handle_position_update(sample_at(*far, clock, accuracy=250))
        after = (engine.get_total_distance(), len(ctx.buffer.path), len(ctx.buffer))
        await engine.stop()
        return before, after

    before, after = asyncio.run(run())
    assert before == after
    assert before[2] == 2


def test_samples_ignored_while_paused(tmp_path, clock) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx)
        await engine.start()
        _feed(engine, clock, walk_north(1))
        engine.toggle_pause()
        _feed(engine, clock, [offset_north(START_LAT, START_LNG, 100)])
        state = engine.get_tracking_state()
        await engine.stop()
        return state, len(ctx.buffer)

    state, count = asyncio.run(run())
    assert state == {"is_tracking": True, "is_paused": True}
    assert count == 1


def test_samples_without_altitude_get_api_elevation(tmp_path, clock) -> None:
    lookup = FakeLookup(value=23.0)

    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx, lookup=lookup)
        await engine.start()
        points = walk_north(3)
        _feed(engine, clock, points[:1], step_ms=2_000, altitude=None)
        await engine.enricher.drain()
        _feed(engine, clock, points[1:], step_ms=2_000, altitude=None)
        data = engine.get_route_data()
        await engine.stop()
        return data

    data = asyncio.run(run())
    assert [e.elevation_source for e in data] == ["api", "api-cached", "api-cached"]
    assert all(e.elevation == 23.0 for e in data)
    assert len(lookup.calls) == 1


def test_stop_and_save_persists_route_and_clears_backup(tmp_path, clock, notifier, notifications) -> None:
    summaries = []

    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx, SaveOutcome.SAVED, "Morning walk", summaries, notifier)
        await engine.start()
        _feed(engine, clock, walk_north(4))
        engine.add_note("Great coffee here")
        outcome = await engine.stop()
        return engine, outcome, await engine.get_sessions(), await ctx.store.get_backup()

    engine, outcome, sessions, backup = asyncio.run(run())
    assert outcome == SaveOutcome.SAVED
    assert summaries[0].locations == 4
    assert summaries[0].notes == 1
    assert [s.name for s in sessions] == ["Morning walk"]
    assert sessions[0].summary() == {"location": 4, "photo": 0, "text": 1}
    assert sessions[0].elapsed_time == pytest.approx(20_000)
    assert backup is None
    assert engine.get_route_data() == []
    assert engine.get_elapsed_time() == 0
    assert ("success", '"Morning walk" saved locally!') in notifications


def test_discard_clears_buffer_and_backup(tmp_path, clock, notifier, notifications) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx, SaveOutcome.DISCARDED, notifier=notifier)
        await engine.start()
        _feed(engine, clock, walk_north(3))
        await ctx.backups.drain()
        outcome = await engine.stop()
        return engine, outcome, await ctx.store.get_backup(), await engine.get_sessions()

    engine, outcome, backup, sessions = asyncio.run(run())
    assert outcome == SaveOutcome.DISCARDED
    assert backup is None
    assert sessions == []
    assert engine.get_route_data() == []
    assert ("info", "Route discarded") in notifications


def test_cancel_keeps_route_for_later(tmp_path, clock) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx, SaveOutcome.CANCELLED)
        await engine.start()
        _feed(engine, clock, walk_north(3))
        await engine.stop()
        elapsed = engine.get_elapsed_time()

        # Starting again continues the same route
        await engine.start()
        clock.advance(5_000)
        stats = engine.get_tracking_stats()
        await engine.stop()
        return elapsed, stats

    elapsed, stats = asyncio.run(run())
    assert elapsed == pytest.approx(15_000)
    assert stats["point_count"] == 3
    assert stats["elapsed_time"] == pytest.approx(20_000)


def test_stop_writes_final_snapshot_before_save_flow(tmp_path, clock) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx, SaveOutcome.CANCELLED)
        await engine.start()
        points = walk_north(12)
        _feed(engine, clock, points[:10])
        await ctx.backups.drain()
        before = len((await ctx.store.get_backup())["entries"])
        _feed(engine, clock, points[10:])
        await engine.stop()
        return before, await ctx.store.get_backup()

    before, backup = asyncio.run(run())
    assert before == 10
    assert len(backup["entries"]) == 12
    assert backup["elapsed_time"] == pytest.approx(60_000)


def test_failed_save_keeps_route_in_memory(tmp_path, clock, notifier, notifications, monkeypatch) -> None:
    async def exhausted(route):
        raise StorageExhaustedError("both backends full")

    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        monkeypatch.setattr(ctx.store, "save_route", exhausted)
        engine = _engine(ctx, SaveOutcome.SAVED, "Hill", notifier=notifier)
        await engine.start()
        _feed(engine, clock, walk_north(3))
        outcome = await engine.stop()
        return engine, outcome

    engine, outcome = asyncio.run(run())
    assert outcome == SaveOutcome.FAILED
    assert len(engine.get_route_data()) == 3
    assert notifications[-1][0] == "error"


def test_permission_denied_forces_stop(tmp_path, clock, notifier, notifications) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx, notifier=notifier)
        await engine.start()
        _feed(engine, clock, walk_north(2))
        engine.tracking.handle_position_error(PositionError(PositionError.PERMISSION_DENIED))
        outcome = await engine.tracking.forced_stop
        return engine, outcome

    engine, outcome = asyncio.run(run())
    assert outcome == SaveOutcome.CANCELLED
    assert not engine.get_tracking_state()["is_tracking"]
    assert notifications[0] == ("error", PositionError.MESSAGES[PositionError.PERMISSION_DENIED])


def test_timeout_is_reported_but_tracking_continues(tmp_path, clock, notifier, notifications) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx, notifier=notifier)
        await engine.start()
        engine.tracking.handle_position_error(PositionError(PositionError.TIMEOUT))
        state = engine.get_tracking_state()
        await engine.stop()
        return state

    assert asyncio.run(run())["is_tracking"]
    assert notifications == [("error", "Location request timed out. Please try again.")]


def test_save_session_rejects_misuse(tmp_path, clock) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx)
        with pytest.raises(RouteValidationError):
            await engine.save_session("Empty")
        engine.add_route_point(PositionEntry(coords=Coords(1, 1), timestamp=1, accuracy=1))
        with pytest.raises(RouteValidationError):
            await engine.save_session("   ")

    asyncio.run(run())


def test_save_session_ids_are_unique_and_sessions_newest_first(tmp_path, clock) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx)
        engine.add_route_point(PositionEntry(coords=Coords(1, 1), timestamp=1, accuracy=1))
        first = await engine.save_session("First")
        second = await engine.save_session("Second")
        clock.advance(60_000)
        third = await engine.save_session("Third")
        return first, second, third, await engine.get_sessions()

    first, second, third, sessions = asyncio.run(run())
    assert isinstance(first, FinalizedRoute)
    assert second.id == first.id + 1
    assert [s.name for s in sessions] == ["Third", "Second", "First"]
    assert third.date.endswith("+00:00")


def test_restored_route_resumes_from_its_elapsed_time(tmp_path, clock) -> None:
    async def accept(snapshot):
        return isinstance(snapshot, Snapshot)

    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx)
        await engine.start()
        _feed(engine, clock, walk_north(10))
        await ctx.backups.drain()
        ctx.close()  # crash: nothing saved

        clock.advance(120_000)
        new_ctx = make_context(tmp_path, clock)
        restored = _engine(new_ctx)
        await restored.open()
        ok = await restored.run_startup_recovery(accept)
        await restored.start()
        start_time = new_ctx.buffer.start_time
        clock.advance(10_000)
        stats = restored.get_tracking_stats()
        await restored.stop()
        return ok, stats, start_time

    ok, stats, start_time = asyncio.run(run())
    assert ok
    assert stats["point_count"] == 10
    assert stats["total_distance"] == pytest.approx(0.09, rel=1e-6)
    assert stats["elapsed_time"] == pytest.approx(60_000)
    assert start_time == pytest.approx(clock.now_ms() - 10_000 - 50_000)


def test_fresh_start_clears_previous_route_and_survey_data(tmp_path, clock) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        await ctx.store.set_setting("accessibility_data", {"ramp": True})
        engine = _engine(ctx)
        engine.add_route_point(PositionEntry(coords=Coords(1, 1), timestamp=1, accuracy=1))
        await engine.start()  # elapsed is 0, so this is not a resume
        result = (len(ctx.buffer), await ctx.store.get_setting("accessibility_data"))
        await engine.stop()
        return result

    assert asyncio.run(run()) == (0, None)


def test_photos_and_notes_require_tracking(tmp_path, clock) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        await ctx.store.open()
        engine = _engine(ctx)
        with pytest.raises(RouteValidationError):
            engine.add_note("too early")
        await engine.start()
        with pytest.raises(RouteValidationError):
            engine.add_note("no fix yet")
        _feed(engine, clock, walk_north(1))
        photo = engine.add_photo(b"\x89PNG fake image")
        note = engine.add_note("  view  ")
        with pytest.raises(RouteValidationError):
            engine.add_note("   ")
        await engine.stop()
        return photo, note

    photo, note = asyncio.run(run())
    assert photo.original_size == 15
    assert photo.content == "iVBORyBmYWtlIGltYWdl"
    assert photo.coords == Coords(START_LAT, START_LNG)
    assert note.content == "view"
