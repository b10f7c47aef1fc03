"""Tests for the engine facade running on either storage backend."""

from __future__ import annotations

import asyncio

import pytest

from routekeeper.engine import RouteEngine
from routekeeper.models import FinalizedRoute, Snapshot
from routekeeper.tracking import SaveDecision, SaveOutcome

from conftest import FakeLookup, IdleSource, make_context, sample_at, walk_north


async def _session(tmp_path, clock, db_name):
    async def keep(summary):
        return SaveDecision(SaveOutcome.CANCELLED)

    ctx = make_context(tmp_path, clock, db_name=db_name)
    engine = RouteEngine(ctx, IdleSource(), lookup=FakeLookup(), save_flow=keep)
    primary_ok = await engine.open()

    await engine.start()
    for lat, lng in walk_north(5):
        clock.advance(5_000)
        engine.tracking.handle_position_update(sample_at(lat, lng, clock, altitude=3.0))
    await engine.stop()
    route = await engine.save_session("Riverside")
    sessions = await engine.get_sessions()
    engine.tracking.reset_after_finalize()

    # Unsaved work left behind by a second capture
    await engine.start()
    clock.advance(5_000)
    engine.tracking.handle_position_update(sample_at(*walk_north(1)[0], clock, altitude=3.0))
    await ctx.backups.drain()
    engine.tracking.reset_after_finalize()
    unsaved = await engine.check_for_unsaved_route()
    info = await engine.storage_info()
    engine.close()
    return primary_ok, route, sessions, unsaved, info


@pytest.mark.parametrize(
    "db_name, backend",
    [("routes.db", "sqlite"), ("/nonexistent/dir/routes.db", "fallback")],
)
def test_public_operations_behave_the_same_on_both_backends(tmp_path, clock, db_name, backend) -> None:
    primary_ok, route, sessions, unsaved, info = asyncio.run(_session(tmp_path, clock, db_name))

    assert primary_ok is (backend == "sqlite")
    assert info["backend"] == backend
    assert isinstance(route, FinalizedRoute)
    assert [s.id for s in sessions] == [route.id]
    assert sessions[0].total_distance == pytest.approx(0.04, rel=1e-6)
    assert sessions[0].summary()["location"] == 5
    assert isinstance(unsaved, Snapshot)
    assert len(unsaved.entries) == 1


def test_engine_accessors_reflect_buffer(tmp_path, clock) -> None:
    async def run():
        ctx = make_context(tmp_path, clock)
        engine = RouteEngine(ctx, IdleSource(), lookup=FakeLookup())
        await engine.open()
        await engine.start()
        clock.advance(3_000)
        state = engine.get_tracking_state()
        elapsed = engine.get_elapsed_time()
        engine.toggle_pause()
        paused = engine.get_tracking_stats()
        outcome = await engine.stop()
        return state, elapsed, paused, outcome

    state, elapsed, paused, outcome = asyncio.run(run())
    assert state == {"is_tracking": True, "is_paused": False}
    assert elapsed == 3_000
    assert paused["is_paused"] and paused["point_count"] == 0
    assert outcome is None  # nothing captured, nothing to save
