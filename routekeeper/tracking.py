"""GPS tracking state machine and the save/discard flow."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Callable, Awaitable

from .context import AppContext
from .elevation import ElevationEnricher
from .errors import PositionError, RouteValidationError, StorageError
from .geo import format_distance, format_duration
from .gps import PositionOptions, PositionWatcher
from .models import FinalizedRoute, PositionEntry, PositionSample, count_entries
from .sampling import SampleFilter, DistanceAccumulator

ACCESSIBILITY_DATA_KEY = "accessibility_data"


class SaveOutcome(str, Enum):
    SAVED = "saved"
    DISCARDED = "discarded"
    CANCELLED = "cancelled"
    FAILED = "failed"  # storage refused the save; the route stays in memory


@dataclass
class SaveDecision:
    outcome: SaveOutcome
    name: Optional[str] = None


@dataclass
class RouteSummary:
    locations: int
    photos: int
    notes: int
    total_distance: float  # km
    elapsed_time: float  # ms
    default_name: str

    def describe(self) -> str:
        return (f"GPS points: {self.locations}\n"
                f"Distance: {format_distance(self.total_distance)}\n"
                f"Duration: {format_duration(self.elapsed_time)}\n"
                f"Photos: {self.photos}\n"
                f"Notes: {self.notes}")


SaveFlow = Callable[[RouteSummary], Awaitable[SaveDecision]]
Notifier = Callable[[str, str], None]


class TrackingController:
    """Idle -> Tracking <-> Paused -> Idle.

    Samples from the positioning subscription go through the noise gate,
    the distance accumulator and the elevation enricher before landing in
    the route buffer.
    """

    def __init__(self, ctx: AppContext, watcher: PositionWatcher,
                 enricher: ElevationEnricher, save_flow: Optional[SaveFlow] = None,
                 notifier: Optional[Notifier] = None):
        self.ctx = ctx
        self.buffer = ctx.buffer
        self.timer = ctx.timer
        self.backups = ctx.backups
        self.logger = ctx.logger
        self.watcher = watcher
        self.enricher = enricher
        self.save_flow = save_flow
        self.notifier = notifier or ctx.notifier
        self.watch_handle: Optional[int] = None
        self.sample_filter = SampleFilter(ctx.config["max_accuracy"], ctx.config["min_movement"],
                                          ctx.config["earth_radius_km"])
        self.accumulator = DistanceAccumulator(ctx.config["earth_radius_km"])
        self._last_route_id = 0
        self.forced_stop: Optional[asyncio.Task] = None

    @property
    def is_tracking(self) -> bool:
        return self.buffer.is_tracking

    @property
    def is_paused(self) -> bool:
        return self.buffer.is_paused

    # --- transitions --------------------------------------------------------

    async def start(self) -> bool:
        if self.is_tracking:
            return False

        elapsed = self.buffer.elapsed_time
        resuming = elapsed > 0 and len(self.buffer) > 0
        now = self.ctx.clock.now_ms()

        if resuming:
            self.buffer.set_start_time(now - elapsed)
            self.buffer.set_elapsed_time(elapsed)
        else:
            self.buffer.clear()
            self.timer.reset()
            self.buffer.set_start_time(now)
            self.backups.restore_handled = False
            try:
                await self.ctx.store.delete_setting(ACCESSIBILITY_DATA_KEY)
            except StorageError as e:
                self.logger.log("Could not clear accessibility survey data", {"error": str(e)})

        self.forced_stop = None
        self.buffer.set_tracking_state(True, False)
        self.backups.start_auto_backup()
        self._subscribe(self.ctx.config["start_position_options"])
        self.timer.start(elapsed if resuming else 0)

        self.logger.log("Tracking resumed" if resuming else "Tracking started", {
            "entries": len(self.buffer),
            "elapsed_ms": elapsed if resuming else 0,
        })
        return True

    def toggle_pause(self) -> bool:
        if not self.is_tracking:
            self.logger.log("Cannot pause - tracking not active")
            return False

        if self.is_paused:
            self.buffer.set_tracking_state(True, False)
            self.timer.resume()
            self._subscribe(self.ctx.config["resume_position_options"])
            self.backups.start_auto_backup()
            self.logger.log("Tracking resumed from pause", {"elapsed_ms": self.timer.elapsed_time})
        else:
            self.buffer.set_tracking_state(True, True)
            self.timer.pause()
            self._unsubscribe()
            self.backups.stop_auto_backup()
            self.buffer.set_elapsed_time(self.timer.elapsed_time)
            self.logger.log("Tracking paused", {"elapsed_ms": self.timer.elapsed_time})
        return True

    async def stop(self) -> Optional[SaveOutcome]:
        """Stop capture and run the save/discard flow"""
        if not self.is_tracking:
            self.logger.log("Tracking not active")
            return None

        self._unsubscribe()
        final_elapsed = self.timer.stop()
        self.buffer.set_elapsed_time(final_elapsed)
        self.buffer.set_tracking_state(False)
        self.backups.stop_auto_backup()
        await self.enricher.drain()
        await self.backups.drain()
        if len(self.buffer) > 0:
            # Final snapshot so a cancelled save recovers the whole route
            await self.backups.autosave()
        self.logger.log("Tracking stopped", {
            "entries": len(self.buffer),
            "distance_km": round(self.buffer.total_distance, 3),
            "elapsed_ms": final_elapsed,
        })
        return await self.prompt_for_save()

    async def prompt_for_save(self) -> Optional[SaveOutcome]:
        if len(self.buffer) == 0:
            self.logger.log("No route data to save")
            return None
        if self.save_flow is None:
            self.logger.log("No save flow configured, keeping route in memory")
            return SaveOutcome.CANCELLED

        decision = await self.save_flow(self.summary())
        if decision.outcome == SaveOutcome.SAVED:
            try:
                await self.save_session(decision.name or self.default_route_name())
            except StorageError as e:
                self.logger.log("Failed to save route", {"error": str(e)})
                self._notify("error", "Failed to save. Your route is still in memory, please try again.")
                return SaveOutcome.FAILED
            self.reset_after_finalize()
            return SaveOutcome.SAVED
        if decision.outcome == SaveOutcome.DISCARDED:
            await self.discard_route()
            return SaveOutcome.DISCARDED

        self.logger.log("Save cancelled, route kept", {"entries": len(self.buffer)})
        return SaveOutcome.CANCELLED

    # --- finalization -------------------------------------------------------

    async def save_session(self, name: str) -> FinalizedRoute:
        """Persist the buffer as a finalized route and clear the backup slot"""
        if not name or not name.strip():
            raise RouteValidationError("A route name is required")
        if len(self.buffer) == 0:
            raise RouteValidationError("Cannot save a route with no entries")

        now = self.ctx.clock.now_ms()
        route_id = max(int(now), self._last_route_id + 1)
        elapsed = self.timer.get_current_elapsed() if self.timer.is_running else self.buffer.elapsed_time
        route = FinalizedRoute.create(
            route_id=route_id,
            name=name.strip(),
            date=datetime.fromtimestamp(now / 1000, timezone.utc).isoformat(),
            total_distance=self.buffer.total_distance,
            elapsed_time=elapsed,
            entries=self.buffer.entries,
        )
        await self.ctx.store.save_route(route)
        self._last_route_id = route_id
        await self.backups.clear_backup()
        self._notify("success", f'"{route.name}" saved locally!')
        return route

    async def discard_route(self):
        self.reset_after_finalize()
        await self.backups.clear_backup()
        self._notify("info", "Route discarded")
        self.logger.log("Route data discarded")

    def reset_after_finalize(self):
        self._unsubscribe()
        self.backups.stop_auto_backup()
        self.buffer.clear()
        self.timer.reset()

    def summary(self) -> RouteSummary:
        counts = count_entries(self.buffer.entries)
        return RouteSummary(
            locations=counts["location"],
            photos=counts["photo"],
            notes=counts["text"],
            total_distance=self.buffer.total_distance,
            elapsed_time=self.buffer.elapsed_time,
            default_name=self.default_route_name(),
        )

    def default_route_name(self) -> str:
        now = datetime.fromtimestamp(self.ctx.clock.now_ms() / 1000)
        return f"Route {now.strftime('%Y-%m-%d %H:%M')}"

    # --- positioning callbacks ----------------------------------------------

    def handle_position_update(self, sample: PositionSample):
        if not self.is_tracking or self.is_paused:
            return

        result = self.sample_filter.check(sample, self.buffer.last_coords)
        if not result.accepted:
            if result.reason == "low_accuracy":
                self.logger.log("GPS accuracy too low", {"accuracy": sample.accuracy})
            return

        coords = sample.coords
        self.accumulator.accumulate(self.buffer, self.buffer.last_coords, coords)

        entry = PositionEntry(
            coords=coords,
            timestamp=sample.timestamp or self.ctx.clock.now_ms(),
            accuracy=sample.accuracy,
        )
        has_device_elevation = self.enricher.apply_device(entry, sample)
        self.buffer.add_route_point(entry)
        self.buffer.add_path_point(coords)
        if not has_device_elevation:
            self.enricher.request(entry)

        self.logger.log("GPS", {
            "lat": round(coords.lat, 6),
            "lng": round(coords.lng, 6),
            "accuracy": sample.accuracy,
            "elevation": entry.elevation,
            "distance_km": round(self.buffer.total_distance, 3),
        })

    def handle_position_error(self, error: PositionError):
        self.logger.log("GPS error", {"code": error.code, "detail": error.detail})
        self._notify("error", error.user_message)
        if error.code == PositionError.PERMISSION_DENIED and self.is_tracking:
            self._unsubscribe()
            self.forced_stop = asyncio.get_running_loop().create_task(self.stop())

    # --- helpers ------------------------------------------------------------

    def _subscribe(self, options: dict):
        self._unsubscribe()
        self.watch_handle = self.watcher.subscribe(
            self.handle_position_update,
            self.handle_position_error,
            PositionOptions.from_config(options),
        )

    def _unsubscribe(self):
        if self.watch_handle is not None:
            self.watcher.unsubscribe(self.watch_handle)
            self.watch_handle = None

    def _notify(self, level: str, message: str):
        if self.notifier:
            self.notifier(level, message)

    def get_tracking_stats(self) -> dict:
        return {
            "is_tracking": self.is_tracking,
            "is_paused": self.is_paused,
            "total_distance": self.buffer.total_distance,
            "elapsed_time": self.timer.get_current_elapsed(),
            "point_count": len(self.buffer),
        }
