"""RouteEngine - the public face of the capture and persistence engine."""

from typing import Optional

from .backup import RestorePrompt
from .context import AppContext
from .elevation import ElevationLookup, ElevationEnricher
from .gps import PositionWatcher
from .media import MediaRecorder
from .models import Coords, FinalizedRoute, Snapshot
from .tracking import TrackingController, SaveFlow, SaveOutcome, Notifier


class RouteEngine:
    """Wires a context to a positioning source and exposes route operations.

    Call ``await engine.open()`` once before use so the persistence store
    can pick its backend and run the one-time migration.
    """

    def __init__(self, ctx: AppContext, source, lookup=None,
                 save_flow: Optional[SaveFlow] = None, notifier: Optional[Notifier] = None,
                 poll_interval: Optional[float] = None):
        self.ctx = ctx
        self.source = source
        if lookup is None:
            lookup = ElevationLookup(ctx.config["elevation_url"], ctx.config["elevation_timeout"],
                                     logger=ctx.logger).lookup
        self.watcher = PositionWatcher(
            source,
            poll_interval if poll_interval is not None else ctx.config["gps_poll_interval"],
            logger=ctx.logger,
        )
        self.enricher = ElevationEnricher(lookup, ctx.buffer, clock=ctx.clock,
                                          interval=ctx.config["elevation_fetch_interval"],
                                          logger=ctx.logger)
        self.tracking = TrackingController(ctx, self.watcher, self.enricher,
                                           save_flow=save_flow, notifier=notifier)
        self.media = MediaRecorder(ctx.buffer, ctx.clock, logger=ctx.logger)

    async def open(self) -> bool:
        """Open storage; False means the session runs on the fallback backend"""
        return await self.ctx.store.open()

    def close(self):
        self.ctx.close()

    # --- route buffer -------------------------------------------------------

    def get_route_data(self) -> list:
        return self.ctx.buffer.get_route_data()

    def get_total_distance(self) -> float:
        return self.ctx.buffer.total_distance

    def get_elapsed_time(self) -> float:
        return self.ctx.timer.get_current_elapsed()

    def get_tracking_state(self) -> dict:
        return self.ctx.buffer.get_tracking_state()

    def add_route_point(self, entry):
        return self.ctx.buffer.add_route_point(entry)

    def add_path_point(self, coords: Coords):
        self.ctx.buffer.add_path_point(coords)

    def add_photo(self, image, coords: Optional[Coords] = None):
        return self.media.add_photo(image, coords)

    def add_note(self, text: str, coords: Optional[Coords] = None):
        return self.media.add_note(text, coords)

    # --- tracking -----------------------------------------------------------

    async def start(self) -> bool:
        return await self.tracking.start()

    def toggle_pause(self) -> bool:
        return self.tracking.toggle_pause()

    async def stop(self) -> Optional[SaveOutcome]:
        return await self.tracking.stop()

    async def discard_route(self):
        await self.tracking.discard_route()

    def get_tracking_stats(self) -> dict:
        return self.tracking.get_tracking_stats()

    # --- persistence --------------------------------------------------------

    async def save_session(self, name: str) -> FinalizedRoute:
        return await self.tracking.save_session(name)

    async def get_sessions(self) -> list[FinalizedRoute]:
        return await self.ctx.store.get_routes()

    async def check_for_unsaved_route(self) -> Optional[Snapshot]:
        return await self.ctx.backups.check_for_unsaved_route()

    def restore_from_backup(self, snapshot) -> bool:
        return self.ctx.backups.restore_from_backup(snapshot)

    async def run_startup_recovery(self, prompt: RestorePrompt) -> bool:
        return await self.ctx.backups.run_startup_check(prompt)

    async def storage_info(self) -> dict:
        return await self.ctx.store.storage_info()
