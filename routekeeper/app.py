"""Console RouteKeeper application."""

import asyncio
import time
from typing import Optional

from .context import create_context
from .engine import RouteEngine
from .errors import RouteKeeperError
from .geo import format_distance, format_duration
from .gps import GPS, GPSRecorder, GPSPlayback
from .logger import Logger
from .models import Snapshot
from .tracking import RouteSummary, SaveDecision, SaveOutcome
from .websocket_gps import WebSocketGPS


class ConsolePrompts:
    """Restore prompt, save/discard flow and notifications on stdin/stdout"""

    def __init__(self, route_name: Optional[str] = None):
        # With a preset name the save flow never asks
        self.route_name = route_name

    async def ask(self, question: str) -> str:
        try:
            answer = await asyncio.to_thread(input, question)
        except EOFError:
            return ""
        return answer.strip()

    async def restore_prompt(self, snapshot: Snapshot) -> bool:
        counts = snapshot.counts
        age_min = (time.time() * 1000 - snapshot.backup_time) / 60000
        print("\nUnsaved route found")
        print(f"  Saved {age_min:.0f} minutes ago")
        print(f"  GPS points: {counts['location']}, photos: {counts['photo']}, notes: {counts['text']}")
        print(f"  Distance: {format_distance(snapshot.total_distance)}")
        print(f"  Duration: {format_duration(snapshot.elapsed_time)}")
        answer = await self.ask("Restore it? [y/N] ")
        return answer.lower() in ("y", "yes")

    async def save_flow(self, summary: RouteSummary) -> SaveDecision:
        if self.route_name:
            return SaveDecision(SaveOutcome.SAVED, self.route_name)

        print("\n" + "=" * 40)
        print("SAVE ROUTE")
        print("=" * 40)
        print(summary.describe())
        answer = (await self.ask("[s]ave, [d]iscard or [c]ancel? ")).lower()
        if answer in ("d", "discard"):
            return SaveDecision(SaveOutcome.DISCARDED)
        if answer not in ("s", "save"):
            return SaveDecision(SaveOutcome.CANCELLED)
        name = await self.ask(f"Route name [{summary.default_name}]: ")
        return SaveDecision(SaveOutcome.SAVED, name or summary.default_name)

    def notify(self, level: str, message: str):
        prefix = {"error": "!", "success": "+"}.get(level, "-")
        print(f"{prefix} {message}")


class RouteKeeper:
    """Main application"""

    def __init__(self, log_path: Optional[str] = None, db_path: Optional[str] = None,
                 fallback_path: Optional[str] = None, route_name: Optional[str] = None,
                 duration: Optional[float] = None, echo: bool = False):
        self.logger = Logger(log_path, echo=echo)
        self.prompts = ConsolePrompts(route_name)
        self.ctx = create_context(db_path=db_path, fallback_path=fallback_path,
                                  logger=self.logger, notifier=self.prompts.notify)
        self.duration = duration
        self.gps_source = GPS()
        self.engine: Optional[RouteEngine] = None

    def set_gps_source(self, source):
        """Set GPS source (GPS, GPSRecorder, GPSPlayback or WebSocketGPS)"""
        self.gps_source = source

    def _build_engine(self) -> RouteEngine:
        self.engine = RouteEngine(self.ctx, self.gps_source,
                                  save_flow=self.prompts.save_flow,
                                  notifier=self.prompts.notify)
        return self.engine

    def is_playback_finished(self) -> bool:
        return isinstance(self.gps_source, GPSPlayback) and self.gps_source.is_finished()

    def gps_status(self) -> str:
        if hasattr(self.gps_source, "get_status"):
            return self.gps_source.get_status()
        return "unknown"

    # --- capture session ----------------------------------------------------

    async def capture(self):
        engine = self._build_engine()
        if not await engine.open():
            print("Database unavailable, using fallback storage")

        if await engine.run_startup_recovery(self.prompts.restore_prompt):
            print("Route restored, capture will continue from it")

        if isinstance(self.gps_source, WebSocketGPS):
            await self.gps_source.start()

        await engine.start()
        print("Tracking started. Press Ctrl+C to stop")

        started = time.monotonic()
        last_status = started
        try:
            while engine.get_tracking_state()["is_tracking"]:
                await asyncio.sleep(1)
                now = time.monotonic()
                if now - last_status >= self.ctx.config["status_interval"]:
                    self.logger.log("STATE", {**engine.get_tracking_stats(), "gps": self.gps_status()})
                    last_status = now
                if self.is_playback_finished():
                    print("\nPlayback finished")
                    self.logger.log("Playback finished")
                    break
                if self.duration is not None and now - started >= self.duration:
                    self.logger.log("Capture duration reached", {"seconds": self.duration})
                    break
        except asyncio.CancelledError:
            print("\nCapture interrupted")
            self.logger.log("Capture interrupted by user")

        try:
            # A permission loss already stopped capture and is running the save flow
            if engine.tracking.forced_stop is not None:
                outcome = await engine.tracking.forced_stop
            else:
                outcome = await engine.stop()
            stats = engine.get_tracking_stats()
            self.logger.log("Capture summary", {"outcome": outcome, **stats})
        finally:
            if isinstance(self.gps_source, WebSocketGPS):
                await self.gps_source.stop()
            if isinstance(self.gps_source, GPSRecorder):
                self.gps_source.save()
            self.ctx.close()

    def run(self):
        """Run a capture session until stopped"""
        print("\n=== RouteKeeper ===")
        if isinstance(self.gps_source, GPSPlayback):
            print(f"Playback mode: {self.gps_source.speed}x speed")
        print()
        try:
            asyncio.run(self.capture())
        except KeyboardInterrupt:
            # The backup slot still holds the route for the next start
            print("Stopped")

    # --- one-shot commands --------------------------------------------------

    async def _open(self) -> RouteEngine:
        engine = self._build_engine()
        await engine.open()
        return engine

    async def list_sessions(self):
        engine = await self._open()
        try:
            routes = await engine.get_sessions()
            if not routes:
                print("No saved routes")
            for route in routes:
                counts = route.summary()
                print(f"{route.id}  {route.date[:16]}  {route.name}")
                print(f"    {format_distance(route.total_distance)}, "
                      f"{format_duration(route.elapsed_time)}, "
                      f"{counts['location']} points, {counts['photo']} photos, {counts['text']} notes")
        finally:
            self.ctx.close()

    async def show_info(self):
        engine = await self._open()
        try:
            info = await engine.storage_info()
            print(f"Backend: {info['backend']}")
            print(f"Migration completed: {info['migration_completed']}")
            if info["quota_formatted"]:
                print(f"Usage: {info['usage_formatted']} of {info['quota_formatted']} "
                      f"({info['usage_percent']}%)")
            else:
                print(f"Usage: {info['usage_formatted']}")
            print(f"Saved routes: {len(await engine.get_sessions())}")
        finally:
            self.ctx.close()

    async def recover(self):
        """Offer the unsaved route, then run the save flow on it"""
        engine = await self._open()
        try:
            if await engine.run_startup_recovery(self.prompts.restore_prompt):
                await engine.tracking.prompt_for_save()
            else:
                print("Nothing to recover")
        except RouteKeeperError as e:
            print(f"Recovery failed: {e}")
        finally:
            self.ctx.close()

    async def clear_sessions(self) -> int:
        engine = await self._open()
        try:
            count = len(await engine.get_sessions())
            await self.ctx.store.clear_all_sessions()
            return count
        finally:
            self.ctx.close()
