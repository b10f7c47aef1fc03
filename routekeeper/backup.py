"""Crash recovery: periodic snapshots and startup restoration."""

import asyncio
from typing import Optional, Callable, Awaitable

from .clock import Clock
from .config import CONFIG
from .errors import StorageError
from .models import Snapshot, InvalidRecord, decode_snapshot

RestorePrompt = Callable[[Snapshot], Awaitable[bool]]


class BackupManager:
    """Writes the route buffer to the single backup slot and restores it.

    Snapshots are written every ``backup_interval`` seconds while tracking
    and whenever the buffer reports a threshold crossing on insert. A
    failing write is logged and never interrupts capture.
    """

    def __init__(self, buffer, store, timer, clock: Optional[Clock] = None,
                 config: Optional[dict] = None, logger=None,
                 device_info: Optional[dict] = None):
        self.buffer = buffer
        self.store = store
        self.timer = timer
        self.clock = clock or Clock()
        self.config = config or CONFIG
        self.logger = logger
        self.device_info = device_info or {}
        self.restore_handled = False
        self.writes = 0
        self._interval_task: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()
        buffer.backup_hook = self.request_backup

    # --- writing ------------------------------------------------------------

    def request_backup(self) -> Optional[asyncio.Task]:
        """Schedule a snapshot write without blocking the caller"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        # Mark now so the inserts that follow do not queue duplicate writes
        self.buffer.mark_backed_up()
        task = loop.create_task(self.autosave())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _live_elapsed(self) -> float:
        if self.buffer.is_tracking:
            return self.timer.get_current_elapsed()
        return self.buffer.elapsed_time

    async def autosave(self) -> bool:
        elapsed = self._live_elapsed()
        snapshot = self.buffer.snapshot(elapsed, self.device_info)
        try:
            backend = await self.store.save_backup(snapshot)
        except StorageError as e:
            self._log("Auto-backup failed on every backend", {"error": str(e)})
            return False
        self.buffer.mark_backed_up()
        self.writes += 1
        self._log("Auto-backup", {
            "backend": backend,
            "entries": len(snapshot.entries),
            "distance_km": round(snapshot.total_distance, 3),
            "elapsed_s": int(elapsed // 1000),
        })
        return True

    def start_auto_backup(self):
        self.stop_auto_backup()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._interval_task = loop.create_task(self._interval_loop())
        self._log("Auto backup started", {"interval_s": self.config["backup_interval"]})

    def stop_auto_backup(self):
        if self._interval_task:
            self._interval_task.cancel()
            self._interval_task = None

    async def _interval_loop(self):
        while True:
            await asyncio.sleep(self.config["backup_interval"])
            if self.buffer.is_tracking and len(self.buffer) > 0:
                await self.autosave()

    async def drain(self):
        """Wait for scheduled snapshot writes"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def clear_backup(self):
        self.stop_auto_backup()
        try:
            await self.store.clear_backup()
        except StorageError as e:
            self._log("Failed to clear backup", {"error": str(e)})
            return
        self._log("Route backup cleared")

    # --- recovery -----------------------------------------------------------

    async def check_for_unsaved_route(self) -> Optional[Snapshot]:
        """Return a restorable snapshot, deleting any unusable one"""
        try:
            raw = await self.store.get_backup()
        except (StorageError, ValueError) as e:
            self._log("Backup read failed, treating as absent", {"error": str(e)})
            await self.clear_backup()
            return None

        if raw is None:
            self._log("No backup found")
            return None

        if not isinstance(raw, dict) or not isinstance(raw.get("entries"), list):
            self._log("Invalid backup structure, removing")
            await self.clear_backup()
            return None

        backup_time = raw.get("backup_time")
        if not isinstance(backup_time, (int, float)) or isinstance(backup_time, bool):
            backup_time = 0
        age = self.clock.now_ms() - backup_time
        if age > self.config["backup_max_age"] * 1000:
            self._log("Route backup too old, removing", {"age_h": round(age / 3600000, 1)})
            await self.clear_backup()
            return None

        if not raw["entries"]:
            self._log("Route backup empty, removing")
            await self.clear_backup()
            return None

        snapshot = decode_snapshot(raw)
        if isinstance(snapshot, InvalidRecord):
            self._log("Route backup failed validation, removing", {"reason": snapshot.reason})
            await self.clear_backup()
            return None

        self._log("Found valid route backup", {
            "entries": len(snapshot.entries),
            "locations": snapshot.counts["location"],
            "distance_km": round(snapshot.total_distance, 3),
        })
        return snapshot

    def restore_from_backup(self, snapshot) -> bool:
        if not isinstance(snapshot, Snapshot):
            self._log("Refusing to restore an invalid snapshot")
            return False
        self.buffer.restore(snapshot)
        self.timer.set_elapsed_time(snapshot.elapsed_time)
        self._log("Route restored", {
            "entries": len(self.buffer),
            "path_points": len(self.buffer.path),
            "distance_km": round(self.buffer.total_distance, 3),
        })
        return True

    async def run_startup_check(self, prompt: RestorePrompt) -> bool:
        """Offer an unsaved route once per session; True if it was restored"""
        if self.buffer.is_tracking:
            self._log("Skipping restore check - tracking is active")
            return False
        if self.restore_handled:
            return False

        candidate = await self.check_for_unsaved_route()
        if candidate is None:
            return False
        self.restore_handled = True

        if await prompt(candidate):
            if self.restore_from_backup(candidate):
                return True
            await self.clear_backup()
            return False

        self._log("User discarded unsaved route")
        await self.clear_backup()
        return False

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)
