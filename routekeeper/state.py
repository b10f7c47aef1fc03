"""The live route buffer."""

import copy
from typing import Optional, Callable

from .clock import Clock
from .config import CONFIG
from .models import Coords, PositionEntry, Snapshot


class RouteBuffer:
    """Ordered entries, derived path and aggregates of the route being captured.

    Mutated only by the capture pipeline and the restore path. Entries get
    an ``entry_id`` on insertion so later enrichment can find them.
    """

    def __init__(self, clock: Optional[Clock] = None, config: Optional[dict] = None,
                 logger=None):
        self.clock = clock or Clock()
        self.config = config or CONFIG
        self.logger = logger
        self.entries: list = []
        self.path: list[Coords] = []
        self.total_distance = 0.0  # km
        self.elapsed_time = 0.0  # ms
        self.is_tracking = False
        self.is_paused = False
        self.start_time: Optional[float] = None  # wall ms
        self.last_coords: Optional[Coords] = None
        self.last_backup_at: Optional[float] = None  # monotonic ms
        self.backup_hook: Optional[Callable[[], None]] = None
        self._next_entry_id = 1

    def __len__(self) -> int:
        return len(self.entries)

    # --- capture path -------------------------------------------------

    def add_route_point(self, entry):
        """Append an entry, stamping id and timestamp if missing"""
        if entry.entry_id is None:
            entry.entry_id = self._next_entry_id
        self._next_entry_id = max(self._next_entry_id, entry.entry_id) + 1
        if not entry.timestamp:
            entry.timestamp = self.clock.now_ms()
        self.entries.append(entry)

        if self.is_tracking and self.backup_due() and self.backup_hook:
            self.backup_hook()
        return entry

    def backup_due(self) -> bool:
        if len(self.entries) % self.config["backup_every_entries"] == 0:
            return True
        if self.last_backup_at is None:
            return True
        gap = self.clock.monotonic_ms() - self.last_backup_at
        return gap > self.config["backup_max_gap"] * 1000

    def mark_backed_up(self):
        self.last_backup_at = self.clock.monotonic_ms()

    def add_path_point(self, coords: Coords):
        self.last_coords = coords
        self.path.append(coords)

    def update_distance(self, total_km: float):
        self.total_distance = total_km

    def get_entry(self, entry_id: int):
        for entry in reversed(self.entries):
            if entry.entry_id == entry_id:
                return entry
        return None

    def update_elevation(self, entry_id: int, elevation: float, source: str) -> bool:
        """Patch elevation onto a previously inserted position entry"""
        entry = self.get_entry(entry_id)
        if not isinstance(entry, PositionEntry):
            return False
        entry.elevation = elevation
        entry.elevation_source = source
        return True

    # --- accessors ------------------------------------------------------

    def get_route_data(self) -> list:
        return copy.deepcopy(self.entries)

    def get_tracking_state(self) -> dict:
        return {"is_tracking": self.is_tracking, "is_paused": self.is_paused}

    def set_tracking_state(self, is_tracking: bool, is_paused: bool = False):
        self.is_tracking = is_tracking
        self.is_paused = is_paused

    def set_elapsed_time(self, elapsed: float):
        self.elapsed_time = elapsed

    def set_start_time(self, start_time: Optional[float]):
        self.start_time = start_time

    # --- lifecycle ------------------------------------------------------

    def clear(self):
        self.entries = []
        self.path = []
        self.total_distance = 0.0
        self.elapsed_time = 0.0
        self.last_coords = None
        self.start_time = None
        self.is_tracking = False
        self.is_paused = False
        self.last_backup_at = None
        self._next_entry_id = 1

    def snapshot(self, elapsed_time: float, device_info: Optional[dict] = None) -> Snapshot:
        return Snapshot(
            entries=copy.deepcopy(self.entries),
            path=list(self.path),
            total_distance=self.total_distance,
            elapsed_time=elapsed_time,
            start_time=self.start_time,
            is_tracking=self.is_tracking,
            is_paused=self.is_paused,
            backup_time=self.clock.now_ms(),
            device_info=dict(device_info or {}),
        )

    def restore(self, snapshot: Snapshot):
        """Repopulate from a snapshot; a restored route is never auto-resumed"""
        self.entries = copy.deepcopy(snapshot.entries)
        self.path = list(snapshot.path)
        self.total_distance = snapshot.total_distance
        self.elapsed_time = snapshot.elapsed_time
        self.start_time = snapshot.start_time

        if not self.path and self.entries:
            self.path = [e.coords for e in self.entries if isinstance(e, PositionEntry)]
            if self.logger:
                self.logger.log("Rebuilt path from position entries", {"points": len(self.path)})

        self.last_coords = self.path[-1] if self.path else None
        self.is_tracking = False
        self.is_paused = False
        ids = [e.entry_id for e in self.entries if e.entry_id is not None]
        next_id = max(ids) + 1 if ids else 1
        # Legacy entries without ids get fresh ones
        for entry in self.entries:
            if entry.entry_id is None:
                entry.entry_id = next_id
                next_id += 1
        self._next_entry_id = next_id
