"""Photo and note annotations attached to the route being captured."""

import base64
from pathlib import Path
from typing import Optional, Union

from .errors import RouteValidationError
from .models import Coords, PhotoEntry, NoteEntry


class MediaRecorder:
    """Inserts photo and note entries at the current position"""

    def __init__(self, buffer, clock, logger=None):
        self.buffer = buffer
        self.clock = clock
        self.logger = logger

    def _position(self, coords: Optional[Coords]) -> Coords:
        if not self.buffer.is_tracking:
            raise RouteValidationError("Start tracking before adding photos or notes")
        coords = coords or self.buffer.last_coords
        if coords is None:
            raise RouteValidationError("No location fix yet")
        return coords

    def add_photo(self, image: Union[str, Path, bytes], coords: Optional[Coords] = None) -> PhotoEntry:
        """Attach an image, given as a file path or raw bytes"""
        coords = self._position(coords)
        if isinstance(image, (str, Path)):
            with open(image, "rb") as f:
                image = f.read()
        if not image:
            raise RouteValidationError("Photo is empty")

        entry = PhotoEntry(
            coords=coords,
            content=base64.b64encode(image).decode("ascii"),
            timestamp=self.clock.now_ms(),
            original_size=len(image),
        )
        self.buffer.add_route_point(entry)
        if self.logger:
            self.logger.log("Photo added", {"bytes": len(image), "entry_id": entry.entry_id})
        return entry

    def add_note(self, text: str, coords: Optional[Coords] = None) -> NoteEntry:
        coords = self._position(coords)
        text = (text or "").strip()
        if not text:
            raise RouteValidationError("Note text is empty")

        entry = NoteEntry(coords=coords, content=text, timestamp=self.clock.now_ms())
        self.buffer.add_route_point(entry)
        if self.logger:
            self.logger.log("Note added", {"chars": len(text), "entry_id": entry.entry_id})
        return entry
