"""Data classes for RouteKeeper.

Persisted records (snapshots and finalized routes) are tagged with a schema
name and version. Decoding goes through explicit field checks and yields a
typed value, or an ``InvalidRecord`` from the ``decode_*`` helpers.
"""

from __future__ import annotations

import copy
import json
import math
from dataclasses import dataclass, field, asdict
from typing import Any, ClassVar, Optional, Union

from .errors import SnapshotSchemaError

SNAPSHOT_SCHEMA = "route_snapshot"
SNAPSHOT_VERSION = 2
ROUTE_SCHEMA = "finalized_route"
ROUTE_VERSION = 2

ELEVATION_SOURCES = ("device", "api", "api-cached")


def _require(d: dict, key: str, types, where: str):
    if key not in d:
        raise SnapshotSchemaError(f"{where}: missing field '{key}'")
    value = d[key]
    # bool is an int subclass; only accept it where asked for
    if isinstance(value, bool) and bool not in _as_tuple(types):
        raise SnapshotSchemaError(f"{where}: field '{key}' has type bool")
    if not isinstance(value, types):
        raise SnapshotSchemaError(
            f"{where}: field '{key}' has type {type(value).__name__}")
    return value


def _optional(d: dict, key: str, types, where: str):
    if d.get(key) is None:
        return None
    return _require(d, key, types, where)


def _as_tuple(types) -> tuple:
    return types if isinstance(types, tuple) else (types,)


_NUMBER = (int, float)


@dataclass(frozen=True)
class Coords:
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, d: Any) -> "Coords":
        if not isinstance(d, dict):
            raise SnapshotSchemaError("coords: expected an object")
        lat = _require(d, "lat", _NUMBER, "coords")
        lng = _require(d, "lng", _NUMBER, "coords")
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise SnapshotSchemaError(f"coords: out of range ({lat}, {lng})")
        return cls(lat=float(lat), lng=float(lng))


@dataclass
class PositionSample:
    """A raw fix as delivered by a positioning source"""
    lat: float
    lng: float
    accuracy: float
    timestamp: float  # ms, wall clock
    altitude: Optional[float] = None
    altitude_accuracy: Optional[float] = None

    @property
    def coords(self) -> Coords:
        return Coords(self.lat, self.lng)

    @property
    def has_altitude(self) -> bool:
        return self.altitude is not None and not math.isnan(self.altitude)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "PositionSample":
        return cls(**d)


@dataclass
class PositionEntry:
    type: ClassVar[str] = "location"

    coords: Coords
    timestamp: float
    accuracy: float
    elevation: Optional[float] = None
    elevation_source: Optional[str] = None
    elevation_accuracy: Optional[float] = None
    entry_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "entry_id": self.entry_id,
            "coords": self.coords.to_dict(),
            "timestamp": self.timestamp,
            "accuracy": self.accuracy,
            "elevation": self.elevation,
            "elevation_source": self.elevation_source,
            "elevation_accuracy": self.elevation_accuracy,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "PositionEntry":
        where = "location entry"
        source = _optional(d, "elevation_source", str, where)
        if source is not None and source not in ELEVATION_SOURCES:
            raise SnapshotSchemaError(f"{where}: unknown elevation source '{source}'")
        return cls(
            coords=Coords.from_dict(d.get("coords")),
            timestamp=_require(d, "timestamp", _NUMBER, where),
            accuracy=_require(d, "accuracy", _NUMBER, where),
            elevation=_optional(d, "elevation", _NUMBER, where),
            elevation_source=source,
            elevation_accuracy=_optional(d, "elevation_accuracy", _NUMBER, where),
            entry_id=_optional(d, "entry_id", int, where),
        )


@dataclass
class PhotoEntry:
    type: ClassVar[str] = "photo"

    coords: Coords
    content: str  # base64 image payload
    timestamp: float
    original_size: int
    entry_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "entry_id": self.entry_id,
            "coords": self.coords.to_dict(),
            "content": self.content,
            "timestamp": self.timestamp,
            "original_size": self.original_size,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "PhotoEntry":
        where = "photo entry"
        return cls(
            coords=Coords.from_dict(d.get("coords")),
            content=_require(d, "content", str, where),
            timestamp=_require(d, "timestamp", _NUMBER, where),
            original_size=_require(d, "original_size", int, where),
            entry_id=_optional(d, "entry_id", int, where),
        )


@dataclass
class NoteEntry:
    type: ClassVar[str] = "text"

    coords: Coords
    content: str
    timestamp: float
    entry_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "entry_id": self.entry_id,
            "coords": self.coords.to_dict(),
            "content": self.content,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "NoteEntry":
        where = "note entry"
        return cls(
            coords=Coords.from_dict(d.get("coords")),
            content=_require(d, "content", str, where),
            timestamp=_require(d, "timestamp", _NUMBER, where),
            entry_id=_optional(d, "entry_id", int, where),
        )


RouteEntry = Union[PositionEntry, PhotoEntry, NoteEntry]

ENTRY_TYPES = {cls.type: cls for cls in (PositionEntry, PhotoEntry, NoteEntry)}


def entry_from_dict(d: Any) -> RouteEntry:
    if not isinstance(d, dict):
        raise SnapshotSchemaError("entry: expected an object")
    entry_cls = ENTRY_TYPES.get(d.get("type"))
    if entry_cls is None:
        raise SnapshotSchemaError(f"entry: unknown type {d.get('type')!r}")
    return entry_cls.from_dict(d)


def count_entries(entries) -> dict:
    """Count entries by kind, as shown in save and restore prompts"""
    counts = {"location": 0, "photo": 0, "text": 0}
    for entry in entries:
        counts[entry.type] += 1
    return counts


def _check_tag(d: dict, schema: str, version: int, where: str):
    if d.get("schema") != schema:
        raise SnapshotSchemaError(f"{where}: schema tag {d.get('schema')!r} != {schema!r}")
    found = _require(d, "version", int, where)
    if found > version:
        raise SnapshotSchemaError(f"{where}: unsupported version {found}")


@dataclass
class Snapshot:
    """Point-in-time copy of the route buffer, kept in the single backup slot"""
    entries: list
    path: list
    total_distance: float  # km
    elapsed_time: float  # ms
    start_time: Optional[float]
    is_tracking: bool
    is_paused: bool
    backup_time: float  # ms, wall clock
    device_info: dict = field(default_factory=dict)

    @property
    def counts(self) -> dict:
        return count_entries(self.entries)

    def to_dict(self) -> dict:
        return {
            "schema": SNAPSHOT_SCHEMA,
            "version": SNAPSHOT_VERSION,
            "entries": [e.to_dict() for e in self.entries],
            "path": [c.to_dict() for c in self.path],
            "total_distance": self.total_distance,
            "elapsed_time": self.elapsed_time,
            "start_time": self.start_time,
            "is_tracking": self.is_tracking,
            "is_paused": self.is_paused,
            "backup_time": self.backup_time,
            "device_info": dict(self.device_info),
        }

    @classmethod
    def from_dict(cls, d: Any) -> "Snapshot":
        where = "snapshot"
        if not isinstance(d, dict):
            raise SnapshotSchemaError(f"{where}: expected an object")
        entries = _require(d, "entries", list, where)
        _check_tag(d, SNAPSHOT_SCHEMA, SNAPSHOT_VERSION, where)
        path = d.get("path") or []
        if not isinstance(path, list):
            raise SnapshotSchemaError(f"{where}: field 'path' has type {type(path).__name__}")
        device_info = d.get("device_info") or {}
        if not isinstance(device_info, dict):
            raise SnapshotSchemaError(f"{where}: field 'device_info' is not an object")
        return cls(
            entries=[entry_from_dict(e) for e in entries],
            path=[Coords.from_dict(c) for c in path],
            total_distance=float(_require(d, "total_distance", _NUMBER, where)),
            elapsed_time=float(_require(d, "elapsed_time", _NUMBER, where)),
            start_time=_optional(d, "start_time", _NUMBER, where),
            is_tracking=_require(d, "is_tracking", bool, where),
            is_paused=_require(d, "is_paused", bool, where),
            backup_time=_require(d, "backup_time", _NUMBER, where),
            device_info=device_info,
        )


@dataclass(frozen=True)
class FinalizedRoute:
    """An immutable, named, saved route"""
    id: int
    name: str
    date: str  # ISO 8601 creation time
    total_distance: float  # km
    elapsed_time: float  # ms
    entries: tuple
    data_size: int = 0
    migrated_from: Optional[str] = None
    migrated_at: Optional[str] = None

    @classmethod
    def create(cls, route_id: int, name: str, date: str, total_distance: float,
               elapsed_time: float, entries) -> "FinalizedRoute":
        frozen = tuple(copy.deepcopy(e) for e in entries)
        data_size = len(json.dumps([e.to_dict() for e in frozen]))
        return cls(id=route_id, name=name, date=date, total_distance=total_distance,
                   elapsed_time=elapsed_time, entries=frozen, data_size=data_size)

    def summary(self) -> dict:
        return count_entries(self.entries)

    def to_dict(self) -> dict:
        d = {
            "schema": ROUTE_SCHEMA,
            "version": ROUTE_VERSION,
            "id": self.id,
            "name": self.name,
            "date": self.date,
            "total_distance": self.total_distance,
            "elapsed_time": self.elapsed_time,
            "entries": [e.to_dict() for e in self.entries],
            "data_size": self.data_size,
        }
        if self.migrated_from:
            d["migrated_from"] = self.migrated_from
            d["migrated_at"] = self.migrated_at
        return d

    @classmethod
    def from_dict(cls, d: Any) -> "FinalizedRoute":
        where = "route"
        if not isinstance(d, dict):
            raise SnapshotSchemaError(f"{where}: expected an object")
        _check_tag(d, ROUTE_SCHEMA, ROUTE_VERSION, where)
        entries = _require(d, "entries", list, where)
        return cls(
            id=_require(d, "id", int, where),
            name=_require(d, "name", str, where),
            date=_require(d, "date", str, where),
            total_distance=float(_require(d, "total_distance", _NUMBER, where)),
            elapsed_time=float(_require(d, "elapsed_time", _NUMBER, where)),
            entries=tuple(entry_from_dict(e) for e in entries),
            data_size=_optional(d, "data_size", int, where) or 0,
            migrated_from=_optional(d, "migrated_from", str, where),
            migrated_at=_optional(d, "migrated_at", str, where),
        )


@dataclass(frozen=True)
class InvalidRecord:
    """Result of decoding a persisted blob that failed validation"""
    reason: str


def decode_snapshot(raw: Any) -> Union[Snapshot, InvalidRecord]:
    try:
        return Snapshot.from_dict(raw)
    except SnapshotSchemaError as e:
        return InvalidRecord(str(e))


def decode_route(raw: Any) -> Union[FinalizedRoute, InvalidRecord]:
    try:
        return FinalizedRoute.from_dict(raw)
    except SnapshotSchemaError as e:
        return InvalidRecord(str(e))
