"""RouteKeeper - GPS route capture with crash-safe local storage."""

from .config import CONFIG
from .errors import (
    RouteKeeperError,
    StorageError,
    StorageQuotaError,
    StorageExhaustedError,
    SnapshotSchemaError,
    RouteValidationError,
    PositionError,
)
from .models import (
    Coords,
    PositionSample,
    PositionEntry,
    PhotoEntry,
    NoteEntry,
    Snapshot,
    FinalizedRoute,
    InvalidRecord,
    decode_snapshot,
    decode_route,
)
from .logger import Logger
from .clock import Clock
from .geo import haversine_distance, format_distance, format_duration, format_clock
from .gps import GPS, GPSRecorder, GPSPlayback, PositionOptions, PositionWatcher
from .websocket_gps import WebSocketGPS
from .elevation import ElevationLookup, ElevationEnricher
from .routedb import RouteDB
from .fallback import FlatStore
from .store import PersistenceStore
from .context import AppContext, create_context
from .tracking import TrackingController, SaveOutcome, SaveDecision, RouteSummary
from .engine import RouteEngine
from .app import RouteKeeper
from .__main__ import main

__all__ = [
    "CONFIG",
    "RouteKeeperError",
    "StorageError",
    "StorageQuotaError",
    "StorageExhaustedError",
    "SnapshotSchemaError",
    "RouteValidationError",
    "PositionError",
    "Coords",
    "PositionSample",
    "PositionEntry",
    "PhotoEntry",
    "NoteEntry",
    "Snapshot",
    "FinalizedRoute",
    "InvalidRecord",
    "decode_snapshot",
    "decode_route",
    "Logger",
    "Clock",
    "haversine_distance",
    "format_distance",
    "format_duration",
    "format_clock",
    "GPS",
    "GPSRecorder",
    "GPSPlayback",
    "PositionOptions",
    "PositionWatcher",
    "WebSocketGPS",
    "ElevationLookup",
    "ElevationEnricher",
    "RouteDB",
    "FlatStore",
    "PersistenceStore",
    "AppContext",
    "create_context",
    "TrackingController",
    "SaveOutcome",
    "SaveDecision",
    "RouteSummary",
    "RouteEngine",
    "RouteKeeper",
    "main",
]
