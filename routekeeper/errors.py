"""Central error types used across RouteKeeper."""

from __future__ import annotations


class RouteKeeperError(RuntimeError):
    """Base error for the capture and persistence engine."""


class StorageError(RouteKeeperError):
    """Raised when a storage backend is unavailable or an operation fails."""


class StorageQuotaError(StorageError):
    """Raised when a storage backend has run out of capacity."""


class StorageExhaustedError(StorageError):
    """Raised when a write failed on both the primary and the fallback backend."""


class SnapshotSchemaError(RouteKeeperError):
    """Raised when a persisted record does not match its schema."""


class RouteValidationError(RouteKeeperError):
    """Raised on misuse, such as saving an empty route or a blank name."""


class PositionError(RouteKeeperError):
    """Raised or delivered when the positioning source fails."""

    PERMISSION_DENIED = "PERMISSION_DENIED"
    POSITION_UNAVAILABLE = "POSITION_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"

    MESSAGES = {
        PERMISSION_DENIED: "Location access denied. Please enable it in the device settings.",
        POSITION_UNAVAILABLE: "Location unavailable. GPS signal may be weak.",
        TIMEOUT: "Location request timed out. Please try again.",
    }

    def __init__(self, code: str, detail: str = "") -> None:
        self.code = code
        self.detail = detail
        super().__init__(detail or self.user_message)

    @property
    def user_message(self) -> str:
        return self.MESSAGES.get(self.code, "Could not get your location")


__all__ = [
    "RouteKeeperError",
    "StorageError",
    "StorageQuotaError",
    "StorageExhaustedError",
    "SnapshotSchemaError",
    "RouteValidationError",
    "PositionError",
]
