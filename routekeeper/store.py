"""Dual-backend persistence: SQLite primary, flat JSON fallback."""

from datetime import datetime
from typing import Any, Optional

from .clock import Clock
from .errors import StorageError, StorageExhaustedError
from .fallback import FlatStore
from .models import FinalizedRoute, Snapshot, decode_route
from .routedb import RouteDB

# Fixed keys in the flat store
ROUTES_KEY = "sessions"
BACKUP_KEY = "route_backup"
PRE_MIGRATION_KEY = "sessions_backup_pre_migration"
MIGRATION_KEY = "primary_migration"
SETTINGS_KEY = "settings"

BACKUP_RECORD_TYPE = "route_backup"
MIGRATION_COMPLETED = "completed"


class PersistenceStore:
    """Routes collection, single backup slot and settings over two backends.

    ``open()`` tries the primary backend; on failure everything runs on the
    fallback for the rest of the session. Writes that fail on the primary
    are retried once on the fallback before an error reaches the caller.
    """

    def __init__(self, primary: RouteDB, fallback: FlatStore, logger=None,
                 clock: Optional[Clock] = None):
        self.primary = primary
        self.fallback = fallback
        self.logger = logger
        self.clock = clock or Clock()
        self.primary_ready = False

    @property
    def backend_name(self) -> str:
        return "sqlite" if self.primary_ready else "fallback"

    async def open(self) -> bool:
        try:
            await self.primary.open()
        except StorageError as e:
            self.primary_ready = False
            self._log("Primary storage unavailable, using fallback", {"error": str(e)})
            return False
        self.primary_ready = True
        self._log("Primary storage ready")
        await self.migrate_from_fallback()
        return True

    def close(self):
        self.primary.close()
        self.primary_ready = False

    # --- migration --------------------------------------------------------

    async def migrate_from_fallback(self):
        """Copy pre-existing fallback routes and backup into the primary once"""
        try:
            if self.fallback.get_item(MIGRATION_KEY) == MIGRATION_COMPLETED:
                if self.fallback.get_item(PRE_MIGRATION_KEY) is not None:
                    if await self.primary.count("routes") == 0:
                        self._log("Primary empty after migration, recovering retained copy")
                        await self.recover_from_pre_migration()
                return

            old_routes = self._fallback_routes()
            if old_routes:
                self._log("Migrating routes to primary storage", {"count": len(old_routes)})
                migrated = await self._copy_routes(old_routes, "fallback")
                if migrated > 0:
                    self.fallback.set_item(PRE_MIGRATION_KEY, self.fallback.get_item(ROUTES_KEY))
                    self.fallback.remove_item(ROUTES_KEY)
                self._log("Route migration finished", {"migrated": migrated, "total": len(old_routes)})

            old_backup = self.fallback.get_item(BACKUP_KEY)
            if old_backup is not None:
                try:
                    await self.primary.put("backups", {
                        "type": BACKUP_RECORD_TYPE,
                        "data": self.fallback.get_json(BACKUP_KEY),
                        "timestamp": self.clock.now_ms(),
                    })
                    self.fallback.remove_item(BACKUP_KEY)
                    self._log("Route backup migrated to primary storage")
                except (StorageError, ValueError) as e:
                    self._log("Failed to migrate backup", {"error": str(e)})

            self.fallback.set_item(MIGRATION_KEY, MIGRATION_COMPLETED)
            await self.primary.put("settings", {
                "key": MIGRATION_KEY, "value": MIGRATION_COMPLETED, "updated": self.clock.now_ms(),
            })
            self._log("Migration completed")
        except (StorageError, ValueError) as e:
            self._log("Migration failed", {"error": str(e)})

    async def recover_from_pre_migration(self) -> int:
        try:
            records = self.fallback.get_json(PRE_MIGRATION_KEY, [])
        except ValueError as e:
            self._log("Retained route copy unreadable", {"error": str(e)})
            return 0
        if not isinstance(records, list):
            return 0
        recovered = await self._copy_routes(records, "fallback_recovery")
        self._log("Recovered routes from retained copy", {"recovered": recovered, "total": len(records)})
        return recovered

    async def _copy_routes(self, records: list, origin: str) -> int:
        copied = 0
        migrated_at = datetime.now().isoformat()
        for raw in records:
            route = decode_route(raw)
            if not isinstance(route, FinalizedRoute):
                self._log("Skipping invalid route during migration", {"reason": route.reason})
                continue
            record = route.to_dict()
            record["migrated_from"] = origin
            record["migrated_at"] = migrated_at
            try:
                await self.primary.put("routes", record)
                copied += 1
            except StorageError as e:
                self._log("Failed to migrate route", {"name": route.name, "error": str(e)})
        return copied

    # --- routes -------------------------------------------------------------

    def _fallback_routes(self) -> list:
        try:
            routes = self.fallback.get_json(ROUTES_KEY, [])
        except ValueError as e:
            self._log("Fallback route list unreadable", {"error": str(e)})
            return []
        return routes if isinstance(routes, list) else []

    def _append_fallback_route(self, record: dict):
        routes = self._fallback_routes()
        routes.append(record)
        self.fallback.set_json(ROUTES_KEY, routes)

    async def save_route(self, route: FinalizedRoute) -> FinalizedRoute:
        record = route.to_dict()
        if not self.primary_ready:
            self._append_fallback_route(record)
            self._log("Route saved to fallback", {"name": route.name, "bytes": route.data_size})
            return route
        try:
            await self.primary.add("routes", record)
            self._log("Route saved", {"name": route.name, "bytes": route.data_size})
            return route
        except StorageError as e:
            self._log("Primary write failed, retrying on fallback", {"error": str(e)})
            try:
                self._append_fallback_route(record)
            except StorageError as fallback_error:
                raise StorageExhaustedError(
                    "Storage quota exceeded on both primary and fallback storage") from fallback_error
            self._log("Route saved to fallback", {"name": route.name})
            return route

    async def get_routes(self) -> list[FinalizedRoute]:
        """All finalized routes from both backends, newest first"""
        records = []
        if self.primary_ready:
            try:
                records.extend(await self.primary.get_all("routes"))
            except StorageError as e:
                self._log("Failed to read routes from primary", {"error": str(e)})
        records.extend(self._fallback_routes())

        routes: dict[int, FinalizedRoute] = {}
        for raw in records:
            route = decode_route(raw)
            if isinstance(route, FinalizedRoute):
                routes.setdefault(route.id, route)
            else:
                self._log("Skipping invalid route record", {"reason": route.reason})
        return sorted(routes.values(), key=lambda r: (r.date, r.id), reverse=True)

    async def get_route(self, route_id: int) -> Optional[FinalizedRoute]:
        for route in await self.get_routes():
            if route.id == route_id:
                return route
        return None

    async def delete_route(self, route_id: int):
        if self.primary_ready:
            await self.primary.delete("routes", route_id)
        routes = self._fallback_routes()
        kept = [r for r in routes if not (isinstance(r, dict) and r.get("id") == route_id)]
        if len(kept) != len(routes):
            self.fallback.set_json(ROUTES_KEY, kept)
        self._log("Route deleted", {"id": route_id})

    async def clear_all_sessions(self):
        if self.primary_ready:
            try:
                await self.primary.clear("routes")
            except StorageError as e:
                self._log("Failed to clear primary routes", {"error": str(e)})
        self.fallback.remove_item(ROUTES_KEY)
        self._log("All sessions cleared")

    # --- backup slot --------------------------------------------------------

    async def save_backup(self, snapshot: Snapshot):
        data = snapshot.to_dict()
        if self.primary_ready:
            try:
                await self.primary.put("backups", {
                    "type": BACKUP_RECORD_TYPE, "data": data, "timestamp": self.clock.now_ms(),
                })
                return "sqlite"
            except StorageError as e:
                self._log("Backup to primary failed, retrying on fallback", {"error": str(e)})
                try:
                    self.fallback.set_json(BACKUP_KEY, data)
                except StorageError as fallback_error:
                    raise StorageExhaustedError(
                        "Backup failed on both primary and fallback storage") from fallback_error
                return "fallback"
        self.fallback.set_json(BACKUP_KEY, data)
        return "fallback"

    async def get_backup(self) -> Any:
        """Raw snapshot data from the primary slot, else the fallback slot"""
        if self.primary_ready:
            try:
                record = await self.primary.get("backups", BACKUP_RECORD_TYPE)
                if record is not None:
                    return record.get("data") if isinstance(record, dict) else record
            except (StorageError, ValueError) as e:
                self._log("Primary backup read failed", {"error": str(e)})
        try:
            return self.fallback.get_json(BACKUP_KEY)
        except ValueError as e:
            self._log("Fallback backup corrupt, removing", {"error": str(e)})
            self.fallback.remove_item(BACKUP_KEY)
            return None

    async def clear_backup(self):
        if self.primary_ready:
            try:
                await self.primary.delete("backups", BACKUP_RECORD_TYPE)
            except StorageError as e:
                self._log("Failed to clear primary backup", {"error": str(e)})
        self.fallback.remove_item(BACKUP_KEY)

    # --- settings -----------------------------------------------------------

    def _fallback_settings(self) -> dict:
        try:
            settings = self.fallback.get_json(SETTINGS_KEY, {})
        except ValueError:
            return {}
        return settings if isinstance(settings, dict) else {}

    async def get_setting(self, key: str, default: Any = None) -> Any:
        if self.primary_ready:
            record = await self.primary.get("settings", key)
            return record["value"] if record else default
        return self._fallback_settings().get(key, default)

    async def set_setting(self, key: str, value: Any):
        if self.primary_ready:
            await self.primary.put("settings", {
                "key": key, "value": value, "updated": self.clock.now_ms(),
            })
            return
        settings = self._fallback_settings()
        settings[key] = value
        self.fallback.set_json(SETTINGS_KEY, settings)

    async def delete_setting(self, key: str):
        if self.primary_ready:
            await self.primary.delete("settings", key)
            return
        settings = self._fallback_settings()
        if key in settings:
            del settings[key]
            self.fallback.set_json(SETTINGS_KEY, settings)

    # --- maintenance --------------------------------------------------------

    async def storage_info(self) -> dict:
        info = {
            "backend": self.backend_name,
            "migration_completed": self.fallback.get_item(MIGRATION_KEY) == MIGRATION_COMPLETED,
        }
        if self.primary_ready:
            usage = self.primary.size_bytes()
            quota = self.primary.capacity_bytes()
        else:
            usage = self.fallback.usage()
            quota = self.fallback.quota
        info["usage"] = usage
        info["quota"] = quota
        info["usage_percent"] = round(usage / quota * 100, 1) if quota else None
        info["usage_formatted"] = format_bytes(usage)
        info["quota_formatted"] = format_bytes(quota) if quota else None
        return info

    async def clear_all_data(self):
        if self.primary_ready:
            for collection in RouteDB.COLLECTIONS:
                await self.primary.clear(collection)
        self.fallback.clear()
        self._log("All stored data cleared")

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)


def format_bytes(num: int) -> str:
    if num == 0:
        return "0 Bytes"
    for unit in ("Bytes", "KB", "MB"):
        if num < 1024:
            return f"{round(num, 2)} {unit}"
        num /= 1024
    return f"{round(num, 2)} GB"
