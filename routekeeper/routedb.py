"""SQLite primary backend: routes, the backup slot and settings."""

import asyncio
import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Optional

from .errors import StorageError, StorageQuotaError

SQLITE_FULL = 13


class RouteDB:
    """SQLite database with one table per record collection"""

    # collection -> key field inside each record
    COLLECTIONS = {
        "routes": "id",
        "backups": "type",
        "settings": "key",
    }

    def __init__(self, db_path: str = "routekeeper.db", max_pages: Optional[int] = None,
                 logger=None):
        self.db_path = db_path
        self.max_pages = max_pages
        self.logger = logger
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    async def open(self):
        """Open the database and create the schema"""
        try:
            await asyncio.to_thread(self._connect)
        except sqlite3.Error as e:
            self.conn = None
            raise StorageError(f"Could not open {self.db_path}: {e}") from e
        self._log("Database opened", {"path": self.db_path})

    def _connect(self):
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_schema()

    def _init_schema(self):
        """Create database tables"""
        if self.max_pages:
            self.conn.execute(f"PRAGMA max_page_count = {int(self.max_pages)}")
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS routes (
                id INTEGER PRIMARY KEY,
                name TEXT,
                date TEXT,
                total_distance REAL,
                record TEXT NOT NULL
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_routes_date ON routes (date)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_routes_name ON routes (name)")
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_routes_distance ON routes (total_distance)")
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS backups (
                type TEXT PRIMARY KEY,
                timestamp REAL,
                record TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                updated REAL,
                record TEXT NOT NULL
            )
        """)
        self.conn.commit()

    @contextmanager
    def _guard(self, operation: str):
        if self.conn is None:
            raise StorageError("Database not initialized")
        try:
            yield
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            raise StorageError(f"{operation} failed: {e}") from e
        except sqlite3.Error as e:
            self.conn.rollback()
            if getattr(e, "sqlite_errorcode", None) == SQLITE_FULL or "full" in str(e):
                raise StorageQuotaError(f"{operation} failed: {e}") from e
            raise StorageError(f"{operation} failed: {e}") from e

    def _key_field(self, collection: str) -> str:
        if collection not in self.COLLECTIONS:
            raise StorageError(f"Unknown collection: {collection}")
        return self.COLLECTIONS[collection]

    def _row_values(self, collection: str, record: dict) -> tuple[str, tuple]:
        key_field = self._key_field(collection)
        if key_field not in record:
            raise StorageError(f"{collection} record is missing key '{key_field}'")
        body = json.dumps(record)
        if collection == "routes":
            return ("id, name, date, total_distance, record",
                    (record["id"], record.get("name"), record.get("date"),
                     record.get("total_distance"), body))
        if collection == "backups":
            return ("type, timestamp, record", (record["type"], time.time(), body))
        return ("key, updated, record", (record["key"], time.time(), body))

    async def _run(self, operation: str, fn):
        """Run one statement batch on a worker thread"""
        return await asyncio.to_thread(self._locked, operation, fn)

    def _locked(self, operation: str, fn):
        with self._lock, self._guard(operation):
            return fn(self.conn)

    async def add(self, collection: str, record: dict):
        """Insert a record; fails if the key already exists"""
        columns, values = self._row_values(collection, record)
        placeholders = ", ".join("?" for _ in values)

        def insert(conn):
            conn.execute(f"INSERT INTO {collection} ({columns}) VALUES ({placeholders})", values)
            conn.commit()

        await self._run(f"add to {collection}", insert)

    async def put(self, collection: str, record: dict):
        """Insert or replace a record"""
        columns, values = self._row_values(collection, record)
        placeholders = ", ".join("?" for _ in values)

        def upsert(conn):
            conn.execute(
                f"INSERT OR REPLACE INTO {collection} ({columns}) VALUES ({placeholders})",
                values)
            conn.commit()

        await self._run(f"put to {collection}", upsert)

    async def get_all(self, collection: str) -> list[dict]:
        key_field = self._key_field(collection)
        order = "date DESC, id DESC" if collection == "routes" else key_field
        rows = await self._run(
            f"read {collection}",
            lambda conn: conn.execute(f"SELECT record FROM {collection} ORDER BY {order}").fetchall())
        return [json.loads(row[0]) for row in rows]

    async def get(self, collection: str, key) -> Optional[dict]:
        key_field = self._key_field(collection)
        row = await self._run(
            f"read {collection}",
            lambda conn: conn.execute(
                f"SELECT record FROM {collection} WHERE {key_field} = ?", (key,)).fetchone())
        return json.loads(row[0]) if row else None

    async def delete(self, collection: str, key):
        key_field = self._key_field(collection)

        def remove(conn):
            conn.execute(f"DELETE FROM {collection} WHERE {key_field} = ?", (key,))
            conn.commit()

        await self._run(f"delete from {collection}", remove)

    async def clear(self, collection: str):
        self._key_field(collection)

        def remove_all(conn):
            conn.execute(f"DELETE FROM {collection}")
            conn.commit()

        await self._run(f"clear {collection}", remove_all)

    async def count(self, collection: str) -> int:
        self._key_field(collection)
        return await self._run(
            f"count {collection}",
            lambda conn: conn.execute(f"SELECT COUNT(*) FROM {collection}").fetchone()[0])

    def size_bytes(self) -> int:
        if self.conn is None:
            return 0
        with self._lock:
            page_count = self.conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = self.conn.execute("PRAGMA page_size").fetchone()[0]
        return page_count * page_size

    def capacity_bytes(self) -> Optional[int]:
        if self.conn is None or not self.max_pages:
            return None
        with self._lock:
            page_size = self.conn.execute("PRAGMA page_size").fetchone()[0]
        return self.max_pages * page_size

    def close(self):
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)

