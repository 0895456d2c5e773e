"""Persistent stores for the sync watermark and the uploaded/failed sets.

Both the foreground CLI and the background host open the same SQLite file.
Every mutation is an idempotent insert or delete, so the two contexts
converge without a cross-process lock.
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from immich_uploader.models import SyncState


class StateStore(ABC):
    """Storage backend for SyncTracker."""

    @abstractmethod
    def get_enabled_at(self) -> datetime | None: ...

    @abstractmethod
    def set_enabled_at(self, value: datetime | None) -> None: ...

    @abstractmethod
    def reset(self, enabled_at: datetime) -> None:
        """Set the watermark and clear both sets in one write."""

    @abstractmethod
    def uploaded_ids(self) -> set[str]: ...

    @abstractmethod
    def failed_ids(self) -> set[str]: ...

    @abstractmethod
    def add_uploaded(self, asset_id: str) -> bool:
        """Insert into uploaded and drop from failed. Returns True if new."""

    @abstractmethod
    def add_failed(self, asset_id: str) -> bool:
        """Insert into failed unless already uploaded. Returns True if new."""

    @abstractmethod
    def remove_failed(self, asset_id: str) -> bool: ...

    @abstractmethod
    def clear_failed(self) -> set[str]:
        """Empty the failed set and return what it held."""

    @abstractmethod
    def remove_ids(self, asset_ids: set[str]) -> int:
        """Drop ids from both sets. Returns the number of rows removed."""

    @abstractmethod
    def clear_all(self) -> None: ...

    def snapshot(self) -> SyncState:
        return SyncState(
            enabled_at=self.get_enabled_at(),
            uploaded=frozenset(self.uploaded_ids()),
            failed=frozenset(self.failed_ids()),
        )

    def close(self) -> None:
        """Release backend resources."""


class SqliteStateStore(StateStore):
    """SQLite-backed state shared between foreground and background contexts.

    Layout:
        sync_meta        key/value, holds enabled_timestamp
        uploaded_assets  one row per uploaded asset id
        failed_assets    one row per failed asset id
    """

    ENABLED_KEY = "enabled_timestamp"

    def __init__(self, db_path: Path, busy_timeout: float = 10.0) -> None:
        """Open (and create if needed) the state database.

        Args:
            db_path: Path to the SQLite database file
            busy_timeout: Seconds to wait on a write lock held by another process
        """
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(db_path), timeout=busy_timeout, check_same_thread=False
        )
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        with self._lock:
            # WAL lets the background host read while the CLI writes
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS uploaded_assets (
                    asset_id TEXT PRIMARY KEY,
                    recorded_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS failed_assets (
                    asset_id TEXT PRIMARY KEY,
                    recorded_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            self._conn.commit()

    def get_enabled_at(self) -> datetime | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM sync_meta WHERE key = ?", (self.ENABLED_KEY,)
            ).fetchone()
        if not row or row["value"] is None:
            return None
        return datetime.fromisoformat(row["value"])

    def set_enabled_at(self, value: datetime | None) -> None:
        with self._lock:
            if value is None:
                self._conn.execute(
                    "DELETE FROM sync_meta WHERE key = ?", (self.ENABLED_KEY,)
                )
            else:
                self._conn.execute(
                    "INSERT OR REPLACE INTO sync_meta (key, value) VALUES (?, ?)",
                    (self.ENABLED_KEY, value.isoformat()),
                )
            self._conn.commit()

    def reset(self, enabled_at: datetime) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_meta (key, value) VALUES (?, ?)",
                (self.ENABLED_KEY, enabled_at.isoformat()),
            )
            self._conn.execute("DELETE FROM uploaded_assets")
            self._conn.execute("DELETE FROM failed_assets")
            self._conn.commit()

    def _ids(self, table: str) -> set[str]:
        with self._lock:
            cursor = self._conn.execute(f"SELECT asset_id FROM {table}")
            return {row["asset_id"] for row in cursor.fetchall()}

    def uploaded_ids(self) -> set[str]:
        return self._ids("uploaded_assets")

    def snapshot(self) -> SyncState:
        """Read watermark and both sets inside one read transaction."""
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                row = self._conn.execute(
                    "SELECT value FROM sync_meta WHERE key = ?", (self.ENABLED_KEY,)
                ).fetchone()
                uploaded = self._conn.execute("SELECT asset_id FROM uploaded_assets")
                uploaded_ids = frozenset(r["asset_id"] for r in uploaded.fetchall())
                failed = self._conn.execute("SELECT asset_id FROM failed_assets")
                failed_ids = frozenset(r["asset_id"] for r in failed.fetchall())
            finally:
                self._conn.commit()

        enabled_at = (
            datetime.fromisoformat(row["value"]) if row and row["value"] else None
        )
        return SyncState(enabled_at=enabled_at, uploaded=uploaded_ids, failed=failed_ids)

    def failed_ids(self) -> set[str]:
        return self._ids("failed_assets")

    def add_uploaded(self, asset_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO uploaded_assets (asset_id) VALUES (?)",
                (asset_id,),
            )
            inserted = cursor.rowcount > 0
            self._conn.execute(
                "DELETE FROM failed_assets WHERE asset_id = ?", (asset_id,)
            )
            self._conn.commit()
        return inserted

    def add_failed(self, asset_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO failed_assets (asset_id)
                SELECT ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM uploaded_assets WHERE asset_id = ?
                )
                """,
                (asset_id, asset_id),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def remove_failed(self, asset_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM failed_assets WHERE asset_id = ?", (asset_id,)
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def clear_failed(self) -> set[str]:
        with self._lock:
            rows = self._conn.execute("SELECT asset_id FROM failed_assets").fetchall()
            self._conn.execute("DELETE FROM failed_assets")
            self._conn.commit()
        return {row["asset_id"] for row in rows}

    def remove_ids(self, asset_ids: set[str]) -> int:
        if not asset_ids:
            return 0
        params = [(asset_id,) for asset_id in asset_ids]
        with self._lock:
            before = self._conn.total_changes
            self._conn.executemany(
                "DELETE FROM uploaded_assets WHERE asset_id = ?", params
            )
            self._conn.executemany(
                "DELETE FROM failed_assets WHERE asset_id = ?", params
            )
            self._conn.commit()
            return self._conn.total_changes - before

    def clear_all(self) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM sync_meta WHERE key = ?", (self.ENABLED_KEY,)
            )
            self._conn.execute("DELETE FROM uploaded_assets")
            self._conn.execute("DELETE FROM failed_assets")
            self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()


class MemoryStateStore(StateStore):
    """In-process store with the same semantics, for tests and dry runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._enabled_at: datetime | None = None
        self._uploaded: set[str] = set()
        self._failed: set[str] = set()

    def get_enabled_at(self) -> datetime | None:
        return self._enabled_at

    def set_enabled_at(self, value: datetime | None) -> None:
        with self._lock:
            self._enabled_at = value

    def reset(self, enabled_at: datetime) -> None:
        with self._lock:
            self._enabled_at = enabled_at
            self._uploaded.clear()
            self._failed.clear()

    def uploaded_ids(self) -> set[str]:
        with self._lock:
            return set(self._uploaded)

    def failed_ids(self) -> set[str]:
        with self._lock:
            return set(self._failed)

    def add_uploaded(self, asset_id: str) -> bool:
        with self._lock:
            inserted = asset_id not in self._uploaded
            self._uploaded.add(asset_id)
            self._failed.discard(asset_id)
        return inserted

    def add_failed(self, asset_id: str) -> bool:
        with self._lock:
            if asset_id in self._uploaded or asset_id in self._failed:
                return False
            self._failed.add(asset_id)
        return True

    def remove_failed(self, asset_id: str) -> bool:
        with self._lock:
            if asset_id not in self._failed:
                return False
            self._failed.remove(asset_id)
        return True

    def clear_failed(self) -> set[str]:
        with self._lock:
            cleared = set(self._failed)
            self._failed.clear()
        return cleared

    def remove_ids(self, asset_ids: set[str]) -> int:
        with self._lock:
            removed = len(self._uploaded & asset_ids) + len(self._failed & asset_ids)
            self._uploaded -= asset_ids
            self._failed -= asset_ids
        return removed

    def clear_all(self) -> None:
        with self._lock:
            self._enabled_at = None
            self._uploaded.clear()
            self._failed.clear()
