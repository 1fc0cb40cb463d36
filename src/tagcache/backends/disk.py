"""Disk storage backends on top of a SQLite file."""

from __future__ import annotations

import asyncio
import json
import os
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from tagcache.errors import BackendError

logger = structlog.get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at INTEGER
)
"""
_LIVE = "(expires_at IS NULL OR expires_at > ?)"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as err:
        raise BackendError(f"Cannot serialize value: {err}") from err


def _loads(data: str) -> Any:
    try:
        return json.loads(data)
    except ValueError as err:
        raise BackendError(f"Cannot deserialize value: {err}") from err


class DiskBackend:
    """Sync disk storage backend.

    Entries live in a single SQLite table; expired rows are skipped on read
    and purged lazily. Expiry uses wall-clock time so it survives restarts.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = os.fspath(path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                self._path, check_same_thread=False, isolation_level=None
            )
            self._conn.execute(_SCHEMA)
        except sqlite3.Error as err:
            raise BackendError(f"Cannot open {self._path}: {err}") from err
        logger.debug("disk_backend_open", path=self._path)

    @contextmanager
    def _locked(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as err:
                raise BackendError(str(err)) from err

    def _purge(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            "DELETE FROM entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (_now_ms(),),
        )

    def get(self, key: str) -> Any | None:
        """Get a value by key."""
        with self._locked() as conn:
            row = conn.execute(
                f"SELECT value FROM entries WHERE key = ? AND {_LIVE}",
                (key, _now_ms()),
            ).fetchone()
        return _loads(row[0]) if row else None

    def set(self, key: str, value: Any, duration: int) -> None:
        """Store a value."""
        if value is None or duration < 0:
            self.delete(key)
            return
        expires_at = _now_ms() + duration if duration > 0 else None
        payload = _dumps(value)
        with self._locked() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO entries (key, value, expires_at) "
                "VALUES (?, ?, ?)",
                (key, payload, expires_at),
            )

    def set_if_absent(self, key: str, value: Any, duration: int) -> bool:
        """Store a value only if the key is absent."""
        if value is None or duration < 0:
            return False
        expires_at = _now_ms() + duration if duration > 0 else None
        payload = _dumps(value)
        with self._locked() as conn:
            conn.execute(
                "DELETE FROM entries WHERE key = ? AND expires_at IS NOT NULL "
                "AND expires_at <= ?",
                (key, _now_ms()),
            )
            cursor = conn.execute(
                "INSERT OR IGNORE INTO entries (key, value, expires_at) "
                "VALUES (?, ?, ?)",
                (key, payload, expires_at),
            )
            return cursor.rowcount == 1

    def delete(self, *keys: str) -> Any | None:
        """Delete keys and return the last one's value."""
        if not keys:
            return None
        with self._locked() as conn:
            last = self.get(keys[-1])
            conn.executemany("DELETE FROM entries WHERE key = ?", [(k,) for k in keys])
        return last

    def exists(self, key: str) -> bool:
        with self._locked() as conn:
            row = conn.execute(
                f"SELECT 1 FROM entries WHERE key = ? AND {_LIVE}", (key, _now_ms())
            ).fetchone()
        return row is not None

    def keys(self) -> list[str]:
        with self._locked() as conn:
            self._purge(conn)
            return [row[0] for row in conn.execute("SELECT key FROM entries")]

    def size(self) -> int:
        with self._locked() as conn:
            self._purge(conn)
            return conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0]

    def data(self) -> dict[str, Any]:
        with self._locked() as conn:
            self._purge(conn)
            rows = conn.execute("SELECT key, value FROM entries").fetchall()
        return {key: _loads(value) for key, value in rows}

    def update(self, key: str, value: Any) -> tuple[Any | None, bool]:
        """Replace the value of an existing key, keeping its TTL."""
        with self._locked() as conn:
            if not self.exists(key):
                return None, False
            old = self.get(key)
            if value is None:
                conn.execute("DELETE FROM entries WHERE key = ?", (key,))
            else:
                conn.execute(
                    "UPDATE entries SET value = ? WHERE key = ?", (_dumps(value), key)
                )
        return old, True

    def get_ttl(self, key: str) -> int | None:
        now = _now_ms()
        with self._locked() as conn:
            row = conn.execute(
                f"SELECT expires_at FROM entries WHERE key = ? AND {_LIVE}",
                (key, now),
            ).fetchone()
        if row is None:
            return None
        if row[0] is None:
            return 0
        return max(1, row[0] - now)

    def set_ttl(self, key: str, duration: int) -> int | None:
        with self._locked() as conn:
            old = self.get_ttl(key)
            if old is None:
                return None
            if duration < 0:
                conn.execute("DELETE FROM entries WHERE key = ?", (key,))
            else:
                expires_at = _now_ms() + duration if duration > 0 else None
                conn.execute(
                    "UPDATE entries SET expires_at = ? WHERE key = ?",
                    (expires_at, key),
                )
        return old

    def clear(self) -> None:
        """Remove every entry."""
        with self._locked() as conn:
            conn.execute("DELETE FROM entries")

    def disconnect(self) -> None:
        """Close the SQLite connection."""
        logger.debug("disk_backend_close", path=self._path)
        with self._locked() as conn:
            conn.close()


class AsyncDiskBackend:
    """Async disk storage backend running SQLite calls in worker threads."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._backend = DiskBackend(path)

    async def get(self, key: str) -> Any | None:
        """Get a value by key."""
        return await asyncio.to_thread(self._backend.get, key)

    async def set(self, key: str, value: Any, duration: int) -> None:
        """Store a value."""
        await asyncio.to_thread(self._backend.set, key, value, duration)

    async def set_if_absent(self, key: str, value: Any, duration: int) -> bool:
        """Store a value only if the key is absent."""
        return await asyncio.to_thread(
            self._backend.set_if_absent, key, value, duration
        )

    async def delete(self, *keys: str) -> Any | None:
        """Delete keys and return the last one's value."""
        return await asyncio.to_thread(self._backend.delete, *keys)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._backend.exists, key)

    async def keys(self) -> list[str]:
        return await asyncio.to_thread(self._backend.keys)

    async def size(self) -> int:
        return await asyncio.to_thread(self._backend.size)

    async def data(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._backend.data)

    async def update(self, key: str, value: Any) -> tuple[Any | None, bool]:
        return await asyncio.to_thread(self._backend.update, key, value)

    async def get_ttl(self, key: str) -> int | None:
        return await asyncio.to_thread(self._backend.get_ttl, key)

    async def set_ttl(self, key: str, duration: int) -> int | None:
        return await asyncio.to_thread(self._backend.set_ttl, key, duration)

    async def clear(self) -> None:
        await asyncio.to_thread(self._backend.clear)

    async def disconnect(self) -> None:
        await asyncio.to_thread(self._backend.disconnect)
