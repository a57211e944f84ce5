"""SQLite-backed TTL cache for proxied upstream responses."""
from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from typing import List, Optional

from . import config


def make_request_cache_key(method: str, url: str, body: Optional[str] = None) -> str:
    # Keys stay literal (not hashed) so admins can clear them by URL prefix.
    key = f"{method.upper()} {url}"
    if body is not None and method.upper() != "GET":
        key = f"{key}|{body}"
    return key


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: str
    stored_at: float


class Cache:
    """Expired rows are never purged here; they stay inert until overwritten
    or explicitly cleared."""

    def __init__(
        self,
        db_path: str = config.CACHE_DB_PATH,
        ttl_seconds: float = config.CACHE_TTL_SECONDS,
        commit_every: int = 1,
    ) -> None:
        self.db_path = db_path
        self.ttl_seconds = float(ttl_seconds)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._pending_writes = 0
        self._commit_every = max(1, int(commit_every))
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        if self.db_path == ":memory:":
            return
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError:
            pass
        try:
            cur.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError:
            pass

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS proxy_cache (
                key TEXT PRIMARY KEY,
                payload TEXT,
                stored_at REAL
            )
            """
        )
        self.conn.commit()

    def _mark_dirty(self) -> None:
        self._pending_writes += 1
        if self._pending_writes >= self._commit_every:
            self.conn.commit()
            self._pending_writes = 0

    def commit(self) -> None:
        with self._lock:
            if self._pending_writes:
                self.conn.commit()
                self._pending_writes = 0

    def close(self) -> None:
        self.commit()
        self.conn.close()

    def is_fresh(self, stored_at: float, now: float) -> bool:
        return now - stored_at < self.ttl_seconds

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("SELECT key, payload, stored_at FROM proxy_cache WHERE key = ?", (key,))
            row = cur.fetchone()
        if not row:
            return None
        return CacheEntry(row["key"], row["payload"], float(row["stored_at"]))

    def get_fresh(self, key: str, now: float) -> Optional[str]:
        entry = self.get_entry(key)
        if entry is None or not self.is_fresh(entry.stored_at, now):
            return None
        return entry.payload

    def set(self, key: str, payload: str, now: float) -> None:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                """
                INSERT OR REPLACE INTO proxy_cache (key, payload, stored_at)
                VALUES (?, ?, ?)
                """,
                (key, payload, now),
            )
            self._mark_dirty()

    def entries(self) -> List[CacheEntry]:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("SELECT key, payload, stored_at FROM proxy_cache ORDER BY key")
            rows = cur.fetchall()
        return [CacheEntry(r["key"], r["payload"], float(r["stored_at"])) for r in rows]

    def count(self) -> int:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("SELECT COUNT(*) AS n FROM proxy_cache")
            return int(cur.fetchone()["n"])

    def time_remaining(self, key: str, now: float) -> float:
        entry = self.get_entry(key)
        if entry is None:
            return 0.0
        return max(0.0, self.ttl_seconds - (now - entry.stored_at))

    def clear(self, prefix: Optional[str] = None) -> int:
        with self._lock:
            cur = self.conn.cursor()
            if prefix:
                # literal prefix match, no LIKE wildcards
                cur.execute(
                    "DELETE FROM proxy_cache WHERE substr(key, 1, ?) = ?",
                    (len(prefix), prefix),
                )
            else:
                cur.execute("DELETE FROM proxy_cache")
            removed = cur.rowcount
            self.conn.commit()
            self._pending_writes = 0
        return int(removed)
