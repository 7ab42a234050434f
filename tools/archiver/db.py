"""Dedup store – which threads and media files have already been captured."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from .models import MediaKey

logger = logging.getLogger("archiver.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS threads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    board TEXT NOT NULL,
    thread_no INTEGER NOT NULL,
    title TEXT,
    last_modified INTEGER,
    UNIQUE(board, thread_no)
);
CREATE TABLE IF NOT EXISTS media (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    board TEXT NOT NULL,
    thread_no INTEGER NOT NULL,
    post_no INTEGER NOT NULL,
    filename TEXT NOT NULL,
    ext TEXT NOT NULL,
    UNIQUE(board, thread_no, post_no, filename, ext) ON CONFLICT IGNORE
);
"""


class Database:
    """SQLite interface for the archiver.

    Every insert is insert-if-absent, so repeating one is a no-op.  The
    connection is used from the event loop thread only, which serializes
    writes from concurrent downloads.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open the store and create the schema if needed."""
        if self._conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(SCHEMA)
            self._upgrade_threads_table(self._conn)
            self._conn.commit()
            logger.debug("Opened dedup store %s", self.path)
        return self._conn

    def _upgrade_threads_table(self, conn: sqlite3.Connection) -> None:
        """Bring a threads table written by the older archiver up to date.

        That table has no last_modified column and holds one row per capture,
        with no uniqueness on (board, thread_no).
        """
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(threads)")}
        if "last_modified" in columns:
            return
        logger.info("Upgrading threads table in %s", self.path)
        with conn:
            conn.execute("ALTER TABLE threads ADD COLUMN last_modified INTEGER")
            conn.execute(
                """DELETE FROM threads WHERE id NOT IN
                   (SELECT MAX(id) FROM threads GROUP BY board, thread_no)"""
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS threads_board_thread ON threads (board, thread_no)"
            )

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    # ── thread operations ────────────────────────────────────────

    def thread_exists(self, board: str, thread_no: int) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM threads WHERE board = ? AND thread_no = ?", (board, thread_no)
        ).fetchone()
        return row is not None

    def get_thread_last_modified(self, board: str, thread_no: int) -> int | None:
        """Last-modified value of the last successful capture, or None."""
        row = self.conn.execute(
            "SELECT last_modified FROM threads WHERE board = ? AND thread_no = ?",
            (board, thread_no),
        ).fetchone()
        return row["last_modified"] if row else None

    def remember_thread(
        self, board: str, thread_no: int, *, title: str = "", last_modified: int | None = None
    ) -> None:
        """Record a captured thread, refreshing its title and last-modified marker."""
        with self.conn:
            self.conn.execute(
                """INSERT INTO threads (board, thread_no, title, last_modified)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT (board, thread_no) DO UPDATE SET
                       title         = excluded.title,
                       last_modified = COALESCE(excluded.last_modified, threads.last_modified)""",
                (board, thread_no, title, last_modified),
            )

    # ── media dedup ──────────────────────────────────────────────

    def media_exists(self, key: MediaKey) -> bool:
        row = self.conn.execute(
            """SELECT 1 FROM media
               WHERE board = ? AND thread_no = ? AND post_no = ? AND filename = ? AND ext = ?""",
            tuple(key),
        ).fetchone()
        return row is not None

    def remember_media(self, key: MediaKey) -> bool:
        """Record a captured media file.  Returns True if the row is new."""
        with self.conn:
            cur = self.conn.execute(
                """INSERT OR IGNORE INTO media (board, thread_no, post_no, filename, ext)
                   VALUES (?, ?, ?, ?, ?)""",
                tuple(key),
            )
        return cur.rowcount == 1

    def count_media(self, board: str | None = None, thread_no: int | None = None) -> int:
        sql = "SELECT COUNT(*) FROM media"
        params: tuple[object, ...] = ()
        if board is not None and thread_no is not None:
            sql += " WHERE board = ? AND thread_no = ?"
            params = (board, thread_no)
        elif board is not None:
            sql += " WHERE board = ?"
            params = (board,)
        return self.conn.execute(sql, params).fetchone()[0]

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Closed dedup store %s", self.path)

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
