"""SQLite storage for users, friendships, groups and offline messages."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Sequence
from typing import Any

_SCHEMA = """
CREATE TABLE IF NOT EXISTS user (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'offline'
);
CREATE TABLE IF NOT EXISTS friend (
    userid INTEGER NOT NULL,
    friendid INTEGER NOT NULL,
    PRIMARY KEY (userid, friendid)
);
CREATE TABLE IF NOT EXISTS allgroup (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    groupname TEXT NOT NULL UNIQUE,
    groupdesc TEXT NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS groupuser (
    groupid INTEGER NOT NULL,
    userid INTEGER NOT NULL,
    grouprole TEXT NOT NULL,
    PRIMARY KEY (groupid, userid)
);
CREATE TABLE IF NOT EXISTS offlinemessage (
    userid INTEGER NOT NULL,
    message TEXT NOT NULL
);
"""


class Database:
    """A thread-safe SQLite connection with the chat schema in place.

    Errors from SQLite (``sqlite3.Error``) are raised to the caller.
    """

    def __init__(self, path: str = ":memory:") -> None:
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(_SCHEMA)

    def _execute(self, sql: str, params: Sequence[Any]) -> sqlite3.Cursor:
        with self._lock, self._conn:
            return self._conn.execute(sql, tuple(params))

    def update(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a modifying statement and return the number of rows changed."""
        return self._execute(sql, params).rowcount

    def insert(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run an INSERT and return the id of the new row."""
        return self._execute(sql, params).lastrowid

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        """Run a SELECT and return all rows."""
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    def close(self) -> None:
        """Close the connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()