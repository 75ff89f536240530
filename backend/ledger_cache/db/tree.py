"""Hierarchical key-value store on top of SQLite.

Nodes are addressed by a path of string segments. A node may hold a value,
have children, or both; a node that has neither does not exist. Writes
inside one :meth:`SQLiteTreeStore.atomic` block become visible together or
not at all.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path as FsPath
from typing import Iterator, Protocol, Sequence

from ledger_cache.core.errors import StoreCommitAborted
from ledger_cache.db.codec import SEPARATOR, Path, collation_key, encode_key

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA temp_store=MEMORY;",
)

# Every descendant key of P sorts inside [P + SEPARATOR, P + _UPPER) because
# segments never contain characters below 0x20.
_UPPER = chr(ord(SEPARATOR) + 1)


class TreeStore(Protocol):
    def read(self, path: Path) -> str | None: ...

    def write(self, path: Path, value: object) -> None: ...

    def erase(self, path: Path) -> None: ...

    def has_value(self, path: Path) -> bool: ...

    def has_tree(self, path: Path) -> bool: ...

    def exists(self, path: Path) -> bool: ...

    def children(self, path: Path) -> Iterator[str]: ...

    def atomic(self): ...

    def snapshot(self): ...


class SQLiteTreeStore:
    """Tree store backed by a single ``nodes`` table.

    The connection is shared by every thread in the process, so all access
    goes through one re-entrant lock. Nested ``atomic`` blocks join the
    outermost one.
    """

    def __init__(self, db_path: FsPath, timeout: float = 30.0) -> None:
        self.db_path = db_path.expanduser()
        self.timeout = timeout
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0
        self._reading = False

    def connect(self) -> sqlite3.Connection:
        with self._lock:
            if self._connection is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._connection = sqlite3.connect(
                    self.db_path,
                    timeout=self.timeout,
                    isolation_level=None,
                    check_same_thread=False,
                )
                self._connection.row_factory = sqlite3.Row
                for pragma in DEFAULT_PRAGMAS:
                    self._connection.execute(pragma)
            return self._connection

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def __enter__(self) -> "SQLiteTreeStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_path = FsPath(__file__).with_name("schema.sql")
            schema_sql = schema_path.read_text(encoding="utf-8")
        with self._lock:
            self.connect().executescript(schema_sql)

    @contextmanager
    def atomic(self) -> Iterator["SQLiteTreeStore"]:
        """Run the enclosed writes as one unit of work.

        Raises :class:`StoreCommitAborted` when SQLite refuses to begin or
        commit, or fails mid-block. Any other exception rolls back and
        propagates unchanged.
        """
        with self._lock:
            if self._depth:
                if self._reading:
                    raise RuntimeError("cannot write inside a read snapshot")
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            conn = self.connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StoreCommitAborted(f"could not begin transaction: {exc}") from exc
            self._depth = 1
            try:
                yield self
            except sqlite3.Error as exc:
                _rollback(conn)
                raise StoreCommitAborted(f"transaction rolled back: {exc}") from exc
            except BaseException:
                _rollback(conn)
                raise
            else:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as exc:
                    _rollback(conn)
                    raise StoreCommitAborted(f"commit failed: {exc}") from exc
            finally:
                self._depth = 0

    @contextmanager
    def snapshot(self) -> Iterator["SQLiteTreeStore"]:
        """Hold one consistent read view across several reads."""
        with self._lock:
            if self._depth:
                yield self
                return
            conn = self.connect()
            conn.execute("BEGIN")
            self._depth = 1
            self._reading = True
            try:
                yield self
            finally:
                self._depth = 0
                self._reading = False
                _rollback(conn)

    # Reads ------------------------------------------------------------

    def read(self, path: Path) -> str | None:
        row = self._fetchone("SELECT value FROM nodes WHERE key = ?", [encode_key(path)])
        return None if row is None else row["value"]

    def has_value(self, path: Path) -> bool:
        return self.read(path) is not None

    def has_tree(self, path: Path) -> bool:
        row = self._fetchone("SELECT 1 FROM nodes WHERE parent = ? LIMIT 1", [encode_key(path)])
        return row is not None

    def exists(self, path: Path) -> bool:
        return self.has_value(path) or self.has_tree(path)

    def children(self, path: Path) -> Iterator[str]:
        """Yield child subscripts of ``path`` in collation order."""
        with self._lock:
            rows = self.connect().execute(
                "SELECT name FROM nodes WHERE parent = ?",
                [encode_key(path)],
            ).fetchall()
        yield from sorted((row["name"] for row in rows), key=collation_key)

    # Writes -----------------------------------------------------------

    def write(self, path: Path, value: object) -> None:
        if not path:
            raise ValueError("cannot write the root node")
        key = encode_key(path)
        with self.atomic():
            conn = self.connect()
            conn.executemany(
                "INSERT OR IGNORE INTO nodes (key, parent, name, value) VALUES (?, ?, ?, NULL)",
                [
                    (encode_key(path[:depth]), encode_key(path[: depth - 1]), path[depth - 1])
                    for depth in range(1, len(path))
                ],
            )
            conn.execute(
                """
                INSERT INTO nodes (key, parent, name, value) VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                [key, encode_key(path[:-1]), path[-1], str(value)],
            )

    def erase(self, path: Path) -> None:
        """Remove a node and its whole subtree, then prune emptied ancestors."""
        if not path:
            raise ValueError("cannot erase the root node")
        key = encode_key(path)
        with self.atomic():
            conn = self.connect()
            conn.execute(
                "DELETE FROM nodes WHERE key = ? OR (key >= ? AND key < ?)",
                [key, key + SEPARATOR, key + _UPPER],
            )
            for depth in range(len(path) - 1, 0, -1):
                ancestor = encode_key(path[:depth])
                cursor = conn.execute(
                    """
                    DELETE FROM nodes
                    WHERE key = ? AND value IS NULL
                      AND NOT EXISTS (SELECT 1 FROM nodes AS child WHERE child.parent = ?)
                    """,
                    [ancestor, ancestor],
                )
                if cursor.rowcount == 0:
                    break

    def _fetchone(self, sql: str, params: Sequence[object]) -> sqlite3.Row | None:
        with self._lock:
            return self.connect().execute(sql, params).fetchone()


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


__all__ = ["TreeStore", "SQLiteTreeStore"]
