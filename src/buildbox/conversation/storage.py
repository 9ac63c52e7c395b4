"""Key/value session storage backends for the conversation log."""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
import tempfile
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Protocol, runtime_checkable

DEFAULT_DB_PATH = Path("data/buildbox.sqlite")
STATE_DIR_ENV = "BUILDBOX_STATE_DIR"
LOGGER = logging.getLogger(__name__)

__all__ = ["DEFAULT_DB_PATH", "STATE_DIR_ENV", "InMemoryStorage", "KeyValueStorage", "SQLiteStorage"]


@runtime_checkable
class KeyValueStorage(Protocol):
    """Minimal durable string storage keyed by session identifiers."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStorage:
    """Process-local storage used for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


def _can_write(path: Path) -> bool:
    directory = path.parent
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    return os.access(path if path.exists() else directory, os.W_OK)


def _fallback_location(source: Path) -> Path:
    """Stable per-source database path under $BUILDBOX_STATE_DIR or the temp dir."""
    root = Path(os.getenv(STATE_DIR_ENV) or Path(tempfile.gettempdir()) / "buildbox")
    digest = hashlib.sha256(source.as_posix().encode("utf-8")).hexdigest()[:16]
    return root / "sessions" / f"{source.stem}-{digest}.sqlite"


class SQLiteStorage:
    """SQLite-backed key/value persistence for session history.

    When the requested database cannot be written, a private copy under
    :data:`STATE_DIR_ENV` (or the temp dir) is used instead and seeded with
    the rows the read-only original already holds.
    """

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        requested = Path(db_path).resolve()
        self.db_path = requested
        seed: Optional[Path] = None
        if not _can_write(requested):
            self.db_path = _fallback_location(requested)
            if not _can_write(self.db_path):
                raise OSError(f"Unable to locate writable database path (attempted {db_path})")
            LOGGER.warning("Database path %s is not writable; using fallback %s", requested, self.db_path)
            if requested.exists() and os.access(requested, os.R_OK):
                seed = requested
        self._conn: Optional[sqlite3.Connection] = self._open_connection()
        self._bootstrap()
        if seed is not None:
            self._import_rows(seed)

    def close(self) -> None:
        if getattr(self, "_conn", None) is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "SQLiteStorage":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, base_dir: Optional[Path] = None) -> "SQLiteStorage":
        paths = config.get("paths") or {}
        db_path = paths.get("db_path")
        if not db_path:
            db_path = Path(paths.get("data") or "data") / DEFAULT_DB_PATH.name
        candidate = Path(db_path)
        if base_dir is not None and not candidate.is_absolute():
            candidate = base_dir / candidate
        return cls(candidate)

    def _open_connection(self) -> sqlite3.Connection:
        # Sessions may be driven from worker threads; writes are serialised by the session lock.
        connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
        connection.row_factory = sqlite3.Row
        return connection

    @property
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("SQLiteStorage is closed.")
        return self._conn

    def _bootstrap(self) -> None:
        self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS session_kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        self._connection.commit()

    def _import_rows(self, source: Path) -> None:
        """Copy session rows from a read-only database without overwriting newer ones."""
        try:
            with closing(sqlite3.connect(f"{source.as_uri()}?mode=ro", uri=True)) as origin:
                rows = origin.execute("SELECT key, value, updated_at FROM session_kv").fetchall()
        except sqlite3.Error as error:
            LOGGER.warning("Could not import sessions from %s: %s", source, error)
            return
        with self._transaction() as connection:
            connection.executemany(
                "INSERT OR IGNORE INTO session_kv (key, value, updated_at) VALUES (?, ?, ?)",
                rows,
            )

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        connection = self._connection
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise

    def get(self, key: str) -> Optional[str]:
        cursor = self._connection.execute("SELECT value FROM session_kv WHERE key = ?", (key,))
        row = cursor.fetchone()
        if not row:
            return None
        return row["value"]

    def set(self, key: str, value: str) -> None:
        with self._transaction() as connection:
            connection.execute(
                """
                INSERT INTO session_kv (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, datetime.now(timezone.utc).isoformat()),
            )

    def delete(self, key: str) -> None:
        with self._transaction() as connection:
            connection.execute("DELETE FROM session_kv WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        cursor = self._connection.execute("SELECT key FROM session_kv ORDER BY key ASC")
        return [row["key"] for row in cursor.fetchall()]
