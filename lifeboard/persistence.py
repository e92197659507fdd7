"""
Persistence adapters: durable key/value storage with change notification.

Keys:
  kanbanBoard            - the whole board snapshot (JSON, notes excluded)
  clientNotes:<id>       - one entity's note history (JSON list)

Every save() notifies subscribers whose pattern matches the key, passing
the origin (view id) of the writer so a view can ignore its own echoes.
"""
import fnmatch
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .errors import PersistenceFailure

logger = logging.getLogger(__name__)

BOARD_KEY = "kanbanBoard"
NOTES_PREFIX = "clientNotes:"

ChangeCallback = Callable[[str, Optional[str]], None]


def notes_key(entity_id: str) -> str:
    return f"{NOTES_PREFIX}{entity_id}"


def entity_from_notes_key(key: str) -> Optional[str]:
    if key.startswith(NOTES_PREFIX):
        return key[len(NOTES_PREFIX):]
    return None


class PersistenceAdapter:
    """
    Base adapter: subscription fan-out plus error normalisation.

    Subclasses implement _read, _write and keys. Any exception raised by
    them surfaces as PersistenceFailure.
    """

    def __init__(self):
        self._subscribers: List[Tuple[str, ChangeCallback]] = []
        self._sub_lock = threading.Lock()

    # ── storage primitives (subclass) ────────────────────────────

    def _read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, key: str, value: str, origin: Optional[str]) -> None:
        raise NotImplementedError

    def keys(self, pattern: str = "*") -> List[str]:
        raise NotImplementedError

    # ── public API ───────────────────────────────────────────────

    def load(self, key: str) -> Optional[str]:
        """Stored value for key, or None if absent. Raises PersistenceFailure."""
        try:
            return self._read(key)
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(f"Read of {key} failed: {e}", key=key) from e

    def save(self, key: str, value: str, origin: Optional[str] = None) -> None:
        """Write value under key, then notify. Raises PersistenceFailure."""
        try:
            self._write(key, value, origin)
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(f"Write of {key} failed: {e}", key=key) from e
        self.notify(key, origin)

    def subscribe(self, pattern: str, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register callback(key, origin) for keys matching an fnmatch pattern.
        Returns an unsubscribe function.
        """
        entry = (pattern, callback)
        with self._sub_lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._sub_lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def notify(self, key: str, origin: Optional[str] = None) -> None:
        """Fan a change notification out to matching subscribers."""
        with self._sub_lock:
            targets = [cb for pattern, cb in self._subscribers if fnmatch.fnmatchcase(key, pattern)]
        for callback in targets:
            try:
                callback(key, origin)
            except Exception as e:
                logger.error(f"Change subscriber for {key} failed: {e}")


class MemoryAdapter(PersistenceAdapter):
    """In-process adapter. Views sharing one instance see each other's writes."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        super().__init__()
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def _read(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def _write(self, key: str, value: str, origin: Optional[str]) -> None:
        with self._lock:
            self._data[key] = value

    def keys(self, pattern: str = "*") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if fnmatch.fnmatchcase(k, pattern))


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in WAL mode so readers in other views never block."""
    conn = sqlite3.connect(db_path, timeout=5.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SQLiteAdapter(PersistenceAdapter):
    """
    SQLite-backed adapter shared by every view (and process) on one machine.

    Each key carries a version counter bumped on every write. poll_changes()
    compares versions against the last ones this adapter saw and notifies
    for the keys another writer touched.
    """

    def __init__(self, db_path: Optional[str] = None):
        super().__init__()
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "lifeboard" / "board.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._seen: Dict[str, int] = {}
        self._seen_lock = threading.Lock()
        self._init_schema()
        self._seen.update(self._versions())

    def _init_schema(self):
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS board_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    origin TEXT,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    def _read(self, key: str) -> Optional[str]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM board_state WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def _write(self, key: str, value: str, origin: Optional[str]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO board_state (key, value, version, origin, updated_at)
                VALUES (?, ?, 1, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    version=board_state.version + 1,
                    origin=excluded.origin,
                    updated_at=excluded.updated_at
            """, (key, value, origin, now))
            row = conn.execute(
                "SELECT version FROM board_state WHERE key = ?", (key,)
            ).fetchone()
            conn.commit()
        # Our own write: poll_changes() must not report it again
        with self._seen_lock:
            self._seen[key] = row["version"]

    def keys(self, pattern: str = "*") -> List[str]:
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT key FROM board_state ORDER BY key").fetchall()
        return [r["key"] for r in rows if fnmatch.fnmatchcase(r["key"], pattern)]

    def _versions(self) -> Dict[str, int]:
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT key, version FROM board_state").fetchall()
        return {r["key"]: r["version"] for r in rows}

    def poll_changes(self) -> List[str]:
        """
        Notify for keys written by someone else since we last looked.
        Returns the changed keys. Read errors are logged, not raised.
        """
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute("SELECT key, version, origin FROM board_state").fetchall()
        except sqlite3.Error as e:
            logger.warning(f"Change poll on {self.db_path} failed: {e}")
            return []

        changed = []
        with self._seen_lock:
            for row in rows:
                if self._seen.get(row["key"]) != row["version"]:
                    self._seen[row["key"]] = row["version"]
                    changed.append((row["key"], row["origin"]))

        for key, origin in changed:
            logger.debug(f"External change detected: {key} (origin={origin})")
            self.notify(key, origin)
        return [key for key, _ in changed]
