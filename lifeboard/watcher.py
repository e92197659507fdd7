"""
Filesystem watch on the SQLite database.

Views in other processes write to the same board.db; SQLite gives us no
notification for that, so we watch the file (and its -wal sidecar) with
watchdog and ask the adapter to compare key versions on every touch.
Bursts are fine: poll_changes() only reports keys whose version moved,
and the synchronizer debounces what it hears.
"""
import logging
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .persistence import SQLiteAdapter

logger = logging.getLogger(__name__)


class DatabaseChangeHandler(FileSystemEventHandler):
    """Routes filesystem events on the db files to adapter.poll_changes()."""

    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter
        db = Path(adapter.db_path).resolve()
        self._names = {db.name, f"{db.name}-wal", f"{db.name}-journal"}

    def on_any_event(self, fs_event):
        if fs_event.is_directory:
            return
        if Path(fs_event.src_path).name not in self._names:
            return
        self.adapter.poll_changes()


class DatabaseWatcher:
    """Owns the watchdog observer for one SQLiteAdapter."""

    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter
        self.handler = DatabaseChangeHandler(adapter)
        self._observer: Optional[Observer] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> "DatabaseWatcher":
        if self._observer is not None:
            return self
        directory = str(Path(self.adapter.db_path).resolve().parent)
        observer = Observer()
        observer.schedule(self.handler, directory, recursive=False)
        observer.start()
        self._observer = observer
        logger.info(f"Watching {directory} for board changes from other processes")
        return self

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
