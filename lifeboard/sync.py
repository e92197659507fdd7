"""
Cross-view synchronizer.

Another view (same process, another process through the SQLite file, or a
bulk import) writes to the shared store; the adapter raises a change
notification; we coalesce bursts per key and then reload.

Conflict policy is last-writer-wins on the whole snapshot: a reload
replaces the local board wholesale, so unsaved local edits are lost.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional

from .persistence import BOARD_KEY, NOTES_PREFIX, entity_from_notes_key
from .store import BoardStore

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 300


class CrossViewSynchronizer:
    """
    Debounced reconciler for one BoardStore.

    Debounce is trailing-edge: every notification for a key restarts that
    key's timer, and the reload runs once the key has been quiet for the
    whole window. flush() runs pending reloads right away.
    """

    def __init__(self, store: BoardStore, debounce_ms: int = DEFAULT_DEBOUNCE_MS):
        self.store = store
        self.debounce_ms = debounce_ms
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._unsubscribers: List[Callable[[], None]] = []
        self.reloads = 0

    def start(self) -> "CrossViewSynchronizer":
        adapter = self.store.adapter
        self._unsubscribers = [
            adapter.subscribe(BOARD_KEY, self.on_change),
            adapter.subscribe(f"{NOTES_PREFIX}*", self.on_change),
        ]
        logger.info(f"[{self.store.view_id}] Sync started (debounce {self.debounce_ms}ms)")
        return self

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    @property
    def pending_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._timers)

    def on_change(self, key: str, origin: Optional[str] = None) -> None:
        """Adapter callback. Our own writes are echoes and are ignored."""
        if origin is not None and origin == self.store.view_id:
            return
        with self._lock:
            previous = self._timers.get(key)
            if previous is not None:
                previous.cancel()
                logger.debug(f"[{self.store.view_id}] Coalescing change burst on {key}")
            timer = threading.Timer(self.debounce_ms / 1000, self._fire, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
        timer.start()

    def flush(self) -> None:
        """Run every pending reconciliation now."""
        with self._lock:
            pending = list(self._timers.items())
            self._timers.clear()
        for key, timer in pending:
            timer.cancel()
            self._reconcile(key)

    def _fire(self, key: str) -> None:
        with self._lock:
            timer = self._timers.get(key)
            if timer is None or timer is not threading.current_thread():
                # Superseded by a newer notification, or already flushed
                return
            del self._timers[key]
        self._reconcile(key)

    def _reconcile(self, key: str) -> None:
        try:
            entity_id = entity_from_notes_key(key)
            if entity_id is not None:
                self.store.reload_notes(entity_id)
            else:
                self.store.load()
            self.reloads += 1
            logger.info(f"[{self.store.view_id}] Reconciled after remote change to {key}")
        except Exception as e:
            logger.error(f"[{self.store.view_id}] Reconcile of {key} failed: {e}")
