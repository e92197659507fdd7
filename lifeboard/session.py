"""
Board session: the presentation boundary.

A UI (browser, terminal, bot) renders `snapshot` / `projected_snapshot` /
`pending_transition` and feeds user intents back in. Every intent returns
an Outcome the UI can turn into a notification; recoverable errors never
escape from here.

Indices passed to drag_end are positions in the view the user is looking
at. With a team scope active that is the projected column, so they are
translated to positions in the full column before the store sees them.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .billing import HttpBillingClient
from .config import Config
from .errors import (
    BoardError,
    InvalidReference,
    MissingRequiredField,
    PersistenceFailure,
)
from .guard import PendingTransition, TransitionGuard
from .persistence import SQLiteAdapter
from .projection import TEAM_ALL
from .schema import BoardSnapshot, column_spec
from .store import BoardStore
from .sync import CrossViewSynchronizer
from .watcher import DatabaseWatcher

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    """Result of one user intent."""
    ok: bool                                   # the intent took effect (in memory at least)
    saved: bool = False                        # ...and reached durable storage
    message: str = ""
    pending: Optional[PendingTransition] = None
    error: Optional[str] = None                # error class name when not ok / not saved

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "saved": self.saved,
            "message": self.message,
            "pending": self.pending.to_dict() if self.pending else None,
            "error": self.error,
        }


def _title(column_id: str) -> str:
    spec = column_spec(column_id)
    return spec.title if spec else column_id


class BoardSession:
    """One open view of the board."""

    def __init__(
        self,
        store: BoardStore,
        synchronizer: Optional[CrossViewSynchronizer] = None,
        watcher: Optional[DatabaseWatcher] = None,
        billing=None,
        grace_days: int = 7,
    ):
        self.store = store
        self.guard = TransitionGuard(store)
        self.synchronizer = synchronizer
        self.watcher = watcher
        self.billing = billing
        self.grace_days = grace_days
        self.team_scope = TEAM_ALL

    @classmethod
    def open(cls, cfg: Config) -> "BoardSession":
        """Wire up a session from config: SQLite store, sync, watcher, billing."""
        adapter = SQLiteAdapter(cfg.db_path)
        store = BoardStore(adapter)
        store.load()
        synchronizer = CrossViewSynchronizer(store, debounce_ms=cfg.debounce_ms).start()
        watcher = DatabaseWatcher(adapter).start() if cfg.watch_db else None
        billing = HttpBillingClient(cfg.billing_url) if cfg.billing_url else None
        session = cls(store, synchronizer, watcher, billing, cfg.grace_days)
        if billing:
            session.refresh_billing()
        return session

    def close(self) -> None:
        """Stop background reconciliation. Writes are synchronous, nothing to flush."""
        self.guard.cancel()
        if self.synchronizer:
            self.synchronizer.stop()
        if self.watcher:
            self.watcher.stop()

    # ──────────────────────────────────────────
    # Render state
    # ──────────────────────────────────────────

    @property
    def snapshot(self) -> BoardSnapshot:
        return self.store.snapshot

    @property
    def projected_snapshot(self) -> BoardSnapshot:
        return self.store.project(self.team_scope)

    @property
    def pending_transition(self) -> Optional[PendingTransition]:
        return self.guard.pending

    def render_state(self) -> Dict[str, Any]:
        """Everything a UI needs for one frame, JSON-ready."""
        projected = self.projected_snapshot
        return {
            "board": projected.to_dict(include_notes=True),
            "teamScope": self.team_scope,
            "teams": self.store.teams(),
            "pending": self.pending_transition.to_dict() if self.pending_transition else None,
            "stats": self.store.stats(self.team_scope),
            "payments": {
                eid: e.payment_status.to_dict()
                for eid, e in projected.entities.items() if e.payment_status
            },
        }

    # ──────────────────────────────────────────
    # Intents
    # ──────────────────────────────────────────

    def set_team_scope(self, team_scope: Optional[str]) -> Outcome:
        team_scope = team_scope or TEAM_ALL
        if team_scope != self.team_scope and self.guard.pending:
            # Pending indices were taken from the old projection
            self.guard.cancel()
        self.team_scope = team_scope
        return Outcome(ok=True, message=f"Showing team: {self.team_scope}")

    def drag_end(self, entity_id: str, from_column: str, to_column: Optional[str],
                 from_index: int, to_index: int) -> Outcome:
        """A card was dropped. to_column None means it was dropped outside any column."""
        if to_column is None:
            return Outcome(ok=True, message="No change")
        try:
            from_index, to_index = self._to_board_indices(entity_id, from_column, to_column, from_index, to_index)
            result = self.guard.propose(entity_id, from_column, to_column, from_index, to_index)
        except PersistenceFailure as e:
            return self._unsaved(e)
        except BoardError as e:
            return self._failed(e)

        if isinstance(result, PendingTransition):
            return Outcome(
                ok=True,
                message=f"{_title(to_column)}: {result.capture.value} details required",
                pending=result,
            )
        name = self.snapshot.entities[entity_id].name
        return Outcome(ok=True, saved=True, message=f"{name} moved to {_title(to_column)}")

    def confirm_transition(self, when: Any = None, reason: Optional[str] = None) -> Outcome:
        pending = self.guard.pending
        try:
            self.guard.confirm(when, reason)
        except MissingRequiredField as e:
            return Outcome(ok=False, message=str(e), pending=self.guard.pending, error=type(e).__name__)
        except PersistenceFailure as e:
            return self._unsaved(e)
        except BoardError as e:
            return self._failed(e)
        name = self.snapshot.entities[pending.entity_id].name
        return Outcome(ok=True, saved=True, message=f"{name} moved to {_title(pending.to_column)}")

    def cancel_transition(self) -> Outcome:
        dropped = self.guard.cancel()
        if dropped is None:
            return Outcome(ok=True, message="Nothing to cancel")
        return Outcome(ok=True, message=f"Move of {dropped.entity_id} cancelled")

    def add_note(self, entity_id: str, text: str, author: str = "") -> Outcome:
        try:
            snapshot = self.store.add_note(entity_id, text, author)
        except PersistenceFailure as e:
            return self._unsaved(e)
        except BoardError as e:
            return self._failed(e)
        note = snapshot.entities[entity_id].notes[-1]
        message = "Note added"
        if note.mentions:
            message += f", notified {', '.join('@' + m for m in note.mentions)}"
        return Outcome(ok=True, saved=True, message=message)

    def set_team(self, entity_id: str, team: Optional[str]) -> Outcome:
        try:
            self.store.set_team(entity_id, team)
        except PersistenceFailure as e:
            return self._unsaved(e)
        except BoardError as e:
            return self._failed(e)
        return Outcome(ok=True, saved=True, message=f"{entity_id} assigned to {team or 'no team'}")

    def reload(self) -> BoardSnapshot:
        """Throw away the local board and re-read it (after an InvalidReference)."""
        self.guard.cancel()
        return self.store.load()

    def refresh_billing(self) -> Outcome:
        if self.billing is None:
            return Outcome(ok=False, message="No billing service configured")
        snapshot = self.store.refresh_payment_status(self.billing, self.grace_days)
        overdue = sum(1 for e in snapshot.entities.values() if e.payment_status and e.payment_status.is_overdue)
        return Outcome(ok=True, message=f"{overdue} overdue")

    # ──────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────

    def _to_board_indices(self, entity_id: str, from_column: str, to_column: str,
                          from_index: int, to_index: int) -> Tuple[int, int]:
        """Map view positions to full-column positions."""
        if self.team_scope == TEAM_ALL:
            return from_index, to_index

        board = self.snapshot
        view = self.projected_snapshot
        if from_column not in view.columns or to_column not in view.columns:
            bad = from_column if from_column not in view.columns else to_column
            raise InvalidReference(f"Unknown column: {bad}", entity_id, bad)

        view_source = view.columns[from_column].student_ids
        if not (0 <= from_index < len(view_source)) or view_source[from_index] != entity_id:
            raise InvalidReference(f"{entity_id} is not at {from_column}[{from_index}]", entity_id, from_column)
        board_from = board.columns[from_column].student_ids.index(entity_id)

        view_dest: List[str] = [i for i in view.columns[to_column].student_ids if i != entity_id]
        board_dest: List[str] = [i for i in board.columns[to_column].student_ids if i != entity_id]
        if 0 <= to_index < len(view_dest):
            board_to = board_dest.index(view_dest[to_index])
        elif view_dest:
            board_to = board_dest.index(view_dest[-1]) + 1
        else:
            board_to = len(board_dest)
        return board_from, board_to

    def _failed(self, error: BoardError) -> Outcome:
        logger.warning(f"Intent rejected: {error}")
        return Outcome(ok=False, message=str(error), pending=self.guard.pending, error=type(error).__name__)

    def _unsaved(self, error: PersistenceFailure) -> Outcome:
        return Outcome(
            ok=True,
            saved=False,
            message=f"Save failed, change kept locally: {error}",
            pending=self.guard.pending,
            error=type(error).__name__,
        )
