"""
BoardStore: the single owner and writer of one view's board snapshot.

Every mutation builds a new immutable snapshot, installs it, and writes it
through the persistence adapter before returning. A failed write leaves
the new snapshot in memory (it stays the source of truth) and raises
PersistenceFailure so the caller can tell the user the change is unsaved.
"""
import json
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import (
    BillingError,
    InvalidReference,
    MalformedSnapshot,
    MissingRequiredField,
    PersistenceFailure,
    UnknownEntity,
)
from .persistence import BOARD_KEY, PersistenceAdapter, notes_key
from .projection import TEAM_ALL, column_counts, project
from .schema import BoardSnapshot, Entity, Note, PaymentStatus, parse_date
from .seed import seed_snapshot

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = "Current User"


def encode(data: Any) -> str:
    """Deterministic JSON so saving an unchanged board stores identical bytes."""
    return json.dumps(data, sort_keys=True, ensure_ascii=False)


class BoardStore:
    """
    In-memory board snapshot plus the operations allowed to change it.

    Events (subscribe(event, callback), callback receives keyword args):
        changed     snapshot                 - any new snapshot installed by a mutation
        saved       snapshot                 - write-through succeeded
        save_failed snapshot, error          - write-through failed
        reloaded    snapshot                 - load() replaced the snapshot wholesale
    """

    def __init__(self, adapter: PersistenceAdapter, view_id: Optional[str] = None):
        self.adapter = adapter
        self.view_id = view_id or f"view-{uuid.uuid4().hex[:8]}"
        self.subscribers: Dict[str, list] = {}
        self._snapshot: Optional[BoardSnapshot] = None
        self._payment: Dict[str, PaymentStatus] = {}
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._tx_board = False
        self._tx_notes: set = set()

    # ──────────────────────────────────────────
    # Events
    # ──────────────────────────────────────────

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def _emit(self, event_type: str, **kwargs) -> None:
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    # ──────────────────────────────────────────
    # Loading
    # ──────────────────────────────────────────

    @property
    def snapshot(self) -> BoardSnapshot:
        with self._lock:
            if self._snapshot is None:
                return self.load()
            return self._snapshot

    def load(self) -> BoardSnapshot:
        """
        Read the board from persistence, replacing the in-memory snapshot.

        Absent or malformed data falls back to the seed board, which is
        persisted right away so later loads see the same thing. A failed
        read keeps the current board (or shows the seed) and writes nothing.
        Never raises.
        """
        with self._lock:
            try:
                snapshot = self._read_board()
            except PersistenceFailure as e:
                if self._snapshot is not None:
                    logger.warning(f"[{self.view_id}] Board read failed, keeping current board: {e}")
                    return self._snapshot
                logger.warning(f"[{self.view_id}] Board read failed, showing defaults unsaved: {e}")
                snapshot = self._apply_payment(seed_snapshot())
                self._snapshot = snapshot
                self._emit("reloaded", snapshot=snapshot)
                return snapshot

            if snapshot is None:
                snapshot = seed_snapshot()
                logger.info("No usable board persisted, seeding defaults")
                try:
                    self._write_board(snapshot)
                except PersistenceFailure as e:
                    logger.warning(f"Could not persist seed board: {e}")

            snapshot = self._attach_notes(snapshot)
            snapshot = self._apply_payment(snapshot)
            self._snapshot = snapshot
            logger.info(
                f"[{self.view_id}] Board loaded: {len(snapshot.entities)} students "
                f"in {len(snapshot.column_order)} columns"
            )
            self._emit("reloaded", snapshot=snapshot)
            return snapshot

    def replace_snapshot(self, snapshot: BoardSnapshot) -> BoardSnapshot:
        """Install a board received from elsewhere. Validated, not written back."""
        with self._lock:
            snapshot = self._apply_payment(snapshot.validate())
            self._snapshot = snapshot
            self._emit("reloaded", snapshot=snapshot)
            return snapshot

    def reload_notes(self, entity_id: str) -> BoardSnapshot:
        """Re-read one entity's notes (another view appended to them)."""
        with self._lock:
            snapshot = self.snapshot
            entity = snapshot.entities.get(entity_id)
            if entity is None:
                return snapshot
            notes = self._read_notes(entity_id)
            if notes is None or notes == entity.notes:
                return snapshot
            self._snapshot = snapshot.with_entity(replace(entity, notes=notes))
            self._emit("reloaded", snapshot=self._snapshot)
            return self._snapshot

    def _read_board(self) -> Optional[BoardSnapshot]:
        """Stored board, or None if absent/malformed. Raises PersistenceFailure if unreadable."""
        raw = self.adapter.load(BOARD_KEY)
        if raw is None:
            return None
        try:
            return BoardSnapshot.from_dict(json.loads(raw))
        except ValueError as e:
            logger.warning(f"Persisted board is not valid JSON, ignoring: {e}")
        except MalformedSnapshot as e:
            logger.warning(f"Persisted board is malformed, ignoring: {e}")
        return None

    def _read_notes(self, entity_id: str) -> Optional[tuple]:
        """Stored notes for one entity. None means the read failed."""
        try:
            raw = self.adapter.load(notes_key(entity_id))
        except PersistenceFailure as e:
            logger.warning(f"Notes read for {entity_id} failed: {e}")
            return None
        if raw is None:
            return ()
        try:
            records = json.loads(raw)
        except ValueError:
            logger.warning(f"Notes for {entity_id} are not valid JSON, dropping")
            return ()
        if not isinstance(records, list):
            logger.warning(f"Notes for {entity_id} are not a list, dropping")
            return ()

        notes = []
        for record in records:
            try:
                notes.append(Note.from_dict(record))
            except MalformedSnapshot as e:
                logger.warning(f"Dropping note for {entity_id}: {e}")
        return tuple(notes)

    def _attach_notes(self, snapshot: BoardSnapshot) -> BoardSnapshot:
        current = self._snapshot.entities if self._snapshot is not None else {}
        entities = {}
        for eid, entity in snapshot.entities.items():
            notes = self._read_notes(eid)
            if notes is None:
                # Unreadable: keep what this view already had
                notes = current[eid].notes if eid in current else ()
            entities[eid] = replace(entity, notes=notes)
        return replace(snapshot, entities=entities)

    # ──────────────────────────────────────────
    # Writing
    # ──────────────────────────────────────────

    def _write_board(self, snapshot: BoardSnapshot) -> None:
        self.adapter.save(BOARD_KEY, encode(snapshot.to_dict()), origin=self.view_id)

    def _write_notes(self, entity: Entity) -> None:
        self.adapter.save(
            notes_key(entity.id),
            encode([n.to_dict() for n in entity.notes]),
            origin=self.view_id,
        )

    def _commit(self, snapshot: BoardSnapshot, board: bool = True,
                notes: Iterable[str] = ()) -> BoardSnapshot:
        """Install a new snapshot and write it through (deferred inside a transaction)."""
        self._snapshot = snapshot
        if self._tx_depth:
            self._tx_board = self._tx_board or board
            self._tx_notes.update(notes)
            return snapshot
        self._emit("changed", snapshot=snapshot)
        self._persist(snapshot, board, list(notes))
        return snapshot

    def _persist(self, snapshot: BoardSnapshot, board: bool, notes: List[str]) -> None:
        try:
            if board:
                self._write_board(snapshot)
            for entity_id in notes:
                self._write_notes(snapshot.entities[entity_id])
        except PersistenceFailure as e:
            e.snapshot = snapshot
            logger.warning(f"[{self.view_id}] Save failed, changes kept in memory only: {e}")
            self._emit("save_failed", snapshot=snapshot, error=e)
            raise
        self._emit("saved", snapshot=snapshot)

    @contextmanager
    def transaction(self):
        """
        Group mutations into one observable change with one write.

        If the block raises, the snapshot is restored to what it was on
        entry and nothing is written.
        """
        with self._lock:
            before = self.snapshot
            outer = self._tx_depth == 0
            if outer:
                self._tx_board = False
                self._tx_notes = set()
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._tx_depth -= 1
                self._snapshot = before
                raise
            self._tx_depth -= 1

            if outer and (self._tx_board or self._tx_notes):
                snapshot = self._snapshot
                self._emit("changed", snapshot=snapshot)
                self._persist(snapshot, self._tx_board, sorted(self._tx_notes))

    # ──────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────

    def move_entity(self, entity_id: str, from_column: str, to_column: str,
                    from_index: int, to_index: int) -> BoardSnapshot:
        """
        Move an entity between (or within) columns.

        The entity must sit at from_column[from_index]; otherwise the
        caller's view is stale and InvalidReference is raised. to_index is
        clamped to the destination's bounds.
        """
        with self._lock:
            snapshot = self.snapshot
            source = snapshot.columns.get(from_column)
            dest = snapshot.columns.get(to_column)
            if source is None:
                raise InvalidReference(f"Unknown column: {from_column}", entity_id, from_column)
            if dest is None:
                raise InvalidReference(f"Unknown column: {to_column}", entity_id, to_column)
            if not (0 <= from_index < len(source.student_ids)) or source.student_ids[from_index] != entity_id:
                raise InvalidReference(
                    f"{entity_id} is not at {from_column}[{from_index}]", entity_id, from_column
                )
            if from_column == to_column and from_index == to_index:
                return snapshot

            source_ids = list(source.student_ids)
            source_ids.pop(from_index)
            dest_ids = source_ids if from_column == to_column else list(dest.student_ids)
            to_index = max(0, min(to_index, len(dest_ids)))
            dest_ids.insert(to_index, entity_id)

            if from_column == to_column:
                if tuple(dest_ids) == source.student_ids:
                    return snapshot
                updated = snapshot.with_columns(replace(source, student_ids=tuple(dest_ids)))
            else:
                updated = snapshot.with_columns(
                    replace(source, student_ids=tuple(source_ids)),
                    replace(dest, student_ids=tuple(dest_ids)),
                )

            logger.info(
                f"[{self.view_id}] Moved {entity_id}: "
                f"{from_column}[{from_index}] → {to_column}[{to_index}]"
            )
            return self._commit(updated)

    def add_note(self, entity_id: str, text: str, author: str = DEFAULT_AUTHOR) -> BoardSnapshot:
        """Append a note to an entity's audit trail. Only that entity's notes are written."""
        with self._lock:
            if not text or not text.strip():
                raise MissingRequiredField("text", "Note text is empty")
            entity = self._entity(entity_id)
            note = Note.make(text, author or DEFAULT_AUTHOR)
            updated = self.snapshot.with_entity(replace(entity, notes=entity.notes + (note,)))
            if note.mentions:
                logger.info(f"Note {note.id} on {entity_id} mentions {', '.join(note.mentions)}")
            return self._commit(updated, board=False, notes=[entity_id])

    def set_team(self, entity_id: str, team_id: Optional[str]) -> BoardSnapshot:
        """Re-scope an entity. Column membership is untouched."""
        if team_id is not None and not isinstance(team_id, str):
            raise MissingRequiredField("team", f"Team must be a string, got {team_id!r}")
        with self._lock:
            return self._update_entity(entity_id, team=(team_id or "").strip() or None)

    def record_churn(self, entity_id: str, when: Any) -> BoardSnapshot:
        with self._lock:
            return self._update_entity(entity_id, churn_date=_required_date(when, "churn_date"))

    def record_pause(self, entity_id: str, when: Any, reason: Optional[str]) -> BoardSnapshot:
        with self._lock:
            pause_date = _required_date(when, "pause_date")
            if not isinstance(reason, str) or not reason.strip():
                raise MissingRequiredField("pause_reason", "A pause needs a reason")
            return self._update_entity(entity_id, pause_date=pause_date, pause_reason=reason.strip())

    def record_resume(self, entity_id: str, when: Any) -> BoardSnapshot:
        with self._lock:
            return self._update_entity(entity_id, resume_date=_required_date(when, "resume_date"))

    def _entity(self, entity_id: str) -> Entity:
        entity = self.snapshot.entities.get(entity_id)
        if entity is None:
            raise UnknownEntity(entity_id)
        return entity

    def _update_entity(self, entity_id: str, **changes) -> BoardSnapshot:
        entity = self._entity(entity_id)
        return self._commit(self.snapshot.with_entity(replace(entity, **changes)))

    # ──────────────────────────────────────────
    # Billing annotation
    # ──────────────────────────────────────────

    def refresh_payment_status(self, checker, grace_days: int = 7) -> BoardSnapshot:
        """
        Ask the billing collaborator about every entity and overwrite the
        annotations. An entity the collaborator can't answer for ends up
        unannotated. Nothing is persisted.
        """
        targets = [(e.id, e.name) for e in self.snapshot.entities.values()]
        annotations: Dict[str, PaymentStatus] = {}
        for entity_id, name in targets:
            try:
                annotations[entity_id] = checker.check_payment_status(entity_id, name, grace_days)
            except BillingError as e:
                logger.error(f"Payment status for {entity_id} unavailable: {e}")

        with self._lock:
            self._payment = annotations
            self._snapshot = self._apply_payment(self.snapshot)
            self._emit("changed", snapshot=self._snapshot)
            return self._snapshot

    def _apply_payment(self, snapshot: BoardSnapshot) -> BoardSnapshot:
        entities = {
            eid: replace(entity, payment_status=self._payment.get(eid))
            for eid, entity in snapshot.entities.items()
        }
        return replace(snapshot, entities=entities)

    # ──────────────────────────────────────────
    # Read views
    # ──────────────────────────────────────────

    def column_members(self, column_id: str) -> List[Entity]:
        snapshot = self.snapshot
        if column_id not in snapshot.columns:
            raise InvalidReference(f"Unknown column: {column_id}", column_id=column_id)
        return snapshot.members(column_id)

    def project(self, team_scope: str = TEAM_ALL) -> BoardSnapshot:
        return project(self.snapshot, team_scope)

    def teams(self) -> List[str]:
        return sorted({e.team for e in self.snapshot.entities.values() if e.team})

    def stats(self, team_scope: str = TEAM_ALL) -> Dict[str, Any]:
        """Counts per column (in board order) for a team scope."""
        projected = self.project(team_scope)
        by_column = column_counts(projected)
        return {
            "team": team_scope,
            "total": sum(by_column.values()),
            "by_column": by_column,
            "overdue": sum(
                1 for column_id in projected.column_order
                for e in projected.members(column_id)
                if e.payment_status and e.payment_status.is_overdue
            ),
        }


def _required_date(value: Any, field_name: str):
    try:
        parsed = parse_date(value)
    except ValueError as e:
        raise MissingRequiredField(field_name, f"Invalid {field_name}: {value!r}") from e
    if parsed is None:
        raise MissingRequiredField(field_name)
    return parsed
