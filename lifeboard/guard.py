"""
Transition guard: two-phase moves for columns that need extra data.

A drag completes before the churn date / pause reason can be collected, so
the guard parks the intent:

  Idle ──propose(→churned)──▶ AwaitingChurnDate ──confirm(date)──▶ Idle (moved)
       ──propose(→paused)───▶ AwaitingPauseDate ──confirm(date, reason)──▶ Idle
       ──propose(paused→x)──▶ AwaitingResumeDate ──confirm(date)──▶ Idle
                               any Awaiting* ──cancel()──▶ Idle (nothing changed)

Only one transition can be pending at a time. A confirmation with missing
data raises MissingRequiredField and stays in the Awaiting* state.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from .errors import (
    InvalidReference,
    MissingRequiredField,
    PersistenceFailure,
    TransitionPending,
    UnknownEntity,
)
from .schema import BoardSnapshot, Capture, column_spec
from .store import BoardStore

logger = logging.getLogger(__name__)


class GuardState(Enum):
    IDLE = "idle"
    AWAITING_CHURN_DATE = "awaiting_churn_date"
    AWAITING_PAUSE_DATE = "awaiting_pause_date"
    AWAITING_RESUME_DATE = "awaiting_resume_date"


_AWAITING = {
    Capture.CHURN: GuardState.AWAITING_CHURN_DATE,
    Capture.PAUSE: GuardState.AWAITING_PAUSE_DATE,
    Capture.RESUME: GuardState.AWAITING_RESUME_DATE,
}


@dataclass(frozen=True)
class PendingTransition:
    """A parked move, waiting for the caller to collect its data."""
    entity_id: str
    from_column: str
    to_column: str
    from_index: int
    to_index: int
    capture: Capture

    def to_dict(self) -> dict:
        return {
            "entityId": self.entity_id,
            "fromColumn": self.from_column,
            "toColumn": self.to_column,
            "fromIndex": self.from_index,
            "toIndex": self.to_index,
            "requires": self.capture.value,
        }


def required_capture(from_column: str, to_column: str) -> Optional[Capture]:
    """
    What a move needs before it may commit, if anything.
    Entry requirements of the destination win over exit requirements of the source.
    """
    if from_column == to_column:
        return None
    dest = column_spec(to_column)
    if dest and dest.on_entry:
        return dest.on_entry
    source = column_spec(from_column)
    if source and source.on_exit:
        return source.on_exit
    return None


class TransitionGuard:
    """Holds at most one pending transition for a BoardStore."""

    def __init__(self, store: BoardStore):
        self.store = store
        self._pending: Optional[PendingTransition] = None

    @property
    def state(self) -> GuardState:
        if self._pending is None:
            return GuardState.IDLE
        return _AWAITING[self._pending.capture]

    @property
    def pending(self) -> Optional[PendingTransition]:
        return self._pending

    def propose(self, entity_id: str, from_column: str, to_column: str,
                from_index: int, to_index: int) -> Union[BoardSnapshot, PendingTransition]:
        """
        Handle a drag. Plain moves commit immediately and return the new
        snapshot; guarded moves return the PendingTransition instead.
        """
        if self._pending is not None:
            raise TransitionPending(
                f"{self._pending.entity_id} is still waiting for {self._pending.capture.value} data"
            )

        capture = required_capture(from_column, to_column)
        if capture is None:
            return self.store.move_entity(entity_id, from_column, to_column, from_index, to_index)

        self._check_reference(entity_id, from_column, to_column, from_index)
        self._pending = PendingTransition(
            entity_id=entity_id,
            from_column=from_column,
            to_column=to_column,
            from_index=from_index,
            to_index=to_index,
            capture=capture,
        )
        logger.info(f"Move of {entity_id} {from_column} → {to_column} awaiting {capture.value} data")
        return self._pending

    def confirm(self, when: Any = None, reason: Optional[str] = None) -> BoardSnapshot:
        """
        Commit the pending move with its data: record the fact, then relocate,
        as one store transaction.
        """
        pending = self._pending
        if pending is None:
            raise InvalidReference("No transition is pending")

        _validate(pending.capture, when, reason)
        try:
            with self.store.transaction():
                if pending.capture is Capture.CHURN:
                    self.store.record_churn(pending.entity_id, when)
                elif pending.capture is Capture.PAUSE:
                    self.store.record_pause(pending.entity_id, when, reason)
                else:
                    self.store.record_resume(pending.entity_id, when)
                snapshot = self.store.move_entity(
                    pending.entity_id,
                    pending.from_column,
                    pending.to_column,
                    pending.from_index,
                    pending.to_index,
                )
        except MissingRequiredField:
            raise
        except (InvalidReference, UnknownEntity) as e:
            # The board moved underneath us; this intent can never commit
            logger.warning(f"Pending move of {pending.entity_id} is stale, dropping: {e}")
            self._pending = None
            raise
        except PersistenceFailure:
            # Committed in memory, just not saved
            self._pending = None
            raise

        logger.info(f"Confirmed {pending.capture.value} move of {pending.entity_id} → {pending.to_column}")
        self._pending = None
        return snapshot

    def cancel(self) -> Optional[PendingTransition]:
        """Drop the pending move. Returns what was dropped (None if idle)."""
        dropped = self._pending
        self._pending = None
        if dropped:
            logger.info(f"Cancelled move of {dropped.entity_id} → {dropped.to_column}")
        return dropped

    def _check_reference(self, entity_id: str, from_column: str, to_column: str, from_index: int) -> None:
        snapshot = self.store.snapshot
        if entity_id not in snapshot.entities:
            raise UnknownEntity(entity_id)
        for column_id in (from_column, to_column):
            if column_id not in snapshot.columns:
                raise InvalidReference(f"Unknown column: {column_id}", entity_id, column_id)
        ids = snapshot.columns[from_column].student_ids
        if not (0 <= from_index < len(ids)) or ids[from_index] != entity_id:
            raise InvalidReference(f"{entity_id} is not at {from_column}[{from_index}]", entity_id, from_column)


def _validate(capture: Capture, when: Any, reason: Optional[str]) -> None:
    if when is None or when == "":
        field_name = {
            Capture.CHURN: "churn_date",
            Capture.PAUSE: "pause_date",
            Capture.RESUME: "resume_date",
        }[capture]
        raise MissingRequiredField(field_name)
    if capture is Capture.PAUSE and (not isinstance(reason, str) or not reason.strip()):
        raise MissingRequiredField("pause_reason", "A pause needs a reason")
