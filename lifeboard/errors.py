"""
Board error taxonomy.

Everything except SchemaError is recoverable: callers report it to the
user and carry on. SchemaError aborts startup because no consistent seed
board can be built from a broken column schema.
"""
from typing import Optional


class BoardError(Exception):
    """Base class for all recoverable board errors."""
    pass


class SchemaError(Exception):
    """Raised when the column schema violates its own invariants. Fatal."""
    pass


class InvalidReference(BoardError):
    """Unknown column, or the entity is not at the stated index (stale drag)."""

    def __init__(self, message: str, entity_id: str = "", column_id: str = ""):
        super().__init__(message)
        self.entity_id = entity_id
        self.column_id = column_id


class UnknownEntity(BoardError):
    """Operation targets an entity id that does not exist."""

    def __init__(self, entity_id: str):
        super().__init__(f"Unknown entity: {entity_id}")
        self.entity_id = entity_id


class MissingRequiredField(BoardError):
    """Transition confirmation (or note) lacks mandatory data."""

    def __init__(self, field_name: str, message: str = ""):
        super().__init__(message or f"Missing required field: {field_name}")
        self.field_name = field_name


class TransitionPending(BoardError):
    """A new transition was proposed while another is awaiting data."""
    pass


class PersistenceFailure(BoardError):
    """
    Durable read or write failed.

    For writes, `snapshot` holds the in-memory board that was NOT saved.
    It remains the source of truth until the next successful write.
    """

    def __init__(self, message: str, key: str = "", snapshot: Optional[object] = None):
        super().__init__(message)
        self.key = key
        self.snapshot = snapshot


class MalformedSnapshot(BoardError):
    """Loaded data fails decoding or snapshot invariants."""
    pass


class BillingError(BoardError):
    """The payment status collaborator could not answer."""
    pass
