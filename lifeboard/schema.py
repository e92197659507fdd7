"""
Lifecycle board schema and data model.

Student lifecycle:
  Active → Backend → Olympia → Graduated
             ↘ Paused ↔ (any)      ↘ Churned

Columns are fixed. Two of them need extra data before a student may enter
(churned: churn date, paused: pause date + reason) and one needs data before
a student may leave (paused: resume date). The TransitionGuard enforces that;
this module only declares it.

Snapshots are immutable values: every mutation in BoardStore builds a new one.
"""
import re
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Tuple, Iterable

from .errors import SchemaError, MalformedSnapshot


class Capture(Enum):
    """Extra data a transition has to collect before it may commit."""
    CHURN = "churn"      # churn date
    PAUSE = "pause"      # pause date + reason
    RESUME = "resume"    # resume date


@dataclass(frozen=True)
class ColumnSpec:
    """Static definition of one lifecycle column."""
    id: str
    title: str
    on_entry: Optional[Capture] = None   # data required to move INTO the column
    on_exit: Optional[Capture] = None    # data required to move OUT of the column


COLUMN_SCHEMA: Tuple[ColumnSpec, ...] = (
    ColumnSpec("active", "Active Students"),
    ColumnSpec("backend", "Backend Students"),
    ColumnSpec("olympia", "Olympia Students"),
    ColumnSpec("paused", "Paused Students", on_entry=Capture.PAUSE, on_exit=Capture.RESUME),
    ColumnSpec("churned", "Churned Students", on_entry=Capture.CHURN),
    ColumnSpec("graduated", "Graduated Students"),
)


def validate_schema(schema: Iterable[ColumnSpec]) -> Tuple[ColumnSpec, ...]:
    """Check the column schema. Raises SchemaError; nothing can run without it."""
    specs = tuple(schema)
    if not specs:
        raise SchemaError("Column schema is empty")
    seen = set()
    for spec in specs:
        if not spec.id:
            raise SchemaError("Column schema contains a column without an id")
        if spec.id in seen:
            raise SchemaError(f"Duplicate column id in schema: {spec.id}")
        for flag in (spec.on_entry, spec.on_exit):
            if flag is not None and not isinstance(flag, Capture):
                raise SchemaError(f"Column {spec.id} has unknown requirement {flag!r}")
        seen.add(spec.id)
    return specs


validate_schema(COLUMN_SCHEMA)

_BY_ID: Dict[str, ColumnSpec] = {spec.id: spec for spec in COLUMN_SCHEMA}


def column_ids() -> List[str]:
    """Canonical column order."""
    return [spec.id for spec in COLUMN_SCHEMA]


def column_spec(column_id: str) -> Optional[ColumnSpec]:
    return _BY_ID.get(column_id)


def is_column(column_id: str) -> bool:
    return column_id in _BY_ID


# ── Dates ──────────────────────────────────────────────────────────────────

NOTE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_date(value: Any) -> Optional[date]:
    """Accept a date, datetime or ISO YYYY-MM-DD string. None/"" → None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f"Not a date: {value!r}")


def _team(value: Any) -> Optional[str]:
    """Stored team tags are strings; anything else is coerced, empty means no team."""
    if value is None:
        return None
    return str(value).strip() or None


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


# ── Notes ──────────────────────────────────────────────────────────────────

MENTION_RE = re.compile(r"@(\w+)")


def extract_mentions(text: str) -> Tuple[str, ...]:
    """Usernames referenced as @name, in order of appearance."""
    return tuple(MENTION_RE.findall(text or ""))


def make_note_id() -> str:
    """Sortable unique note id (ms timestamp + random hex)."""
    return f"n{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class Note:
    """One audit-trail note. Appended, never edited."""
    id: str
    text: str
    author: str
    timestamp: str
    mentions: Tuple[str, ...] = ()

    @classmethod
    def make(cls, text: str, author: str, now: Optional[datetime] = None) -> "Note":
        now = now or datetime.now()
        return cls(
            id=make_note_id(),
            text=text,
            author=author,
            timestamp=now.strftime(NOTE_TIMESTAMP_FORMAT),
            mentions=extract_mentions(text),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "text": self.text,
            "author": self.author,
            "timestamp": self.timestamp,
        }
        if self.mentions:
            data["mentions"] = list(self.mentions)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Note":
        if not isinstance(data, dict) or not data.get("id") or "text" not in data:
            raise MalformedSnapshot(f"Invalid note record: {data!r}")
        mentions = data.get("mentions")
        return cls(
            id=str(data["id"]),
            text=str(data["text"]),
            author=str(data.get("author", "")),
            timestamp=str(data.get("timestamp", "")),
            mentions=tuple(str(m) for m in mentions) if isinstance(mentions, list) else (),
        )


# ── Entities ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PaymentStatus:
    """Billing annotation. Supplied by the billing collaborator, never computed here."""
    is_overdue: bool
    days_overdue: Optional[int] = None
    amount_due: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isOverdue": self.is_overdue,
            "daysOverdue": self.days_overdue,
            "amountDue": self.amount_due,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentStatus":
        return cls(
            is_overdue=bool(data.get("isOverdue", data.get("is_overdue", False))),
            days_overdue=data.get("daysOverdue", data.get("days_overdue")),
            amount_due=data.get("amountDue", data.get("amount_due")),
        )


@dataclass(frozen=True)
class Entity:
    """A tracked student/client."""

    # Identity
    id: str
    name: str
    progress: int = 0                      # 0–100

    # Scope
    team: Optional[str] = None             # CSM / team tag

    # Audit trail (stored under its own persistence key)
    notes: Tuple[Note, ...] = ()

    # Contract + transition dates
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    contract_duration: Optional[str] = None   # "6months" | "1year"
    churn_date: Optional[date] = None
    pause_date: Optional[date] = None
    resume_date: Optional[date] = None
    pause_reason: Optional[str] = None

    # Billing annotation, overwritten on refresh, never persisted
    payment_status: Optional[PaymentStatus] = field(default=None, compare=False)

    def __post_init__(self):
        progress = max(0, min(100, int(self.progress or 0)))
        object.__setattr__(self, "progress", progress)

    def to_dict(self, include_notes: bool = False) -> Dict[str, Any]:
        """Serialize in the stored (camelCase) board format."""
        data = {
            "id": self.id,
            "name": self.name,
            "progress": self.progress,
            "team": self.team,
            "startDate": _iso(self.start_date),
            "endDate": _iso(self.end_date),
            "contractDuration": self.contract_duration,
            "churnDate": _iso(self.churn_date),
            "pauseDate": _iso(self.pause_date),
            "resumeDate": _iso(self.resume_date),
            "pauseReason": self.pause_reason,
        }
        data = {k: v for k, v in data.items() if v is not None}
        if include_notes:
            data["notes"] = [n.to_dict() for n in self.notes]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entity":
        """Deserialize. Raises MalformedSnapshot on anything unusable."""
        if not isinstance(data, dict) or not data.get("id"):
            raise MalformedSnapshot(f"Invalid entity record: {data!r}")
        try:
            return cls(
                id=str(data["id"]),
                name=str(data.get("name", "")),
                progress=int(data.get("progress", 0) or 0),
                # Older boards stored the team as "csm"
                team=_team(data.get("team", data.get("csm"))),
                start_date=parse_date(data.get("startDate")),
                end_date=parse_date(data.get("endDate")),
                contract_duration=data.get("contractDuration"),
                churn_date=parse_date(data.get("churnDate")),
                pause_date=parse_date(data.get("pauseDate")),
                resume_date=parse_date(data.get("resumeDate")),
                pause_reason=data.get("pauseReason"),
            )
        except (TypeError, ValueError) as e:
            raise MalformedSnapshot(f"Invalid entity {data.get('id')}: {e}") from e


@dataclass(frozen=True)
class Column:
    """A lifecycle column. Order of student_ids is the drag order."""
    id: str
    title: str
    student_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "studentIds": list(self.student_ids)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        if not isinstance(data, dict) or not data.get("id"):
            raise MalformedSnapshot(f"Invalid column record: {data!r}")
        ids = data.get("studentIds", [])
        if not isinstance(ids, list):
            raise MalformedSnapshot(f"Column {data['id']}: studentIds is not a list")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            student_ids=tuple(str(i) for i in ids),
        )


# ── Board snapshot ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BoardSnapshot:
    """
    Complete board state at a point in time.

    The dicts are never mutated after construction; BoardStore always
    builds fresh ones.
    """
    entities: Dict[str, Entity] = field(default_factory=dict)
    columns: Dict[str, Column] = field(default_factory=dict)
    column_order: Tuple[str, ...] = ()

    def locate(self, entity_id: str) -> Optional[Tuple[str, int]]:
        """(column_id, index) of an entity, or None."""
        for column_id in self.column_order:
            ids = self.columns[column_id].student_ids
            if entity_id in ids:
                return column_id, ids.index(entity_id)
        return None

    def members(self, column_id: str) -> List[Entity]:
        column = self.columns.get(column_id)
        if column is None:
            return []
        return [self.entities[i] for i in column.student_ids if i in self.entities]

    def total(self) -> int:
        return sum(len(self.columns[c].student_ids) for c in self.column_order)

    def with_entity(self, entity: Entity) -> "BoardSnapshot":
        entities = dict(self.entities)
        entities[entity.id] = entity
        return replace(self, entities=entities)

    def with_columns(self, *columns: Column) -> "BoardSnapshot":
        updated = dict(self.columns)
        for column in columns:
            updated[column.id] = column
        return replace(self, columns=updated)

    def validate(self) -> "BoardSnapshot":
        """
        Check membership and column invariants. Returns self.

        Raises MalformedSnapshot if:
          - column_order is not a permutation of the schema's column ids
          - a column key disagrees with its id
          - an id appears in two columns (or twice in one)
          - a column references an entity that does not exist
          - an entity is not in any column
        """
        expected = set(column_ids())
        if len(self.column_order) != len(expected) or set(self.column_order) != expected:
            raise MalformedSnapshot(
                f"columnOrder {list(self.column_order)} is not a permutation of {sorted(expected)}"
            )
        if set(self.columns) != expected:
            raise MalformedSnapshot(f"columns {sorted(self.columns)} do not match schema")

        seen = set()
        for column_id in self.column_order:
            column = self.columns[column_id]
            if column.id != column_id:
                raise MalformedSnapshot(f"Column key {column_id} holds column {column.id}")
            for entity_id in column.student_ids:
                if entity_id in seen:
                    raise MalformedSnapshot(f"Entity {entity_id} appears in more than one slot")
                if entity_id not in self.entities:
                    raise MalformedSnapshot(f"Column {column_id} references unknown entity {entity_id}")
                seen.add(entity_id)

        orphans = set(self.entities) - seen
        if orphans:
            raise MalformedSnapshot(f"Entities not in any column: {sorted(orphans)}")
        return self

    def to_dict(self, include_notes: bool = False) -> Dict[str, Any]:
        """Stored board document. Notes are kept under their own keys unless asked for."""
        return {
            "columns": {cid: self.columns[cid].to_dict() for cid in self.column_order},
            "students": {eid: e.to_dict(include_notes=include_notes) for eid, e in self.entities.items()},
            "columnOrder": list(self.column_order),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoardSnapshot":
        """Deserialize and validate. Raises MalformedSnapshot."""
        if not isinstance(data, dict):
            raise MalformedSnapshot("Board document is not an object")
        raw_columns = data.get("columns")
        raw_students = data.get("students")
        raw_order = data.get("columnOrder")
        if not isinstance(raw_columns, dict) or not isinstance(raw_students, dict) or not isinstance(raw_order, list):
            raise MalformedSnapshot("Board document is missing columns/students/columnOrder")

        columns = {str(k): Column.from_dict(v) for k, v in raw_columns.items()}
        entities = {}
        for key, raw in raw_students.items():
            entity = Entity.from_dict(raw)
            if entity.id != str(key):
                raise MalformedSnapshot(f"Student key {key} holds entity {entity.id}")
            entities[entity.id] = entity

        column_order = [str(c) for c in raw_order]
        _add_missing_columns(columns, column_order)
        snapshot = cls(
            entities=entities,
            columns=columns,
            column_order=tuple(column_order),
        )
        return snapshot.validate()


def _add_missing_columns(columns: Dict[str, Column], column_order: List[str]) -> None:
    """
    Boards written before a column existed (no "paused" in older boards) get
    it as an empty column, placed after its schema predecessor. Mutates args.
    """
    for position, spec in enumerate(COLUMN_SCHEMA):
        if spec.id in columns or spec.id in column_order:
            continue
        columns[spec.id] = Column(id=spec.id, title=spec.title)
        index = 0
        for previous in reversed(COLUMN_SCHEMA[:position]):
            if previous.id in column_order:
                index = column_order.index(previous.id) + 1
                break
        column_order.insert(index, spec.id)
