"""Built-in default board, used when nothing (valid) is persisted yet."""
from .schema import BoardSnapshot, Column, Entity, COLUMN_SCHEMA

_SEED_MEMBERS = {
    "active": ["s1", "s2", "s3"],
    "backend": ["s4", "s5"],
    "olympia": ["s6"],
    "paused": [],
    "churned": ["s7"],
    "graduated": ["s8", "s9"],
}

_SEED_STUDENTS = [
    ("s1", "Alice Johnson", 75),
    ("s2", "Bob Smith", 60),
    ("s3", "Carol Davis", 80),
    ("s4", "Dave Wilson", 45),
    ("s5", "Eve Brown", 50),
    ("s6", "Frank Miller", 70),
    ("s7", "Grace Lee", 30),
    ("s8", "Henry Taylor", 100),
    ("s9", "Ivy Robinson", 100),
]


def seed_snapshot() -> BoardSnapshot:
    """A fresh, validated copy of the default board."""
    columns = {
        spec.id: Column(id=spec.id, title=spec.title, student_ids=tuple(_SEED_MEMBERS.get(spec.id, ())))
        for spec in COLUMN_SCHEMA
    }
    entities = {
        sid: Entity(id=sid, name=name, progress=progress)
        for sid, name, progress in _SEED_STUDENTS
    }
    return BoardSnapshot(
        entities=entities,
        columns=columns,
        column_order=tuple(spec.id for spec in COLUMN_SCHEMA),
    ).validate()
