"""
Team-scoped board projections.

A projection keeps every column (and the full entity map) but filters each
column's membership down to one team. The input snapshot is never touched.
"""
from dataclasses import replace
from typing import Dict

from .schema import BoardSnapshot

TEAM_ALL = "all"


def project(snapshot: BoardSnapshot, team_scope: str = TEAM_ALL) -> BoardSnapshot:
    """Read-only view of the board for one team ("all" = identity view)."""
    if not team_scope or team_scope == TEAM_ALL:
        return snapshot

    columns = {}
    for column_id, column in snapshot.columns.items():
        ids = tuple(
            eid for eid in column.student_ids
            if eid in snapshot.entities and snapshot.entities[eid].team == team_scope
        )
        columns[column_id] = replace(column, student_ids=ids)
    return replace(snapshot, columns=columns)


def column_counts(snapshot: BoardSnapshot) -> Dict[str, int]:
    """Member count per column, in board order."""
    return {cid: len(snapshot.columns[cid].student_ids) for cid in snapshot.column_order}
