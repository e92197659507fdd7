"""Shared fixtures for lifecycle board tests."""

import sys
from pathlib import Path

import pytest

# Ensure the project root (lifeboard/, board_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from lifeboard.persistence import MemoryAdapter, SQLiteAdapter
from lifeboard.store import BoardStore
from lifeboard.guard import TransitionGuard


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "board.db")


@pytest.fixture
def memory_adapter():
    return MemoryAdapter()


@pytest.fixture
def sqlite_adapter(db_path):
    return SQLiteAdapter(db_path)


@pytest.fixture
def store(memory_adapter):
    s = BoardStore(memory_adapter, view_id="view-a")
    s.load()
    return s


@pytest.fixture
def guard(store):
    return TransitionGuard(store)


class FailingAdapter(MemoryAdapter):
    """Memory adapter whose writes can be switched off."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_writes = False
        self.writes = []

    def _write(self, key, value, origin):
        if self.fail_writes:
            raise OSError("disk full")
        self.writes.append(key)
        super()._write(key, value, origin)


@pytest.fixture
def failing_adapter():
    return FailingAdapter()
