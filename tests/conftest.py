"""Shared test fixtures for the board core."""

import pytest

from companyos.board.errors import BackendError
from companyos.board.local import SqliteBackend


class FlakyBackend:
    """
    Wraps a real backend and fails chosen verbs on demand.

    fail("update", "tasks") makes every update of `tasks` raise until heal().
    Every call is recorded in `calls` as (verb, table).
    """

    def __init__(self, inner):
        self.inner = inner
        self.failures = []
        self.calls = []

    def fail(self, verb, table=None, error=None):
        self.failures.append((verb, table, error or BackendError("injected failure", "XX000")))

    def heal(self):
        self.failures = []

    def _call(self, verb, table, *args):
        self.calls.append((verb, table))
        for failing_verb, failing_table, error in self.failures:
            if failing_verb == verb and failing_table in (None, table):
                raise error
        return getattr(self.inner, verb)(table, *args)

    def select(self, table, filters=None, order=None, descending=False):
        return self._call("select", table, filters, order, descending)

    def insert(self, table, rows):
        return self._call("insert", table, rows)

    def update(self, table, match, fields):
        return self._call("update", table, match, fields)

    def delete(self, table, match):
        return self._call("delete", table, match)

    def close(self):
        self.inner.close()

    def verbs(self, table=None):
        return [v for v, t in self.calls if table in (None, t)]


@pytest.fixture
def backend(tmp_path):
    """Empty SQLite board in a temp directory."""
    return SqliteBackend(str(tmp_path / "board.db"))


@pytest.fixture
def flaky(backend):
    return FlakyBackend(backend)


@pytest.fixture
def category(backend):
    """One category row: Engineering."""
    return backend.insert("categories", [{"name": "Engineering", "color": "#3B82F6"}])[0]


@pytest.fixture
def other_category(backend):
    return backend.insert("categories", [{"name": "Marketing", "color": "#EC4899"}])[0]


@pytest.fixture
def profiles(backend):
    """Two employee profiles."""
    return backend.insert("profiles", [
        {"id": "u-ada", "email": "ada@example.com", "full_name": "Ada Lovelace"},
        {"id": "u-alan", "email": "alan@example.com", "full_name": "Alan Turing"},
    ])


@pytest.fixture
def add_task(backend, category):
    """Insert a raw task row; returns the stored row."""

    def _add(title, status="todo", **extra):
        row = {"title": title, "status": status, "category_id": category["id"], **extra}
        return backend.insert("tasks", [row])[0]

    return _add
