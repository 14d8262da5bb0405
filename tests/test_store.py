"""
Tests for the task store adapter: listing, joins, validation and writes.
"""
from datetime import date
from unittest.mock import Mock

import pytest

from companyos.board.errors import NotFound, ValidationError
from companyos.board.projection import project_board
from companyos.board.schema import TaskDraft, TaskPriority
from companyos.board.statuses import StatusRegistry
from companyos.board.store import TaskStore

from conftest import FlakyBackend


@pytest.fixture
def store(backend):
    registry = StatusRegistry(backend)
    registry.ensure_defaults()
    return TaskStore(backend, registry)


def _flaky_store(backend):
    flaky = FlakyBackend(backend)
    registry = StatusRegistry(flaky)
    registry.ensure_defaults()
    return flaky, TaskStore(flaky, registry)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Reads
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_list_newest_first(store, add_task):
    add_task("old", created_at="2026-01-01T09:00:00+00:00")
    add_task("new", created_at="2026-01-03T09:00:00+00:00")
    add_task("mid", created_at="2026-01-02T09:00:00+00:00")
    assert [t.title for t in store.list_tasks()] == ["new", "mid", "old"]


def test_list_by_category(store, backend, add_task, other_category):
    add_task("eng")
    backend.insert("tasks", [{"title": "ads", "status": "todo", "category_id": other_category["id"]}])
    assert [t.title for t in store.list_tasks(other_category["id"])] == ["ads"]
    assert len(store.list_tasks("all")) == 2


def test_list_joins_category_and_assignees(store, backend, add_task, profiles):
    row = add_task("pair up")
    backend.insert("task_assignees", [
        {"task_id": row["id"], "user_id": "u-ada"},
        {"task_id": row["id"], "user_id": "u-alan"},
    ])
    task = store.list_tasks()[0]
    assert task.category.name == "Engineering"
    assert sorted(p.full_name for p in task.assignees) == ["Ada Lovelace", "Alan Turing"]


def test_assignee_join_degrades(backend, add_task, profiles):
    """When task_assignees can't be read, tasks come back without assignees."""
    row = add_task("solo")
    backend.insert("task_assignees", [{"task_id": row["id"], "user_id": "u-ada"}])
    flaky, store = _flaky_store(backend)
    flaky.fail("select", "task_assignees")

    tasks = store.list_tasks()
    assert [t.title for t in tasks] == ["solo"]
    assert tasks[0].assignees == []
    assert tasks[0].category.name == "Engineering"


def test_category_join_degrades(backend, add_task):
    add_task("uncategorised view")
    flaky, store = _flaky_store(backend)
    flaky.fail("select", "categories")
    task = store.list_tasks()[0]
    assert task.category is None
    assert task.category_id


def test_malformed_rows_skipped():
    """Rows missing required fields are dropped, not fatal."""
    rows = {
        "tasks": [
            {"id": "t1", "title": "fine", "status": "todo", "category_id": "c1"},
            {"id": "t2", "status": "todo", "category_id": "c1"},
        ],
    }
    backend = Mock()
    backend.select.side_effect = lambda table, *args, **kwargs: rows.get(table, [])
    store = TaskStore(backend, StatusRegistry(backend))
    assert [t.id for t in store.list_tasks()] == ["t1"]


def test_get_task_not_found(store):
    with pytest.raises(NotFound):
        store.get_task("missing")


def test_list_categories(store, category, other_category):
    assert [c.name for c in store.list_categories()] == ["Engineering", "Marketing"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Create
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_without_category_never_inserts():
    """A draft with no category fails before any backend call."""
    backend = Mock()
    store = TaskStore(backend, StatusRegistry(backend))
    with pytest.raises(ValidationError):
        store.create_task(TaskDraft(title="orphan"))
    backend.insert.assert_not_called()
    backend.select.assert_not_called()


def test_create_lands_in_first_column(store, category):
    """Without a status, a new task goes to the first column by position."""
    store.registry.reorder(["in_progress", "todo", "done"])
    task = store.create_task(TaskDraft(title="  Write docs ", category_id=category["id"]))
    assert task.title == "Write docs"
    assert task.status == "in_progress"
    assert task.priority is TaskPriority.MEDIUM
    assert task.category.name == "Engineering"


def test_create_with_details(store, category, profiles):
    task = store.create_task(TaskDraft(
        title="Launch",
        category_id=category["id"],
        status="done",
        priority=4,
        due_date=date(2026, 5, 1),
        assignee_ids=["u-ada", "u-ada", "u-alan"],
    ))
    assert task.status == "done"
    assert task.priority is TaskPriority.URGENT
    assert task.due_date == date(2026, 5, 1)
    assert task.assignee_ids == frozenset({"u-ada", "u-alan"})


def test_create_by_column_id_stores_value(store, category, backend):
    """A status given as a column id is saved as that column's value."""
    done = store.registry.find("done")
    task = store.create_task(TaskDraft(title="by id", category_id=category["id"], status=done.id))
    assert task.status == "done"
    assert backend.select("tasks", {"id": task.id})[0]["status"] == "done"
    board = project_board(store.list_tasks(), store.registry.columns)
    assert [t.id for t in board["done"]] == [task.id]


@pytest.mark.parametrize("draft_kwargs", [
    {"title": "   "},
    {"title": "x", "priority": 9},
    {"title": "x", "status": "ghost"},
])
def test_create_validation(store, category, backend, draft_kwargs):
    with pytest.raises(ValidationError):
        store.create_task(TaskDraft(category_id=category["id"], **draft_kwargs))
    assert backend.select("tasks") == []


def test_assignee_failure_keeps_task(backend, category, profiles):
    """The task survives when linking assignees fails."""
    flaky, store = _flaky_store(backend)
    flaky.fail("insert", "task_assignees")
    task = store.create_task(TaskDraft(title="keep me", category_id=category["id"], assignee_ids=["u-ada"]))
    assert task.assignees == []
    assert [r["title"] for r in backend.select("tasks")] == ["keep me"]


def test_create_emits_event(store, category):
    created = []
    store.events.subscribe("task_created", lambda task: created.append(task.title))
    store.create_task(TaskDraft(title="evented", category_id=category["id"]))
    assert created == ["evented"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Update / delete
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_update_status(store, add_task, backend):
    row = add_task("move me")
    store.update_status(row["id"], "done")
    assert backend.select("tasks", {"id": row["id"]})[0]["status"] == "done"


def test_update_status_missing_task(store):
    with pytest.raises(NotFound):
        store.update_status("missing", "done")


def test_update_task_fields(store, add_task):
    row = add_task("draft")
    task = store.update_task(row["id"], title="final", priority=3, due_date=date(2026, 7, 4))
    assert task.title == "final"
    assert task.priority is TaskPriority.HIGH
    assert task.due_date == date(2026, 7, 4)


@pytest.mark.parametrize("fields", [
    {"priority": 0},
    {"title": ""},
    {"status": "done"},
    {"category_id": None},
])
def test_update_task_rejects(store, add_task, fields):
    row = add_task("x")
    with pytest.raises(ValidationError):
        store.update_task(row["id"], **fields)


def test_delete_task(store, add_task, backend):
    row = add_task("bye")
    store.delete_task(row["id"])
    assert backend.select("tasks") == []
    with pytest.raises(NotFound):
        store.delete_task(row["id"])
