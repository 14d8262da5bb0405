"""
Tests for the board schema.

Covers:
    - derive_slug(): label → stable column value
    - resolve_color(): palette labels and class strings
    - TaskPriority: coercion and labels
    - StatusColumn: defaults, row conversion
    - Task.from_row(): parsing, required fields, assignee dedup
"""

import re
from datetime import date, datetime, timezone

import pytest

from companyos.board.schema import (
    COLUMN_COLORS,
    DEFAULT_COLUMN_COLOR,
    Category,
    Profile,
    StatusColumn,
    Task,
    TaskPriority,
    default_columns,
    derive_slug,
    resolve_color,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Slugs and colors
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestDeriveSlug:

    def test_punctuation_dropped(self):
        assert derive_slug("In Review!!") == "in_review"

    def test_whitespace_runs_collapse(self):
        assert derive_slug("  QA    Testing \t") == "qa_testing"

    def test_digits_kept(self):
        assert derive_slug("Phase 2") == "phase_2"

    def test_only_symbols_gives_empty(self):
        assert derive_slug("!!!") == ""

    @pytest.mark.parametrize("label", [
        "In Review!!", "Blocked (external)", "Ready-for-QA", "Ünïcode Stage", "a  b\tc",
    ])
    def test_output_alphabet(self, label):
        """Slugs only ever contain [a-z0-9_]."""
        assert re.fullmatch(r"[a-z0-9_]*", derive_slug(label))

    @pytest.mark.parametrize("label", ["In Review!!", "Ready for QA", "done"])
    def test_idempotent(self, label):
        slug = derive_slug(label)
        assert derive_slug(slug) == slug


class TestResolveColor:

    def test_palette_label(self):
        purple = next(c for c in COLUMN_COLORS if c["label"] == "Purple")
        assert resolve_color("purple") == purple["value"]

    def test_full_class_string(self):
        red = next(c for c in COLUMN_COLORS if c["label"] == "Red")
        assert resolve_color(red["value"]) == red["value"]

    def test_unknown_falls_back(self):
        assert resolve_color("neon") == DEFAULT_COLUMN_COLOR

    def test_none_falls_back(self):
        assert resolve_color(None) == DEFAULT_COLUMN_COLOR


def test_priority_coercion():
    """Priorities coerce from strings and default to medium."""
    assert TaskPriority.from_value("3") is TaskPriority.HIGH
    assert TaskPriority.from_value(None) is TaskPriority.MEDIUM
    assert TaskPriority.from_value("urgent") is TaskPriority.MEDIUM
    assert TaskPriority.URGENT.label == "Urgent"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Records
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_default_columns():
    """Fallback registry: todo, in_progress, done at 0-2, unpersisted."""
    columns = default_columns()
    assert [c.value for c in columns] == ["todo", "in_progress", "done"]
    assert [c.position for c in columns] == [0, 1, 2]
    assert all(c.is_default for c in columns)
    assert not any(c.persisted for c in columns)


def test_status_column_row_conversion():
    """to_row omits a missing id; from_row fills label and color."""
    column = StatusColumn(value="qa", label="QA", position=3)
    assert "id" not in column.to_row()

    parsed = StatusColumn.from_row({"id": "c1", "value": "qa", "position": "4", "is_default": 0})
    assert parsed.label == "qa"
    assert parsed.color == DEFAULT_COLUMN_COLOR
    assert parsed.position == 4
    assert parsed.is_default is False
    assert parsed.persisted


def test_task_from_row_parses_fields():
    row = {
        "id": "t1",
        "title": "Ship it",
        "status": "todo",
        "category_id": "c1",
        "priority": 4,
        "due_date": "2026-03-01",
        "created_at": "2026-02-01T10:00:00+00:00",
        "updated_at": "2026-02-02T10:00:00+00:00",
    }
    task = Task.from_row(row, category=Category("c1", "Engineering"))
    assert task.priority is TaskPriority.URGENT
    assert task.due_date == date(2026, 3, 1)
    assert task.created_at == datetime(2026, 2, 1, 10, tzinfo=timezone.utc)
    assert task.category.name == "Engineering"
    assert task.assignees == []


def test_task_from_row_requires_category():
    """A row without category_id is rejected."""
    with pytest.raises(KeyError):
        Task.from_row({"id": "t1", "title": "x", "status": "todo"})


def test_task_assignees_are_a_set():
    """Duplicate assignee profiles collapse to one."""
    ada = Profile("u1", "Ada")
    task = Task.from_row(
        {"id": "t1", "title": "x", "status": "todo", "category_id": "c1"},
        assignees=[ada, Profile("u1", "Ada again"), Profile("u2", "Alan")],
    )
    assert [p.id for p in task.assignees] == ["u1", "u2"]
    assert task.assignee_ids == frozenset({"u1", "u2"})


def test_task_to_dict():
    task = Task(id="t1", title="x", status="done", category_id="c1", due_date=date(2026, 1, 2))
    data = task.to_dict()
    assert data["due_date"] == "2026-01-02"
    assert data["priority"] == 2
    assert data["category"] is None
