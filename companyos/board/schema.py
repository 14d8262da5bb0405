"""
Board schema: status columns, tasks and their joined projections.

Workflow stages are data, not code. The three seed columns

  todo → in_progress → done

are always present (and protected from deletion); workspaces may append
their own stages after them. Tasks reference a column by its slug
(StatusColumn.value), never by id.
"""
import re
from enum import IntEnum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any, FrozenSet


# ── Column constants ─────────────────────────────────────────────────────────

DEFAULT_COLUMN_COLOR = "bg-gray-100 text-gray-800 dark:bg-gray-900 dark:text-gray-200"

# Seed columns, in board order
DEFAULT_STATUSES = (
    {"value": "todo", "label": "To Do",
     "color": "bg-yellow-100 text-yellow-800 dark:bg-yellow-900 dark:text-yellow-200"},
    {"value": "in_progress", "label": "In Progress",
     "color": "bg-blue-100 text-blue-800 dark:bg-blue-900 dark:text-blue-200"},
    {"value": "done", "label": "Done",
     "color": "bg-green-100 text-green-800 dark:bg-green-900 dark:text-green-200"},
)

# Colors offered when creating a column
COLUMN_COLORS = (
    {"value": "bg-yellow-100 text-yellow-800 dark:bg-yellow-900 dark:text-yellow-200", "label": "Yellow", "dot": "bg-yellow-500"},
    {"value": "bg-blue-100 text-blue-800 dark:bg-blue-900 dark:text-blue-200", "label": "Blue", "dot": "bg-blue-500"},
    {"value": "bg-green-100 text-green-800 dark:bg-green-900 dark:text-green-200", "label": "Green", "dot": "bg-green-500"},
    {"value": "bg-purple-100 text-purple-800 dark:bg-purple-900 dark:text-purple-200", "label": "Purple", "dot": "bg-purple-500"},
    {"value": "bg-red-100 text-red-800 dark:bg-red-900 dark:text-red-200", "label": "Red", "dot": "bg-red-500"},
    {"value": "bg-orange-100 text-orange-800 dark:bg-orange-900 dark:text-orange-200", "label": "Orange", "dot": "bg-orange-500"},
    {"value": "bg-pink-100 text-pink-800 dark:bg-pink-900 dark:text-pink-200", "label": "Pink", "dot": "bg-pink-500"},
    {"value": "bg-cyan-100 text-cyan-800 dark:bg-cyan-900 dark:text-cyan-200", "label": "Cyan", "dot": "bg-cyan-500"},
)

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-z0-9_]")


def derive_slug(label: str) -> str:
    """
    Turn a column label into its stable value.

    Lowercases, trims, collapses whitespace runs to a single underscore and
    drops everything outside [a-z0-9_]:  "In Review!!" -> "in_review".
    """
    slug = label.strip().lower()
    slug = _WHITESPACE.sub("_", slug)
    return _NON_SLUG.sub("", slug)


def resolve_color(color: Optional[str]) -> str:
    """Accept a palette label ("purple") or a full class string."""
    if not color:
        return DEFAULT_COLUMN_COLOR
    for entry in COLUMN_COLORS:
        if color == entry["value"] or color.lower() == entry["label"].lower():
            return entry["value"]
    return DEFAULT_COLUMN_COLOR


class TaskPriority(IntEnum):
    """Task priority levels (stored as 1-4)."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    URGENT = 4

    @classmethod
    def from_value(cls, value: Any) -> "TaskPriority":
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.MEDIUM

    @property
    def label(self) -> str:
        return self.name.capitalize()


# ── Parsing helpers ──────────────────────────────────────────────────────────

def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Records ──────────────────────────────────────────────────────────────────

@dataclass
class StatusColumn:
    """One workflow stage on the board."""

    value: str                      # stable slug, referenced by Task.status
    label: str
    color: str = DEFAULT_COLUMN_COLOR
    position: int = 0
    is_default: bool = False
    id: Optional[str] = None        # None until persisted

    @property
    def persisted(self) -> bool:
        return self.id is not None

    def to_row(self) -> Dict[str, Any]:
        row = {
            "value": self.value,
            "label": self.label,
            "color": self.color,
            "position": self.position,
            "is_default": self.is_default,
        }
        if self.id is not None:
            row["id"] = self.id
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StatusColumn":
        return cls(
            id=row.get("id"),
            value=row["value"],
            label=row.get("label") or row["value"],
            color=row.get("color") or DEFAULT_COLUMN_COLOR,
            position=int(row.get("position") or 0),
            is_default=bool(row.get("is_default", False)),
        )


def default_columns() -> List[StatusColumn]:
    """The unpersisted fallback registry: three defaults at positions 0-2."""
    return [
        StatusColumn(
            value=s["value"], label=s["label"], color=s["color"],
            position=i, is_default=True,
        )
        for i, s in enumerate(DEFAULT_STATUSES)
    ]


@dataclass
class Category:
    """Joined category projection (id, name, color)."""
    id: str
    name: str = ""
    color: str = ""

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Category":
        return cls(id=row["id"], name=row.get("name", ""), color=row.get("color", ""))


@dataclass
class Profile:
    """Joined employee projection (id, full_name, email)."""
    id: str
    full_name: str = ""
    email: str = ""

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        return cls(
            id=row["id"],
            full_name=row.get("full_name") or "",
            email=row.get("email") or "",
        )


@dataclass
class Task:
    """A task as shown on the board, with its joined projections."""

    id: str
    title: str
    status: str
    category_id: str
    priority: TaskPriority = TaskPriority.MEDIUM
    description: Optional[str] = None
    due_date: Optional[date] = None
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # Joined
    category: Optional[Category] = None
    assignees: List[Profile] = field(default_factory=list)

    @property
    def assignee_ids(self) -> FrozenSet[str]:
        return frozenset(p.id for p in self.assignees)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for display/JSON, joins included."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": int(self.priority),
            "category_id": self.category_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "category": (
                {"id": self.category.id, "name": self.category.name, "color": self.category.color}
                if self.category else None
            ),
            "assignees": [
                {"id": p.id, "full_name": p.full_name, "email": p.email}
                for p in self.assignees
            ],
        }

    @classmethod
    def from_row(
        cls,
        row: Dict[str, Any],
        category: Optional[Category] = None,
        assignees: Optional[List[Profile]] = None,
    ) -> "Task":
        """Build a task from a raw `tasks` row; joins are passed in separately."""
        for required in ("id", "title", "status", "category_id"):
            if required not in row:
                raise KeyError(f"task row is missing '{required}'")
        # Assignees form a set: keep the first profile per user id
        unique: Dict[str, Profile] = {}
        for profile in assignees or []:
            unique.setdefault(profile.id, profile)
        return cls(
            id=row["id"],
            title=row["title"],
            status=row["status"],
            category_id=row["category_id"],
            priority=TaskPriority.from_value(row.get("priority")),
            description=row.get("description"),
            due_date=_parse_date(row.get("due_date")),
            created_by=row.get("created_by"),
            created_at=_parse_datetime(row.get("created_at")) or utc_now(),
            updated_at=_parse_datetime(row.get("updated_at")) or utc_now(),
            category=category,
            assignees=list(unique.values()),
        )


@dataclass
class TaskDraft:
    """Input for creating a task."""
    title: str
    category_id: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None        # None = first column by position
    priority: int = TaskPriority.MEDIUM
    due_date: Optional[date] = None
    assignee_ids: List[str] = field(default_factory=list)
    created_by: Optional[str] = None
