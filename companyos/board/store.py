"""
Task store adapter.

Fetches and mutates tasks in the remote collection and assembles the joined
view the board shows (category + assignee profiles). Raw rows are validated
into Task records here; nothing past this module sees a dict.
"""
import logging
from typing import Dict, List, Optional

from .backend import Backend
from .errors import BackendError, NotFound, ValidationError
from .events import BoardEventBridge
from .schema import Category, Profile, Task, TaskDraft, TaskPriority
from .statuses import StatusRegistry

logger = logging.getLogger(__name__)

TABLE = "tasks"
EDITABLE_FIELDS = {"title", "description", "priority", "due_date", "category_id"}


def _check_priority(value) -> int:
    try:
        priority = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Priority must be a number from 1 to 4, got: '{value}'")
    if priority < TaskPriority.LOW or priority > TaskPriority.URGENT:
        raise ValidationError(f"Priority must be between 1 and 4, got: {priority}")
    return priority


class TaskStore:
    """Task CRUD against the backend, with joined projections."""

    def __init__(
        self,
        backend: Backend,
        registry: StatusRegistry,
        events: Optional[BoardEventBridge] = None,
    ):
        self.backend = backend
        self.registry = registry
        self.events = events or registry.events

    # ── Reads ────────────────────────────────────────────────────────────────

    def list_tasks(self, category_id: Optional[str] = None) -> List[Task]:
        """All visible tasks, newest first, optionally limited to one category."""
        filters = None
        if category_id and category_id != "all":
            filters = {"category_id": category_id}
        rows = self.backend.select(TABLE, filters, order="created_at", descending=True)
        return self._join(rows)

    def get_task(self, task_id: str) -> Task:
        rows = self.backend.select(TABLE, {"id": task_id})
        tasks = self._join(rows)
        if not tasks:
            raise NotFound(f"Task {task_id} not found")
        return tasks[0]

    def list_categories(self) -> List[Category]:
        return [Category.from_row(r) for r in self.backend.select("categories", order="name")]

    def _join(self, rows: List[dict]) -> List[Task]:
        """Attach categories and assignees to raw task rows, keeping row order."""
        if not rows:
            return []

        category_ids = sorted({r["category_id"] for r in rows if r.get("category_id")})
        categories: Dict[str, Category] = {}
        try:
            if category_ids:
                categories = {
                    c["id"]: Category.from_row(c)
                    for c in self.backend.select("categories", {"id": category_ids})
                }
        except BackendError as e:
            logger.debug(f"Category join unavailable: {e}")

        assignees = self._assignees([r["id"] for r in rows if r.get("id")])

        tasks = []
        for row in rows:
            try:
                tasks.append(Task.from_row(
                    row,
                    category=categories.get(row.get("category_id")),
                    assignees=assignees.get(row.get("id"), []),
                ))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed task row {row.get('id')}: {e}")
        return tasks

    def _assignees(self, task_ids: List[str]) -> Dict[str, List[Profile]]:
        """task_id -> assignee profiles. Empty when the relation can't be read."""
        if not task_ids:
            return {}
        try:
            links = self.backend.select("task_assignees", {"task_id": task_ids})
            user_ids = sorted({link["user_id"] for link in links})
            profiles = {}
            if user_ids:
                profiles = {
                    p["id"]: Profile.from_row(p)
                    for p in self.backend.select("profiles", {"id": user_ids})
                }
        except BackendError as e:
            # Degraded join: show the board without assignees
            logger.debug(f"Assignee join unavailable, falling back to task-only view: {e}")
            return {}

        result: Dict[str, List[Profile]] = {}
        for link in links:
            profile = profiles.get(link["user_id"])
            if profile is not None:
                result.setdefault(link["task_id"], []).append(profile)
        return result

    # ── Writes ───────────────────────────────────────────────────────────────

    def create_task(self, draft: TaskDraft) -> Task:
        """
        Create a task, then link its assignees.

        The assignee insert is a second call; if it fails the task stays
        created without them (logged, not rolled back).
        """
        if not draft.category_id:
            raise ValidationError("Select a category")
        title = (draft.title or "").strip()
        if not title:
            raise ValidationError("Task title cannot be empty")
        priority = _check_priority(draft.priority)

        if draft.status:
            status = draft.status
            if self.registry.columns:
                column = self.registry.find(draft.status)
                if column is None:
                    raise ValidationError(f"Unknown status: '{draft.status}'")
                # Tasks reference columns by value, even when given an id
                status = column.value
        else:
            first = self.registry.first()
            status = first.value if first else "todo"

        row = {
            "title": title,
            "description": draft.description or None,
            "status": status,
            "priority": priority,
            "category_id": draft.category_id,
            "due_date": draft.due_date.isoformat() if draft.due_date else None,
            "created_by": draft.created_by,
        }
        rows = self.backend.insert(TABLE, [row])
        if not rows:
            raise BackendError("Task was not created")
        task_row = rows[0]

        assignee_ids = list(dict.fromkeys(a for a in draft.assignee_ids if a))
        if assignee_ids:
            try:
                self.backend.insert(
                    "task_assignees",
                    [{"task_id": task_row["id"], "user_id": uid} for uid in assignee_ids],
                )
            except BackendError as e:
                logger.warning(f"Task {task_row['id']} created but assignees were not saved: {e}")

        task = self._join([task_row])[0]
        logger.info(f"Created task {task.id} in {task.status}")
        self.events.emit("task_created", task=task)
        return task

    def update_status(self, task_id: str, new_status: str) -> None:
        """Move a task to another column. Backend errors propagate unchanged."""
        rows = self.backend.update(TABLE, {"id": task_id}, {"status": new_status})
        if not rows:
            raise NotFound(f"Task {task_id} not found")

    def update_task(self, task_id: str, **fields) -> Task:
        """Edit task details (not status; see update_status)."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot edit: {', '.join(sorted(unknown))}")
        if "priority" in fields:
            fields["priority"] = _check_priority(fields["priority"])
        if "title" in fields:
            fields["title"] = (fields["title"] or "").strip()
            if not fields["title"]:
                raise ValidationError("Task title cannot be empty")
        if "category_id" in fields and not fields["category_id"]:
            raise ValidationError("Select a category")
        if fields.get("due_date") is not None and hasattr(fields["due_date"], "isoformat"):
            fields["due_date"] = fields["due_date"].isoformat()
        if not fields:
            return self.get_task(task_id)

        rows = self.backend.update(TABLE, {"id": task_id}, fields)
        if not rows:
            raise NotFound(f"Task {task_id} not found")
        return self._join(rows)[0]

    def delete_task(self, task_id: str) -> None:
        """Delete a task for good. Confirmation is the caller's job."""
        rows = self.backend.delete(TABLE, {"id": task_id})
        if not rows:
            raise NotFound(f"Task {task_id} not found")
        logger.info(f"Deleted task {task_id}")
        self.events.emit("task_deleted", task_id=task_id)

