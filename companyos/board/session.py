"""
Board session: the one handle a front end holds.

A session is opened when a user's session starts and closed at logout. It
owns the backend, the status registry, the task store and the drag engine,
plus the in-memory board state (tasks, columns, category filter). Every
component receives it (or its parts) explicitly; there is no module-level
state.

Blocking backend calls run in worker threads via asyncio.to_thread. The
task list is only reassigned on the event loop; the registry swaps its
column list wholesale, so readers never see a half-built list.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from .backend import Backend
from .drag import DragEngine
from .errors import BoardError, ValidationError
from .events import BoardEventBridge
from .projection import ALL_CATEGORIES, BoardProjection, board_stats, project_board
from .schema import StatusColumn, Task, TaskDraft
from .statuses import StatusRegistry
from .store import TaskStore

logger = logging.getLogger(__name__)


class BoardSession:
    """In-memory board state wired to a backend."""

    def __init__(
        self,
        backend: Backend,
        events: Optional[BoardEventBridge] = None,
        category_filter: str = ALL_CATEGORIES,
    ):
        self.backend = backend
        self.events = events or BoardEventBridge()
        self.registry = StatusRegistry(backend, self.events)
        self.store = TaskStore(backend, self.registry, self.events)
        self.drag = DragEngine(self)
        self.tasks: List[Task] = []
        self.category_filter = category_filter
        self.is_open = False

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def open(self, seed_defaults: bool = False) -> "BoardSession":
        """Load the board. With seed_defaults, persist the default columns first."""
        if seed_defaults:
            await asyncio.to_thread(self.registry.ensure_defaults)
        await self.refresh()
        self.is_open = True
        logger.info(f"Board session opened ({len(self.tasks)} tasks, {len(self.columns)} columns)")
        return self

    async def close(self) -> None:
        """Wait for in-flight moves, then release the backend."""
        await self.drag.drain()
        self.backend.close()
        self.tasks = []
        self.registry.columns = []
        self.is_open = False
        logger.info("Board session closed")

    async def refresh(self) -> None:
        """Resync: replace local tasks and columns with the backend's state."""
        tasks = await asyncio.to_thread(self.store.list_tasks)
        columns = await asyncio.to_thread(self.registry.fetch)
        self.tasks = tasks
        self.registry.columns = columns
        self.events.emit("resynced", tasks=list(tasks), columns=list(columns))

    # ── Derived state ────────────────────────────────────────────────────────

    @property
    def columns(self) -> List[StatusColumn]:
        return self.registry.columns

    @property
    def board(self) -> BoardProjection:
        """The current projection; recomputed on every access."""
        return project_board(self.tasks, self.columns, self.category_filter)

    def stats(self) -> Dict[str, Any]:
        return board_stats(self.tasks, self.columns)

    def set_category_filter(self, category_id: Optional[str]) -> None:
        self.category_filter = category_id or ALL_CATEGORIES

    def find_task(self, ref: str) -> Optional[Task]:
        """Resolve a task by id, unique id prefix, or exact title (case-insensitive)."""
        ref = (ref or "").strip()
        if not ref:
            return None
        for task in self.tasks:
            if task.id == ref:
                return task
        by_prefix = [t for t in self.tasks if t.id.startswith(ref)]
        if len(by_prefix) == 1:
            return by_prefix[0]
        by_title = [t for t in self.tasks if t.title.lower() == ref.lower()]
        if len(by_title) == 1:
            return by_title[0]
        return None

    # ── Operations ───────────────────────────────────────────────────────────
    # Failures are published as notifications and then re-raised.

    async def move_task(self, task_id: str, to_status: str):
        """Move a task to another column (the drag gesture without a pointer)."""
        return await self.drag.move(task_id, to_status)

    async def create_task(self, draft: TaskDraft) -> Task:
        try:
            task = await asyncio.to_thread(self.store.create_task, draft)
        except BoardError as e:
            self._report(e)
            raise
        self.tasks = [task] + self.tasks
        self.events.notify("Task created", level="success")
        return task

    async def update_task(self, task_id: str, **fields) -> Task:
        try:
            task = await asyncio.to_thread(self.store.update_task, task_id, **fields)
        except BoardError as e:
            self._report(e)
            raise
        self.tasks = [task if t.id == task_id else t for t in self.tasks]
        self.events.notify("Task updated", level="success")
        return task

    async def delete_task(self, task_id: str) -> None:
        try:
            await asyncio.to_thread(self.store.delete_task, task_id)
        except BoardError as e:
            self._report(e)
            raise
        self.tasks = [t for t in self.tasks if t.id != task_id]
        self.events.notify("Task deleted", level="success")

    async def create_column(self, label: str, color: Optional[str] = None) -> StatusColumn:
        try:
            column = await asyncio.to_thread(self.registry.create, label, color)
        except BoardError as e:
            self._report(e)
            raise
        self.events.notify(f"Column '{column.label}' added", level="success")
        return column

    async def delete_column(self, column_id: str) -> StatusColumn:
        try:
            column = await asyncio.to_thread(self.registry.delete, column_id)
        except BoardError as e:
            self._report(e)
            raise
        self.events.notify(f"Column '{column.label}' deleted", level="success")
        return column

    async def reorder_columns(self, ordered_ids: List[str]) -> List[StatusColumn]:
        """Reorder locally at once, then persist one column at a time."""
        try:
            if self.registry.is_fallback:
                await asyncio.to_thread(self.registry.ensure_defaults)
            ordered = self.registry.apply_order(ordered_ids)
            await asyncio.to_thread(self.registry.persist_order, ordered)
        except BoardError as e:
            self._report(e)
            raise
        return ordered

    def _report(self, error: BoardError) -> None:
        level = "warning" if isinstance(error, ValidationError) else "error"
        self.events.notify(str(error), level=level)
