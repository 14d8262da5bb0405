"""
Drag reconciliation engine.

A drag gesture moves a task between columns:

  IDLE → DRAGGING → DROPPED | CANCELLED → IDLE

A valid drop is a two-phase operation. apply_local() changes the task's
status in memory immediately, so the board shows the move before any network
round-trip. commit() then writes it through the task store. If the write
fails, the user is notified and the whole board is refetched (resync);
there is no targeted rollback, so any other unconfirmed local change is
overwritten by the backend's state too.

Same-column drops are no-ops: rank inside a column is not persisted.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Set

from .errors import BoardError
from .schema import Task, utc_now

if TYPE_CHECKING:
    from .session import BoardSession

logger = logging.getLogger(__name__)


class DragPhase(Enum):
    """Where the current gesture is."""
    IDLE = "idle"
    DRAGGING = "dragging"
    DROPPED = "dropped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class DropLocation:
    """A slot on the board: column value plus index inside the column."""
    column: str
    index: int = 0


@dataclass(frozen=True)
class DragEvent:
    """A finished gesture. destination is None when dropped outside any column."""
    task_id: str
    source: DropLocation
    destination: Optional[DropLocation] = None


@dataclass(frozen=True)
class StatusDelta:
    """The one change a valid drop makes."""
    task_id: str
    from_status: str
    to_status: str


@dataclass
class MoveResult:
    """Outcome of commit()."""
    delta: StatusDelta
    ok: bool
    error: Optional[BoardError] = None


class DragEngine:
    """Turns drag gestures into optimistic moves reconciled with the backend."""

    def __init__(self, session: "BoardSession"):
        self.session = session
        self.phase = DragPhase.IDLE
        self.outcome: Optional[DragPhase] = None   # how the last gesture ended
        self.dragging: Optional[str] = None
        self.pending: Set[asyncio.Task] = set()    # commits still in flight

    # ── Gesture ──────────────────────────────────────────────────────────────

    def begin(self, task_id: str) -> None:
        """Start dragging a task. A new gesture replaces an unfinished one."""
        self.phase = DragPhase.DRAGGING
        self.dragging = task_id

    def handle(self, event: DragEvent) -> Optional["asyncio.Task[MoveResult]"]:
        """
        Finish a gesture.

        Returns the scheduled commit for a valid cross-column drop, or None
        when the drop changed nothing. Must be called from the running event
        loop; the local move is visible as soon as this returns.
        """
        if self.phase is not DragPhase.DRAGGING:
            self.begin(event.task_id)
        try:
            # Raises outside a running loop, before any local change
            loop = asyncio.get_running_loop()
            delta = self._resolve(event)
            if delta is None:
                return None
            self.apply_local(delta)
            self.outcome = DragPhase.DROPPED
            commit = loop.create_task(self.commit(delta))
            self.pending.add(commit)
            commit.add_done_callback(self.pending.discard)
            return commit
        finally:
            self.phase = DragPhase.IDLE
            self.dragging = None

    def drop(self, destination: Optional[DropLocation]) -> Optional["asyncio.Task[MoveResult]"]:
        """Finish the gesture started with begin()."""
        if self.phase is not DragPhase.DRAGGING or self.dragging is None:
            logger.debug("drop() without begin(); ignoring")
            return None
        task = self._find(self.dragging)
        source = DropLocation(task.status if task else "")
        return self.handle(DragEvent(self.dragging, source, destination))

    def cancel(self) -> None:
        self.outcome = DragPhase.CANCELLED
        self.phase = DragPhase.IDLE
        self.dragging = None

    async def move(self, task_id: str, to_status: str) -> Optional[MoveResult]:
        """Drag a task to another column and wait for the write to settle."""
        task = self._find(task_id)
        source = DropLocation(task.status if task else "")
        commit = self.handle(DragEvent(task_id, source, DropLocation(to_status)))
        if commit is None:
            return None
        return await commit

    # ── Two-phase move ───────────────────────────────────────────────────────

    def apply_local(self, delta: StatusDelta) -> None:
        """Show the move on the board right away."""
        task = self._find(delta.task_id)
        if task is None:
            return
        task.status = delta.to_status
        task.updated_at = utc_now()

    async def commit(self, delta: StatusDelta) -> MoveResult:
        """Persist the move; on failure notify and resync the whole board."""
        session = self.session
        try:
            await asyncio.to_thread(session.store.update_status, delta.task_id, delta.to_status)
        except BoardError as e:
            logger.warning(
                f"Move of {delta.task_id} {delta.from_status} -> {delta.to_status} failed: {e}"
            )
            session.events.notify(f"Could not move task: {e}", level="error")
            session.events.emit("move_failed", task_id=delta.task_id, error=e)
            try:
                await session.refresh()
            except BoardError as resync_error:
                logger.error(f"Resync after failed move also failed: {resync_error}")
                session.events.notify(
                    "Board may be out of date; refresh to reload it.", level="error"
                )
            return MoveResult(delta, ok=False, error=e)

        session.events.emit(
            "task_moved",
            task_id=delta.task_id,
            from_status=delta.from_status,
            to_status=delta.to_status,
        )
        return MoveResult(delta, ok=True)

    async def drain(self) -> None:
        """Wait for every in-flight commit (used at session close)."""
        if self.pending:
            await asyncio.gather(*list(self.pending), return_exceptions=True)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _find(self, task_id: str) -> Optional[Task]:
        for task in self.session.tasks:
            if task.id == task_id:
                return task
        return None

    def _resolve(self, event: DragEvent) -> Optional[StatusDelta]:
        """Decide what a drop means; None for every no-op case."""
        if event.destination is None:
            self.outcome = DragPhase.CANCELLED
            return None
        if event.destination.column == event.source.column:
            # Rank within a column is not persisted
            self.outcome = DragPhase.DROPPED
            return None
        column = self.session.registry.find(event.destination.column)
        if column is None:
            logger.warning(f"Drop onto unknown column {event.destination.column}; ignoring")
            self.outcome = DragPhase.CANCELLED
            return None
        task = self._find(event.task_id)
        if task is None:
            logger.warning(f"Drop of unknown task {event.task_id}; ignoring")
            self.outcome = DragPhase.CANCELLED
            return None
        if task.status == column.value:
            self.outcome = DragPhase.DROPPED
            return None
        return StatusDelta(task.id, task.status, column.value)
