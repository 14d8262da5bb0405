"""
Status registry and column administration.

The registry keeps the workspace's ordered list of columns in memory and
mirrors every change to the `task_statuses` collection. Reorders are applied
locally first so the board reflects them at once; everything else is written
to the backend before local state changes.

Column rules:
  - value is derived from the label once and never changes
  - values are unique
  - the three seed columns cannot be deleted
  - a column holding tasks cannot be deleted
"""
import logging
from typing import Iterable, List, Optional

from .backend import Backend
from .errors import (
    BackendError,
    ColumnNotEmpty,
    ColumnNotFound,
    DefaultColumnProtected,
    DuplicateColumn,
    InvalidLabel,
    ValidationError,
)
from .events import BoardEventBridge
from .schema import StatusColumn, default_columns, derive_slug, resolve_color

logger = logging.getLogger(__name__)

TABLE = "task_statuses"
UNIQUE_VIOLATION = "23505"


class StatusRegistry:
    """Ordered workflow columns for one workspace."""

    def __init__(self, backend: Backend, events: Optional[BoardEventBridge] = None):
        self.backend = backend
        self.events = events or BoardEventBridge()
        # Replaced wholesale on every change, never grown or shrunk in place
        self.columns: List[StatusColumn] = []

    # ── Reads ────────────────────────────────────────────────────────────────

    def fetch(self) -> List[StatusColumn]:
        """
        Fetch the columns ordered by position, without touching local state.

        An empty collection yields the three default columns without writing
        them; call ensure_defaults() to persist them.
        """
        rows = self.backend.select(TABLE, order="position")
        if not rows:
            return default_columns()
        # sorted() is stable: equal positions keep fetch order
        return sorted((StatusColumn.from_row(r) for r in rows), key=lambda c: c.position)

    def load(self) -> List[StatusColumn]:
        """Fetch the columns and make them the local registry."""
        self.columns = self.fetch()
        return list(self.columns)

    @property
    def is_fallback(self) -> bool:
        """True while the registry shows the unpersisted default columns."""
        return bool(self.columns) and not any(c.persisted for c in self.columns)

    def first(self) -> Optional[StatusColumn]:
        """The column new tasks land in by default."""
        if not self.columns:
            self.load()
        return self.columns[0] if self.columns else None

    def values(self) -> List[str]:
        return [c.value for c in self.columns]

    def find(self, ident: Optional[str]) -> Optional[StatusColumn]:
        """Look a column up by id or by value."""
        if ident is None:
            return None
        for column in self.columns:
            if ident in (column.id, column.value):
                return column
        return None

    # ── Creation ─────────────────────────────────────────────────────────────

    def ensure_defaults(self) -> List[StatusColumn]:
        """Persist the seed columns if the collection is empty. Idempotent."""
        if not self.backend.select(TABLE):
            self.backend.insert(TABLE, [c.to_row() for c in default_columns()])
            logger.info("Seeded default task statuses")
        return self.load()

    def create(self, label: str, color: Optional[str] = None) -> StatusColumn:
        """Append a new column at the end of the board."""
        label = (label or "").strip()
        if not label:
            raise InvalidLabel("Column label cannot be empty")
        value = derive_slug(label)
        if not value:
            raise InvalidLabel(f"Label '{label}' has no letters or digits to build a value from")

        if not self.columns:
            self.load()
        if self.is_fallback:
            self.ensure_defaults()
        if self.find(value) is not None:
            raise DuplicateColumn(value)

        column = StatusColumn(
            value=value,
            label=label,
            color=resolve_color(color),
            position=len(self.columns),
            is_default=False,
        )
        try:
            rows = self.backend.insert(TABLE, [column.to_row()])
        except BackendError as e:
            if e.code == UNIQUE_VIOLATION:
                raise DuplicateColumn(value) from e
            raise
        if rows:
            column = StatusColumn.from_row(rows[0])
        self.columns = self.columns + [column]
        logger.info(f"Created column {column.value} at position {column.position}")
        self.events.emit("column_created", column=column)
        return column

    # ── Administration ───────────────────────────────────────────────────────

    def count_tasks(self, value: str) -> int:
        return len(self.backend.select("tasks", {"status": value}))

    def delete(self, column_id: str) -> StatusColumn:
        """
        Delete an empty, non-default column.

        The emptiness check is repeated after the delete; if a task was moved
        into the column in between, the column is restored and the delete
        fails, so a column holding tasks never stays deleted. If the restore
        itself fails the column is dropped locally and the delete still fails
        with ColumnNotEmpty.
        """
        column = self.find(column_id)
        if column is None or not column.persisted:
            raise ColumnNotFound(column_id)
        if column.is_default:
            raise DefaultColumnProtected(column.value)

        count = self.count_tasks(column.value)
        if count:
            raise ColumnNotEmpty(column.value, count)

        removed = self.backend.delete(TABLE, {"id": column.id})
        if not removed:
            self.columns = [c for c in self.columns if c.id != column.id]
            raise ColumnNotFound(column_id)

        raced = self.count_tasks(column.value)
        if raced:
            logger.warning(
                f"{raced} task(s) entered column {column.value} during delete; restoring it"
            )
            try:
                self.backend.insert(TABLE, [column.to_row()])
            except BackendError as e:
                logger.error(
                    f"Could not restore column {column.value}; "
                    f"{raced} task(s) left without a column: {e}"
                )
                self.columns = [c for c in self.columns if c.id != column.id]
            raise ColumnNotEmpty(column.value, raced)

        self.columns = [c for c in self.columns if c.id != column.id]
        logger.info(f"Deleted column {column.value}")
        self.events.emit("column_deleted", column=column)
        return column

    def apply_order(self, ordered_ids: Iterable[str]) -> List[StatusColumn]:
        """Reorder locally: position = index in the given order. No writes."""
        ordered = []
        for ident in ordered_ids:
            column = self.find(ident)
            if column is None:
                raise ColumnNotFound(ident)
            ordered.append(column)
        if len(ordered) != len(self.columns) or len({id(c) for c in ordered}) != len(ordered):
            raise ValidationError("Reorder must list every column exactly once")

        for index, column in enumerate(ordered):
            column.position = index
        self.columns = ordered
        self.events.emit("columns_reordered", columns=list(ordered))
        return list(ordered)

    def persist_order(self, ordered: List[StatusColumn]) -> None:
        """
        Write each column's position, one call per column.

        Failed writes do not stop the others; they are reported together
        once every write was attempted.
        """
        failed = []
        for column in ordered:
            try:
                self.backend.update(TABLE, {"id": column.id}, {"position": column.position})
            except BackendError as e:
                logger.warning(f"Could not save position of {column.value}: {e}")
                failed.append(column.value)
        if failed:
            raise BackendError(
                f"Could not save the new position of: {', '.join(failed)}. "
                f"Refresh to see the saved order."
            )

    def reorder(self, ordered_ids: Iterable[str]) -> List[StatusColumn]:
        """Apply a full new column order locally, then persist it."""
        ordered_ids = list(ordered_ids)
        if not self.columns:
            self.load()
        if self.is_fallback:
            self.ensure_defaults()
        ordered = self.apply_order(ordered_ids)
        self.persist_order(ordered)
        return ordered
