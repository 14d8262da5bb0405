"""
Board error taxonomy.

Every failure raised by the board core derives from BoardError, so a front
end can report any of them with a single handler. Nothing here is fatal:
each error is scoped to the one operation that raised it.
"""
from typing import Optional


class BoardError(Exception):
    """Base class for all board errors."""
    pass


class ValidationError(BoardError):
    """Raised when input fails validation (missing category, bad label, ...)."""
    pass


class InvalidLabel(ValidationError):
    """Raised when a column label is empty after trimming."""
    pass


class DuplicateColumn(ValidationError):
    """Raised when a new column's slug collides with an existing one."""

    def __init__(self, value: str):
        super().__init__(f"A column with value '{value}' already exists")
        self.value = value


class DefaultColumnProtected(ValidationError):
    """Raised when deleting one of the seed columns."""

    def __init__(self, value: str):
        super().__init__(f"'{value}' is a default column and cannot be deleted")
        self.value = value


class ColumnNotEmpty(BoardError):
    """Raised when deleting a column that still holds tasks."""

    def __init__(self, value: str, count: int):
        noun = "task" if count == 1 else "tasks"
        super().__init__(
            f"Column '{value}' still has {count} {noun}. "
            f"Move them to another column first."
        )
        self.value = value
        self.count = count


class ColumnNotFound(BoardError):
    """Raised when a column id no longer exists."""

    def __init__(self, column_id: str):
        super().__init__(f"Column {column_id} not found")
        self.column_id = column_id


class BackendError(BoardError):
    """Generic failure reported by the backing store or the network."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} ({self.code})"
        return self.message


class NotFound(BackendError):
    """The addressed row does not exist (or is hidden by row-level security)."""
    pass


class PermissionDenied(BackendError):
    """The session is not allowed to perform the operation."""
    pass


class AssistError(BoardError):
    """Raised when the text-generation API fails."""
    pass
