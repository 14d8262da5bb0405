"""
Board projection: group tasks into columns.

Pure functions of (tasks, columns, category filter); nothing here touches
the backend or mutates its inputs.
"""
from typing import Dict, Iterable, List, Optional, Any

from .schema import StatusColumn, Task

ALL_CATEGORIES = "all"

BoardProjection = Dict[str, List[Task]]


def project_board(
    tasks: Iterable[Task],
    columns: Iterable[StatusColumn],
    category_filter: Optional[str] = ALL_CATEGORIES,
) -> BoardProjection:
    """
    Map each column value to its tasks.

    Buckets follow registry order; tasks keep their incoming order inside a
    bucket. Tasks outside the category filter are skipped, and tasks whose
    status matches no column are left out of the board entirely.
    """
    board: BoardProjection = {column.value: [] for column in columns}
    for task in tasks:
        if category_filter not in (None, ALL_CATEGORIES) and task.category_id != category_filter:
            continue
        bucket = board.get(task.status)
        if bucket is not None:
            bucket.append(task)
    return board


def board_stats(tasks: Iterable[Task], columns: Iterable[StatusColumn]) -> Dict[str, Any]:
    """Dashboard counters: tasks per column, total, and orphaned."""
    tasks = list(tasks)
    columns = list(columns)
    board = project_board(tasks, columns)
    by_status = {value: len(bucket) for value, bucket in board.items()}
    return {
        "total": len(tasks),
        "by_status": by_status,
        "orphaned": len(tasks) - sum(by_status.values()),
    }
