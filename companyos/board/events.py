"""
Event bridge: in-process publish/subscribe for board changes.

The core never talks to the user directly. It publishes events here and the
front end (Telegram bot, tests, ...) decides how to show them.

Events:
    notify            level, message          user-visible toast
    task_moved        task_id, from_status, to_status
    move_failed       task_id, error
    resynced          tasks, columns
    task_created      task
    task_deleted      task_id
    column_created    column
    column_deleted    column
    columns_reordered columns
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

NOTIFY = "notify"


class BoardEventBridge:
    """Routes board events to subscribed callbacks."""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}  # event_type -> callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        callbacks = self.subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers. A failing subscriber never breaks the caller."""
        for callback in list(self.subscribers.get(event_type, [])):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    def notify(self, message: str, level: str = "info") -> None:
        """Publish a user-visible notification (success, info, warning, error)."""
        self.emit(NOTIFY, level=level, message=message)
