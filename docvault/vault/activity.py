"""Best-effort activity events.

The activity log is owned by the surrounding service; this module only hands
events to a sink callable. A failing sink is logged and otherwise ignored; the
state change being recorded stands.
"""

from typing import Callable, Optional

from ..utils.logging import get_logger
from .models import ActivityAction, ActivityEvent, utcnow

logger = get_logger(__name__)

ActivitySink = Callable[[ActivityEvent], None]


def log_sink(event: ActivityEvent) -> None:
    """Default sink: write the event to the application log."""
    logger.info(
        f"activity {event.action.value} user={event.user_id} file={event.file_id or '-'}"
    )


class ActivityLog:
    """Emits activity events to an external sink."""

    def __init__(self, sink: Optional[ActivitySink] = None, clock: Callable = utcnow):
        self.sink = sink or log_sink
        self.clock = clock

    def emit(
        self,
        action: ActivityAction,
        user_id: str,
        file_id: Optional[str] = None,
        details: Optional[str] = None,
    ) -> Optional[ActivityEvent]:
        """
        Record one event.

        Returns:
            The event, or None if the sink failed
        """
        event = ActivityEvent(
            action=action,
            user_id=user_id,
            file_id=file_id,
            timestamp=self.clock(),
            details=details,
        )
        try:
            self.sink(event)
        except Exception as e:
            logger.error(f"Activity sink failed for {action.value}: {e}")
            return None
        return event


class MemoryActivitySink:
    """Sink that keeps events in a list (CLI summaries and tests)."""

    def __init__(self):
        self.events: list[ActivityEvent] = []

    def __call__(self, event: ActivityEvent) -> None:
        self.events.append(event)

    def actions(self) -> list[ActivityAction]:
        return [event.action for event in self.events]
