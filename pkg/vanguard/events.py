"""
Event bus for API-level signals.

The transport layer emits auth/timeout/network/server-error events; the
query layer emits task lifecycle events. Consumers (toast display, the bot)
subscribe explicitly to the bus they were handed.
"""
import logging
from enum import Enum
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


class ApiEvent(Enum):
    AUTH_REQUIRED = "auth:required"
    SERVER_ERROR = "api:server-error"
    TIMEOUT = "api:timeout"
    NETWORK_ERROR = "api:network-error"
    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_DELETED = "task:deleted"


class EventBus:
    """Synchronous publish/subscribe keyed by ApiEvent."""

    def __init__(self):
        self.subscribers: Dict[ApiEvent, List[Callable]] = {}

    def subscribe(self, event: ApiEvent, callback: Callable) -> None:
        """Register a callback for an event."""
        self.subscribers.setdefault(event, []).append(callback)

    def unsubscribe(self, event: ApiEvent, callback: Callable) -> None:
        callbacks = self.subscribers.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: ApiEvent, **payload) -> None:
        """Deliver an event to every subscriber. Callback errors are logged, not raised."""
        for callback in list(self.subscribers.get(event, [])):
            try:
                callback(**payload)
            except Exception as e:
                logger.error(f"Error in {event.value} callback: {e}")
