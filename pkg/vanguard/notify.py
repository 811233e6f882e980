"""
Toast notifications.

Components raise toasts instead of exceptions for anything the user
should see. Front-ends subscribe (or drain) and render them.
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, List

from .errors import ERROR_MESSAGES
from .events import ApiEvent, EventBus

logger = logging.getLogger(__name__)

DEFAULT = "default"
SUCCESS = "success"
DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Toast:
    title: str
    description: str = ""
    variant: str = DEFAULT

    def __str__(self) -> str:
        icon = {SUCCESS: "✅", DESTRUCTIVE: "❌"}.get(self.variant, "ℹ️")
        if self.description:
            return f"{icon} {self.title}: {self.description}"
        return f"{icon} {self.title}"


class Notifier:
    """Collects toasts and fans them out to subscribers."""

    def __init__(self, max_history: int = 100):
        self.history = deque(maxlen=max_history)
        self._undrained: List[Toast] = []
        self._subscribers: List[Callable[[Toast], None]] = []

    def subscribe(self, callback: Callable[[Toast], None]) -> None:
        self._subscribers.append(callback)

    def toast(self, title: str, description: str = "", variant: str = DEFAULT) -> Toast:
        t = Toast(title=title, description=description, variant=variant)
        self.history.append(t)
        self._undrained.append(t)
        if variant == DESTRUCTIVE:
            logger.info(f"Toast [{variant}] {title}: {description}")
        for callback in list(self._subscribers):
            try:
                callback(t)
            except Exception as e:
                logger.error(f"Toast subscriber failed: {e}")
        return t

    def error(self, description: str, title: str = "Error") -> Toast:
        return self.toast(title, description, DESTRUCTIVE)

    def drain(self) -> List[Toast]:
        """Return toasts raised since the last drain."""
        drained, self._undrained = self._undrained, []
        return drained


def bind_api_events(bus: EventBus, notifier: Notifier) -> None:
    """Show a toast for every transport-level failure signalled on the bus."""

    def on_auth_required(**_):
        notifier.error("Your session has expired. Please log in again.", title="Authentication Error")

    def on_server_error(**_):
        notifier.error(ERROR_MESSAGES["SERVER_ERROR"], title="Server Error")

    def on_timeout(**_):
        notifier.error(ERROR_MESSAGES["TIMEOUT"], title="Request Timeout")

    def on_network_error(**_):
        notifier.error(ERROR_MESSAGES["NETWORK_ERROR"], title="Network Error")

    bus.subscribe(ApiEvent.AUTH_REQUIRED, on_auth_required)
    bus.subscribe(ApiEvent.SERVER_ERROR, on_server_error)
    bus.subscribe(ApiEvent.TIMEOUT, on_timeout)
    bus.subscribe(ApiEvent.NETWORK_ERROR, on_network_error)
