"""
Notification Dispatcher

Subscriber registry used by the session to relay server-pushed notifications
(diagnostics and friends) to every interested consumer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """A notification pushed by the language server."""

    method: str
    params: Any


Listener = Callable[[Notification], None]
Disposer = Callable[[], None]


class NotificationDispatcher:
    """
    Registry of notification listeners with snapshot-based fan-out.

    Design Principles:
    - Every subscription gets its own disposer, so the same callable can be
      subscribed twice and removed one subscription at a time
    - Disposers are idempotent
    - Dispatch iterates over a snapshot, so a listener may unsubscribe itself
      (or others) while handling a notification
    - Errors are isolated (one failing listener doesn't affect others)
    """

    def __init__(self) -> None:
        self._listeners: dict[object, Listener] = {}

    def subscribe(self, listener: Listener) -> Disposer:
        """
        Register a listener for all notifications.

        Returns:
            A disposer removing exactly this subscription. Calling it more
            than once is harmless.
        """
        token = object()
        self._listeners[token] = listener

        def dispose() -> None:
            self._listeners.pop(token, None)

        return dispose

    def unsubscribe(self, listener: Listener) -> None:
        """Remove every subscription of ``listener``; unknown listeners are ignored."""
        for token, registered in list(self._listeners.items()):
            if registered == listener:
                del self._listeners[token]

    def dispatch(self, notification: Notification) -> None:
        """Deliver ``notification`` once to every listener registered right now."""
        for listener in list(self._listeners.values()):
            try:
                listener(notification)
            except Exception:
                logger.exception(
                    "Notification listener %r failed on %s",
                    listener,
                    notification.method,
                )

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, listener: object) -> bool:
        return any(registered == listener for registered in self._listeners.values())
