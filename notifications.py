"""
Observer registry for filter swaps.

Consumers of the filter files register a handler and get called with
EVENT_BEFORE_UPDATE right before pending revisions are renamed into place,
and with EVENT_AFTER_UPDATE once every rename was attempted.
"""

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

EVENT_BEFORE_UPDATE = 0
EVENT_AFTER_UPDATE = 1

EVENT_NAMES = {
    EVENT_BEFORE_UPDATE: "before-update",
    EVENT_AFTER_UPDATE: "after-update",
}

EventHandler = Callable[[int], None]


class NotificationBus:
    def __init__(self, timeout: Optional[float] = None):
        # None runs handlers inline, otherwise each one gets at most `timeout` seconds
        self.timeout = timeout
        self._users: List[EventHandler] = []

    def add_user(self, handler: EventHandler):
        self._users.append(handler)

    def notify(self, event: int):
        """Call every handler in registration order."""
        name = EVENT_NAMES.get(event, str(event))
        for handler in list(self._users):
            if self.timeout is None:
                self._call(handler, event)
                continue

            t = threading.Thread(
                target=self._call, args=(handler, event),
                daemon=True, name=f"notify-{name}",
            )
            t.start()
            t.join(self.timeout)
            if t.is_alive():
                logger.warning(
                    "Filters: %s handler %r still running after %.1fs, continuing",
                    name, handler, self.timeout,
                )

    def _call(self, handler: EventHandler, event: int):
        try:
            handler(event)
        except Exception:
            logger.exception("Filters: notification handler %r failed", handler)
