"""
Time-windowed suppression of repeated operator alerts.

Entries are purged lazily on each lookup; lookups only happen on error
paths, which are rare relative to the window.
"""

import time
from collections import OrderedDict
from collections.abc import Callable

from queue_sentinel.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 600  # 10 minutes
NOT_AVAILABLE = "N/A"
DIAGNOSTIC_FIELDS = ("Errno", "Code", "Syscall", "Address", "Port")


def is_generic_report(message: str) -> bool:
    """
    True when a formatted error report carries no concrete diagnostic field.

    Messages that are not in the report format are never generic.
    """
    values: dict[str, str] = {}
    for line in message.splitlines():
        label, sep, value = line.strip().partition(":")
        if sep and label in DIAGNOSTIC_FIELDS:
            values[label] = value.strip()

    if not values:
        return False
    return all(value == NOT_AVAILABLE for value in values.values())


class AlertDedupCache:
    """Remembers when each alert key was last sent, for ``window_seconds``."""

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        # Insertion order doubles as send-time order
        self._sent_at: OrderedDict[str, float] = OrderedDict()

    def _purge(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._sent_at:
            oldest = next(iter(self._sent_at.values()))
            if oldest >= cutoff:
                break
            self._sent_at.popitem(last=False)

    def should_send(self, error_key: str, message: str | None = None) -> bool:
        """
        Decide whether an alert for ``error_key`` may go out now.

        Args:
            error_key: identity of the underlying cause (its message text)
            message: the formatted report, checked for being uninformative

        Returns:
            bool: True if the alert should be delivered (and it is now recorded)
        """
        now = self._clock()
        self._purge(now)

        if error_key in self._sent_at:
            logger.info("Repeated alert suppressed", error_key=error_key[:80])
            return False

        if message is not None and is_generic_report(message):
            logger.info("Uninformative alert suppressed", error_key=error_key[:80])
            return False

        self._sent_at[error_key] = now
        return True

    def forget(self, error_key: str) -> None:
        """Drop ``error_key`` so the next occurrence is sent again (e.g. after a failed delivery)."""
        self._sent_at.pop(error_key, None)

    def __len__(self) -> int:
        return len(self._sent_at)
