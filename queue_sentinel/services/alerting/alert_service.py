"""
Operator alerting: error formatting plus the dedup gate in front of the notifier.

Usage:
    alerts = AlertService(notifier, AlertDedupCache())

    await alerts.notify("No such account for email: a@b")   # always sent
    await alerts.report_error(exc)                          # deduplicated
"""

from queue_sentinel.infrastructure.observability.logging import get_logger
from queue_sentinel.services.alerting.dedup_cache import NOT_AVAILABLE, AlertDedupCache

logger = get_logger(__name__)

DIAGNOSTIC_ATTRS = ("errno", "code", "syscall", "address", "port")


def _diagnostic_source(error: BaseException) -> BaseException:
    """
    The exception whose message and fields describe the failure.

    Prefers the first exception in the cause chain that carries diagnostic
    attributes; otherwise the direct cause, otherwise the error itself.
    """
    current: BaseException | None = error
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if any(getattr(current, attr, None) is not None for attr in DIAGNOSTIC_ATTRS):
            return current
        current = current.__cause__
    return error.__cause__ or error


def error_key(error: BaseException) -> str:
    """Dedup key: the underlying cause's message, not the formatted report."""
    source = _diagnostic_source(error)
    return str(source) or type(source).__name__


def format_error(error: BaseException) -> str:
    """Render the error as the multi-line report sent to operators."""
    source = _diagnostic_source(error)

    def field(attr: str) -> str:
        value = getattr(source, attr, None)
        return NOT_AVAILABLE if value in (None, "") else str(value)

    message = str(source) or "Message not available"
    return "\n".join(
        [
            f"Error: {message}",
            f"Errno: {field('errno')}",
            f"Code: {field('code')}",
            f"Syscall: {field('syscall')}",
            f"Address: {field('address')}",
            f"Port: {field('port')}",
        ]
    )


class AlertService:
    """Routes operator-facing messages to the notifier, deduplicating error reports."""

    def __init__(self, notifier, dedup_cache: AlertDedupCache):
        self.notifier = notifier
        self.dedup_cache = dedup_cache
        self.alerts_sent = 0
        self.alerts_suppressed = 0
        self.alerts_failed = 0

    async def notify(self, text: str, markdown: bool = False) -> bool:
        """
        Send an informational message (remediation reports, account notices).

        Returns:
            bool: True if the notifier delivered it
        """
        delivered = await self.notifier.send(text, markdown=markdown)
        if delivered:
            self.alerts_sent += 1
        else:
            self.alerts_failed += 1
        return delivered

    async def _notify_deduplicated(self, key: str, text: str) -> bool:
        delivered = await self.notify(text)
        if not delivered:
            # Undelivered alerts must not hold the window
            self.dedup_cache.forget(key)
        return delivered

    async def notify_once(self, text: str) -> bool:
        """Send ``text`` unless the same text went out within the dedup window."""
        if not self.dedup_cache.should_send(text):
            self.alerts_suppressed += 1
            return False
        return await self._notify_deduplicated(text, text)

    async def report_error(self, error: BaseException) -> bool:
        """
        Format ``error`` and alert operators unless suppressed.

        Returns:
            bool: True if an alert was delivered to the notifier
        """
        report = format_error(error)
        key = error_key(error)

        logger.error(
            "Reporting error",
            error=str(error),
            error_type=type(error).__name__,
            error_key=key[:80],
        )

        if not self.dedup_cache.should_send(key, report):
            self.alerts_suppressed += 1
            return False

        return await self._notify_deduplicated(key, report)
