"""
Queue Domain Models
Shapes produced by the Zimbra admin client for one deferred-queue scan,
plus the per-cycle origin map derived from them.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

FROM_SUMMARY = "from"
RECEIVED_SUMMARY = "received"


@dataclass(frozen=True, slots=True)
class QueueSummaryItem:
    """One aggregated row of a queue summary (e.g. sender address + message count)."""

    term: str
    count: int


@dataclass(frozen=True, slots=True)
class ConnectionRecord:
    """One queued message with the address its sender connected from."""

    sender: str
    origin_ip: str


@dataclass(frozen=True, slots=True)
class QueueSnapshot:
    """Point-in-time read of a server's deferred queue."""

    server: str
    summaries: dict[str, tuple[QueueSummaryItem, ...]] = field(default_factory=dict)
    connections: tuple[ConnectionRecord, ...] = ()
    total: int | None = None

    def has_summary(self, kind: str) -> bool:
        return kind in self.summaries

    def sender_counts(self) -> tuple[QueueSummaryItem, ...] | None:
        """The "from" summary, or None when the server did not return one."""
        return self.summaries.get(FROM_SUMMARY)

    def is_complete(self) -> bool:
        return self.has_summary(FROM_SUMMARY) and self.has_summary(RECEIVED_SUMMARY)


def build_origin_map(connections: Iterable[ConnectionRecord]) -> dict[str, str]:
    """
    Map each sender to the origin IP of its last connection in snapshot order.

    Records missing either field are ignored.
    """
    origin_map: dict[str, str] = {}
    for record in connections:
        if record.sender and record.origin_ip:
            origin_map[record.sender] = record.origin_ip
    return origin_map
