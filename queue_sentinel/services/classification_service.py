"""
Sender classification for the deferred queue.

For every sender in the "from" summary the classifier attributes an origin IP,
geolocates it, evaluates five predicates and records the IP in the sender's
history. Senders for which all five hold are handed to the remediation
callback before the next sender is looked at.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from queue_sentinel.config import Settings, settings
from queue_sentinel.infrastructure.observability.logging import get_logger, log_verdict
from queue_sentinel.models.domain.classification_domain import (
    ClassificationVerdict,
    GeoLocation,
)
from queue_sentinel.models.domain.ip_history import IpHistory
from queue_sentinel.models.domain.queue_domain import (
    QueueSnapshot,
    QueueSummaryItem,
    build_origin_map,
)

logger = get_logger(__name__)

RemediateCallback = Callable[[str, str, str, int], Awaitable[object]]


@dataclass(frozen=True, slots=True)
class ClassificationPolicy:
    """Thresholds and lists the predicates are evaluated against."""

    count_threshold: int
    institutional_domain: str
    known_services: tuple[str, ...]
    home_country: str = "BR"
    unknown_country_is_foreign: bool = True

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "ClassificationPolicy":
        config = config or settings
        return cls(
            count_threshold=config.COUNT_THRESHOLD,
            institutional_domain=config.INSTITUTIONAL_DOMAIN.strip().lower(),
            known_services=config.known_services(),
            home_country=config.HOME_COUNTRY.strip().upper(),
            unknown_country_is_foreign=config.UNKNOWN_COUNTRY_IS_FOREIGN,
        )

    def is_foreign(self, geo: GeoLocation) -> bool:
        if geo.is_unknown:
            return self.unknown_country_is_foreign
        return geo.country.upper() != self.home_country

    def is_known_service(self, hostname: str) -> bool:
        hostname = hostname.lower()
        return any(service in hostname for service in self.known_services)

    def exceeds_threshold(self, count: int) -> bool:
        return int(count) > self.count_threshold

    def is_monitored_domain(self, address: str) -> bool:
        address = address.lower()
        return address.endswith(self.institutional_domain) or self.institutional_domain in address


@dataclass(slots=True)
class ClassificationStats:
    """Per-cycle counters reported by the queue monitor job."""

    senders_seen: int = 0
    invalid_addresses: int = 0
    missing_origin: int = 0
    classified: int = 0
    new_ips_recorded: int = 0
    flagged: int = 0
    verdicts: list[ClassificationVerdict] = field(default_factory=list)


class SenderClassifier:
    """Evaluates queue senders against the blocking criteria."""

    def __init__(self, resolver, policy: ClassificationPolicy | None = None):
        self.resolver = resolver
        self.policy = policy or ClassificationPolicy.from_settings()

    async def _geolocate(self, ip: str) -> GeoLocation:
        geo = await self.resolver.resolve(ip)
        if geo is None:
            logger.warning("Geolocation unavailable, treating country as unknown", ip=ip)
            return GeoLocation.unknown(ip)
        return geo

    def evaluate(
        self,
        entry: QueueSummaryItem,
        origin_ip: str,
        geo: GeoLocation,
        history: IpHistory,
    ) -> ClassificationVerdict:
        """
        Compute the verdict for one sender and record its origin IP.

        The IP is remembered whether or not the sender gets remediated, so the
        same origin is never reported as new twice.
        """
        is_new_ip = not history.has_seen(entry.term, origin_ip)
        if is_new_ip:
            history.record(entry.term, origin_ip)

        return ClassificationVerdict(
            sender=entry.term,
            count=entry.count,
            origin_ip=origin_ip,
            country=geo.country,
            hostname=geo.hostname,
            is_foreign=self.policy.is_foreign(geo),
            is_known_service=self.policy.is_known_service(geo.hostname),
            is_new_ip=is_new_ip,
            exceeds_threshold=self.policy.exceeds_threshold(entry.count),
            is_monitored_domain=self.policy.is_monitored_domain(entry.term),
        )

    async def classify_sender(
        self,
        entry: QueueSummaryItem,
        origin_map: dict[str, str],
        history: IpHistory,
        stats: ClassificationStats | None = None,
    ) -> ClassificationVerdict | None:
        """Classify one "from" entry; None when it cannot be classified this cycle."""
        stats = stats if stats is not None else ClassificationStats()
        stats.senders_seen += 1
        address = entry.term

        if "@" not in address:
            logger.info("Invalid sender address, skipping", sender=address)
            stats.invalid_addresses += 1
            return None

        origin_ip = origin_map.get(address)
        if not origin_ip:
            logger.info("No origin IP for sender, skipping", sender=address, count=entry.count)
            stats.missing_origin += 1
            return None

        geo = await self._geolocate(origin_ip)
        verdict = self.evaluate(entry, origin_ip, geo, history)

        stats.classified += 1
        if verdict.is_new_ip:
            stats.new_ips_recorded += 1
        if verdict.should_remediate:
            stats.flagged += 1
        stats.verdicts.append(verdict)

        log_verdict(verdict)
        return verdict

    async def process_snapshot(
        self,
        snapshot: QueueSnapshot,
        history: IpHistory,
        remediate: RemediateCallback,
        stats: ClassificationStats | None = None,
    ) -> ClassificationStats:
        """
        Classify every sender of the snapshot in order, remediating flagged ones inline.

        History is mutated in place; errors from ``remediate`` propagate.
        """
        stats = stats if stats is not None else ClassificationStats()
        origin_map = build_origin_map(snapshot.connections)

        for entry in snapshot.sender_counts() or ():
            verdict = await self.classify_sender(entry, origin_map, history, stats)
            if verdict is None or not verdict.should_remediate:
                continue

            await remediate(verdict.sender, verdict.origin_ip, verdict.country, verdict.count)

        return stats
