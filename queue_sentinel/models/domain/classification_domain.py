"""
Classification and remediation domain models.
Ephemeral per-cycle values passed between the classifier, the remediation
service and the alerting path.
"""

from dataclasses import dataclass
from enum import Enum

UNKNOWN_COUNTRY = "unknown"


@dataclass(frozen=True, slots=True)
class GeoLocation:
    """Country and reverse hostname for an origin IP."""

    ip: str
    country: str
    hostname: str = ""

    @classmethod
    def unknown(cls, ip: str) -> "GeoLocation":
        return cls(ip=ip, country=UNKNOWN_COUNTRY, hostname="")

    @property
    def is_unknown(self) -> bool:
        return self.country == UNKNOWN_COUNTRY


@dataclass(frozen=True, slots=True)
class ClassificationVerdict:
    """Outcome of evaluating one sender against the blocking criteria."""

    sender: str
    count: int
    origin_ip: str
    country: str
    hostname: str
    is_foreign: bool
    is_known_service: bool
    is_new_ip: bool
    exceeds_threshold: bool
    is_monitored_domain: bool

    @property
    def should_remediate(self) -> bool:
        return (
            self.is_foreign
            and self.exceeds_threshold
            and not self.is_known_service
            and self.is_new_ip
            and self.is_monitored_domain
        )


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Result of one remediation step; ``secret`` is set only by a password reset."""

    status: StepStatus
    detail: str
    secret: str | None = None

    @classmethod
    def succeeded(cls, detail: str, secret: str | None = None) -> "StepOutcome":
        return cls(StepStatus.SUCCEEDED, detail, secret)

    @classmethod
    def failed(cls, detail: str) -> "StepOutcome":
        return cls(StepStatus.FAILED, detail)

    @classmethod
    def skipped(cls, detail: str) -> "StepOutcome":
        return cls(StepStatus.SKIPPED, detail)

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCEEDED


@dataclass(slots=True)
class RemediationResult:
    """What happened while remediating one flagged sender."""

    sender: str
    account_found: bool
    message: str
    account_id: str | None = None
    password_reset: StepOutcome | None = None
    lock: StepOutcome | None = None
    note: StepOutcome | None = None
