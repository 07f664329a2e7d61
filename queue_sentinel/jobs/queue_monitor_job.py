"""
Queue Monitor Job: one poll cycle over the deferred mail queue.
Loads the IP history, scans the queue, classifies senders, remediates the
flagged ones and persists the history. Only one cycle runs at a time.
"""

import asyncio
from datetime import UTC, datetime, timedelta

from queue_sentinel.config import Settings, settings
from queue_sentinel.infrastructure.observability.logging import get_logger, log_cycle_summary
from queue_sentinel.models.domain.classification_domain import RemediationResult
from queue_sentinel.services.alerting.alert_service import AlertService
from queue_sentinel.services.alerting.dedup_cache import AlertDedupCache
from queue_sentinel.services.classification_service import (
    ClassificationPolicy,
    ClassificationStats,
    SenderClassifier,
)
from queue_sentinel.services.geolocation_service import IpInfoGeoResolver
from queue_sentinel.services.notifier import TelegramNotifier
from queue_sentinel.services.remediation_service import RemediationService
from queue_sentinel.services.state.ip_history_store import build_ip_history_store
from queue_sentinel.services.zimbra.admin_client import (
    AdminErrorKind,
    ZimbraAdminClient,
    ZimbraAdminError,
)

logger = get_logger(__name__)

NO_QUEUE_DATA_MESSAGE = "No queue data found."
MISSING_SECTIONS_MESSAGE = 'No "from" or "received" type entries found.'


class CycleMetrics:
    """Metrics tracking for one queue poll cycle."""

    def __init__(self):
        self.reset()

    def reset(
        self,
        alerts_sent_baseline: int = 0,
        alerts_suppressed_baseline: int = 0,
        alerts_failed_baseline: int = 0,
    ):
        """Reset all metrics for a new cycle."""
        self.start_time = datetime.now(UTC)
        self.outcome = "running"
        self.classification = ClassificationStats()
        self.remediations = 0
        self.accounts_not_found = 0
        self.alerts_sent = 0
        self.alerts_suppressed = 0
        self.alerts_failed = 0
        self.total_duration_seconds = 0
        self.cycle_error: str | None = None
        self._alerts_sent_baseline = alerts_sent_baseline
        self._alerts_suppressed_baseline = alerts_suppressed_baseline
        self._alerts_failed_baseline = alerts_failed_baseline

    def record_remediation(self, result: RemediationResult):
        if result.account_found:
            self.remediations += 1
        else:
            self.accounts_not_found += 1

    def record_alerts(self, alerts: AlertService):
        self.alerts_sent = alerts.alerts_sent - self._alerts_sent_baseline
        self.alerts_suppressed = alerts.alerts_suppressed - self._alerts_suppressed_baseline
        self.alerts_failed = alerts.alerts_failed - self._alerts_failed_baseline

    def finalize(self):
        """Finalize metrics and calculate totals."""
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        """Convert metrics to dictionary for logging."""
        data = {
            "job_run": "queue_monitor",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "outcome": self.outcome,
            "senders_seen": self.classification.senders_seen,
            "invalid_addresses": self.classification.invalid_addresses,
            "missing_origin": self.classification.missing_origin,
            "classified": self.classification.classified,
            "new_ips_recorded": self.classification.new_ips_recorded,
            "flagged": self.classification.flagged,
            "remediations": self.remediations,
            "accounts_not_found": self.accounts_not_found,
            "alerts_sent": self.alerts_sent,
            "alerts_suppressed": self.alerts_suppressed,
            "alerts_failed": self.alerts_failed,
        }
        if self.cycle_error:
            data["cycle_error"] = self.cycle_error
        return data


class QueueMonitorJob:
    """
    Cycle coordinator for the deferred queue.

    The ``is_running`` flag is checked and set with no await in between, so
    within one event loop a second invocation always sees it. It is cleared
    on every exit path.
    """

    def __init__(
        self,
        admin_client,
        history_store,
        alerts: AlertService,
        classifier: SenderClassifier,
        remediation: RemediationService,
        server_name: str,
        poll_interval_seconds: int = 60,
    ):
        self.admin_client = admin_client
        self.history_store = history_store
        self.alerts = alerts
        self.classifier = classifier
        self.remediation = remediation
        self.server_name = server_name
        self.poll_interval_seconds = poll_interval_seconds

        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = CycleMetrics()

    async def run_once(self) -> dict:
        """
        Run a single poll cycle.

        Never raises: failures are logged and, when warranted, alerted.

        Returns:
            Dict: cycle metrics, or a skip marker if a cycle is already running
        """
        if self.is_running:
            logger.info("Queue processing already in progress, skipping this invocation")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        try:
            self.job_metrics.reset(
                self.alerts.alerts_sent,
                self.alerts.alerts_suppressed,
                self.alerts.alerts_failed,
            )
            logger.info("Starting queue cycle", server=self.server_name)

            await self._run_cycle()

        except ZimbraAdminError as e:
            if e.kind is AdminErrorKind.ALREADY_IN_PROGRESS:
                logger.info(
                    "Server operation already in progress, waiting for next cycle",
                    operation=e.operation,
                )
                self.job_metrics.outcome = "already_in_progress"
            else:
                await self._handle_failure(e)

        except Exception as e:
            await self._handle_failure(e)

        finally:
            self.is_running = False

        self.last_run_time = datetime.now(UTC)
        self.job_metrics.record_alerts(self.alerts)
        self.job_metrics.finalize()

        metrics = self.job_metrics.to_dict()
        log_cycle_summary(metrics)
        return metrics

    async def _handle_failure(self, error: Exception) -> None:
        logger.error("Queue cycle failed", error=str(error), error_type=type(error).__name__)
        self.job_metrics.outcome = "failed"
        self.job_metrics.cycle_error = str(error) or type(error).__name__
        await self.alerts.report_error(error)

    async def _run_cycle(self) -> None:
        history = await self.history_store.load()
        classification_started = False

        try:
            auth_token = await self.admin_client.authenticate()
            snapshot = await self.admin_client.fetch_queue_snapshot(auth_token, self.server_name)

            if snapshot is None:
                logger.warning(NO_QUEUE_DATA_MESSAGE, server=self.server_name)
                await self.alerts.notify_once(NO_QUEUE_DATA_MESSAGE)
                self.job_metrics.outcome = "no_queue_data"
                return

            if not snapshot.is_complete():
                logger.warning(
                    MISSING_SECTIONS_MESSAGE,
                    server=self.server_name,
                    summaries=sorted(snapshot.summaries),
                )
                await self.alerts.notify_once(MISSING_SECTIONS_MESSAGE)
                self.job_metrics.outcome = "missing_sections"
                return

            async def remediate(address: str, origin_ip: str, country: str, count: int) -> None:
                result = await self.remediation.remediate(auth_token, address, origin_ip, country, count)
                self.job_metrics.record_remediation(result)

            classification_started = True
            await self.classifier.process_snapshot(
                snapshot, history, remediate, self.job_metrics.classification
            )
            self.job_metrics.outcome = "completed"

        finally:
            # Keep IPs recorded before a mid-cycle failure
            if classification_started:
                await self.history_store.save(history)

    def get_job_status(self) -> dict:
        """
        Get current job status and metrics.

        Returns:
            Dict: Current job status information
        """
        return {
            "job_name": "queue_monitor",
            "server": self.server_name,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "poll_interval_seconds": self.poll_interval_seconds,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }

    def health_check(self) -> dict:
        """
        Health check for the queue monitor job.

        Returns:
            Dict: Health status; overdue when no cycle finished in 2x the interval
        """
        now = datetime.now(UTC)
        overdue_threshold = timedelta(seconds=self.poll_interval_seconds * 2)
        is_overdue = self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold

        health_status = {
            "healthy": not is_overdue and self.job_metrics.outcome != "failed",
            "service": "queue_monitor_job",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_outcome": self.job_metrics.outcome if self.last_run_time else None,
            "is_overdue": is_overdue,
        }

        if is_overdue:
            health_status["warning"] = (
                f"Job overdue by {(now - self.last_run_time).total_seconds() / 60:.1f} minutes"
            )

        return health_status

    async def close(self) -> None:
        """Release HTTP/Redis clients held by the collaborators."""
        for resource in (
            self.admin_client,
            self.classifier.resolver,
            self.alerts.notifier,
            self.history_store,
        ):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.error("Error closing resource", resource=type(resource).__name__, error=str(e))


def build_queue_monitor_job(config: Settings | None = None) -> QueueMonitorJob:
    """Wire a QueueMonitorJob from settings."""
    config = config or settings

    notifier = TelegramNotifier(config)
    alerts = AlertService(notifier, AlertDedupCache(window_seconds=config.ALERT_DEDUP_WINDOW_SECONDS))
    resolver = IpInfoGeoResolver(config, alerts=alerts)
    admin_client = ZimbraAdminClient(config)

    return QueueMonitorJob(
        admin_client=admin_client,
        history_store=build_ip_history_store(config),
        alerts=alerts,
        classifier=SenderClassifier(resolver, ClassificationPolicy.from_settings(config)),
        remediation=RemediationService(admin_client, alerts, home_country=config.HOME_COUNTRY),
        server_name=config.MAIL_SERVER_HOSTNAME,
        poll_interval_seconds=config.POLL_INTERVAL_SECONDS,
    )


_queue_monitor_job: QueueMonitorJob | None = None


def get_queue_monitor_job() -> QueueMonitorJob:
    """Process-wide job instance; the dedup cache lives as long as it does."""
    global _queue_monitor_job
    if _queue_monitor_job is None:
        _queue_monitor_job = build_queue_monitor_job()
    return _queue_monitor_job


async def run_queue_monitor_once() -> dict:
    """Run a single poll cycle (for cron-style invocation)."""
    job = get_queue_monitor_job()
    try:
        return await job.run_once()
    finally:
        await job.close()


async def start_queue_monitor_scheduler():
    """
    Poll the queue every POLL_INTERVAL_SECONDS until interrupted.

    Cycles run back to back at most; a cycle that outlives the interval simply
    delays the next one.
    """
    job = get_queue_monitor_job()
    logger.info(
        "Starting queue monitor scheduler",
        server=job.server_name,
        interval_seconds=job.poll_interval_seconds,
    )

    try:
        while True:
            try:
                await job.run_once()
            except Exception as e:
                logger.error(
                    "Error in queue monitor scheduler", error=str(e), error_type=type(e).__name__
                )
            await asyncio.sleep(job.poll_interval_seconds)
    finally:
        await job.close()
