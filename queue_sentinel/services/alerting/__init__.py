"""
Operator alerting: duplicate suppression and error reports.
"""

from queue_sentinel.services.alerting.alert_service import AlertService, format_error
from queue_sentinel.services.alerting.dedup_cache import AlertDedupCache

__all__ = ["AlertDedupCache", "AlertService", "format_error"]
