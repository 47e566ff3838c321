"""Health monitoring for scheduled jobs and feeds."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ingest.models import Feed
from ingest.utils import utc_now

log = logging.getLogger("feedkeeper.monitoring")


class RunMonitor:
    """Tracks consecutive failures and last results per job, and feeds crossing the alert threshold."""

    def __init__(self, alert_threshold: int = 5):
        self.alert_threshold = alert_threshold
        self._consecutive_failures: Dict[str, int] = {}
        self._alerted: Dict[str, bool] = {}
        self._last_result: Dict[str, Dict[str, Any]] = {}

    def record_success(self, job: str, result: Optional[Dict[str, Any]] = None,
                       at: Optional[datetime] = None) -> None:
        prev = self._consecutive_failures.get(job, 0)
        if prev > 0:
            log.info("%s: reprise apres %d echec(s) consecutif(s).", job, prev)
        self._consecutive_failures[job] = 0
        self._alerted[job] = False
        self._last_result[job] = {
            "ok": True,
            "at": (at or utc_now()).isoformat(),
            "result": dict(result or {}),
        }

    def record_failure(self, job: str, error: str, at: Optional[datetime] = None) -> bool:
        """Record a failure. Returns True if alert threshold was just crossed."""
        count = self._consecutive_failures.get(job, 0) + 1
        self._consecutive_failures[job] = count
        self._last_result[job] = {
            "ok": False,
            "at": (at or utc_now()).isoformat(),
            "error": error,
        }
        log.warning("%s: echec #%d consecutif.", job, count)

        if count >= self.alert_threshold and not self._alerted.get(job, False):
            self._alerted[job] = True
            log.error("ALERTE: %s a echoue %d fois consecutivement!", job, count)
            return True
        return False

    def check_feed(self, feed: Feed) -> bool:
        """Alert once when a feed's error count reaches the threshold. Never deactivates it."""
        if feed.error_count == self.alert_threshold:
            log.error(
                "ALERTE: feed %s (%s) a echoue %d fois consecutivement (reste actif).",
                feed.id, feed.url, feed.error_count,
            )
            return True
        return False

    def get_failures(self, job: str) -> int:
        return self._consecutive_failures.get(job, 0)

    def get_last_result(self, job: str) -> Optional[Dict[str, Any]]:
        return self._last_result.get(job)

    def get_status(self) -> Dict[str, Any]:
        return {
            "failures": dict(self._consecutive_failures),
            "last": {k: dict(v) for k, v in self._last_result.items()},
        }
