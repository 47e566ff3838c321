import asyncio
import logging
import time
from datetime import datetime, time as dtime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from discord.ext import tasks

from ingest import config
from ingest.models import RunSummary
from ingest.monitoring import RunMonitor
from ingest.orchestrator import FeedFetchOrchestrator
from ingest.retention import RetentionCleaner

log = logging.getLogger("feedkeeper.scheduler")

FETCH_JOB = "articleFetch"
CLEANUP_JOB = "articleCleanup"


class Scheduler:
    """Owns the periodic fetch and cleanup jobs.

    Stopped -> Running (both loops armed) on ``start()``, back to Stopped on
    ``stop()``. Nothing is armed unless ``enabled``. Manual triggers run the
    same code as the scheduled ticks.
    """

    def __init__(self, orchestrator: FeedFetchOrchestrator, cleaner: RetentionCleaner,
                 enabled: bool = config.SCHEDULER_ENABLED,
                 fetch_interval_minutes: float = config.FETCH_INTERVAL_MINUTES,
                 cleanup_time: dtime = config.CLEANUP_TIME,
                 tz: ZoneInfo = config.TZ,
                 retention_days: int = config.ARTICLE_RETENTION_DAYS,
                 fetch_on_start: bool = config.FETCH_ON_START,
                 monitor: Optional[RunMonitor] = None):
        self.orchestrator = orchestrator
        self.cleaner = cleaner
        self.enabled = enabled
        self.fetch_interval_minutes = fetch_interval_minutes
        self.tz = tz
        self.cleanup_time = cleanup_time.replace(tzinfo=tz)
        self.retention_days = retention_days
        self.fetch_on_start = fetch_on_start
        self.monitor = monitor or RunMonitor(alert_threshold=config.FAILURE_ALERT_THRESHOLD)

        self._jobs: Dict[str, tasks.Loop] = {}
        # executions en cours par tache
        self._in_progress: Dict[str, int] = {FETCH_JOB: 0, CLEANUP_JOB: 0}
        self._destroyed = False

    @property
    def running(self) -> bool:
        return bool(self._jobs)

    # =========================
    # Lifecycle
    # =========================

    def start(self) -> bool:
        """Arm both jobs. Must be called from a running event loop."""
        if not self.enabled:
            log.info("Scheduler desactive. ENABLE_ARTICLE_SCHEDULER=true pour l'activer.")
            return False
        if self._jobs:
            return True

        fetch_job = tasks.loop(minutes=self.fetch_interval_minutes)(self._fetch_tick)
        if not self.fetch_on_start:
            fetch_job.before_loop(self._wait_first_interval)
        cleanup_job = tasks.loop(time=self.cleanup_time)(self._cleanup_tick)

        fetch_job.start()
        cleanup_job.start()
        self._jobs = {FETCH_JOB: fetch_job, CLEANUP_JOB: cleanup_job}
        self._destroyed = False

        log.info("Scheduler demarre: fetch toutes les %s min, nettoyage chaque jour a %02d:%02d (%s).",
                 self.fetch_interval_minutes, self.cleanup_time.hour, self.cleanup_time.minute, self.tz.key)
        return True

    def stop(self) -> None:
        for name, job in self._jobs.items():
            job.cancel()
            log.info("Tache arretee: %s", name)
        self._jobs = {}
        self._destroyed = True
        log.info("Scheduler arrete.")

    async def _wait_first_interval(self) -> None:
        await asyncio.sleep(self.fetch_interval_minutes * 60)

    # =========================
    # Job bodies
    # =========================

    async def _run_fetch(self, origin: str) -> RunSummary:
        log.info("Recuperation des articles (%s)...", origin)
        start = time.monotonic()
        self._in_progress[FETCH_JOB] += 1
        try:
            summary = await self.orchestrator.fetch_all()
        except Exception as e:
            self.monitor.record_failure(FETCH_JOB, str(e))
            raise
        finally:
            self._in_progress[FETCH_JOB] -= 1
        self.monitor.record_success(FETCH_JOB, summary.as_dict())
        log.info("Recuperation (%s) terminee en %.1fs: %d nouveaux articles, %d feeds, %d erreurs.",
                 origin, time.monotonic() - start,
                 summary.total_fetched, summary.feeds_processed, summary.total_errors)
        return summary

    async def _run_cleanup(self, days_to_keep: int, origin: str) -> int:
        log.info("Nettoyage des articles (%s, %d jours)...", origin, days_to_keep)
        start = time.monotonic()
        self._in_progress[CLEANUP_JOB] += 1
        try:
            deleted = self.cleaner.cleanup(days_to_keep)
        except Exception as e:
            self.monitor.record_failure(CLEANUP_JOB, str(e))
            raise
        finally:
            self._in_progress[CLEANUP_JOB] -= 1
        self.monitor.record_success(CLEANUP_JOB, {"deleted": deleted, "retentionDays": days_to_keep})
        log.info("Nettoyage (%s) termine en %.1fs: %d articles supprimes.",
                 origin, time.monotonic() - start, deleted)
        return deleted

    async def _fetch_tick(self) -> None:
        # Une exception qui remonte arreterait la boucle
        try:
            await self._run_fetch("planifie")
        except Exception:
            log.exception("Recuperation planifiee en echec.")

    async def _cleanup_tick(self) -> None:
        try:
            await self._run_cleanup(self.retention_days, "planifie")
        except Exception:
            log.exception("Nettoyage planifie en echec.")

    # =========================
    # Manual triggers / status
    # =========================

    async def trigger_fetch(self) -> RunSummary:
        return await self._run_fetch("manuel")

    async def trigger_cleanup(self, days_to_keep: Optional[int] = None) -> Dict[str, int]:
        days = days_to_keep or self.retention_days
        deleted = await self._run_cleanup(days, "manuel")
        return {"deleted": deleted, "daysToKeep": days}

    def get_status(self) -> Dict[str, Any]:
        jobs = {}
        for name in (FETCH_JOB, CLEANUP_JOB):
            job = self._jobs.get(name)
            # next_iteration n'existe qu'apres le premier tour de boucle
            next_run = getattr(job, "next_iteration", None) if job is not None else None
            jobs[name] = {
                "scheduled": job is not None and job.is_running(),
                "running": self._in_progress[name] > 0,
                "destroyed": self._destroyed,
                "nextRun": next_run.isoformat() if isinstance(next_run, datetime) else None,
            }
        return {
            "enabled": self.enabled,
            "jobs": jobs,
            "timezone": self.tz.key,
            "retentionDays": self.retention_days,
            "fetchIntervalMinutes": self.fetch_interval_minutes,
            "cleanupTime": f"{self.cleanup_time.hour:02d}:{self.cleanup_time.minute:02d}",
            "monitor": self.monitor.get_status(),
        }
