"""Process-wide driver for the periodic prep and notification cycle."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from sentinel.core.config import Settings, settings
from sentinel.core.context import job_run_scope
from sentinel.observability.metrics import log_metric
from sentinel.observability.tracing import trace
from sentinel.services.job_runner import JobRunResult, run_notification_checks, run_schedule_prep
from sentinel.services.notifications.hooks import reconcile_stale_intents


logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "notification_cycle"


@dataclass
class CycleResult:
    run_id: str
    started_at: datetime
    unconfirmed_intents: int
    prep: JobRunResult
    notifications: JobRunResult


class SchedulerLifecycle:
    """Owns the APScheduler instance and guarantees cycles never overlap.

    ``start`` is safe to call repeatedly; only the first call registers the
    job. ``run_cycle`` is shared by the periodic job and manual triggers and
    skips when another cycle holds the lock.
    """

    def __init__(
        self,
        config: Settings,
        session_factory: Callable[[], Session],
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self._config = config
        self._session_factory = session_factory
        self._scheduler = scheduler
        self._start_lock = Lock()
        self._cycle_lock = Lock()
        self.started = False

    @property
    def running_cycle(self) -> bool:
        return self._cycle_lock.locked()

    def start(self) -> bool:
        with self._start_lock:
            if self.started:
                logger.info("Scheduler already started; ignoring second start")
                return False
            scheduler = self._scheduler or BackgroundScheduler(timezone=self._config.scheduler_timezone)
            scheduler.add_job(
                self.run_cycle,
                trigger="interval",
                seconds=self._config.scheduler_interval_seconds,
                id=CYCLE_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            self._scheduler = scheduler
            self.started = True
        logger.info(
            "Scheduler started (interval=%ss, timezone=%s)",
            self._config.scheduler_interval_seconds,
            self._config.scheduler_timezone,
        )
        return True

    def shutdown(self, *, wait: bool = False) -> None:
        with self._start_lock:
            if not self.started:
                return
            if self._scheduler is not None and self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
            self.started = False
        logger.info("Scheduler stopped")

    def run_cycle(self, now: Optional[datetime] = None) -> Optional[CycleResult]:
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Notification cycle already running; skipping this trigger")
            log_metric("scheduler.cycle_skipped", 1)
            return None
        try:
            return self._run_cycle(now or datetime.now(timezone.utc))
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, now: datetime) -> CycleResult:
        with job_run_scope() as run_id, trace("scheduler.cycle", metadata={"run_id": run_id}):
            unconfirmed = self._in_session(lambda db: reconcile_stale_intents(db, now))
            prep = self._in_session(lambda db: run_schedule_prep(db, now=now))
            notifications = self._in_session(lambda db: run_notification_checks(db, now=now))
            logger.info(
                "Cycle complete: prep artifacts=%s, notifications sent=%s withheld=%s, failures=%s",
                prep.artifacts_created,
                notifications.notifications_sent,
                notifications.withheld,
                prep.failures + notifications.failures,
            )
            return CycleResult(
                run_id=run_id,
                started_at=now,
                unconfirmed_intents=unconfirmed,
                prep=prep,
                notifications=notifications,
            )

    def _in_session(self, fn):
        session = self._session_factory()
        try:
            return fn(session)
        finally:
            session.close()


@lru_cache
def get_scheduler_lifecycle() -> SchedulerLifecycle:
    """Return the single lifecycle object for this process."""
    from sentinel.db.session import SessionLocal

    return SchedulerLifecycle(settings, SessionLocal)
