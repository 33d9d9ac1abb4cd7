"""Batch job runners for schedule prep and notification checks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from sentinel.core.config import settings
from sentinel.core.policy import NotificationPolicy
from sentinel.db.models.schedule import Schedule
from sentinel.services.errors import SentinelError
from sentinel.services.importance import as_utc
from sentinel.services.memory.base import MemoryRetrievalService
from sentinel.services.memory.factory import get_memory_service
from sentinel.services.notifications.hooks import has_open_intent, notify_schedule
from sentinel.services.schedule_prep_service import (
    ensure_prep_artifact,
    format_prep_notification,
    is_prep_worthy,
)


logger = logging.getLogger(__name__)

PREP_REMINDER_KEY = "prep"


@dataclass
class JobRunResult:
    users_processed: int = 0
    schedules_processed: int = 0
    notifications_sent: int = 0
    withheld: int = 0
    artifacts_created: int = 0
    failures: int = 0


def due_reminder_key(schedule: Schedule, now: datetime, offsets_minutes: Iterable[int]) -> Optional[str]:
    """Key of the most recent reminder checkpoint that has passed, if any."""
    start = as_utc(schedule.start_time)
    passed = [offset for offset in offsets_minutes if now >= start - timedelta(minutes=offset)]
    if not passed:
        return None
    return f"T-{min(passed)}m"


def run_notification_checks(
    db: Session,
    *,
    now: Optional[datetime] = None,
    user_ids: Optional[Iterable[UUID]] = None,
    policy: Optional[NotificationPolicy] = None,
) -> JobRunResult:
    policy = policy or settings.policy
    now = as_utc(now or datetime.now(timezone.utc))
    horizon = now + timedelta(minutes=policy.reminders.lookahead_minutes)
    schedules = _upcoming_schedules(db, now, horizon, user_ids)

    result = JobRunResult()
    users = set()
    for schedule in schedules:
        key = due_reminder_key(schedule, now, policy.reminders.offsets_minutes)
        if key is None or has_open_intent(db, schedule.id, key):
            continue
        result.schedules_processed += 1
        users.add(schedule.user_id)
        try:
            outcome = notify_schedule(db, schedule, now=now, reminder_key=key, policy=policy)
        except SentinelError as exc:
            result.failures += 1
            logger.error("Notification check failed for schedule %s: %s", schedule.id, exc)
            continue
        except Exception:  # pragma: no cover - provider failures are logged per schedule
            result.failures += 1
            logger.exception("Notification dispatch failed for schedule %s", schedule.id)
            continue
        _count_outcome(result, outcome.status)
    result.users_processed = len(users)
    return result


def run_schedule_prep(
    db: Session,
    *,
    now: Optional[datetime] = None,
    memory_service: Optional[MemoryRetrievalService] = None,
    policy: Optional[NotificationPolicy] = None,
) -> JobRunResult:
    policy = policy or settings.policy
    now = as_utc(now or datetime.now(timezone.utc))
    memory_service = memory_service or get_memory_service()
    window_open = now + timedelta(minutes=policy.prep.window_end_minutes)
    window_close = now + timedelta(minutes=policy.prep.window_start_minutes)
    schedules = _upcoming_schedules(db, window_open, window_close, None, inclusive_start=True)

    result = JobRunResult()
    users = set()
    for schedule in schedules:
        try:
            if not is_prep_worthy(schedule, now, policy):
                logger.debug("Schedule %s is not prep-worthy; skipping", schedule.id)
                continue
            result.schedules_processed += 1
            users.add(schedule.user_id)
            prep = ensure_prep_artifact(db, schedule, now, memory_service=memory_service, policy=policy)
            if prep is None:
                continue
            if prep.created:
                result.artifacts_created += 1
            if has_open_intent(db, schedule.id, PREP_REMINDER_KEY):
                continue
            title, message = format_prep_notification(prep.artifact, schedule)
            outcome = notify_schedule(
                db,
                schedule,
                now=now,
                reminder_key=PREP_REMINDER_KEY,
                title=title,
                message=message,
                policy=policy,
            )
        except SentinelError as exc:
            result.failures += 1
            logger.error("Prep job failed for schedule %s: %s", schedule.id, exc)
            continue
        except Exception:  # pragma: no cover - provider failures are logged per schedule
            result.failures += 1
            logger.exception("Prep notification failed for schedule %s", schedule.id)
            continue
        _count_outcome(result, outcome.status)
    result.users_processed = len(users)
    return result


def _upcoming_schedules(
    db: Session,
    start: datetime,
    end: datetime,
    user_ids: Optional[Iterable[UUID]],
    *,
    inclusive_start: bool = False,
) -> List[Schedule]:
    query = db.query(Schedule).filter(Schedule.start_time.isnot(None), Schedule.start_time <= end)
    if inclusive_start:
        query = query.filter(Schedule.start_time >= start)
    else:
        query = query.filter(Schedule.start_time > start)
    if user_ids is not None:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        query = query.filter(Schedule.user_id.in_(ids))
    return query.order_by(Schedule.start_time.asc()).all()


def _count_outcome(result: JobRunResult, status: str) -> None:
    if status == "sent":
        result.notifications_sent += 1
    elif status == "failed":
        result.failures += 1
    else:
        result.withheld += 1
