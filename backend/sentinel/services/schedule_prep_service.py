"""Pre-event preparation checklists for upcoming schedules."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import islice
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from sentinel.core.config import settings
from sentinel.core.policy import NotificationPolicy, PrepPolicy, ScheduleCategory
from sentinel.db.models.prep_artifact import PrepArtifact
from sentinel.db.models.schedule import Schedule
from sentinel.db.models.user import User
from sentinel.observability.metrics import log_metric
from sentinel.observability.tracing import trace
from sentinel.services.errors import StateUnavailable
from sentinel.services.importance import (
    as_utc,
    infer_category,
    is_important_schedule,
    minutes_until_start,
    normalize_category,
    validate_schedule,
)
from sentinel.services.memory.base import MemoryRetrievalService

logger = logging.getLogger(__name__)

CATEGORY_LABELS = {
    ScheduleCategory.MEETING.value: "Meeting",
    ScheduleCategory.INTERVIEW.value: "Interview",
    ScheduleCategory.PRESENTATION.value: "Presentation",
    ScheduleCategory.EXAM.value: "Exam",
    ScheduleCategory.RESERVATION.value: "Reservation",
}


@dataclass
class PrepResult:
    artifact: PrepArtifact
    created: bool


def in_prep_window(schedule: Schedule, now: datetime, policy: Optional[PrepPolicy] = None) -> bool:
    policy = policy or settings.policy.prep
    remaining = minutes_until_start(schedule, now)
    return policy.window_end_minutes <= remaining <= policy.window_start_minutes


def resolve_category(schedule: Schedule, policy: Optional[PrepPolicy] = None) -> str:
    """Category used for the checklist; ``other`` falls back to title keywords."""
    policy = policy or settings.policy.prep
    category = normalize_category(schedule.category)
    if category == ScheduleCategory.OTHER.value:
        return infer_category(schedule.title, policy.category_keywords)
    return category


def build_checklist(schedule: Schedule, category: str, policy: Optional[PrepPolicy] = None) -> List[str]:
    policy = policy or settings.policy.prep
    items = list(policy.checklists.get(category) or policy.generic_checklist)
    if schedule.location:
        items.insert(0, f"Location: {schedule.location} - check the route")
    return items


def suggested_actions_for(category: str, policy: Optional[PrepPolicy] = None) -> List[str]:
    policy = policy or settings.policy.prep
    return list(policy.suggested_actions.get(category) or policy.generic_actions)


def is_prep_worthy(schedule: Schedule, now: datetime, policy: Optional[NotificationPolicy] = None) -> bool:
    """Important schedules, or ones whose checklist category is recognised."""
    policy = policy or settings.policy
    if is_important_schedule(schedule, now, policy.importance):
        return True
    return resolve_category(schedule, policy.prep) in policy.prep.checklists


def load_prep_artifact(db: Session, schedule_id: UUID) -> Optional[PrepArtifact]:
    try:
        return db.query(PrepArtifact).filter(PrepArtifact.schedule_id == schedule_id).one_or_none()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StateUnavailable(f"Could not load prep artifact for schedule {schedule_id}") from exc


def maybe_generate_prep(
    db: Session,
    schedule: Schedule,
    now: datetime,
    *,
    memory_service: Optional[MemoryRetrievalService] = None,
    policy: Optional[NotificationPolicy] = None,
) -> Optional[PrepArtifact]:
    """Return the schedule's prep artifact when ``now`` is inside the prep window.

    Outside the window this is ``None``. Inside it the artifact is created on
    first call and returned unchanged afterwards.
    """
    result = ensure_prep_artifact(db, schedule, now, memory_service=memory_service, policy=policy)
    return result.artifact if result else None


def ensure_prep_artifact(
    db: Session,
    schedule: Schedule,
    now: datetime,
    *,
    memory_service: Optional[MemoryRetrievalService] = None,
    policy: Optional[NotificationPolicy] = None,
) -> Optional[PrepResult]:
    policy = policy or settings.policy
    now = as_utc(now)
    validate_schedule(schedule)
    if not in_prep_window(schedule, now, policy.prep):
        return None

    existing = load_prep_artifact(db, schedule.id)
    if existing:
        return PrepResult(artifact=existing, created=False)

    category = resolve_category(schedule, policy.prep)
    with trace(
        "prep.generate",
        metadata={"schedule_id": str(schedule.id), "category": category},
        user_id=str(schedule.user_id),
    ):
        memory_ids = _related_memory_ids(db, schedule, category, now, memory_service, policy.prep)
        artifact = PrepArtifact(
            schedule_id=schedule.id,
            user_id=schedule.user_id,
            category=category,
            checklist_items=build_checklist(schedule, category, policy.prep),
            suggested_actions=suggested_actions_for(category, policy.prep),
            referenced_memory_ids=[str(note_id) for note_id in memory_ids],
            generated_at=now,
        )
        try:
            db.add(artifact)
            db.commit()
        except IntegrityError:
            # Another writer got there first; theirs is the artifact.
            db.rollback()
            winner = load_prep_artifact(db, schedule.id)
            if winner is None:
                raise
            logger.info("Prep artifact for schedule %s already created concurrently", schedule.id)
            return PrepResult(artifact=winner, created=False)
        except SQLAlchemyError as exc:
            db.rollback()
            raise StateUnavailable(f"Could not store prep artifact for schedule {schedule.id}") from exc

    db.refresh(artifact)
    logger.info(
        "Prep artifact created schedule=%s category=%s items=%s memory_refs=%s",
        schedule.id,
        category,
        len(artifact.checklist_items),
        len(artifact.referenced_memory_ids),
    )
    log_metric("prep.generated", 1, metadata={"category": category})
    return PrepResult(artifact=artifact, created=True)


def format_prep_notification(artifact: PrepArtifact, schedule: Schedule) -> Tuple[str, str]:
    """Title and body announcing a prep checklist."""
    label = CATEGORY_LABELS.get(artifact.category, "Schedule")
    checklist = "\n".join(f"[ ] {item}" for item in artifact.checklist_items)
    title = f"{label} prep reminder"
    message = f'"{schedule.title}" starts soon.\n\nChecklist:\n{checklist}'
    return title, message


def _related_memory_ids(
    db: Session,
    schedule: Schedule,
    category: str,
    now: datetime,
    memory_service: Optional[MemoryRetrievalService],
    policy: PrepPolicy,
) -> List[UUID]:
    if memory_service is None or policy.max_memory_refs == 0:
        return []
    try:
        owner = db.get(User, schedule.user_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StateUnavailable(f"Could not load owner of schedule {schedule.id}") from exc
    if owner is None or not owner.prep_enrichment_enabled:
        return []

    since = as_utc(schedule.start_time) - timedelta(days=policy.memory_lookback_days)
    notes = None
    try:
        notes = memory_service.related_note_ids(user_id=schedule.user_id, category=category, since=since, until=now)
        return list(islice(notes, policy.max_memory_refs))
    except Exception as exc:
        logger.warning(
            "Memory enrichment unavailable for schedule %s; continuing without it (degraded): %s",
            schedule.id,
            exc,
        )
        log_metric("prep.enrichment_degraded", 1, metadata={"category": category})
        return []
    finally:
        close = getattr(notes, "close", None)
        if callable(close):
            close()
