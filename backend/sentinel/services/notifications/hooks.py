"""Notification dispatch with an intent/confirm audit trail."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from time import perf_counter
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sentinel.core.config import settings
from sentinel.core.policy import EscalationAction, NotificationPolicy
from sentinel.db.models.notification_audit import NotificationAudit
from sentinel.db.models.schedule import Schedule
from sentinel.observability.metrics import log_metric
from sentinel.observability.tracing import trace
from sentinel.services.errors import StateUnavailable
from sentinel.services.escalation_service import EscalationDecision, apply_decision, decide, mark_delivered
from sentinel.services.importance import as_utc
from sentinel.services.notifications.base import NotificationResult
from sentinel.services.notifications.factory import get_notification_service


logger = logging.getLogger(__name__)

INTENT = "intent"
OPEN_INTENT_STATUSES = ("pending", "confirmed")


@dataclass
class DispatchOutcome:
    status: str
    decision: EscalationDecision
    audit: Optional[NotificationAudit] = None


def notify_schedule(
    db: Session,
    schedule: Schedule,
    *,
    now: datetime,
    reminder_key: str,
    title: str | None = None,
    message: str | None = None,
    request_id: str | None = None,
    policy: Optional[NotificationPolicy] = None,
) -> DispatchOutcome:
    """Run the escalation decision for a schedule and deliver it if allowed."""
    policy = policy or settings.policy
    now = as_utc(now)
    decision = decide(db, schedule.user_id, schedule.id, now, policy=policy)
    if decision.action is not EscalationAction.SEND:
        log_metric("notifications.withheld", 1, metadata={"action": decision.action.value})
        return DispatchOutcome(status=decision.action.value, decision=decision)

    if not settings.notifications_enabled:
        log_metric("notifications.skipped", 1, metadata={"reason": "disabled"})
        return DispatchOutcome(status="skipped", decision=decision)

    outgoing = apply_decision(
        title or f"Upcoming: {schedule.title}",
        message or _default_message(schedule),
        decision,
        policy.escalation,
    )
    intent = _record_intent(
        db,
        schedule,
        decision,
        reminder_key,
        outgoing.title,
        outgoing.message,
        outgoing.channel,
        now,
        request_id,
    )

    service = get_notification_service()
    start = perf_counter()
    try:
        with trace(
            "notifications.send",
            metadata={
                "schedule_id": str(schedule.id),
                "channel": outgoing.channel,
                "strategy": decision.strategy,
                "reminder_key": reminder_key,
                "provider": settings.notifications_provider,
            },
            user_id=str(schedule.user_id),
            request_id=request_id,
        ):
            result = service.send(
                user_id=schedule.user_id,
                schedule_id=schedule.id,
                title=outgoing.title,
                message=outgoing.message,
                channel=outgoing.channel,
                request_id=request_id,
            )
    except Exception as exc:
        _close_intent(db, intent, status="failed", reason=str(exc) or type(exc).__name__, now=now)
        log_metric("notifications.failed", 1, metadata={"provider": settings.notifications_provider})
        raise

    log_metric("notifications.duration_ms", (perf_counter() - start) * 1000, metadata={"channel": outgoing.channel})
    if not result.delivered:
        _close_intent(db, intent, status="failed", reason=result.reason, now=now)
        log_metric("notifications.failed", 1, metadata={"provider": settings.notifications_provider})
        return DispatchOutcome(status="failed", decision=decision, audit=intent)

    _confirm(db, intent, decision, result, now)
    log_metric("notifications.sent", 1, metadata={"channel": outgoing.channel, "provider": settings.notifications_provider})
    return DispatchOutcome(status="sent", decision=decision, audit=intent)


def has_open_intent(db: Session, schedule_id, reminder_key: str) -> bool:
    """True when this reminder was already dispatched or is mid-dispatch."""
    return (
        db.query(NotificationAudit.id)
        .filter(
            NotificationAudit.schedule_id == schedule_id,
            NotificationAudit.reminder_key == reminder_key,
            NotificationAudit.kind == INTENT,
            NotificationAudit.status.in_(OPEN_INTENT_STATUSES),
        )
        .first()
        is not None
    )


def reconcile_stale_intents(db: Session, now: datetime, policy: Optional[NotificationPolicy] = None) -> int:
    """Mark intents left pending by an interrupted dispatch as ``unconfirmed``."""
    policy = policy or settings.policy
    now = as_utc(now)
    cutoff = now - timedelta(minutes=policy.reminders.intent_stale_after_minutes)
    result = db.execute(
        update(NotificationAudit)
        .where(
            NotificationAudit.kind == INTENT,
            NotificationAudit.status == "pending",
            NotificationAudit.created_at < cutoff,
        )
        .values(status="unconfirmed", reason="dispatch outcome unknown", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.warning("Marked %s stale notification intents as unconfirmed", count)
        log_metric("notifications.unconfirmed", count)
    return count


def _default_message(schedule: Schedule) -> str:
    start = as_utc(schedule.start_time)
    return f'"{schedule.title}" starts at {start:%Y-%m-%d %H:%M} UTC.'


def _record_intent(
    db: Session,
    schedule: Schedule,
    decision: EscalationDecision,
    reminder_key: str,
    title: str,
    message: str,
    channel: str,
    now: datetime,
    request_id: str | None,
) -> NotificationAudit:
    intent = NotificationAudit(
        user_id=schedule.user_id,
        schedule_id=schedule.id,
        kind=INTENT,
        status="pending",
        channel=channel,
        reminder_key=reminder_key,
        payload={
            "title": title,
            "message": message,
            "decision": decision.to_payload(),
            "request_id": request_id or "",
        },
        reason=decision.reason,
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(intent)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StateUnavailable(f"Could not record notification intent for schedule {schedule.id}") from exc
    db.refresh(intent)
    return intent


def _close_intent(db: Session, intent: NotificationAudit, *, status: str, reason: str, now: datetime) -> None:
    intent.status = status
    intent.reason = reason
    intent.updated_at = now
    try:
        db.add(intent)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not close notification intent %s as %s; reconciliation will pick it up", intent.id, status)


def _confirm(
    db: Session,
    intent: NotificationAudit,
    decision: EscalationDecision,
    result: NotificationResult,
    now: datetime,
) -> None:
    intent.status = "confirmed"
    intent.reason = result.reason
    intent.updated_at = now
    payload = dict(intent.payload or {})
    payload["result"] = {"status": result.status, "reason": result.reason}
    intent.payload = payload
    try:
        db.add(intent)
        mark_delivered(db, decision.state, now)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StateUnavailable(f"Delivered notification {intent.id} could not be confirmed") from exc
