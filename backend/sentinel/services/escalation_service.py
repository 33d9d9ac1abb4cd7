"""Graduated notification escalation driven by dismissal strikes.

Each (user, schedule) pair owns one ``EscalationState`` row. Dismissals are
appended to the ``dismissal_events`` log and folded into the strike count the
next time ``decide`` runs, which maps the count onto the configured level
table. Every event is folded exactly once: ``decide`` stamps ``folded_at`` on
the events it counted in the same transaction as the state write. Important
schedules bypass the table entirely and are always sent.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, TypeVar
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from sentinel.core.config import settings
from sentinel.core.policy import EscalationAction, EscalationLevel, EscalationPolicy, NotificationPolicy
from sentinel.db.models.dismissal_event import DismissalEvent
from sentinel.db.models.escalation_state import EscalationState
from sentinel.db.models.schedule import Schedule
from sentinel.observability.metrics import log_metric
from sentinel.services.errors import ScheduleNotFound, StateUnavailable
from sentinel.services.importance import as_utc, is_important_schedule

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F9FF\u2600-\u26FF\u2700-\u27BF\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF\U0001F1E0-\U0001F1FF]"
)


@dataclass
class EscalationDecision:
    action: EscalationAction
    level: int
    strategy: str
    strike_count: int
    reason: str
    push_allowed: bool = True
    shorten_message: bool = False
    checkin: bool = False
    important: bool = False
    deliver_at: Optional[datetime] = None
    suppressed_until: Optional[datetime] = None
    replayed: bool = False
    state: Optional[EscalationState] = field(default=None, repr=False, compare=False)

    @property
    def channel(self) -> str:
        return "push" if self.push_allowed else "in_app"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "level": self.level,
            "strategy": self.strategy,
            "strike_count": self.strike_count,
            "reason": self.reason,
            "push_allowed": self.push_allowed,
            "shorten_message": self.shorten_message,
            "checkin": self.checkin,
            "important": self.important,
            "deliver_at": self.deliver_at.isoformat() if self.deliver_at else None,
            "suppressed_until": self.suppressed_until.isoformat() if self.suppressed_until else None,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], state: EscalationState) -> "EscalationDecision":
        return cls(
            action=EscalationAction(payload["action"]),
            level=payload["level"],
            strategy=payload["strategy"],
            strike_count=payload["strike_count"],
            reason=payload["reason"],
            push_allowed=payload["push_allowed"],
            shorten_message=payload["shorten_message"],
            checkin=payload["checkin"],
            important=payload["important"],
            deliver_at=_parse_instant(payload.get("deliver_at")),
            suppressed_until=_parse_instant(payload.get("suppressed_until")),
            replayed=True,
            state=state,
        )


@dataclass
class OutgoingNotification:
    title: str
    message: str
    channel: str
    push_allowed: bool


@dataclass
class _Transition:
    strike_count: int
    level: int
    streak_reset_at: Optional[datetime]
    suppressed_until: Optional[datetime]
    expired_at: Optional[datetime]
    folded: List[UUID] = field(default_factory=list)


def decide(
    db: Session,
    user_id: UUID,
    schedule_id: UUID,
    now: datetime,
    *,
    policy: Optional[NotificationPolicy] = None,
) -> EscalationDecision:
    """Decide whether to send, delay or suppress the pending notification.

    The next state is persisted before returning. Calling again with the same
    ``now`` and no new dismissals replays the stored decision without writing.
    """
    policy = policy or settings.policy
    now = as_utc(now)
    schedule = _load_schedule(db, user_id, schedule_id)
    important = is_important_schedule(schedule, now, policy.importance)

    def attempt() -> EscalationDecision:
        state = _load_or_create_state(db, user_id, schedule_id)
        pending = _pending_dismissals(db, state, now)
        if _can_replay(state, now, pending):
            return EscalationDecision.from_payload(state.last_decision, state)

        decision, transition = _evaluate(state, schedule, important, pending, now, policy.escalation)
        _apply(state, decision, transition, now)
        _fold_dismissals(db, transition.folded, now)
        db.add(state)
        db.commit()
        decision.state = state
        return decision

    decision = _with_retries(db, policy.escalation.max_conflict_retries, attempt, what="decide")
    if not decision.replayed:
        logger.info(
            "Escalation decision user=%s schedule=%s action=%s level=%s strikes=%s reason=%s",
            user_id,
            schedule_id,
            decision.action.value,
            decision.level,
            decision.strike_count,
            decision.reason,
        )
        log_metric(
            "escalation.decision",
            1,
            metadata={"action": decision.action.value, "strategy": decision.strategy, "important": decision.important},
        )
    return decision


def record_dismissal(
    db: Session,
    user_id: UUID,
    schedule_id: UUID,
    *,
    channel: str,
    now: datetime,
) -> DismissalEvent:
    """Append a dismissal; it becomes a strike on the next ``decide``."""
    _load_schedule(db, user_id, schedule_id)
    event = DismissalEvent(user_id=user_id, schedule_id=schedule_id, channel=channel, dismissed_at=as_utc(now))
    try:
        db.add(event)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StateUnavailable(f"Could not record dismissal for schedule {schedule_id}") from exc
    db.refresh(event)
    log_metric("escalation.dismissal", 1, metadata={"channel": channel})
    return event


def record_acceptance(
    db: Session,
    user_id: UUID,
    schedule_id: UUID,
    now: datetime,
    *,
    policy: Optional[NotificationPolicy] = None,
) -> EscalationState:
    """Reset the streak after the user engaged with a notification."""
    policy = policy or settings.policy
    now = as_utc(now)
    _load_schedule(db, user_id, schedule_id)

    def attempt() -> EscalationState:
        state = _load_or_create_state(db, user_id, schedule_id)
        _fold_dismissals(db, _pending_dismissals(db, state, now), now)
        state.strike_count = 0
        state.level = 0
        state.suppressed_until = None
        state.streak_reset_at = now
        state.last_reason = "accepted"
        state.last_decision = None
        db.add(state)
        db.commit()
        return state

    state = _with_retries(db, policy.escalation.max_conflict_retries, attempt, what="accept")
    logger.info("Escalation streak reset user=%s schedule=%s", user_id, schedule_id)
    return state


def mark_delivered(db: Session, state: EscalationState, now: datetime) -> None:
    """Stamp a confirmed send on the state within the caller's transaction."""
    db.execute(
        update(EscalationState)
        .where(EscalationState.id == state.id)
        .values(last_sent_at=as_utc(now), version=EscalationState.version + 1)
        .execution_options(synchronize_session=False)
    )


def load_state(db: Session, user_id: UUID, schedule_id: UUID) -> Optional[EscalationState]:
    try:
        return _query_state(db, user_id, schedule_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StateUnavailable(f"Could not load escalation state for schedule {schedule_id}") from exc


def apply_decision(
    title: str,
    message: str,
    decision: EscalationDecision,
    policy: Optional[EscalationPolicy] = None,
) -> Optional[OutgoingNotification]:
    """Shape an outgoing notification for a decision; ``None`` unless it is a send."""
    if decision.action is not EscalationAction.SEND:
        return None
    policy = policy or settings.policy.escalation
    if decision.checkin:
        title, message = policy.checkin_title, policy.checkin_message
    elif decision.shorten_message:
        title, message = shorten_message(title, message, policy.short_message_length)
    return OutgoingNotification(
        title=title,
        message=message,
        channel=decision.channel,
        push_allowed=decision.push_allowed,
    )


def shorten_message(title: str, message: str, limit: int = 50) -> tuple[str, str]:
    clean_title = _EMOJI_RE.sub("", title).strip() or title
    if len(message) > limit:
        message = message[: limit - 3] + "..."
    return clean_title, message


def _evaluate(
    state: EscalationState,
    schedule: Schedule,
    important: bool,
    pending: List[UUID],
    now: datetime,
    policy: EscalationPolicy,
) -> tuple[EscalationDecision, _Transition]:
    current_level = state.level or 0
    current_strikes = state.strike_count or 0

    if important:
        # Override leaves strikes unfolded; they count once importance lapses.
        transition = _Transition(
            strike_count=current_strikes,
            level=current_level,
            streak_reset_at=state.streak_reset_at,
            suppressed_until=state.suppressed_until,
            expired_at=state.expired_at,
        )
        decision = EscalationDecision(
            action=EscalationAction.SEND,
            level=current_level,
            strategy="importance_override",
            strike_count=current_strikes,
            reason="importance_override",
            push_allowed=True,
            important=True,
            suppressed_until=state.suppressed_until,
        )
        return decision, transition

    strikes = current_strikes + len(pending)
    level_idx, level = policy.level_for(strikes)
    transition = _Transition(
        strike_count=strikes,
        level=level_idx,
        streak_reset_at=state.streak_reset_at,
        suppressed_until=None,
        expired_at=state.expired_at,
        folded=list(pending),
    )

    if now >= as_utc(schedule.start_time):
        transition.expired_at = state.expired_at or now
        transition.suppressed_until = state.suppressed_until
        return _decision(EscalationAction.SUPPRESS, level_idx, level, strikes, "schedule_passed"), transition

    checkin = False
    if level.suppress_minutes > 0:
        suppressed_until = _as_utc_or_none(state.suppressed_until)
        if suppressed_until is None or level_idx != current_level or pending:
            suppressed_until = now + timedelta(minutes=level.suppress_minutes)
        transition.suppressed_until = suppressed_until
        if now < suppressed_until:
            decision = _decision(
                EscalationAction.SUPPRESS,
                level_idx,
                level,
                strikes,
                f"{level.strategy}: suppressed until {suppressed_until.isoformat()}",
            )
            decision.suppressed_until = suppressed_until
            return decision, transition
        if level.reset_after_suppression:
            level_idx, level = 0, policy.levels[0]
            transition.strike_count = 0
            transition.level = 0
            transition.suppressed_until = None
            transition.streak_reset_at = now
            strikes = 0
        elif level.checkin_after_suppression:
            checkin = True

    last_sent = _as_utc_or_none(state.last_sent_at)
    if level.resend_interval_minutes and last_sent is not None:
        next_allowed = last_sent + timedelta(minutes=level.resend_interval_minutes)
        if now < next_allowed:
            decision = _decision(
                EscalationAction.DELAY,
                level_idx,
                level,
                strikes,
                f"{level.strategy}: next send at {next_allowed.isoformat()}",
            )
            decision.deliver_at = next_allowed
            return decision, transition

    if checkin:
        reason = f"{level.strategy}: checkin after pause"
    elif current_strikes and not strikes:
        reason = "suppression_expired: streak reset"
    else:
        reason = f"{level.strategy}: strikes={strikes}"
    decision = _decision(EscalationAction.SEND, level_idx, level, strikes, reason)
    decision.checkin = checkin
    return decision, transition


def _decision(action: EscalationAction, level_idx: int, level: EscalationLevel, strikes: int, reason: str) -> EscalationDecision:
    return EscalationDecision(
        action=action,
        level=level_idx,
        strategy=level.strategy,
        strike_count=strikes,
        reason=reason,
        push_allowed=level.push_allowed if action is EscalationAction.SEND else False,
        shorten_message=level.shorten_message,
    )


def _apply(state: EscalationState, decision: EscalationDecision, transition: _Transition, now: datetime) -> None:
    state.strike_count = transition.strike_count
    state.level = transition.level
    state.streak_reset_at = transition.streak_reset_at
    state.suppressed_until = transition.suppressed_until
    state.expired_at = transition.expired_at
    state.last_action = decision.action.value
    state.last_action_at = now
    state.last_reason = decision.reason
    state.deliver_at = decision.deliver_at
    state.last_decision = decision.to_payload()


def _can_replay(state: EscalationState, now: datetime, pending: List[UUID]) -> bool:
    if pending or not state.last_decision or state.last_action_at is None:
        return False
    decided_at = as_utc(state.last_action_at)
    if decided_at != now:
        return False
    # A send confirmed after the stored decision consumed it.
    last_sent = _as_utc_or_none(state.last_sent_at)
    return last_sent is None or last_sent < decided_at


def _load_schedule(db: Session, user_id: UUID, schedule_id: UUID) -> Schedule:
    try:
        schedule = db.get(Schedule, schedule_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StateUnavailable(f"Could not load schedule {schedule_id}") from exc
    if schedule is None or schedule.user_id != user_id:
        raise ScheduleNotFound(f"Schedule {schedule_id} not found for user {user_id}")
    return schedule


def _query_state(db: Session, user_id: UUID, schedule_id: UUID) -> Optional[EscalationState]:
    return (
        db.query(EscalationState)
        .filter(EscalationState.user_id == user_id, EscalationState.schedule_id == schedule_id)
        .populate_existing()
        .one_or_none()
    )


def _load_or_create_state(db: Session, user_id: UUID, schedule_id: UUID) -> EscalationState:
    state = _query_state(db, user_id, schedule_id)
    if state is not None:
        return state
    state = EscalationState(user_id=user_id, schedule_id=schedule_id, strike_count=0, level=0)
    db.add(state)
    db.flush()
    return state


def _pending_dismissals(db: Session, state: EscalationState, now: datetime) -> List[UUID]:
    """Ids of dismissals not yet counted, in the order they happened."""
    query = db.query(DismissalEvent.id).filter(
        DismissalEvent.user_id == state.user_id,
        DismissalEvent.schedule_id == state.schedule_id,
        DismissalEvent.folded_at.is_(None),
        DismissalEvent.dismissed_at <= now,
    )
    if state.streak_reset_at is not None:
        query = query.filter(DismissalEvent.dismissed_at > state.streak_reset_at)
    rows = query.order_by(DismissalEvent.dismissed_at.asc(), DismissalEvent.id.asc()).all()
    return [row[0] for row in rows]


def _fold_dismissals(db: Session, event_ids: List[UUID], now: datetime) -> None:
    if not event_ids:
        return
    result = db.execute(
        update(DismissalEvent)
        .where(DismissalEvent.id.in_(event_ids), DismissalEvent.folded_at.is_(None))
        .values(folded_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(event_ids):
        raise StaleDataError(f"{len(event_ids) - result.rowcount} dismissals were already folded by another decision")


def _with_retries(db: Session, attempts: int, fn: Callable[[], T], *, what: str) -> T:
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except (StaleDataError, IntegrityError):
            db.rollback()
            logger.warning("Escalation state conflict during %s (attempt %s/%s)", what, attempt, attempts)
        except SQLAlchemyError as exc:
            db.rollback()
            raise StateUnavailable(f"Escalation state store unavailable during {what}") from exc
    log_metric("escalation.conflict_exhausted", 1, metadata={"operation": what})
    raise StateUnavailable(f"Escalation state kept changing during {what}; gave up after {attempts} attempts")


def _as_utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


def _parse_instant(value: Optional[str]) -> Optional[datetime]:
    return as_utc(datetime.fromisoformat(value)) if value else None
