from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from sentinel.core.policy import EscalationAction, EscalationPolicy
from sentinel.db.models.dismissal_event import DismissalEvent
from sentinel.db.models.escalation_state import EscalationState
from sentinel.db.models.schedule import Schedule
from sentinel.db.models.user import User
from sentinel.services.errors import InvalidScheduleData, ScheduleNotFound, StateUnavailable
from sentinel.services.escalation_service import (
    apply_decision,
    decide,
    mark_delivered,
    record_acceptance,
    record_dismissal,
    shorten_message,
)

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def _session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    Schedule.__table__.create(bind=engine)
    DismissalEvent.__table__.create(bind=engine)
    EscalationState.__table__.create(bind=engine)
    return TestingSession


def _seed_schedule(db_session, *, starts_in, category="meeting", is_critical=False):
    session = db_session()
    try:
        user_id = uuid4()
        session.add(User(id=user_id))
        session.flush()
        schedule = Schedule(
            user_id=user_id,
            title="Quarterly review",
            start_time=NOW + starts_in,
            category=category,
            is_critical=is_critical,
        )
        session.add(schedule)
        session.commit()
        return user_id, schedule.id
    finally:
        session.close()


def _dismiss(session, user_id, schedule_id, count, *, before):
    for idx in range(count):
        record_dismissal(
            session,
            user_id,
            schedule_id,
            channel="push",
            now=before - timedelta(minutes=count - idx),
        )


def test_first_notification_is_delivered():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    decision = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert decision.action is EscalationAction.SEND
    assert decision.strategy == "deliver"
    assert decision.strike_count == 0
    assert decision.channel == "push"
    assert decision.reason == "deliver: strikes=0"


def test_single_dismissal_shortens_the_message():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    _dismiss(session, user_id, schedule_id, 1, before=NOW)
    decision = decide(session, user_id, schedule_id, NOW)
    outgoing = apply_decision("Review \U0001F4CA", "x" * 80, decision, EscalationPolicy())
    session.close()

    assert decision.action is EscalationAction.SEND
    assert decision.strategy == "adapt_format"
    assert decision.strike_count == 1
    assert outgoing.title == "Review"
    assert len(outgoing.message) == 50
    assert outgoing.message.endswith("...")


def test_reduce_frequency_delays_until_resend_interval():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=5))

    session = Session()
    _dismiss(session, user_id, schedule_id, 2, before=NOW)
    first = decide(session, user_id, schedule_id, NOW)
    assert first.action is EscalationAction.SEND
    assert first.strategy == "reduce_frequency"
    mark_delivered(session, first.state, NOW)
    session.commit()

    later = NOW + timedelta(hours=6)
    second = decide(session, user_id, schedule_id, later)
    session.close()

    assert second.action is EscalationAction.DELAY
    assert second.level == 2
    assert second.deliver_at == NOW + timedelta(days=1)


def test_change_channel_disables_push():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=5))

    session = Session()
    _dismiss(session, user_id, schedule_id, 3, before=NOW)
    decision = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert decision.action is EscalationAction.SEND
    assert decision.strategy == "change_channel"
    assert decision.push_allowed is False
    assert decision.channel == "in_app"


def test_pause_then_checkin_after_suppression():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=10))

    session = Session()
    _dismiss(session, user_id, schedule_id, 4, before=NOW)
    paused = decide(session, user_id, schedule_id, NOW)
    assert paused.action is EscalationAction.SUPPRESS
    assert paused.strategy == "pause_with_checkin"
    assert paused.suppressed_until == NOW + timedelta(days=5)

    still_paused = decide(session, user_id, schedule_id, NOW + timedelta(days=2))
    assert still_paused.action is EscalationAction.SUPPRESS
    assert still_paused.suppressed_until == NOW + timedelta(days=5)

    resumed = decide(session, user_id, schedule_id, NOW + timedelta(days=5, minutes=1))
    session.close()

    assert resumed.action is EscalationAction.SEND
    assert resumed.checkin is True
    assert resumed.reason == "pause_with_checkin: checkin after pause"
    outgoing = apply_decision("Quarterly review", "Starts soon", resumed, EscalationPolicy())
    assert outgoing.title == EscalationPolicy().checkin_title
    assert outgoing.channel == "in_app"


def test_full_suppression_resets_streak_when_it_expires():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=30))

    session = Session()
    _dismiss(session, user_id, schedule_id, 5, before=NOW)
    suppressed = decide(session, user_id, schedule_id, NOW)
    assert suppressed.action is EscalationAction.SUPPRESS
    assert suppressed.strategy == "full_suppress"
    assert suppressed.suppressed_until == NOW + timedelta(days=14)

    after = decide(session, user_id, schedule_id, NOW + timedelta(days=14, minutes=1))
    suppressed_until = after.state.suppressed_until
    session.close()

    assert after.action is EscalationAction.SEND
    assert after.strike_count == 0
    assert after.level == 0
    assert after.reason == "suppression_expired: streak reset"
    assert suppressed_until is None


def test_levels_never_move_backwards_while_strikes_accumulate():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=60))

    session = Session()
    levels = []
    for step in range(6):
        when = NOW + timedelta(hours=step)
        if step:
            record_dismissal(session, user_id, schedule_id, channel="push", now=when - timedelta(minutes=1))
        levels.append(decide(session, user_id, schedule_id, when).level)
    session.close()

    assert levels == [0, 1, 2, 3, 4, 5]


@pytest.mark.parametrize("strikes", range(9))
def test_important_schedule_is_never_suppressed(strikes):
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(minutes=60), category="exam")

    session = Session()
    _dismiss(session, user_id, schedule_id, strikes, before=NOW)
    decision = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert decision.action is EscalationAction.SEND
    assert decision.important is True
    assert decision.reason == "importance_override"
    assert decision.push_allowed is True


def test_importance_override_keeps_strikes_for_later():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3), is_critical=True)

    session = Session()
    _dismiss(session, user_id, schedule_id, 2, before=NOW)
    decision = decide(session, user_id, schedule_id, NOW)
    strikes = session.query(EscalationState.strike_count).scalar()
    unfolded = session.query(DismissalEvent).filter(DismissalEvent.folded_at.is_(None)).count()
    session.close()

    assert decision.action is EscalationAction.SEND
    assert strikes == 0
    assert unfolded == 2


def test_started_schedule_is_suppressed_and_expired():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(minutes=-10))

    session = Session()
    decision = decide(session, user_id, schedule_id, NOW)
    expired_at = decision.state.expired_at
    session.close()

    assert decision.action is EscalationAction.SUPPRESS
    assert decision.reason == "schedule_passed"
    assert expired_at == NOW


def test_started_critical_schedule_still_sends():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(minutes=-10), is_critical=True)

    session = Session()
    decision = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert decision.action is EscalationAction.SEND
    assert decision.reason == "importance_override"


def test_repeated_call_replays_without_writing():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    _dismiss(session, user_id, schedule_id, 1, before=NOW)
    first = decide(session, user_id, schedule_id, NOW)
    version = session.query(EscalationState.version).scalar()
    second = decide(session, user_id, schedule_id, NOW)
    version_after = session.query(EscalationState.version).scalar()
    session.close()

    assert second.replayed is True
    assert first.replayed is False
    assert (second.action, second.level, second.strike_count, second.reason) == (
        first.action,
        first.level,
        first.strike_count,
        first.reason,
    )
    assert version_after == version


def test_dismissal_after_decision_counts_on_next_call():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    decide(session, user_id, schedule_id, NOW)
    record_dismissal(session, user_id, schedule_id, channel="push", now=NOW)
    again = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert again.replayed is False
    assert again.strike_count == 1


def test_dismissal_committed_late_with_earlier_timestamp_still_counts():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    record_dismissal(session, user_id, schedule_id, channel="push", now=NOW - timedelta(seconds=1))
    assert decide(session, user_id, schedule_id, NOW).strike_count == 1
    record_dismissal(session, user_id, schedule_id, channel="in_app", now=NOW - timedelta(seconds=2))
    decision = decide(session, user_id, schedule_id, NOW + timedelta(minutes=5))
    session.close()

    assert decision.strike_count == 2
    assert decision.strategy == "reduce_frequency"


def test_dismissals_sharing_an_instant_are_each_counted():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    record_dismissal(session, user_id, schedule_id, channel="push", now=NOW)
    assert decide(session, user_id, schedule_id, NOW).strike_count == 1
    record_dismissal(session, user_id, schedule_id, channel="push", now=NOW)
    same_instant = decide(session, user_id, schedule_id, NOW)
    later = decide(session, user_id, schedule_id, NOW + timedelta(minutes=5))
    folded = session.query(DismissalEvent).filter(DismissalEvent.folded_at.isnot(None)).count()
    session.close()

    assert same_instant.replayed is False
    assert same_instant.strike_count == 2
    assert later.strike_count == 2
    assert folded == 2


def test_dismissal_folded_elsewhere_forces_a_retry(monkeypatch):
    from sentinel.services import escalation_service

    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    _dismiss(session, user_id, schedule_id, 1, before=NOW)
    real_fold = escalation_service._fold_dismissals
    calls = {"count": 0}

    def racing_fold(db, event_ids, now):
        calls["count"] += 1
        if calls["count"] == 1 and event_ids:
            # A concurrent decision counts the event first.
            db.query(DismissalEvent).update({DismissalEvent.folded_at: now}, synchronize_session=False)
        return real_fold(db, event_ids, now)

    monkeypatch.setattr(escalation_service, "_fold_dismissals", racing_fold)
    decision = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert calls["count"] == 2
    assert decision.strike_count == 1


def test_dismissal_stamped_before_acceptance_is_discarded():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    record_acceptance(session, user_id, schedule_id, NOW)
    record_dismissal(session, user_id, schedule_id, channel="push", now=NOW - timedelta(minutes=1))
    decision = decide(session, user_id, schedule_id, NOW + timedelta(minutes=5))
    session.close()

    assert decision.strike_count == 0
    assert decision.strategy == "deliver"


def test_send_confirmed_after_decision_is_not_replayed():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=5))

    session = Session()
    _dismiss(session, user_id, schedule_id, 2, before=NOW)
    first = decide(session, user_id, schedule_id, NOW)
    mark_delivered(session, first.state, NOW)
    session.commit()
    second = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert first.action is EscalationAction.SEND
    assert second.replayed is False
    assert second.action is EscalationAction.DELAY
    assert second.deliver_at == NOW + timedelta(days=1)


def test_acceptance_resets_streak():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=10))

    session = Session()
    _dismiss(session, user_id, schedule_id, 3, before=NOW)
    decide(session, user_id, schedule_id, NOW)
    state = record_acceptance(session, user_id, schedule_id, NOW + timedelta(minutes=5))
    assert state.strike_count == 0
    assert state.level == 0

    decision = decide(session, user_id, schedule_id, NOW + timedelta(minutes=10))
    session.close()
    assert decision.strategy == "deliver"
    assert decision.strike_count == 0


def test_unknown_or_foreign_schedule_is_not_found():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    with pytest.raises(ScheduleNotFound):
        decide(session, user_id, uuid4(), NOW)
    with pytest.raises(ScheduleNotFound):
        decide(session, uuid4(), schedule_id, NOW)
    with pytest.raises(ScheduleNotFound):
        record_dismissal(session, uuid4(), schedule_id, channel="push", now=NOW)
    session.close()


def test_schedule_without_category_is_rejected():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3), category=None)

    session = Session()
    with pytest.raises(InvalidScheduleData):
        decide(session, user_id, schedule_id, NOW)
    assert session.query(EscalationState).count() == 0
    session.close()


def test_store_failure_raises_state_unavailable_without_writing(monkeypatch):
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database is down"))

    monkeypatch.setattr(session, "commit", broken_commit)
    with pytest.raises(StateUnavailable):
        decide(session, user_id, schedule_id, NOW)
    session.close()

    check = Session()
    assert check.query(EscalationState).count() == 0
    check.close()


def test_version_conflict_is_retried(monkeypatch):
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()
    real_commit = session.commit
    calls = {"count": 0}

    def flaky_commit():
        calls["count"] += 1
        if calls["count"] == 1:
            raise StaleDataError("row changed underneath us")
        return real_commit()

    monkeypatch.setattr(session, "commit", flaky_commit)
    decision = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert decision.action is EscalationAction.SEND
    assert calls["count"] == 2


def test_persistent_conflict_gives_up(monkeypatch):
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=3))

    session = Session()

    def conflicting_commit():
        raise StaleDataError("row changed underneath us")

    monkeypatch.setattr(session, "commit", conflicting_commit)
    with pytest.raises(StateUnavailable):
        decide(session, user_id, schedule_id, NOW)
    session.close()


def test_shorten_message_leaves_short_text_alone():
    assert shorten_message("Standup", "Room 4", 50) == ("Standup", "Room 4")


def test_interview_soon_is_sent_despite_three_dismissals():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(minutes=30), category="interview")

    session = Session()
    _dismiss(session, user_id, schedule_id, 3, before=NOW)
    decision = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert decision.action is EscalationAction.SEND
    assert decision.important is True


def test_fourth_strike_from_reduced_frequency_suppresses():
    Session = _session()
    user_id, schedule_id = _seed_schedule(Session, starts_in=timedelta(days=10))

    session = Session()
    _dismiss(session, user_id, schedule_id, 2, before=NOW - timedelta(hours=1))
    assert decide(session, user_id, schedule_id, NOW - timedelta(hours=1)).level == 2

    _dismiss(session, user_id, schedule_id, 2, before=NOW)
    decision = decide(session, user_id, schedule_id, NOW)
    session.close()

    assert decision.action is EscalationAction.SUPPRESS
    assert decision.strike_count == 4
    assert decision.suppressed_until > NOW
