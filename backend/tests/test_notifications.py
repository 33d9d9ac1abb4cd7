from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sentinel.core.config import settings
from sentinel.db.models.dismissal_event import DismissalEvent
from sentinel.db.models.escalation_state import EscalationState
from sentinel.db.models.notification_audit import NotificationAudit
from sentinel.db.models.schedule import Schedule
from sentinel.db.models.user import User
from sentinel.services.escalation_service import record_dismissal
from sentinel.services.notifications.base import NotificationResult
from sentinel.services.notifications.hooks import has_open_intent, notify_schedule, reconcile_stale_intents

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
    NotificationAudit.__table__.create(bind=engine)
    return TestingSession


def _seed_schedule(session, *, starts_in=timedelta(days=2), category="meeting"):
    user = User(id=uuid4())
    session.add(user)
    session.flush()
    schedule = Schedule(user_id=user.id, title="Design review", start_time=NOW + starts_in, category=category)
    session.add(schedule)
    session.commit()
    return schedule


class _DummyService:
    def __init__(self, result=None, error=None):
        self.result = result or NotificationResult(status="sent", reason="ok")
        self.error = error
        self.sent = []

    def send(self, **kwargs):
        self.sent.append(kwargs)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture()
def enabled(monkeypatch):
    monkeypatch.setattr(settings, "notifications_enabled", True)


def _use_service(monkeypatch, service):
    monkeypatch.setattr("sentinel.services.notifications.hooks.get_notification_service", lambda: service)


def test_send_confirms_intent_and_stamps_state(enabled, monkeypatch):
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)
    service = _DummyService()
    _use_service(monkeypatch, service)

    outcome = notify_schedule(session, schedule, now=NOW, reminder_key="T-1440m", request_id="req-1")

    assert outcome.status == "sent"
    assert service.sent[0]["channel"] == "push"
    assert service.sent[0]["title"] == "Upcoming: Design review"
    audit = session.query(NotificationAudit).one()
    assert audit.kind == "intent"
    assert audit.status == "confirmed"
    assert audit.reminder_key == "T-1440m"
    assert audit.payload["result"]["status"] == "sent"
    assert audit.payload["request_id"] == "req-1"
    state = session.query(EscalationState).populate_existing().one()
    assert state.last_sent_at == NOW
    assert has_open_intent(session, schedule.id, "T-1440m") is True
    assert has_open_intent(session, schedule.id, "T-60m") is False
    session.close()


def test_shortened_message_is_what_gets_sent(enabled, monkeypatch):
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)
    record_dismissal(session, schedule.user_id, schedule.id, channel="push", now=NOW - timedelta(minutes=5))
    service = _DummyService()
    _use_service(monkeypatch, service)

    notify_schedule(session, schedule, now=NOW, reminder_key="T-1440m", message="m" * 120)

    assert len(service.sent[0]["message"]) == settings.policy.escalation.short_message_length
    session.close()


def test_disabled_notifications_are_skipped(monkeypatch):
    monkeypatch.setattr(settings, "notifications_enabled", False)
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)
    service = _DummyService()
    _use_service(monkeypatch, service)

    outcome = notify_schedule(session, schedule, now=NOW, reminder_key="T-1440m")

    assert outcome.status == "skipped"
    assert service.sent == []
    assert session.query(NotificationAudit).count() == 0
    session.close()


def test_withheld_decision_never_reaches_provider(enabled, monkeypatch):
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session, starts_in=timedelta(days=10))
    for minutes in (5, 4, 3, 2):
        record_dismissal(session, schedule.user_id, schedule.id, channel="push", now=NOW - timedelta(minutes=minutes))
    service = _DummyService()
    _use_service(monkeypatch, service)

    outcome = notify_schedule(session, schedule, now=NOW, reminder_key="T-1440m")

    assert outcome.status == "suppress"
    assert service.sent == []
    assert session.query(NotificationAudit).count() == 0
    session.close()


def test_provider_exception_marks_intent_failed(enabled, monkeypatch):
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)
    _use_service(monkeypatch, _DummyService(error=RuntimeError("gateway timeout")))

    with pytest.raises(RuntimeError):
        notify_schedule(session, schedule, now=NOW, reminder_key="T-1440m")

    audit = session.query(NotificationAudit).one()
    assert audit.status == "failed"
    assert audit.reason == "gateway timeout"
    assert has_open_intent(session, schedule.id, "T-1440m") is False
    state = session.query(EscalationState).populate_existing().one()
    assert state.last_sent_at is None
    session.close()


def test_provider_failure_result_is_reported(enabled, monkeypatch):
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)
    _use_service(monkeypatch, _DummyService(result=NotificationResult(status="failed", reason="no device token")))

    outcome = notify_schedule(session, schedule, now=NOW, reminder_key="T-1440m")

    assert outcome.status == "failed"
    assert outcome.audit.status == "failed"
    assert outcome.audit.reason == "no device token"
    session.close()


def test_stale_pending_intents_become_unconfirmed():
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)
    stale = NotificationAudit(
        user_id=schedule.user_id,
        schedule_id=schedule.id,
        kind="intent",
        status="pending",
        channel="push",
        reminder_key="T-180m",
        payload={},
        created_at=NOW - timedelta(hours=2),
        updated_at=NOW - timedelta(hours=2),
    )
    fresh = NotificationAudit(
        user_id=schedule.user_id,
        schedule_id=schedule.id,
        kind="intent",
        status="pending",
        channel="push",
        reminder_key="T-60m",
        payload={},
        created_at=NOW - timedelta(minutes=5),
        updated_at=NOW - timedelta(minutes=5),
    )
    session.add_all([stale, fresh])
    session.commit()

    assert reconcile_stale_intents(session, NOW) == 1

    statuses = {
        row.reminder_key: row.status for row in session.query(NotificationAudit).populate_existing().all()
    }
    assert statuses == {"T-180m": "unconfirmed", "T-60m": "pending"}
    assert has_open_intent(session, schedule.id, "T-180m") is False
    assert has_open_intent(session, schedule.id, "T-60m") is True
    assert reconcile_stale_intents(session, NOW) == 0
    session.close()


def test_noop_provider_counts_as_delivered(enabled, monkeypatch):
    monkeypatch.setattr(settings, "notifications_provider", "noop")
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)

    outcome = notify_schedule(session, schedule, now=NOW, reminder_key="T-1440m")

    assert outcome.status == "sent"
    assert outcome.audit.payload["result"]["status"] == "noop"
    session.close()
