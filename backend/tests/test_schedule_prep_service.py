from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sentinel.core.policy import DEFAULT_CHECKLISTS, DEFAULT_GENERIC_CHECKLIST
from sentinel.db.models.prep_artifact import PrepArtifact
from sentinel.db.models.schedule import Schedule
from sentinel.db.models.user import User
from sentinel.services import schedule_prep_service
from sentinel.services.errors import StateUnavailable
from sentinel.services.schedule_prep_service import (
    ensure_prep_artifact,
    format_prep_notification,
    is_prep_worthy,
    maybe_generate_prep,
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
    PrepArtifact.__table__.create(bind=engine)
    return TestingSession


def _seed_schedule(
    session,
    *,
    title="Statistics midterm",
    category="exam",
    starts_in=timedelta(minutes=150),
    location=None,
    enrichment=False,
):
    user = User(id=uuid4(), plan="pro" if enrichment else "free", prep_enrichment_enabled=enrichment)
    session.add(user)
    session.flush()
    schedule = Schedule(
        user_id=user.id,
        title=title,
        start_time=NOW + starts_in,
        category=category,
        location=location,
    )
    session.add(schedule)
    session.commit()
    return schedule


class _RecordingMemory:
    def __init__(self, note_ids=None, error=None):
        self.note_ids = note_ids or []
        self.error = error
        self.calls = []

    def related_note_ids(self, *, user_id, category, since, until):
        self.calls.append({"user_id": user_id, "category": category, "since": since, "until": until})
        if self.error:
            raise self.error
        return iter(self.note_ids)


def test_exam_inside_window_gets_category_checklist():
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)

    artifact = maybe_generate_prep(session, schedule, NOW)

    assert artifact is not None
    assert artifact.category == "exam"
    assert artifact.checklist_items == DEFAULT_CHECKLISTS["exam"]
    assert artifact.suggested_actions
    assert artifact.referenced_memory_ids == []
    assert artifact.generated_at == NOW
    session.close()


def test_second_call_returns_the_same_artifact():
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)

    first = ensure_prep_artifact(session, schedule, NOW)
    second = ensure_prep_artifact(session, schedule, NOW + timedelta(minutes=10))

    assert first.created is True
    assert second.created is False
    assert second.artifact.id == first.artifact.id
    assert session.query(PrepArtifact).count() == 1
    session.close()


def test_outside_window_returns_none():
    Session = _session()
    session = Session()
    early = _seed_schedule(session, starts_in=timedelta(minutes=200))
    late = _seed_schedule(session, starts_in=timedelta(minutes=90))

    assert maybe_generate_prep(session, early, NOW) is None
    assert maybe_generate_prep(session, late, NOW) is None
    assert session.query(PrepArtifact).count() == 0
    session.close()


def test_window_bounds_are_inclusive():
    Session = _session()
    session = Session()
    opening = _seed_schedule(session, starts_in=timedelta(minutes=180))
    closing = _seed_schedule(session, starts_in=timedelta(minutes=120))

    assert maybe_generate_prep(session, opening, NOW) is not None
    assert maybe_generate_prep(session, closing, NOW) is not None
    session.close()


def test_unknown_category_falls_back_to_generic_checklist():
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session, title="Coffee with Sam", category="other")

    artifact = maybe_generate_prep(session, schedule, NOW)

    assert artifact.category == "other"
    assert artifact.checklist_items == DEFAULT_GENERIC_CHECKLIST
    session.close()


def test_other_category_is_inferred_from_title():
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session, title="Dentist appointment", category="other")

    artifact = maybe_generate_prep(session, schedule, NOW)

    assert artifact.category == "reservation"
    session.close()


def test_location_is_prepended_to_checklist():
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session, location="Main Hall 204")

    artifact = maybe_generate_prep(session, schedule, NOW)

    assert artifact.checklist_items[0] == "Location: Main Hall 204 - check the route"
    assert artifact.checklist_items[1:] == DEFAULT_CHECKLISTS["exam"]
    session.close()


def test_enrichment_references_memory_for_enabled_users():
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session, enrichment=True)
    note_ids = [uuid4() for _ in range(7)]
    memory = _RecordingMemory(note_ids)

    artifact = maybe_generate_prep(session, schedule, NOW, memory_service=memory)

    assert artifact.referenced_memory_ids == [str(note_id) for note_id in note_ids[:5]]
    assert memory.calls[0]["category"] == "exam"
    assert memory.calls[0]["until"] == NOW
    assert memory.calls[0]["since"] == NOW + timedelta(minutes=150) - timedelta(days=90)
    session.close()


def test_free_tier_is_never_enriched():
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session, enrichment=False)
    memory = _RecordingMemory([uuid4()])

    artifact = maybe_generate_prep(session, schedule, NOW, memory_service=memory)

    assert artifact.referenced_memory_ids == []
    assert memory.calls == []
    session.close()


def test_memory_failure_degrades_to_plain_checklist(monkeypatch):
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session, enrichment=True)
    metrics = []
    monkeypatch.setattr(schedule_prep_service, "log_metric", lambda name, value, metadata=None: metrics.append(name))

    artifact = maybe_generate_prep(
        session,
        schedule,
        NOW,
        memory_service=_RecordingMemory(error=RuntimeError("vector store offline")),
    )

    assert artifact is not None
    assert artifact.checklist_items == DEFAULT_CHECKLISTS["exam"]
    assert artifact.referenced_memory_ids == []
    assert "prep.enrichment_degraded" in metrics
    session.close()


def test_concurrent_insert_returns_the_winner(monkeypatch):
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)
    schedule_id, user_id = schedule.id, schedule.user_id

    other = Session()
    winner = PrepArtifact(
        schedule_id=schedule_id,
        user_id=user_id,
        category="exam",
        checklist_items=["winner"],
        suggested_actions=[],
        referenced_memory_ids=[],
        generated_at=NOW,
    )
    real_load = schedule_prep_service.load_prep_artifact
    calls = {"count": 0}

    def racing_load(db, sid):
        calls["count"] += 1
        if calls["count"] == 1:
            other.add(winner)
            other.commit()
            return None
        return real_load(db, sid)

    monkeypatch.setattr(schedule_prep_service, "load_prep_artifact", racing_load)
    result = ensure_prep_artifact(session, schedule, NOW)

    assert result.created is False
    assert result.artifact.checklist_items == ["winner"]
    assert session.query(PrepArtifact).count() == 1
    other.close()
    session.close()


def test_prep_worthiness():
    Session = _session()
    session = Session()
    meeting = _seed_schedule(session, title="Team sync", category="meeting")
    lunch = _seed_schedule(session, title="Lunch", category="other")
    critical = _seed_schedule(session, title="Lunch", category="other")
    critical.is_critical = True
    session.commit()

    assert is_prep_worthy(meeting, NOW) is True
    assert is_prep_worthy(lunch, NOW) is False
    assert is_prep_worthy(critical, NOW) is True
    session.close()


def test_prep_notification_lists_checklist():
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)
    artifact = maybe_generate_prep(session, schedule, NOW)

    title, message = format_prep_notification(artifact, schedule)

    assert title == "Exam prep reminder"
    assert '"Statistics midterm" starts soon.' in message
    assert "[ ] Review key notes and summaries" in message
    session.close()


def test_integrity_error_without_winner_propagates(monkeypatch):
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session)

    def failing_commit():
        raise IntegrityError("INSERT", {}, Exception("constraint"))

    monkeypatch.setattr(session, "commit", failing_commit)
    with pytest.raises(IntegrityError):
        ensure_prep_artifact(session, schedule, NOW)
    session.close()


def test_owner_lookup_failure_is_state_unavailable(monkeypatch):
    Session = _session()
    session = Session()
    schedule = _seed_schedule(session, enrichment=True)

    def broken_get(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is down"))

    monkeypatch.setattr(session, "get", broken_get)
    with pytest.raises(StateUnavailable):
        maybe_generate_prep(session, schedule, NOW, memory_service=_RecordingMemory([uuid4()]))
    session.close()
