"""Notification dismissal log.

Rows are only ever appended, apart from ``folded_at``, which is stamped once
when the dismissal is counted into (or discarded by) the escalation state.
"""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID

from sentinel.db.base import Base
from sentinel.db.types import UTCDateTime


class DismissalEvent(Base):
    __tablename__ = "dismissal_events"
    __table_args__ = (
        Index("ix_dismissal_events_user_schedule", "user_id", "schedule_id", "dismissed_at"),
        Index("ix_dismissal_events_unfolded", "schedule_id", "folded_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    schedule_id = Column(UUID(as_uuid=True), ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    channel = Column(String(length=32), nullable=False)
    dismissed_at = Column(UTCDateTime, nullable=False)
    folded_at = Column(UTCDateTime, nullable=True)
