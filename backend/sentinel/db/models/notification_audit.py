"""Audit trail of notification delivery intents."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from sentinel.db.base import Base
from sentinel.db.types import JSONBCompat, UTCDateTime


class NotificationAudit(Base):
    __tablename__ = "notification_audit"
    __table_args__ = (
        Index("ix_notification_audit_user_id", "user_id"),
        Index("ix_notification_audit_schedule_key", "schedule_id", "reminder_key"),
        Index("ix_notification_audit_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    schedule_id = Column(UUID(as_uuid=True), ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String(length=16), nullable=False)
    status = Column(String(length=16), nullable=False)
    channel = Column(String(length=16), nullable=True)
    reminder_key = Column(String(length=32), nullable=True)
    payload = Column(JSONBCompat, nullable=False, default=dict)
    reason = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)
