"""Schedule ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, ForeignKey, Index, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from sentinel.db.base import Base
from sentinel.db.types import UTCDateTime


class Schedule(Base):
    __tablename__ = "schedules"
    __table_args__ = (
        Index("ix_schedules_user_id", "user_id"),
        Index("ix_schedules_start_time", "start_time"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    # Written by upstream importers; rows may arrive without these two.
    start_time = Column(UTCDateTime, nullable=True)
    category = Column(String(length=32), nullable=True)
    is_critical = Column(Boolean, nullable=False, server_default=sa_text("false"), default=False)
    location = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
