"""Prep artifact ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID

from sentinel.db.base import Base
from sentinel.db.types import JSONBCompat, UTCDateTime


class PrepArtifact(Base):
    __tablename__ = "prep_artifacts"
    __table_args__ = (Index("ix_prep_artifacts_user_id", "user_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    schedule_id = Column(
        UUID(as_uuid=True),
        ForeignKey("schedules.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category = Column(String(length=32), nullable=False)
    checklist_items = Column(JSONBCompat, nullable=False, default=list)
    suggested_actions = Column(JSONBCompat, nullable=False, default=list)
    referenced_memory_ids = Column(JSONBCompat, nullable=False, default=list)
    generated_at = Column(UTCDateTime, nullable=False)
