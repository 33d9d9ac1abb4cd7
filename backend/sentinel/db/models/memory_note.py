"""Stored user notes served by the database memory provider."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from sentinel.db.base import Base
from sentinel.db.types import UTCDateTime


class MemoryNote(Base):
    __tablename__ = "memory_notes"
    __table_args__ = (Index("ix_memory_notes_user_created", "user_id", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category = Column(String(length=32), nullable=True)
    body = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
