"""User ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, String, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from sentinel.db.base import Base
from sentinel.db.types import UTCDateTime


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    plan = Column(String(length=20), nullable=False, server_default=sa_text("'free'"))
    # Capability flag derived from the plan; prep enrichment checks only this.
    prep_enrichment_enabled = Column(Boolean, nullable=False, server_default=sa_text("false"))
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
