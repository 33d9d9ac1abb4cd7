"""Per-user, per-schedule escalation state."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from sentinel.db.base import Base
from sentinel.db.types import JSONBCompat, UTCDateTime


class EscalationState(Base):
    __tablename__ = "escalation_states"
    __table_args__ = (UniqueConstraint("user_id", "schedule_id", name="uq_escalation_states_user_schedule"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    schedule_id = Column(UUID(as_uuid=True), ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False)
    strike_count = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=0)
    last_action = Column(String(length=16), nullable=True)
    last_action_at = Column(UTCDateTime, nullable=True)
    last_reason = Column(Text, nullable=True)
    # Serialized copy of the last decision, replayed for identical calls.
    last_decision = Column(JSONBCompat, nullable=True)
    deliver_at = Column(UTCDateTime, nullable=True)
    suppressed_until = Column(UTCDateTime, nullable=True)
    # Dismissals stamped at or before the last streak reset never become strikes.
    streak_reset_at = Column(UTCDateTime, nullable=True)
    last_sent_at = Column(UTCDateTime, nullable=True)
    expired_at = Column(UTCDateTime, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(UTCDateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}
