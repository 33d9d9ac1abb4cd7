"""Schemas for notification escalation endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DismissRequest(BaseModel):
    user_id: UUID
    schedule_id: UUID
    channel: str = Field(default="push", max_length=32)


class DismissResponse(BaseModel):
    dismissal_id: UUID
    dismissed_at: datetime
    request_id: str


class AcceptRequest(BaseModel):
    user_id: UUID
    schedule_id: UUID


class DecideRequest(BaseModel):
    user_id: UUID
    schedule_id: UUID
    now: Optional[datetime] = None


class DecisionResponse(BaseModel):
    action: Literal["send", "delay", "suppress"]
    level: int
    strategy: str
    strike_count: int
    reason: str
    channel: str
    push_allowed: bool
    important: bool
    checkin: bool
    deliver_at: Optional[datetime] = None
    suppressed_until: Optional[datetime] = None
    replayed: bool
    request_id: str


class EscalationStateResponse(BaseModel):
    user_id: UUID
    schedule_id: UUID
    strike_count: int
    level: int
    last_action: Optional[str] = None
    last_action_at: Optional[datetime] = None
    last_reason: Optional[str] = None
    suppressed_until: Optional[datetime] = None
    last_sent_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    request_id: str
