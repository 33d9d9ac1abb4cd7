"""Schemas for user account endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, field_validator


class PlanUpdateRequest(BaseModel):
    plan: Literal["free", "pro", "max"]

    @field_validator("plan", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return value.lower() if isinstance(value, str) else value


class UserResponse(BaseModel):
    id: UUID
    plan: str
    prep_enrichment_enabled: bool
    created_at: datetime | None = None
    request_id: str
