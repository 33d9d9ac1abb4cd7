"""Schemas for schedule prep endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class PrepRunRequest(BaseModel):
    user_id: UUID
    now: Optional[datetime] = None


class PrepArtifactPayload(BaseModel):
    id: UUID
    schedule_id: UUID
    category: str
    generated_at: datetime
    checklist_items: List[str]
    suggested_actions: List[str]
    referenced_memory_ids: List[str]


class PrepResponse(BaseModel):
    schedule_id: UUID
    in_window: bool
    artifact: Optional[PrepArtifactPayload] = None
    request_id: str
