"""Schemas for job operations endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class JobRunRequest(BaseModel):
    now: Optional[datetime] = None


class JobCounts(BaseModel):
    users_processed: int
    schedules_processed: int
    notifications_sent: int
    withheld: int
    artifacts_created: int
    failures: int


class JobRunResponse(BaseModel):
    run_id: str
    unconfirmed_intents: int
    prep: JobCounts
    notifications: JobCounts
    request_id: str
