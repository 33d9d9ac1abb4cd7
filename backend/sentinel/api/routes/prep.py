"""Schedule prep endpoints."""
from __future__ import annotations

from datetime import datetime, timezone
from time import perf_counter
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sentinel.api.errors import http_error_for
from sentinel.api.schemas.prep import PrepArtifactPayload, PrepResponse, PrepRunRequest
from sentinel.db.deps import get_db
from sentinel.db.models.prep_artifact import PrepArtifact
from sentinel.db.models.schedule import Schedule
from sentinel.observability.metrics import log_metric
from sentinel.observability.tracing import trace
from sentinel.services.errors import SentinelError, StateUnavailable
from sentinel.services.memory.factory import get_memory_service
from sentinel.services.schedule_prep_service import in_prep_window, load_prep_artifact, maybe_generate_prep

router = APIRouter()


@router.post("/schedules/{schedule_id}/prep", response_model=PrepResponse, tags=["prep"])
def run_schedule_prep(
    schedule_id: UUID,
    request: Request,
    payload: PrepRunRequest,
    db: Session = Depends(get_db),
) -> PrepResponse:
    request_id = getattr(request.state, "request_id", None)
    now = payload.now or datetime.now(timezone.utc)
    schedule = _owned_schedule(db, schedule_id, payload.user_id)
    start = perf_counter()
    with trace("prep.run", metadata={"schedule_id": str(schedule_id)}, user_id=str(payload.user_id), request_id=request_id):
        try:
            artifact = maybe_generate_prep(db, schedule, now, memory_service=get_memory_service())
            in_window = in_prep_window(schedule, now)
        except SentinelError as exc:
            raise http_error_for(exc)

    log_metric("prep.run.latency_ms", (perf_counter() - start) * 1000)
    log_metric("prep.run.in_window", 1 if in_window else 0)
    return PrepResponse(
        schedule_id=schedule_id,
        in_window=in_window,
        artifact=_artifact_payload(artifact) if artifact else None,
        request_id=request_id or "",
    )


@router.get("/schedules/{schedule_id}/prep", response_model=PrepResponse, tags=["prep"])
def get_schedule_prep(
    schedule_id: UUID,
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    db: Session = Depends(get_db),
) -> PrepResponse:
    request_id = getattr(request.state, "request_id", None)
    schedule = _owned_schedule(db, schedule_id, user_id)
    try:
        artifact = load_prep_artifact(db, schedule_id)
        in_window = in_prep_window(schedule, datetime.now(timezone.utc)) if schedule.start_time else False
    except SentinelError as exc:
        raise http_error_for(exc)
    if artifact is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No prep artifact for this schedule")
    return PrepResponse(
        schedule_id=schedule_id,
        in_window=in_window,
        artifact=_artifact_payload(artifact),
        request_id=request_id or "",
    )


def _owned_schedule(db: Session, schedule_id: UUID, user_id: UUID) -> Schedule:
    try:
        schedule = db.get(Schedule, schedule_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise http_error_for(StateUnavailable(f"Could not load schedule {schedule_id}")) from exc
    if not schedule or schedule.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")
    return schedule


def _artifact_payload(artifact: PrepArtifact) -> PrepArtifactPayload:
    return PrepArtifactPayload(
        id=artifact.id,
        schedule_id=artifact.schedule_id,
        category=artifact.category,
        generated_at=artifact.generated_at,
        checklist_items=list(artifact.checklist_items or []),
        suggested_actions=list(artifact.suggested_actions or []),
        referenced_memory_ids=list(artifact.referenced_memory_ids or []),
    )
