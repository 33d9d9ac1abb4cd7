"""Notification escalation routes."""
from __future__ import annotations

from datetime import datetime, timezone
from time import perf_counter
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from sentinel.api.errors import http_error_for
from sentinel.api.schemas.notifications import (
    AcceptRequest,
    DecideRequest,
    DecisionResponse,
    DismissRequest,
    DismissResponse,
    EscalationStateResponse,
)
from sentinel.core.config import settings
from sentinel.db.deps import get_db
from sentinel.observability.metrics import log_metric
from sentinel.observability.tracing import trace
from sentinel.services.errors import SentinelError
from sentinel.services.escalation_service import (
    EscalationDecision,
    decide,
    load_state,
    record_acceptance,
    record_dismissal,
)


router = APIRouter()


@router.get("/notifications/config", tags=["notifications"])
def get_notifications_config(request: Request) -> dict:
    request_id = getattr(request.state, "request_id", None)
    with trace(
        "notifications.config",
        metadata={"provider": settings.notifications_provider},
        request_id=request_id,
    ):
        policy = settings.policy
        return {
            "enabled": settings.notifications_enabled,
            "provider": settings.notifications_provider,
            "escalation_levels": [level.model_dump() for level in policy.escalation.levels],
            "importance": policy.importance.model_dump(mode="json"),
            "request_id": request_id or "",
        }


@router.post("/notifications/dismiss", response_model=DismissResponse, tags=["notifications"])
def dismiss_notification(
    request: Request,
    payload: DismissRequest,
    db: Session = Depends(get_db),
) -> DismissResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace(
        "notifications.dismiss",
        metadata={"schedule_id": str(payload.schedule_id), "channel": payload.channel},
        user_id=str(payload.user_id),
        request_id=request_id,
    ):
        try:
            event = record_dismissal(
                db,
                payload.user_id,
                payload.schedule_id,
                channel=payload.channel,
                now=datetime.now(timezone.utc),
            )
        except SentinelError as exc:
            raise http_error_for(exc)
    return DismissResponse(dismissal_id=event.id, dismissed_at=event.dismissed_at, request_id=request_id or "")


@router.post("/notifications/accept", response_model=EscalationStateResponse, tags=["notifications"])
def accept_notification(
    request: Request,
    payload: AcceptRequest,
    db: Session = Depends(get_db),
) -> EscalationStateResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace(
        "notifications.accept",
        metadata={"schedule_id": str(payload.schedule_id)},
        user_id=str(payload.user_id),
        request_id=request_id,
    ):
        try:
            state = record_acceptance(db, payload.user_id, payload.schedule_id, datetime.now(timezone.utc))
        except SentinelError as exc:
            raise http_error_for(exc)
    log_metric("notifications.accept.success", 1)
    return _state_response(state, request_id)


@router.post("/notifications/decide", response_model=DecisionResponse, tags=["notifications"])
def decide_notification(
    request: Request,
    payload: DecideRequest,
    db: Session = Depends(get_db),
) -> DecisionResponse:
    request_id = getattr(request.state, "request_id", None)
    now = payload.now or datetime.now(timezone.utc)
    start = perf_counter()
    with trace(
        "notifications.decide",
        metadata={"schedule_id": str(payload.schedule_id)},
        user_id=str(payload.user_id),
        request_id=request_id,
    ):
        try:
            decision = decide(db, payload.user_id, payload.schedule_id, now)
        except SentinelError as exc:
            log_metric("notifications.decide.error", 1, metadata={"error": type(exc).__name__})
            raise http_error_for(exc)

    log_metric("notifications.decide.latency_ms", (perf_counter() - start) * 1000)
    return _decision_response(decision, request_id)


@router.get("/notifications/state", response_model=EscalationStateResponse, tags=["notifications"])
def get_escalation_state(
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    schedule_id: UUID = Query(..., description="Schedule ID"),
    db: Session = Depends(get_db),
) -> EscalationStateResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace("notifications.state", metadata={"schedule_id": str(schedule_id)}, user_id=str(user_id), request_id=request_id):
        try:
            state = load_state(db, user_id, schedule_id)
        except SentinelError as exc:
            raise http_error_for(exc)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No escalation state for this schedule")
    return _state_response(state, request_id)


def _decision_response(decision: EscalationDecision, request_id: str | None) -> DecisionResponse:
    return DecisionResponse(
        action=decision.action.value,
        level=decision.level,
        strategy=decision.strategy,
        strike_count=decision.strike_count,
        reason=decision.reason,
        channel=decision.channel,
        push_allowed=decision.push_allowed,
        important=decision.important,
        checkin=decision.checkin,
        deliver_at=decision.deliver_at,
        suppressed_until=decision.suppressed_until,
        replayed=decision.replayed,
        request_id=request_id or "",
    )


def _state_response(state, request_id: str | None) -> EscalationStateResponse:
    return EscalationStateResponse(
        user_id=state.user_id,
        schedule_id=state.schedule_id,
        strike_count=state.strike_count,
        level=state.level,
        last_action=state.last_action,
        last_action_at=state.last_action_at,
        last_reason=state.last_reason,
        suppressed_until=state.suppressed_until,
        last_sent_at=state.last_sent_at,
        expired_at=state.expired_at,
        request_id=request_id or "",
    )
