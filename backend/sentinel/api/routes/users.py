"""User account endpoints."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sentinel.api.errors import http_error_for
from sentinel.api.schemas.users import PlanUpdateRequest, UserResponse
from sentinel.db.deps import get_db
from sentinel.db.models.user import User
from sentinel.observability.metrics import log_metric
from sentinel.observability.tracing import trace
from sentinel.services.errors import SentinelError
from sentinel.services.user_service import set_user_plan

router = APIRouter()


@router.put("/users/{user_id}/plan", response_model=UserResponse, tags=["users"])
def update_user_plan(
    user_id: UUID,
    request: Request,
    payload: PlanUpdateRequest,
    db: Session = Depends(get_db),
) -> UserResponse:
    """Set the plan for a user, creating the account if it is new."""
    request_id = getattr(request.state, "request_id", None)
    with trace("users.plan_update", metadata={"plan": payload.plan}, user_id=str(user_id), request_id=request_id):
        try:
            user = set_user_plan(db, user_id, payload.plan)
        except SentinelError as exc:
            raise http_error_for(exc)
    log_metric("users.plan_update", 1, metadata={"plan": user.plan})
    return _user_response(user, request_id)


@router.get("/users/{user_id}", response_model=UserResponse, tags=["users"])
def get_user(user_id: UUID, request: Request, db: Session = Depends(get_db)) -> UserResponse:
    try:
        user = db.get(User, user_id)
    except SQLAlchemyError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="User store unavailable")
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _user_response(user, getattr(request.state, "request_id", None))


def _user_response(user: User, request_id: str | None) -> UserResponse:
    return UserResponse(
        id=user.id,
        plan=user.plan,
        prep_enrichment_enabled=user.prep_enrichment_enabled,
        created_at=user.created_at,
        request_id=request_id or "",
    )
