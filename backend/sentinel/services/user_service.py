"""Helpers for working with users."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from sentinel.db.models.user import User
from sentinel.services.errors import StateUnavailable

PLANS = ("free", "pro", "max")
ENRICHMENT_PLANS = frozenset({"pro", "max"})


def prep_enrichment_for_plan(plan: str) -> bool:
    return plan.lower() in ENRICHMENT_PLANS


def get_or_create_user(db: Session, user_id: UUID, *, plan: str = "free") -> User:
    """Fetch an existing user or create a new row safely."""
    user = db.get(User, user_id)
    if user:
        return user

    user = User(id=user_id, plan=plan, prep_enrichment_enabled=prep_enrichment_for_plan(plan))
    db.add(user)
    try:
        db.flush()
        return user
    except IntegrityError:
        db.rollback()
        existing = db.get(User, user_id)
        if existing:
            return existing
        raise


def set_user_plan(db: Session, user_id: UUID, plan: str) -> User:
    """Change a user's plan, creating the account on first sight.

    The capability flags the plan grants are recomputed in the same commit.
    """
    plan = plan.lower()
    if plan not in PLANS:
        raise ValueError(f"Unknown plan {plan!r}")
    try:
        user = get_or_create_user(db, user_id, plan=plan)
        user.plan = plan
        user.prep_enrichment_enabled = prep_enrichment_for_plan(plan)
        db.add(user)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StateUnavailable(f"Could not update plan for user {user_id}") from exc
    db.refresh(user)
    return user
