"""Schedule importance classification."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, Iterable, List, Optional

from sentinel.core.config import settings
from sentinel.core.policy import ImportancePolicy, ScheduleCategory
from sentinel.services.errors import InvalidScheduleData


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_schedule(schedule) -> None:
    """Raise ``InvalidScheduleData`` when start time or category is missing."""
    missing: List[str] = []
    if getattr(schedule, "start_time", None) is None:
        missing.append("start_time")
    category = getattr(schedule, "category", None)
    if category is None or (isinstance(category, str) and not category.strip()):
        missing.append("category")
    if missing:
        raise InvalidScheduleData(getattr(schedule, "id", None), missing)


def minutes_until_start(schedule, now: datetime) -> float:
    return (as_utc(schedule.start_time) - as_utc(now)).total_seconds() / 60


def normalize_category(value) -> str:
    if isinstance(value, ScheduleCategory):
        return value.value
    return str(value).strip().lower()


def is_important_schedule(schedule, now: datetime, policy: Optional[ImportancePolicy] = None) -> bool:
    """
    Decide whether a schedule is important at ``now``.

    A schedule is important when it is flagged critical, when it starts within
    the imminent threshold, or when it is high-stakes and starts within the
    urgency threshold. Schedules that already started only qualify through the
    critical flag.
    """
    validate_schedule(schedule)
    policy = policy or settings.policy.importance

    if bool(getattr(schedule, "is_critical", False)):
        return True

    remaining = minutes_until_start(schedule, now)
    if remaining < 0:
        return False
    if remaining <= policy.imminent_threshold_minutes:
        return True

    high_stakes = {normalize_category(c) for c in policy.high_stakes_categories}
    return remaining <= policy.urgency_threshold_minutes and normalize_category(schedule.category) in high_stakes


def infer_category(title: str | None, keywords: Dict[str, Iterable[str]]) -> str:
    """Guess a category from a free-text title; ``other`` when nothing matches.

    Keywords match whole words only. The first category in ``keywords`` with a
    match wins.
    """
    text = (title or "").lower()
    for category, words in keywords.items():
        if any(_keyword_pattern(word).search(text) for word in words):
            return category
    return ScheduleCategory.OTHER.value


@lru_cache(maxsize=256)
def _keyword_pattern(word: str) -> "re.Pattern[str]":
    return re.compile(rf"(?<!\w){re.escape(word.lower())}(?!\w)")
