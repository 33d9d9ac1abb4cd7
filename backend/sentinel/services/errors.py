"""Errors surfaced by the notification core."""
from __future__ import annotations


class SentinelError(Exception):
    """Base class for notification-core failures."""


class InvalidScheduleData(SentinelError):
    """A schedule record lacks the fields needed to classify it."""

    def __init__(self, schedule_id, missing: list[str]):
        self.schedule_id = schedule_id
        self.missing = missing
        super().__init__(f"Schedule {schedule_id} is missing required fields: {', '.join(missing)}")


class StateUnavailable(SentinelError):
    """The escalation-state store could not be read or written."""


class ScheduleNotFound(SentinelError, LookupError):
    """No schedule with the given id belongs to the given user."""
