"""Notification policy: importance thresholds, escalation table, prep window."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


class ScheduleCategory(str, Enum):
    MEETING = "meeting"
    INTERVIEW = "interview"
    PRESENTATION = "presentation"
    EXAM = "exam"
    RESERVATION = "reservation"
    OTHER = "other"


class EscalationAction(str, Enum):
    SEND = "send"
    DELAY = "delay"
    SUPPRESS = "suppress"


class ImportancePolicy(BaseModel):
    urgency_threshold_minutes: int = Field(default=24 * 60, ge=0)
    imminent_threshold_minutes: int = Field(default=30, ge=0)
    high_stakes_categories: List[ScheduleCategory] = Field(
        default_factory=lambda: [
            ScheduleCategory.EXAM,
            ScheduleCategory.INTERVIEW,
            ScheduleCategory.PRESENTATION,
        ]
    )

    @model_validator(mode="after")
    def _imminent_not_longer_than_urgency(self) -> "ImportancePolicy":
        if self.imminent_threshold_minutes > self.urgency_threshold_minutes:
            raise ValueError("imminent_threshold_minutes must not exceed urgency_threshold_minutes")
        return self


class EscalationLevel(BaseModel):
    """One step of the graduated strategy, entered once strikes reach ``min_strikes``."""

    strategy: str
    min_strikes: int = Field(ge=0)
    suppress_minutes: int = Field(default=0, ge=0)
    resend_interval_minutes: int = Field(default=0, ge=0)
    push_allowed: bool = True
    shorten_message: bool = False
    checkin_after_suppression: bool = False
    reset_after_suppression: bool = False


DEFAULT_ESCALATION_LEVELS: List[EscalationLevel] = [
    EscalationLevel(strategy="deliver", min_strikes=0),
    EscalationLevel(strategy="adapt_format", min_strikes=1, shorten_message=True),
    EscalationLevel(
        strategy="reduce_frequency",
        min_strikes=2,
        resend_interval_minutes=24 * 60,
        shorten_message=True,
    ),
    EscalationLevel(
        strategy="change_channel",
        min_strikes=3,
        resend_interval_minutes=24 * 60,
        push_allowed=False,
        shorten_message=True,
    ),
    EscalationLevel(
        strategy="pause_with_checkin",
        min_strikes=4,
        suppress_minutes=5 * 24 * 60,
        push_allowed=False,
        checkin_after_suppression=True,
    ),
    EscalationLevel(
        strategy="full_suppress",
        min_strikes=5,
        suppress_minutes=14 * 24 * 60,
        push_allowed=False,
        reset_after_suppression=True,
    ),
]


class EscalationPolicy(BaseModel):
    levels: List[EscalationLevel] = Field(default_factory=lambda: [lvl.model_copy() for lvl in DEFAULT_ESCALATION_LEVELS])
    max_conflict_retries: int = Field(default=3, ge=1)
    short_message_length: int = Field(default=50, ge=4)
    checkin_title: str = "Notification settings check"
    checkin_message: str = "Do you still want reminders like this? You can change it in settings."

    @field_validator("levels")
    @classmethod
    def _levels_are_monotonic(cls, levels: List[EscalationLevel]) -> List[EscalationLevel]:
        if not levels:
            raise ValueError("at least one escalation level is required")
        if levels[0].min_strikes != 0:
            raise ValueError("the first escalation level must start at 0 strikes")
        for previous, current in zip(levels, levels[1:]):
            if current.min_strikes <= previous.min_strikes:
                raise ValueError("escalation levels must have strictly increasing min_strikes")
            if current.suppress_minutes < previous.suppress_minutes:
                raise ValueError("suppress_minutes must not decrease as strikes increase")
        return levels

    def level_for(self, strike_count: int) -> Tuple[int, EscalationLevel]:
        """Return ``(index, level)`` for the highest level whose threshold is reached."""
        index = 0
        for idx, level in enumerate(self.levels):
            if strike_count >= level.min_strikes:
                index = idx
        return index, self.levels[index]


DEFAULT_CHECKLISTS: Dict[str, List[str]] = {
    ScheduleCategory.MEETING.value: [
        "Review the agenda and meeting material",
        "Check the attendee list",
        "Charge laptop or tablet",
        "Confirm the room or video link",
        "Summarize your key updates in three lines",
    ],
    ScheduleCategory.INTERVIEW.value: [
        "Final review of resume and portfolio",
        "Practice your introduction (1 and 3 minute versions)",
        "Read recent news about the company and role",
        "Check your outfit",
        "Confirm the route and travel time",
        "Prepare three questions for the interviewer",
    ],
    ScheduleCategory.PRESENTATION.value: [
        "Final pass over the slides (typos, flow)",
        "Rehearse at least once",
        "Test the remote or pointer",
        "Check projector or screen sharing",
        "Write down the three key messages",
        "Prepare answers to likely questions",
    ],
    ScheduleCategory.EXAM.value: [
        "Review key notes and summaries",
        "Pack pens, ID and calculator",
        "Confirm the exam location and route",
        "Bring water and a snack",
        "Check the exam time and rules",
    ],
    ScheduleCategory.RESERVATION.value: [
        "Confirm the reservation time and place",
        "Check required documents",
        "Confirm the route and travel time",
        "Note anything you need to tell them in advance",
    ],
}

DEFAULT_GENERIC_CHECKLIST: List[str] = [
    "Confirm the time and place",
    "Check what you need to bring",
    "Review related material",
]

DEFAULT_SUGGESTED_ACTIONS: Dict[str, List[str]] = {
    ScheduleCategory.MEETING.value: ["Draft the meeting agenda", "Send attendees a reminder"],
    ScheduleCategory.INTERVIEW.value: ["Record your introduction and listen back", "Search recent company news"],
    ScheduleCategory.PRESENTATION.value: ["Set a presentation timer", "Prepare keyword notes"],
    ScheduleCategory.EXAM.value: ["Review your mistake notes", "Look up exam tips"],
    ScheduleCategory.RESERVATION.value: ["Check the route on a map"],
}

DEFAULT_GENERIC_ACTIONS: List[str] = ["Review related material"]

# Checked in order; high-stakes categories come first so "final review" is an exam.
DEFAULT_CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    ScheduleCategory.EXAM.value: ["exam", "test", "quiz", "midterm", "final", "certification"],
    ScheduleCategory.INTERVIEW.value: ["interview", "recruit", "hiring"],
    ScheduleCategory.PRESENTATION.value: ["presentation", "pitch", "seminar", "talk", "lecture", "workshop", "demo"],
    ScheduleCategory.RESERVATION.value: ["reservation", "appointment", "booking", "clinic", "dentist", "doctor"],
    ScheduleCategory.MEETING.value: ["meeting", "sync", "standup", "briefing", "1on1", "1:1", "review"],
}


class PrepPolicy(BaseModel):
    window_start_minutes: int = Field(default=180, ge=0)
    window_end_minutes: int = Field(default=120, ge=0)
    checklists: Dict[str, List[str]] = Field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_CHECKLISTS.items()})
    generic_checklist: List[str] = Field(default_factory=lambda: list(DEFAULT_GENERIC_CHECKLIST))
    suggested_actions: Dict[str, List[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_SUGGESTED_ACTIONS.items()}
    )
    generic_actions: List[str] = Field(default_factory=lambda: list(DEFAULT_GENERIC_ACTIONS))
    category_keywords: Dict[str, List[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_CATEGORY_KEYWORDS.items()}
    )
    max_memory_refs: int = Field(default=5, ge=0)
    memory_lookback_days: int = Field(default=90, ge=1)

    @model_validator(mode="after")
    def _window_is_ordered(self) -> "PrepPolicy":
        if self.window_start_minutes <= self.window_end_minutes:
            raise ValueError("window_start_minutes must be greater than window_end_minutes")
        if not self.generic_checklist:
            raise ValueError("generic_checklist must not be empty")
        return self


class ReminderPolicy(BaseModel):
    offsets_minutes: List[int] = Field(default_factory=lambda: [24 * 60, 180, 60, 20])
    lookahead_minutes: int = Field(default=24 * 60, ge=1)
    intent_stale_after_minutes: int = Field(default=30, ge=1)

    @field_validator("offsets_minutes")
    @classmethod
    def _offsets_positive(cls, offsets: List[int]) -> List[int]:
        if any(offset <= 0 for offset in offsets):
            raise ValueError("reminder offsets must be positive")
        return sorted(set(offsets), reverse=True)


class NotificationPolicy(BaseModel):
    importance: ImportancePolicy = Field(default_factory=ImportancePolicy)
    escalation: EscalationPolicy = Field(default_factory=EscalationPolicy)
    prep: PrepPolicy = Field(default_factory=PrepPolicy)
    reminders: ReminderPolicy = Field(default_factory=ReminderPolicy)
