"""Notification service interface."""
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass
class NotificationResult:
    status: str
    reason: str

    @property
    def delivered(self) -> bool:
        return self.status != "failed"


class NotificationService:
    """Base interface for notification providers.

    Providers decide *how* to deliver; whether and when is decided upstream.
    """

    def send(
        self,
        *,
        user_id: UUID,
        schedule_id: UUID,
        title: str,
        message: str,
        channel: str,
        request_id: str | None,
    ) -> NotificationResult:
        raise NotImplementedError
