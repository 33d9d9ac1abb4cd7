"""No-op notification provider (logs only)."""
from __future__ import annotations

import logging
from uuid import UUID

from sentinel.services.notifications.base import NotificationResult, NotificationService


logger = logging.getLogger(__name__)


class NoopNotificationService(NotificationService):
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
        logger.info(
            "Notification queued (noop) user=%s schedule=%s channel=%s title=%r",
            user_id,
            schedule_id,
            channel,
            title,
        )
        return NotificationResult(status="noop", reason="notification provider is noop")
