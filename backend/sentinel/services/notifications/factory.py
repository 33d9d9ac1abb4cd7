"""Notification service factory."""
from __future__ import annotations

import logging
from functools import lru_cache

from sentinel.core.config import settings
from sentinel.services.notifications.base import NotificationService
from sentinel.services.notifications.noop import NoopNotificationService

logger = logging.getLogger(__name__)


@lru_cache
def get_notification_service() -> NotificationService:
    provider = settings.notifications_provider.lower()
    if provider != "noop":
        logger.warning("Unknown notification provider %r; falling back to noop", settings.notifications_provider)
    return NoopNotificationService()
