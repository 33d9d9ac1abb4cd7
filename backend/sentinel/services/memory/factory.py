"""Memory retrieval service factory."""
from __future__ import annotations

import logging
from functools import lru_cache

from sentinel.core.config import settings
from sentinel.services.memory.base import MemoryRetrievalService
from sentinel.services.memory.noop import NoopMemoryRetrievalService

logger = logging.getLogger(__name__)


@lru_cache
def get_memory_service() -> MemoryRetrievalService:
    provider = settings.memory_provider.lower()
    if provider == "database":
        from sentinel.db.session import SessionLocal
        from sentinel.services.memory.database import DatabaseMemoryRetrievalService

        return DatabaseMemoryRetrievalService(SessionLocal)
    if provider != "noop":
        logger.warning("Unknown memory provider %r; falling back to noop", settings.memory_provider)
    return NoopMemoryRetrievalService()
