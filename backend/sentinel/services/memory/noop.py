"""Memory provider that never finds anything."""
from __future__ import annotations

from datetime import datetime
from typing import Iterator
from uuid import UUID

from sentinel.services.memory.base import MemoryRetrievalService


class NoopMemoryRetrievalService(MemoryRetrievalService):
    def related_note_ids(
        self,
        *,
        user_id: UUID,
        category: str,
        since: datetime,
        until: datetime,
    ) -> Iterator[UUID]:
        return iter(())
