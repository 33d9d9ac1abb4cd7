"""Memory retrieval service interface."""
from __future__ import annotations

from datetime import datetime
from typing import Iterator
from uuid import UUID


class MemoryRetrievalService:
    """Base interface for providers of related past notes."""

    def related_note_ids(
        self,
        *,
        user_id: UUID,
        category: str,
        since: datetime,
        until: datetime,
    ) -> Iterator[UUID]:
        """Yield ids of notes related to ``category`` written between ``since`` and ``until``."""
        raise NotImplementedError
