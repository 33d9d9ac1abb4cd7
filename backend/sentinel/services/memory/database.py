"""Memory provider backed by the ``memory_notes`` table."""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterator
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from sentinel.db.models.memory_note import MemoryNote
from sentinel.services.memory.base import MemoryRetrievalService


class DatabaseMemoryRetrievalService(MemoryRetrievalService):
    """Streams note ids newest first; callers decide how many to consume."""

    def __init__(self, session_factory: Callable[[], Session], *, batch_size: int = 50):
        self._session_factory = session_factory
        self._batch_size = batch_size

    def related_note_ids(
        self,
        *,
        user_id: UUID,
        category: str,
        since: datetime,
        until: datetime,
    ) -> Iterator[UUID]:
        session = self._session_factory()
        try:
            query = (
                session.query(MemoryNote.id)
                .filter(
                    MemoryNote.user_id == user_id,
                    MemoryNote.created_at >= since,
                    MemoryNote.created_at <= until,
                    or_(MemoryNote.category == category, MemoryNote.category.is_(None)),
                )
                .order_by(MemoryNote.created_at.desc())
                .yield_per(self._batch_size)
            )
            for (note_id,) in query:
                yield note_id
        finally:
            session.close()
