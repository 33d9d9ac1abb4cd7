"""Map service errors onto HTTP responses."""
from __future__ import annotations

from fastapi import HTTPException, status

from sentinel.services.errors import InvalidScheduleData, ScheduleNotFound, SentinelError, StateUnavailable


def http_error_for(exc: SentinelError) -> HTTPException:
    if isinstance(exc, ScheduleNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")
    if isinstance(exc, InvalidScheduleData):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, StateUnavailable):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="State store unavailable")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
