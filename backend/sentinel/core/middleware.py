"""Custom FastAPI middleware."""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from sentinel.core.context import request_id_ctx_var
from sentinel.observability.metrics import log_metric

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the request and report its latency."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:  # type: ignore[override]
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_ctx_var.set(request_id)
        start = perf_counter()

        try:
            response = await call_next(request)
            latency_ms = (perf_counter() - start) * 1000
            logger.debug(
                "%s %s -> %s (%.1f ms)",
                request.method,
                request.url.path,
                response.status_code,
                latency_ms,
            )
        finally:
            request_id_ctx_var.reset(token)

        log_metric("http.latency_ms", latency_ms, metadata={"path": request.url.path, "status": response.status_code})
        response.headers["X-Request-Id"] = request_id
        return response
