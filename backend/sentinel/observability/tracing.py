"""Tracing utilities wrapping Opik."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from sentinel.core.context import get_correlation_id
from sentinel.observability.client import get_opik_client

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from opik.api_objects.trace.trace_client import Trace
else:  # pragma: no cover - typing helper
    Trace = object  # type: ignore[assignment]

logger = logging.getLogger(__name__)


def start_trace(name: str, metadata: Optional[Dict[str, Any]] = None) -> Optional["Trace"]:
    """Open a trace if Opik is enabled; returns ``None`` otherwise."""
    client = get_opik_client()
    if not client:
        return None
    try:
        return client.trace(name=name, metadata=metadata or None)
    except Exception as exc:  # pragma: no cover - tracing must not break callers
        logger.debug("Unable to start Opik trace %s: %s", name, exc)
        return None


def end_trace(opik_trace: Optional["Trace"], name: str) -> None:
    if not opik_trace:
        return
    try:
        opik_trace.end()
    except Exception:  # pragma: no cover
        logger.debug("Failed to close Opik trace %s cleanly", name, exc_info=True)


@contextmanager
def trace(
    name: str,
    metadata: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Iterator[Optional["Trace"]]:
    """
    Trace a block of work.

    The current request or job-run id is attached automatically. When Opik
    is disabled the context is a no-op and yields ``None``.
    """
    trace_metadata = dict(metadata or {})
    if user_id:
        trace_metadata.setdefault("user_id", str(user_id))
    correlation_id = request_id or get_correlation_id()
    if correlation_id:
        trace_metadata.setdefault("correlation_id", correlation_id)

    opik_trace = start_trace(name, trace_metadata)
    try:
        yield opik_trace
    except Exception as exc:
        if opik_trace:
            try:
                opik_trace.update(error_info={"message": str(exc), "type": type(exc).__name__})
            except Exception:  # pragma: no cover
                logger.debug("Failed to attach error info to Opik trace %s", name, exc_info=True)
        raise
    finally:
        end_trace(opik_trace, name)
