"""Lightweight metrics helpers."""
from __future__ import annotations

from typing import Any, Dict, Optional

from sentinel.observability import tracing


def log_metric(name: str, value: float | int, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Record a metric as a short-lived Opik trace; no-op when tracing is off."""
    payload: Dict[str, Any] = {"value": value}
    if metadata:
        payload.update({k: v for k, v in metadata.items() if v is not None})
    metric_name = f"metric:{name}"
    tracing.end_trace(tracing.start_trace(metric_name, payload), metric_name)
