"""Opik SDK client lifecycle."""
from __future__ import annotations

import logging
from threading import Lock
from typing import Optional

from sentinel.core.config import settings

try:
    from opik import Opik
except ImportError:  # pragma: no cover - opik is an optional extra
    Opik = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class OpikClientHolder:
    """Owns the process-wide Opik client; initialization is attempted once."""

    def __init__(self) -> None:
        self._client: Optional["Opik"] = None
        self._attempted = False
        self._lock = Lock()

    @property
    def client(self) -> Optional["Opik"]:
        return self._client

    def init(self) -> Optional["Opik"]:
        with self._lock:
            if self._attempted:
                return self._client
            self._attempted = True
            self._client = self._build()
        return self._client

    def reset(self) -> None:
        with self._lock:
            self._client = None
            self._attempted = False

    def _build(self) -> Optional["Opik"]:
        if Opik is None or not settings.opik_enabled:
            return None
        if not settings.opik_api_key:
            logger.warning("OPIK_ENABLED is true but OPIK_API_KEY is missing; tracing stays off.")
            return None
        try:
            client = Opik(project_name=settings.opik_project, api_key=settings.opik_api_key)
        except Exception as exc:  # pragma: no cover - third-party init failure
            logger.warning("Failed to initialize Opik, tracing will be disabled: %s", exc)
            return None
        logger.info("Opik enabled (project=%s).", settings.opik_project)
        return client


_holder = OpikClientHolder()


def init_opik() -> Optional["Opik"]:
    """Initialize the Opik client once and return it."""
    return _holder.init()


def get_opik_client() -> Optional["Opik"]:
    """Return the cached Opik client, initializing lazily on first use."""
    return _holder.client or _holder.init()


def reset_opik() -> None:
    """Forget the cached client so the next call re-reads settings."""
    _holder.reset()
