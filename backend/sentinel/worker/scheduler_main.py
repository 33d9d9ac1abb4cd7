"""Dedicated APScheduler worker process."""
from __future__ import annotations

import logging
import signal
import threading

from sentinel.core.config import settings
from sentinel.core.logging import configure_logging
from sentinel.services.scheduler_lifecycle import get_scheduler_lifecycle


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    lifecycle = get_scheduler_lifecycle()

    if settings.scheduler_enabled:
        lifecycle.start()
        if settings.jobs_run_on_startup:
            logger.info("Running one cycle on startup")
            _run_cycle_once()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        lifecycle.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def _run_cycle_once() -> None:
    try:
        get_scheduler_lifecycle().run_cycle()
    except Exception:  # pragma: no cover - startup run must not kill the worker
        logger.exception("Startup cycle failed")


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
