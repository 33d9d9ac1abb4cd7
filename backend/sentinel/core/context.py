"""Per-request and per-job-run context utilities."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator
from uuid import uuid4

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
job_run_id_ctx_var: ContextVar[str | None] = ContextVar("job_run_id", default=None)


def get_request_id() -> str | None:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def get_job_run_id() -> str | None:
    return job_run_id_ctx_var.get()


def get_correlation_id() -> str | None:
    """Request id inside HTTP handlers, job-run id inside scheduler cycles."""
    return get_request_id() or get_job_run_id()


@contextmanager
def job_run_scope(prefix: str = "cycle") -> Iterator[str]:
    """Bind a fresh job-run id for the duration of a scheduler cycle."""
    run_id = f"{prefix}-{uuid4().hex[:12]}"
    token = job_run_id_ctx_var.set(run_id)
    try:
        yield run_id
    finally:
        job_run_id_ctx_var.reset(token)
