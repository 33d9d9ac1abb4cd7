"""Operational endpoints for the scheduler cycle."""
from __future__ import annotations

from dataclasses import asdict
from time import perf_counter

from fastapi import APIRouter, HTTPException, Request, status

from sentinel.api.schemas.jobs import JobCounts, JobRunRequest, JobRunResponse
from sentinel.core.config import settings
from sentinel.observability.metrics import log_metric
from sentinel.observability.tracing import trace
from sentinel.services.scheduler_lifecycle import get_scheduler_lifecycle

router = APIRouter()


@router.get("/jobs", tags=["jobs"])
def get_jobs_config(request: Request) -> dict:
    request_id = getattr(request.state, "request_id", None)
    lifecycle = get_scheduler_lifecycle()
    with trace("jobs.config", metadata={"request_id": request_id}, request_id=request_id):
        data = {
            "scheduler_enabled": settings.scheduler_enabled,
            "scheduler_started": lifecycle.started,
            "cycle_running": lifecycle.running_cycle,
            "schedule": {
                "timezone": settings.scheduler_timezone,
                "interval_seconds": settings.scheduler_interval_seconds,
            },
        }
    return {**data, "request_id": request_id or ""}


@router.post("/jobs/run-now", response_model=JobRunResponse, tags=["jobs"])
def run_job_now(request: Request, payload: JobRunRequest) -> JobRunResponse:
    if not settings.debug:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Run-now only allowed in debug mode")

    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    with trace("jobs.run_now", metadata={"request_id": request_id}, request_id=request_id):
        result = get_scheduler_lifecycle().run_cycle(payload.now)
    if result is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A cycle is already running")

    log_metric("jobs.run_now.success", 1)
    log_metric("jobs.run_now.latency_ms", (perf_counter() - start) * 1000)
    return JobRunResponse(
        run_id=result.run_id,
        unconfirmed_intents=result.unconfirmed_intents,
        prep=JobCounts(**asdict(result.prep)),
        notifications=JobCounts(**asdict(result.notifications)),
        request_id=request_id or "",
    )
