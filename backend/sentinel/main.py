"""Main FastAPI application for the Schedule Sentinel backend."""
from fastapi import FastAPI, Request

from sentinel.api.routes.jobs import router as jobs_router
from sentinel.api.routes.notifications import router as notifications_router
from sentinel.api.routes.prep import router as prep_router
from sentinel.api.routes.users import router as users_router
from sentinel.core.config import settings
from sentinel.core.logging import configure_logging
from sentinel.core.middleware import RequestIDMiddleware
from sentinel.observability.client import init_opik
from sentinel.observability.tracing import trace
from sentinel.services.scheduler_lifecycle import get_scheduler_lifecycle

configure_logging(log_level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(notifications_router)
app.include_router(prep_router)
app.include_router(jobs_router)
app.include_router(users_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    init_opik()


@app.on_event("startup")
async def startup_scheduler() -> None:
    """Run the cycle in-process when no dedicated worker is deployed."""
    if settings.scheduler_enabled and settings.scheduler_embedded:
        get_scheduler_lifecycle().start()


@app.on_event("shutdown")
async def shutdown_scheduler() -> None:
    get_scheduler_lifecycle().shutdown(wait=False)


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
