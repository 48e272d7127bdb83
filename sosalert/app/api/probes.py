"""
Service probes: root banner, deep health, liveness and readiness.

The deep probes inspect whatever dispatcher the app currently holds in
`app.state.dispatcher`; before startup they report it as not initialised.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from sosalert.app.core.config import settings
from sosalert.app.core.health import HealthReport, HealthStatus, run_health_check

router = APIRouter()


async def _current_report(request: Request) -> HealthReport:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        return await run_health_check()
    return await run_health_check(dispatcher.store, dispatcher.transport)


@router.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "endpoints": ["/api/v1/alerts/trigger", "/api/v1/alerts/health"],
        "docs": "/docs",
    }


@router.get("/health", tags=["health"])
async def health(request: Request):
    report = await _current_report(request)
    return report.to_dict()


@router.get("/health/live", tags=["health"])
async def liveness():
    """Process is up; says nothing about dependencies."""
    return {"status": "alive"}


@router.get("/health/ready", tags=["health"])
async def readiness(request: Request):
    """503 while any component is unhealthy (e.g. FCM credentials missing)."""
    report = await _current_report(request)
    status_code = 503 if report.status == HealthStatus.UNHEALTHY else 200
    return JSONResponse(status_code=status_code, content=report.to_dict())
