"""
Health check aggregation - deep probe of the dispatch path.

    record_store    ping the backend the dispatcher reads users from
    push_transport  provider wired, and credentials present for FCM

The worst component status becomes the report status; /health/ready
answers 503 when that is "unhealthy".
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from sosalert.app.core.config import settings

if TYPE_CHECKING:
    from sosalert.app.alerts.channels.base import PushTransport
    from sosalert.app.alerts.record_store import RecordStore

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # serving, but not as configured for production
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    components: List[ComponentHealth] = field(default_factory=list)
    uptime_seconds: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def status(self) -> HealthStatus:
        if not self.components:
            return HealthStatus.HEALTHY
        return max((c.status for c in self.components), key=_SEVERITY.__getitem__)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.timestamp,
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


async def _timed(name: str, probe: Callable[[ComponentHealth], Awaitable[None]]) -> ComponentHealth:
    """Run one probe; an exception marks the component unhealthy."""
    comp = ComponentHealth(name=name)
    start = time.monotonic()
    try:
        await probe(comp)
    except Exception as e:
        logger.warning("Health probe %s failed: %s", name, e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_record_store(store: Optional["RecordStore"]) -> ComponentHealth:
    async def probe(comp: ComponentHealth) -> None:
        comp.details["backend"] = settings.RECORD_STORE
        if settings.RECORD_STORE.lower() == "database":
            comp.details["url"] = settings.DATABASE_URL.split("@")[-1]
        if store is None:
            comp.status = HealthStatus.DEGRADED
            comp.message = "Record store not initialised"
            return
        await store.ping()
        comp.message = "Record store reachable"

    return await _timed("record_store", probe)


async def check_push_transport(transport: Optional["PushTransport"]) -> ComponentHealth:
    async def probe(comp: ComponentHealth) -> None:
        if transport is None:
            comp.status = HealthStatus.DEGRADED
            comp.message = "Push transport not initialised"
            return
        comp.details["provider"] = transport.name
        if transport.name == "fcm":
            if not getattr(transport, "configured", False):
                comp.status = HealthStatus.UNHEALTHY
                comp.message = "FCM_CREDENTIALS_FILE not configured"
            else:
                comp.message = f"FCM project {transport.project_id or 'from service account'}"
        elif transport.name == "simulation":
            # Nothing rings in simulation; acceptable everywhere but production
            if settings.is_production:
                comp.status = HealthStatus.DEGRADED
            comp.message = "Simulated delivery"

    return await _timed("push_transport", probe)


async def run_health_check(
    store: Optional["RecordStore"] = None,
    transport: Optional["PushTransport"] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    return HealthReport(
        components=[
            await check_record_store(store),
            await check_push_transport(transport),
        ],
        uptime_seconds=time.monotonic() - _start_time,
    )
