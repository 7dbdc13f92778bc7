"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Document store reachability
    • Cache connectivity (Redis), when distributed dedup is enabled
    • Push provider configuration
    • Scheduler state

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from crowdwatch.app.core.config import settings

if TYPE_CHECKING:
    from crowdwatch.app.services import ServiceContainer

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


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
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_store(services: "ServiceContainer") -> ComponentHealth:
    """Check the document store answers a query."""
    comp = ComponentHealth(name="store")
    start = time.monotonic()
    try:
        await services.store.ping()
        comp.message = "Store reachable"
        comp.details = {"backend": type(services.store).__name__}
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_redis() -> ComponentHealth:
    """Check Redis connectivity; alerting still works without it."""
    from crowdwatch.app.core.cache import cache_ping

    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    url = settings.REDIS_URL.split("@")[-1] if "@" in settings.REDIS_URL else settings.REDIS_URL
    comp.details = {"url": url}
    if await cache_ping():
        comp.message = "Cache available"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Redis unreachable; dedup falls back to store checks"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_push(services: "ServiceContainer") -> ComponentHealth:
    """Check the push provider has what it needs to send."""
    comp = ComponentHealth(name="push")
    comp.details = {"provider": services.push.name}
    if services.push.is_configured:
        comp.message = "Push provider configured"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Push provider missing credentials; topic sends will fail"
    return comp


async def check_scheduler(services: "ServiceContainer") -> ComponentHealth:
    comp = ComponentHealth(name="scheduler")
    status = services.scheduler.status()
    comp.details = {
        job["name"]: {"status": job["status"], "failures": job["failures"]}
        for job in status["jobs"]
    }
    if not status["running"]:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Scheduler not running"
    else:
        comp.message = "Scheduler running"
    return comp


async def run_health_check(services: "ServiceContainer") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [check_store(services), check_push(services), check_scheduler(services)]
    if settings.ALERT_DEDUP_DISTRIBUTED:
        checks.append(check_redis())

    # Run all checks
    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
