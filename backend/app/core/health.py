"""
Health check aggregation — deep health probe for the engine.

Checks:
    • Storage substrate connectivity (in-memory or Redis ping)
    • Event bus worker (alive, queue depth, failed deliveries)
    • Notification fan-out (recent degradations)

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

from backend.app.core.config import settings

if TYPE_CHECKING:
    from backend.app.alerts.alert_service import GeoAlertService

logger = logging.getLogger(__name__)

# Queue depth above which event delivery counts as lagging
_QUEUE_BACKLOG_WARN = 500


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


_start_time = time.monotonic()


async def check_storage(service: "GeoAlertService") -> ComponentHealth:
    """Ping the key-value substrate."""
    comp = ComponentHealth(name="storage")
    start = time.monotonic()
    backend = settings.STORAGE_BACKEND.lower()
    comp.details = {"backend": backend}
    if backend == "redis":
        comp.details["url"] = settings.REDIS_URL.split("@")[-1]

    if await service.kv.ping():
        comp.message = "Substrate reachable"
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Substrate ping failed"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_event_bus(service: "GeoAlertService") -> ComponentHealth:
    """Worker alive and keeping up with the queue."""
    comp = ComponentHealth(name="event_bus")
    start = time.monotonic()
    bus = service.bus
    comp.details = {
        "running": bus.is_running,
        "pending": bus.pending,
        "last_sequence": bus.last_sequence,
        "delivered": bus.delivered,
        "failed": bus.failed,
    }

    if not bus.is_running:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Worker not running; notifications will not fan out"
    elif bus.pending > _QUEUE_BACKLOG_WARN:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Delivery lagging: {bus.pending} events queued"
    else:
        comp.message = "Delivering"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_dispatcher(service: "GeoAlertService") -> ComponentHealth:
    """Report recent fan-out degradations. Never worse than DEGRADED."""
    comp = ComponentHealth(name="dispatcher")
    start = time.monotonic()
    summary = service.dispatcher.degradation_summary()
    comp.details = {
        "radius_km": service.dispatcher.radius_km,
        "degradations": summary,
    }
    failures = sum(n for reason, n in summary.items() if "manual location" not in reason)
    if failures:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"{failures} recent fan-out failure(s)"
    else:
        comp.message = "Fan-out nominal"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(service: "GeoAlertService") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_storage(service),
        check_event_bus(service),
        check_dispatcher(service),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
