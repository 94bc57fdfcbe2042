"""
Health checks for the Symploke engine.

A process-wide registry of named checks used by the /health/, /livez/ and
/readyz/ endpoints. Liveness is about the intake loop (the periodic Celery
beat heartbeat that drives recovery and scheduling), never about the
health of any individual discovery run.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health check status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    """Result of a health check."""
    name: str
    status: HealthStatus
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(dt_timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "duration_ms": self.duration_ms,
        }


class HealthChecker:
    """
    Health check registry and executor.
    """

    _instance = None
    _lock = Lock()

    def __new__(cls):
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._checks = {}
        return cls._instance

    def register(self, name: str, check_fn: Callable[[], HealthCheckResult]) -> None:
        self._checks[name] = check_fn

    def check(self, name: str) -> HealthCheckResult:
        """Run a specific health check."""
        if name not in self._checks:
            return HealthCheckResult(
                name=name,
                status=HealthStatus.UNHEALTHY,
                message=f"Unknown check: {name}",
            )

        start = time.perf_counter()
        try:
            result = self._checks[name]()
            result.duration_ms = (time.perf_counter() - start) * 1000
            return result
        except Exception as e:
            logger.warning(f"Health check {name} raised: {e}")
            return HealthCheckResult(
                name=name,
                status=HealthStatus.UNHEALTHY,
                message=str(e),
                duration_ms=(time.perf_counter() - start) * 1000,
            )

    def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        results = {}
        overall_status = HealthStatus.HEALTHY

        for name in self._checks:
            result = self.check(name)
            results[name] = result.to_dict()

            if result.status == HealthStatus.UNHEALTHY:
                overall_status = HealthStatus.UNHEALTHY
            elif result.status == HealthStatus.DEGRADED and overall_status != HealthStatus.UNHEALTHY:
                overall_status = HealthStatus.DEGRADED

        return {
            "status": overall_status.value,
            "checks": results,
            "timestamp": datetime.now(dt_timezone.utc).isoformat(),
        }

    def list_checks(self) -> List[str]:
        return list(self._checks.keys())


# Global health checker instance
health_checker = HealthChecker()


# =============================================================================
# Built-in Health Checks
# =============================================================================

def check_database() -> HealthCheckResult:
    """Check database connectivity."""
    from django.db import connection

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        return HealthCheckResult(
            name="database",
            status=HealthStatus.HEALTHY,
            message="Database connection successful",
        )
    except Exception as e:
        return HealthCheckResult(
            name="database",
            status=HealthStatus.UNHEALTHY,
            message=f"Database error: {e}",
        )


def check_cache() -> HealthCheckResult:
    """Check cache (Redis) connectivity."""
    from django.core.cache import cache

    try:
        cache.set("health_check", "ok", 10)
        value = cache.get("health_check")
    except Exception as e:
        return HealthCheckResult(
            name="cache",
            status=HealthStatus.UNHEALTHY,
            message=f"Cache error: {e}",
        )

    if value == "ok":
        return HealthCheckResult(
            name="cache",
            status=HealthStatus.HEALTHY,
            message="Cache connection successful",
        )
    return HealthCheckResult(
        name="cache",
        status=HealthStatus.DEGRADED,
        message="Cache get/set mismatch",
    )


def check_intake() -> HealthCheckResult:
    """Check that the intake loop has beaten recently."""
    from django.conf import settings
    from apps.weaves.intake import last_heartbeat_age

    max_age = getattr(settings, 'INTAKE_HEARTBEAT_MAX_AGE', 180)
    age = last_heartbeat_age()

    if age is None:
        return HealthCheckResult(
            name="intake",
            status=HealthStatus.UNHEALTHY,
            message="No intake heartbeat recorded",
        )
    if age > max_age:
        return HealthCheckResult(
            name="intake",
            status=HealthStatus.UNHEALTHY,
            message=f"Intake heartbeat is {age:.0f}s old",
            details={"age_seconds": age, "max_age_seconds": max_age},
        )
    return HealthCheckResult(
        name="intake",
        status=HealthStatus.HEALTHY,
        message="Intake loop alive",
        details={"age_seconds": age},
    )


def check_celery() -> HealthCheckResult:
    """Check Celery worker availability."""
    try:
        from config.celery import app

        inspect = app.control.inspect(timeout=1.0)
        active = inspect.active()
    except Exception as e:
        return HealthCheckResult(
            name="celery",
            status=HealthStatus.UNHEALTHY,
            message=f"Celery error: {e}",
        )

    if active:
        worker_count = len(active)
        return HealthCheckResult(
            name="celery",
            status=HealthStatus.HEALTHY,
            message=f"{worker_count} worker(s) active",
            details={"worker_count": worker_count},
        )
    return HealthCheckResult(
        name="celery",
        status=HealthStatus.DEGRADED,
        message="No active Celery workers",
    )


def register_default_checks():
    """Register default health checks."""
    health_checker.register("database", check_database)
    health_checker.register("cache", check_cache)
    health_checker.register("intake", check_intake)
    health_checker.register("celery", check_celery)
