"""
Core app for the Symploke engine.

Provides shared models, error handling, observability and health checks.
"""

# Key exports for external use
from .observability import (
    HealthChecker,
    HealthStatus,
    HealthCheckResult,
    health_checker,
)

__all__ = [
    'HealthChecker',
    'HealthStatus',
    'HealthCheckResult',
    'health_checker',
]
