"""
Discovery settings snapshot.

Settings are read once when a run is created and stored on the run, so a
resumed or recovered run keeps the threshold and limits it started with.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from django.conf import settings


@dataclass
class DiscoveryConfig:
    score_threshold: float = 0.5
    worker_concurrency: int = 4
    comparator_timeout: float = 60.0
    comparator_max_attempts: int = 3
    comparator_backoff: float = 1.0
    store_max_attempts: int = 3
    store_backoff: float = 0.5
    progress_every_pairs: int = 5
    progress_interval_ms: int = 1000
    drain_timeout: float = 30.0
    dispatch_window: int = 64
    lease_ttl: int = 300
    cancel_poll_interval: float = 2.0

    @classmethod
    def from_settings(cls, **overrides) -> 'DiscoveryConfig':
        values = {
            'score_threshold': getattr(settings, 'WEAVE_SCORE_THRESHOLD', cls.score_threshold),
            'worker_concurrency': getattr(settings, 'WEAVE_WORKER_CONCURRENCY', cls.worker_concurrency),
            'comparator_timeout': getattr(settings, 'WEAVE_COMPARATOR_TIMEOUT', cls.comparator_timeout),
            'comparator_max_attempts': getattr(settings, 'WEAVE_COMPARATOR_MAX_ATTEMPTS', cls.comparator_max_attempts),
            'comparator_backoff': getattr(settings, 'WEAVE_COMPARATOR_BACKOFF', cls.comparator_backoff),
            'store_max_attempts': getattr(settings, 'WEAVE_STORE_MAX_ATTEMPTS', cls.store_max_attempts),
            'store_backoff': getattr(settings, 'WEAVE_STORE_BACKOFF', cls.store_backoff),
            'progress_every_pairs': getattr(settings, 'WEAVE_PROGRESS_EVERY_PAIRS', cls.progress_every_pairs),
            'progress_interval_ms': getattr(settings, 'WEAVE_PROGRESS_INTERVAL_MS', cls.progress_interval_ms),
            'drain_timeout': getattr(settings, 'WEAVE_DRAIN_TIMEOUT', cls.drain_timeout),
            'dispatch_window': getattr(settings, 'WEAVE_DISPATCH_WINDOW', cls.dispatch_window),
            'lease_ttl': getattr(settings, 'WEAVE_LEASE_TTL', cls.lease_ttl),
            'cancel_poll_interval': getattr(settings, 'WEAVE_CANCEL_POLL_INTERVAL', cls.cancel_poll_interval),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values).normalized()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], **overrides) -> 'DiscoveryConfig':
        """Rebuild from a run's stored snapshot, filling gaps from settings."""
        known = {f.name for f in fields(cls)}
        stored = {k: v for k, v in (data or {}).items() if k in known}
        return cls.from_settings(**{**stored, **overrides})

    def normalized(self) -> 'DiscoveryConfig':
        self.worker_concurrency = max(1, int(self.worker_concurrency))
        self.comparator_max_attempts = max(1, int(self.comparator_max_attempts))
        self.store_max_attempts = max(1, int(self.store_max_attempts))
        self.progress_every_pairs = max(1, int(self.progress_every_pairs))
        self.dispatch_window = max(self.worker_concurrency, int(self.dispatch_window))
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
