"""
Progress publishing for discovery runs.

Snapshots go to the channel `plexus-<plexus_id>` as JSON. Publishing is
best-effort: a failure is logged and counted, never raised into the
orchestrator. Subscribers may see snapshots out of order or duplicated and
should keep the one with the larger counters (`ProgressSnapshot.supersedes`).

Events:
    weave:started, weave:progress, weave:completed, weave:failed, weave:cancelled
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Iterator, Optional, Tuple

import redis
from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

from apps.core import metrics

logger = logging.getLogger(__name__)

EVENT_STARTED = 'weave:started'
EVENT_PROGRESS = 'weave:progress'
EVENT_COMPLETED = 'weave:completed'
EVENT_FAILED = 'weave:failed'
EVENT_CANCELLED = 'weave:cancelled'

TERMINAL_EVENTS = (EVENT_COMPLETED, EVENT_FAILED, EVENT_CANCELLED)


def channel_name(plexus_id) -> str:
    return f"plexus-{plexus_id}"


@dataclass
class ProgressSnapshot:
    run_id: str
    plexus_id: str
    status: str
    repo_pairs_checked: int
    repo_pairs_total: int
    weaves_found: int
    pairs_skipped: int = 0

    @property
    def progress_percent(self) -> float:
        return round(100 * self.repo_pairs_checked / max(self.repo_pairs_total, 1), 2)

    @property
    def is_terminal(self) -> bool:
        return self.status in ('completed', 'failed', 'cancelled')

    @classmethod
    def from_run(cls, run) -> 'ProgressSnapshot':
        return cls(
            run_id=str(run.id),
            plexus_id=str(run.plexus_id),
            status=run.status,
            repo_pairs_checked=run.repo_pairs_checked,
            repo_pairs_total=run.repo_pairs_total,
            weaves_found=run.weaves_found,
            pairs_skipped=run.pairs_skipped,
        )

    @classmethod
    def from_payload(cls, payload: dict) -> 'ProgressSnapshot':
        return cls(
            run_id=str(payload['run_id']),
            plexus_id=str(payload.get('plexus_id', '')),
            status=payload.get('status', ''),
            repo_pairs_checked=int(payload.get('repo_pairs_checked', 0)),
            repo_pairs_total=int(payload.get('repo_pairs_total', 0)),
            weaves_found=int(payload.get('weaves_found', 0)),
            pairs_skipped=int(payload.get('pairs_skipped', 0)),
        )

    def supersedes(self, other: Optional['ProgressSnapshot']) -> bool:
        """
        True if this snapshot should replace `other` in a consumer's view.

        Snapshots of a different run always win; within a run counters never
        regress and a terminal snapshot is never replaced by a running one.
        """
        if other is None or other.run_id != self.run_id:
            return True
        if other.is_terminal and not self.is_terminal:
            return False
        return (
            self.repo_pairs_checked >= other.repo_pairs_checked
            and self.weaves_found >= other.weaves_found
        )

    def to_payload(self, event: str) -> dict:
        payload = asdict(self)
        payload['event'] = event
        payload['progress_percent'] = self.progress_percent
        payload['timestamp'] = timezone.now().isoformat()
        return payload


class ProgressPublisher(ABC):
    """
    Abstract base class for progress publishers. Subclasses implement `send`.
    """

    terminal_attempts = 3
    terminal_retry_delay = 0.2

    @abstractmethod
    def send(self, channel: str, payload: dict) -> None:
        """Deliver one payload to a channel. May raise; `publish` absorbs it."""

    def publish(self, plexus_id, snapshot: ProgressSnapshot, event: str = EVENT_PROGRESS) -> bool:
        """Publish one snapshot. Returns False (and logs) on failure."""
        try:
            self.send(channel_name(plexus_id), snapshot.to_payload(event))
            return True
        except Exception as exc:
            metrics.increment_publish_failures(event)
            logger.warning(
                f"Failed to publish {event} for run {snapshot.run_id}: {exc}",
                extra={'run_id': snapshot.run_id, 'event': event},
            )
            return False

    def publish_terminal(self, plexus_id, snapshot: ProgressSnapshot, event: str) -> bool:
        """Publish a terminal snapshot, retrying a few times."""
        for attempt in range(self.terminal_attempts):
            if self.publish(plexus_id, snapshot, event):
                return True
            if attempt < self.terminal_attempts - 1 and self.terminal_retry_delay:
                time.sleep(self.terminal_retry_delay * (2 ** attempt))
        logger.error(f"Giving up on {event} for run {snapshot.run_id}")
        return False

    def close(self):
        pass


class RedisProgressPublisher(ProgressPublisher):
    """Publishes JSON snapshots with Redis PUBLISH."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or getattr(settings, 'WEAVE_PROGRESS_REDIS_URL', None) or settings.REDIS_URL
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        return self._client

    def send(self, channel, payload):
        self.client.publish(channel, json.dumps(payload))

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None


class LoggingProgressPublisher(ProgressPublisher):
    """Writes snapshots to the log instead of a transport. Used in development."""

    def send(self, channel, payload):
        logger.info(
            f"[{channel}] {payload['event']} "
            f"{payload['repo_pairs_checked']}/{payload['repo_pairs_total']} "
            f"weaves={payload['weaves_found']}"
        )


class NullProgressPublisher(ProgressPublisher):
    """Discards snapshots."""

    def send(self, channel, payload):
        return None


def get_publisher(path: str = None) -> ProgressPublisher:
    path = path or getattr(settings, 'WEAVE_PROGRESS_PUBLISHER', 'apps.weaves.publisher.NullProgressPublisher')
    return import_string(path)()


def subscribe_progress(
    plexus_id,
    url: Optional[str] = None,
    poll_timeout: float = 1.0,
) -> Iterator[Tuple[str, ProgressSnapshot]]:
    """
    Yield (event, snapshot) pairs published for a plexus.

    Snapshots that do not supersede the last one seen for the same run are
    dropped, so callers see counters that only move forward.
    """
    url = url or getattr(settings, 'WEAVE_PROGRESS_REDIS_URL', None) or settings.REDIS_URL
    client = redis.from_url(url, decode_responses=True)
    pubsub = client.pubsub(ignore_subscribe_messages=True)
    pubsub.subscribe(channel_name(plexus_id))

    latest = {}
    try:
        while True:
            message = pubsub.get_message(timeout=poll_timeout)
            if not message or message.get('type') != 'message':
                continue
            try:
                payload = json.loads(message['data'])
                snapshot = ProgressSnapshot.from_payload(payload)
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning(f"Ignoring malformed progress message: {exc}")
                continue

            if not snapshot.supersedes(latest.get(snapshot.run_id)):
                continue
            latest[snapshot.run_id] = snapshot
            yield payload.get('event', EVENT_PROGRESS), snapshot
    finally:
        pubsub.close()
        client.close()
