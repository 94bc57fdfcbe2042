"""
Discovery run state machine.

States:
    pending → running → completed
       ↓         ↓
    failed    failed / cancelled
       ↓
    cancelled

Terminal states have no outgoing transitions. Transitions are applied as a
conditional UPDATE filtered on the allowed source states, so two processes
racing to finish the same run cannot both win.
"""

import logging
from enum import Enum
from typing import Dict, Optional, Set

from django.utils import timezone

from apps.core.exceptions import ErrorCode

logger = logging.getLogger(__name__)


class RunStatus(Enum):
    """Valid states for a discovery run."""
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    @classmethod
    def from_string(cls, value: str) -> 'RunStatus':
        for state in cls:
            if state.value == value:
                return state
        raise ValueError(f"Unknown state: {value}")

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)

    @property
    def publish_event(self) -> str:
        return {
            RunStatus.PENDING: 'weave:started',
            RunStatus.RUNNING: 'weave:progress',
            RunStatus.COMPLETED: 'weave:completed',
            RunStatus.FAILED: 'weave:failed',
            RunStatus.CANCELLED: 'weave:cancelled',
        }[self]


VALID_TRANSITIONS: Dict[RunStatus, Set[RunStatus]] = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.COMPLETED: set(),  # Terminal
    RunStatus.FAILED: set(),  # Terminal; resubmission creates a continuation run
    RunStatus.CANCELLED: set(),  # Terminal
}


class TransitionError(Exception):
    """Raised when a state transition is invalid."""

    error_code = ErrorCode.INVALID_TRANSITION

    def __init__(self, run_id, current, target):
        self.run_id = run_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid transition for run {run_id} from {current} to {target}"
        )


def allowed_sources(target: RunStatus) -> Set[RunStatus]:
    """States from which `target` can be entered."""
    return {src for src, targets in VALID_TRANSITIONS.items() if target in targets}


def can_transition(current: RunStatus | str, target: RunStatus | str) -> bool:
    if isinstance(current, str):
        current = RunStatus.from_string(current)
    if isinstance(target, str):
        target = RunStatus.from_string(target)
    return target in VALID_TRANSITIONS.get(current, set())


def transition_run(
    run,
    target: RunStatus | str,
    error_code: Optional[str] = None,
    error_message: str = '',
    **fields,
):
    """
    Move `run` to `target` with a compare-and-set UPDATE.

    Extra keyword arguments are written in the same UPDATE. On success the
    in-memory instance is refreshed; if the row was no longer in an allowed
    source state a TransitionError is raised and nothing is written.
    """
    from apps.weaves.models import DiscoveryRun

    if isinstance(target, str):
        target = RunStatus.from_string(target)

    sources = [s.value for s in allowed_sources(target)]
    now = timezone.now()
    updates = {'status': target.value, 'updated_at': now, **fields}

    if target == RunStatus.RUNNING and run.started_at is None:
        updates.setdefault('started_at', now)
    if target.is_terminal:
        updates.setdefault('completed_at', now)
        updates.setdefault('lease_owner', '')
        updates.setdefault('lease_expires_at', None)
    if error_code is not None:
        updates['error_code'] = error_code.value if isinstance(error_code, ErrorCode) else error_code
    if error_message:
        updates['error_message'] = error_message[:2000]

    updated = DiscoveryRun.objects.filter(id=run.id, status__in=sources).update(**updates)
    if not updated:
        current = (
            DiscoveryRun.objects.filter(id=run.id).values_list('status', flat=True).first()
        )
        raise TransitionError(run.id, current, target.value)

    run.refresh_from_db()
    logger.info(
        f"Discovery run {run.id} transitioned to {target.value}",
        extra={'run_id': str(run.id), 'plexus_id': str(run.plexus_id), 'status': target.value},
    )
    return run
