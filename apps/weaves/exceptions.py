"""
Error taxonomy for weave discovery.

Comparator errors are absorbed per pair (retried, then the pair is skipped).
Store errors are retried and then fail the run. Conflicts surface through the
API error envelope.
"""

from apps.core.exceptions import ConflictError, ErrorCode


class WeaveDiscoveryError(Exception):
    """Base class for discovery engine errors."""

    error_code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message="", **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ComparatorError(WeaveDiscoveryError):
    """A comparator invocation failed for one pair."""
    error_code = ErrorCode.COMPARATOR_ERROR


class ComparatorTimeout(ComparatorError):
    """A comparator invocation exceeded its time budget."""
    error_code = ErrorCode.COMPARATOR_TIMEOUT


class StoreWriteError(WeaveDiscoveryError):
    """Persisting a pair result kept failing after retries."""
    error_code = ErrorCode.DATABASE_ERROR


class LeaseLostError(WeaveDiscoveryError):
    """Another orchestrator took over the run, or the lease lapsed."""
    error_code = ErrorCode.LEASE_LOST


class DiscoveryRunInProgress(ConflictError):
    """Raised when an operation needs the plexus to be idle."""
    error_code = ErrorCode.RUN_IN_PROGRESS
    default_detail = "A discovery run is in progress for this plexus"

    def __init__(self, run=None, message=None):
        details = {}
        if run is not None:
            details = {'run_id': str(run.id), 'status': run.status}
        super().__init__(message=message, details=details)
        self.run = run
