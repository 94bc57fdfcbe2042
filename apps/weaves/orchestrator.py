"""
Discovery orchestrator.

Drives one run from its persisted cursor to a terminal state:

    pending pairs → bounded thread pool (comparator only) → main thread
    persists each pair's outcome → throttled progress snapshots

Worker threads never touch the database. The orchestrator thread is the only
writer for the run, which keeps the cursor and counters consistent without
in-process locking. Dispatch is windowed so at most `dispatch_window` pair
indices beyond the cursor can be in flight or completed out of order.
"""

import logging
import random
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import List, Optional

from apps.core import metrics
from apps.core.exceptions import ErrorCode
from apps.weaves.comparators import BaseComparator, Candidate, get_comparator
from apps.weaves.config import DiscoveryConfig
from apps.weaves.enumerator import RepoPair, pending_pairs
from apps.weaves.exceptions import ComparatorTimeout, LeaseLostError, StoreWriteError
from apps.weaves.intake import renew_lease
from apps.weaves.models import DiscoveryRun
from apps.weaves.publisher import (
    EVENT_PROGRESS,
    EVENT_STARTED,
    ProgressPublisher,
    ProgressSnapshot,
    get_publisher,
)
from apps.weaves.state_machine import RunStatus, TransitionError, transition_run
from apps.weaves.stores import ProgressStore, record_event

logger = logging.getLogger(__name__)


@dataclass
class PairResult:
    """What a worker hands back for one pair."""
    pair: RepoPair
    candidates: List[Candidate] = field(default_factory=list)
    attempts: int = 0
    error: Optional[BaseException] = None
    aborted: bool = False

    @property
    def skipped(self) -> bool:
        return self.error is not None


class DiscoveryOrchestrator:
    """
    Runs the all-pairs comparison for one DiscoveryRun.

    Usage:
        orchestrator = DiscoveryOrchestrator(run, lease_owner=owner)
        status = orchestrator.run()
    """

    def __init__(
        self,
        run: DiscoveryRun,
        comparator: Optional[BaseComparator] = None,
        publisher: Optional[ProgressPublisher] = None,
        config: Optional[DiscoveryConfig] = None,
        lease_owner: str = '',
        cancel_event: Optional[threading.Event] = None,
    ):
        self.run_obj = run
        self.comparator = comparator or get_comparator()
        self.publisher = publisher or get_publisher()
        self.config = config or DiscoveryConfig.from_dict(run.config)
        self.lease_owner = lease_owner
        self.cancel_event = cancel_event or threading.Event()

        # Set when workers should stop retrying and return early
        self._abort = threading.Event()
        self._comparator_pool: Optional[ThreadPoolExecutor] = None
        self._store: Optional[ProgressStore] = None
        self._pairs_since_flush = 0
        self._last_flush = 0.0
        self._last_cancel_poll = 0.0
        self._last_lease_renewal = 0.0

        self.log_extra = {'run_id': str(run.id), 'plexus_id': str(run.plexus_id)}

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> RunStatus:
        """
        Execute the run and return its status afterwards.

        Returns RUNNING only when the lease was lost to another orchestrator.
        Unexpected errors propagate with the run left RUNNING so the caller
        can retry or fail it.
        """
        run = self.run_obj
        run.refresh_from_db()
        status = RunStatus.from_string(run.status)
        if status.is_terminal:
            logger.info(f"Discovery run {run.id} already {run.status}", extra=self.log_extra)
            return status

        started = time.monotonic()
        self._start(run, status)

        try:
            self._store = ProgressStore(run, self.config, lease_owner=self.lease_owner)
            if self._store.finished:
                return self._finish(RunStatus.COMPLETED)

            self.comparator.prepare(run.repo_ids)
            return self._drive()
        finally:
            metrics.observe_run_duration(time.monotonic() - started)

    def _start(self, run, status):
        resuming = status == RunStatus.RUNNING or run.resumed_from_id or run.pair_cursor > 0
        if status == RunStatus.PENDING:
            transition_run(run, RunStatus.RUNNING)

        if resuming:
            record_event(
                run, 'resume',
                f"Resuming at pair {run.pair_cursor}/{run.repo_pairs_total}",
                details={'cursor': run.pair_cursor, 'ahead': len(run.pairs_ahead or [])},
            )
        else:
            record_event(run, 'start', f"Comparing {run.repo_pairs_total} repo pairs")

        logger.info(
            f"Discovery run {run.id} {'resumed' if resuming else 'started'}: "
            f"{run.repo_pairs_checked}/{run.repo_pairs_total} pairs checked",
            extra=self.log_extra,
        )
        self.publisher.publish(run.plexus_id, ProgressSnapshot.from_run(run), EVENT_STARTED)
        self._last_flush = time.monotonic()
        self._last_lease_renewal = time.monotonic()

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    def _drive(self) -> RunStatus:
        store = self._store
        config = self.config
        pairs = pending_pairs(self.run_obj.repo_ids, store.cursor, store.ahead)
        next_pair = next(pairs, None)
        in_flight = {}
        stop_reason = None
        failure: Optional[BaseException] = None

        executor = ThreadPoolExecutor(
            max_workers=config.worker_concurrency,
            thread_name_prefix=f"weave-{str(self.run_obj.id)[:8]}",
        )
        # A timed-out call keeps its slot until the comparator returns
        self._comparator_pool = ThreadPoolExecutor(
            max_workers=config.worker_concurrency,
            thread_name_prefix=f"comparator-{str(self.run_obj.id)[:8]}",
        )
        try:
            while True:
                if stop_reason is None and self._cancel_requested():
                    stop_reason = 'cancel'
                    logger.info(f"Cancellation requested for run {self.run_obj.id}", extra=self.log_extra)

                while (
                    stop_reason is None
                    and next_pair is not None
                    and len(in_flight) < config.worker_concurrency
                    and next_pair.index < store.cursor + config.dispatch_window
                ):
                    future = executor.submit(self._process_pair, next_pair)
                    in_flight[future] = next_pair
                    next_pair = next(pairs, None)

                if not in_flight:
                    break

                done, _ = wait(in_flight, timeout=self._wait_timeout(), return_when=FIRST_COMPLETED)
                for future in done:
                    in_flight.pop(future)
                    result = future.result()
                    if stop_reason is None:
                        try:
                            self._apply(result)
                        except StoreWriteError as exc:
                            stop_reason, failure = 'fail', exc
                        except LeaseLostError as exc:
                            stop_reason, failure = 'lease', exc

                if stop_reason is None:
                    try:
                        self._maybe_renew_lease()
                    except LeaseLostError as exc:
                        stop_reason, failure = 'lease', exc

                if stop_reason is not None:
                    break

            if stop_reason is not None and in_flight:
                self._drain(in_flight, apply=stop_reason == 'cancel')
        finally:
            self._abort.set()
            executor.shutdown(wait=False, cancel_futures=True)
            self._comparator_pool.shutdown(wait=False, cancel_futures=True)

        if stop_reason == 'lease':
            logger.warning(f"Stopping run {self.run_obj.id}: {failure}", extra=self.log_extra)
            return RunStatus.RUNNING
        if stop_reason == 'fail':
            return self._finish(RunStatus.FAILED, error_code=ErrorCode.DATABASE_ERROR, error_message=str(failure))
        if stop_reason == 'cancel':
            return self._finish(RunStatus.CANCELLED, error_message='Cancelled by request')

        if not store.finished:
            return self._finish(
                RunStatus.FAILED,
                error_code=ErrorCode.INTERNAL_ERROR,
                error_message=f"Pair sequence exhausted at {store.checked}/{store.total}",
            )
        return self._finish(RunStatus.COMPLETED)

    def _wait_timeout(self) -> float:
        return max(min(self.config.cancel_poll_interval or 0.05, 1.0), 0.05)

    def _drain(self, in_flight, apply: bool):
        """
        Wait up to the drain timeout for in-flight pairs.

        Finished pairs are persisted when `apply` is set; anything still
        running afterwards is abandoned and will be redone on resume.
        """
        self._abort.set()
        done, not_done = wait(in_flight, timeout=self.config.drain_timeout)
        if apply:
            for future in sorted(done, key=lambda f: in_flight[f].index):
                result = future.result()
                if result.aborted:
                    continue
                try:
                    self._apply(result)
                except (StoreWriteError, LeaseLostError) as exc:
                    logger.warning(f"Could not persist drained pair {result.pair.index}: {exc}", extra=self.log_extra)
                    break
        if not_done:
            logger.warning(
                f"Abandoned {len(not_done)} in-flight pairs for run {self.run_obj.id}",
                extra=self.log_extra,
            )

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _process_pair(self, pair: RepoPair) -> PairResult:
        """Call the comparator with retries. Runs on a worker thread."""
        config = self.config
        last_error = None

        for attempt in range(config.comparator_max_attempts):
            if self._abort.is_set():
                return PairResult(pair=pair, attempts=attempt, aborted=True)
            try:
                with metrics.observe_comparator_duration():
                    raw = self._call_comparator(pair)
                candidates = [Candidate.coerce(item) for item in (raw or [])]
                return PairResult(pair=pair, candidates=candidates, attempts=attempt + 1)
            except Exception as exc:
                last_error = exc
                logger.debug(
                    f"Comparator attempt {attempt + 1} failed for pair {pair.index}: {exc}",
                    extra=self.log_extra,
                )
                if attempt < config.comparator_max_attempts - 1:
                    delay = config.comparator_backoff * (2 ** attempt)
                    delay += random.uniform(0, config.comparator_backoff)
                    if delay > 0 and self._abort.wait(delay):
                        return PairResult(pair=pair, attempts=attempt + 1, aborted=True)

        return PairResult(pair=pair, attempts=config.comparator_max_attempts, error=last_error)

    def _call_comparator(self, pair: RepoPair):
        """Run one comparator attempt, giving up after the configured timeout."""
        future = self._comparator_pool.submit(self.comparator.compare, pair.source_id, pair.target_id)
        try:
            return future.result(timeout=self.config.comparator_timeout)
        except FuturesTimeout:
            future.cancel()
            raise ComparatorTimeout(
                f"Comparator exceeded {self.config.comparator_timeout}s for pair {pair.index}"
            )

    # ------------------------------------------------------------------
    # Persistence and progress
    # ------------------------------------------------------------------

    def _apply(self, result: PairResult):
        if result.aborted:
            return
        pair = result.pair
        outcome = self._store.apply_pair_result(pair, result.candidates, skipped=result.skipped)
        if not outcome.applied:
            return

        if result.skipped:
            error = result.error
            code = getattr(error, 'error_code', ErrorCode.COMPARATOR_ERROR)
            logger.warning(
                f"Skipped pair {pair.index} ({pair.source_id}, {pair.target_id}) "
                f"after {result.attempts} attempts: {error}",
                extra=self.log_extra,
            )
            record_event(
                self.run_obj, 'pair_skipped',
                f"Comparator failed {result.attempts} times: {error}",
                severity='warning',
                pair_index=pair.index,
                details={
                    'source_repo': pair.source_id,
                    'target_repo': pair.target_id,
                    'error_code': code.value if isinstance(code, ErrorCode) else str(code),
                    'error_type': type(error).__name__,
                },
            )

        self._pairs_since_flush += 1
        self._maybe_flush()

    def _maybe_flush(self, force: bool = False):
        elapsed_ms = (time.monotonic() - self._last_flush) * 1000
        if not force and (
            self._pairs_since_flush < self.config.progress_every_pairs
            and elapsed_ms < self.config.progress_interval_ms
        ):
            return

        self._renew_lease()
        self.publisher.publish(self.run_obj.plexus_id, self._snapshot(RunStatus.RUNNING.value), EVENT_PROGRESS)
        self._pairs_since_flush = 0
        self._last_flush = time.monotonic()

    def _maybe_renew_lease(self):
        if time.monotonic() - self._last_lease_renewal >= self.config.lease_ttl / 3:
            self._renew_lease()

    def _renew_lease(self):
        if not self.lease_owner:
            return
        if not renew_lease(self.run_obj, self.lease_owner, self.config.lease_ttl):
            raise LeaseLostError(f"Lease on run {self.run_obj.id} is no longer held by {self.lease_owner}")
        self._last_lease_renewal = time.monotonic()

    def _snapshot(self, status: str) -> ProgressSnapshot:
        store = self._store
        return ProgressSnapshot(
            run_id=str(self.run_obj.id),
            plexus_id=str(self.run_obj.plexus_id),
            status=status,
            repo_pairs_checked=store.checked,
            repo_pairs_total=store.total,
            weaves_found=store.weaves_found,
            pairs_skipped=store.pairs_skipped,
        )

    def _cancel_requested(self) -> bool:
        if self.cancel_event.is_set():
            return True
        now = time.monotonic()
        if now - self._last_cancel_poll < self.config.cancel_poll_interval:
            return False
        self._last_cancel_poll = now
        return self._store.cancel_requested()

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def _finish(self, target: RunStatus, error_code=None, error_message: str = '') -> RunStatus:
        run = self.run_obj
        try:
            transition_run(run, target, error_code=error_code, error_message=error_message)
        except TransitionError as exc:
            logger.warning(f"Could not finish run {run.id}: {exc}", extra=self.log_extra)
            run.refresh_from_db()
            return RunStatus.from_string(run.status)

        event_type = {
            RunStatus.COMPLETED: 'complete',
            RunStatus.FAILED: 'fail',
            RunStatus.CANCELLED: 'cancel',
        }[target]
        severity = 'error' if target == RunStatus.FAILED else 'info'
        record_event(
            run, event_type,
            error_message or f"Checked {run.repo_pairs_checked} pairs, found {run.weaves_found} weaves",
            severity=severity,
            details={
                'repo_pairs_checked': run.repo_pairs_checked,
                'repo_pairs_total': run.repo_pairs_total,
                'weaves_found': run.weaves_found,
                'pairs_skipped': run.pairs_skipped,
            },
        )

        metrics.increment_runs_completed(target.value)
        log = logger.error if target == RunStatus.FAILED else logger.info
        log(
            f"Discovery run {run.id} {target.value}: "
            f"{run.repo_pairs_checked}/{run.repo_pairs_total} pairs, {run.weaves_found} weaves",
            extra=self.log_extra,
        )

        self.publisher.publish_terminal(run.plexus_id, ProgressSnapshot.from_run(run), target.publish_event)
        return target


def run_discovery(run, **kwargs) -> RunStatus:
    """Convenience wrapper used by management commands and tests."""
    return DiscoveryOrchestrator(run, **kwargs).run()
