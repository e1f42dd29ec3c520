"""
Job Orchestrator: runs rewrites or autoscoring over many records.

A job owns a ThreadPoolExecutor of `concurrency` workers that pull record
ids from a shared cursor. Each unit re-reads its record from the store,
calls the rewrite strategy (or the scorer) and merges the result back by
id. Transport failures are retried; every other per-unit failure becomes a
counter so one bad record never stops the job. Cancelling a job aborts the
in-flight model calls; merges already applied are kept.
"""

import copy
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Union

import tenacity

from models.job import (
    AUTOSCORE_MODE,
    JobConfig,
    JobEvent,
    JobMode,
    JobProgress,
    JobStatus,
    JobSummary,
    mode_name,
)
from models.record import Record
from models.rewrite_target import ItemKey, RewriteTarget
from services.dataset_store import DatasetStore
from services.errors import CancellationError, NotFoundError, TransportError
from services.model_client import CancelToken
from services.rewrite_strategy import RewriteResult, RewriteStrategy
from services.scoring import Scorer
from utils.validation import validate_job_config

logger = logging.getLogger(__name__)

PartialCallback = Callable[[str, str], None]

UPDATED = "updated"
SKIPPED = "skipped"
FAILED = "error"
CANCELLED = "cancelled"

_MAX_EVENTS = 500
_MAX_HISTORY = 50


class JobHandle:
    """
    Live view of a running job.

    Attributes:
        job_id: Unique job identifier
        mode: Rewrite target value or "autoscore"
        status: Current JobStatus
        partials: Latest accumulated model text per record id
        events: Trace log (most recent last)
        cancel_token: Shared token every unit of the job derives from
        item_ids: Worklist the job was started with
        config: Tunables the job was started with
        message_index: Message addressed by message-scoped targets
    """

    def __init__(
        self,
        job_id: str,
        mode: str,
        total: int,
        item_ids: Optional[List[str]] = None,
        config: Optional[JobConfig] = None,
        message_index: Optional[int] = None,
    ):
        self.job_id = job_id
        self.mode = mode
        self.item_ids = list(item_ids or [])
        self.config = config
        self.message_index = message_index
        self.started_at = time.time()
        self.finished_at: Optional[float] = None
        self.status = JobStatus.PENDING
        self.partials: Dict[str, str] = {}
        self.events: List[JobEvent] = []
        self.cancel_token = CancelToken()
        self._progress = JobProgress(total=total)
        self._lock = threading.Lock()
        self._done = threading.Event()

    def __deepcopy__(self, memo):
        return self

    def progress(self) -> JobProgress:
        """Copy of the current counters."""
        with self._lock:
            return copy.copy(self._progress)

    def cancel(self) -> None:
        if not self._done.is_set():
            self.log("cancel", "Cancellation requested")
        self.cancel_token.cancel()

    def is_done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> JobSummary:
        """
        Block until the job finishes or timeout elapses.

        Returns:
            The job summary (status is still RUNNING if the timeout hit first)
        """
        self._done.wait(timeout)
        return self.summary()

    def summary(self) -> JobSummary:
        with self._lock:
            return JobSummary(
                job_id=self.job_id,
                mode=self.mode,
                status=self.status,
                progress=copy.copy(self._progress),
                events=list(self.events),
                item_ids=list(self.item_ids),
                config=self.config,
                message_index=self.message_index,
                started_at=self.started_at,
                finished_at=self.finished_at,
            )

    def log(self, kind: str, message: str, item_id: Optional[str] = None) -> None:
        with self._lock:
            self.events.append(JobEvent(kind=kind, message=message, item_id=item_id))
            if len(self.events) > _MAX_EVENTS:
                del self.events[: len(self.events) - _MAX_EVENTS]

    def _count(self, outcome: str) -> None:
        with self._lock:
            if outcome == CANCELLED:
                return
            self._progress.completed += 1
            if outcome == UPDATED:
                self._progress.updated += 1
            elif outcome == SKIPPED:
                self._progress.skipped += 1
            elif outcome == FAILED:
                self._progress.errors += 1

    def _set_status(self, status: JobStatus) -> None:
        with self._lock:
            self.status = status
        if status.is_terminal:
            self._done.set()


class _Cursor:
    """Lock-guarded test-and-increment index over the worklist."""

    def __init__(self, total: int):
        self.total = total
        self._next = 0
        self._lock = threading.Lock()

    def take(self) -> Optional[int]:
        with self._lock:
            if self._next >= self.total:
                return None
            index = self._next
            self._next += 1
            return index

    def remaining(self) -> int:
        with self._lock:
            return self.total - self._next


class JobOrchestrator:
    """
    Bounded-concurrency driver for rewrite and autoscore jobs.

    Also tracks the cancel token of every in-flight unit, keyed by
    ItemKey, so a single record's rewrite can be aborted on its own.
    """

    def __init__(self, store: DatasetStore, strategy: RewriteStrategy, scorer: Optional[Scorer] = None):
        self.store = store
        self.strategy = strategy
        self.scorer = scorer
        self._item_tokens: Dict[ItemKey, CancelToken] = {}
        self._tokens_lock = threading.Lock()
        self._history: List[JobSummary] = []
        self._history_lock = threading.Lock()

    def __deepcopy__(self, memo):
        return self

    # ---------------- jobs ----------------

    def run(
        self,
        items: Iterable[Union[Record, str]],
        mode: JobMode,
        config: Optional[JobConfig] = None,
        message_index: Optional[int] = None,
        on_partial: Optional[PartialCallback] = None,
    ) -> JobHandle:
        """
        Start a job in the background.

        Args:
            items: Records (or record ids) to process
            mode: A RewriteTarget, or "autoscore"
            config: Job tunables (defaults to JobConfig())
            message_index: Message to rewrite for message-scoped targets
            on_partial: Called with (record id, accumulated text) per delta

        Returns:
            JobHandle for progress polling and cancellation

        Raises:
            ValueError: Invalid config or mode
        """
        config = config or JobConfig()
        is_valid, error = validate_job_config(config)
        if not is_valid:
            raise ValueError(error)

        mode = self._normalize_mode(mode)
        ids = [item.id if isinstance(item, Record) else str(item) for item in items]
        handle = JobHandle(uuid.uuid4().hex[:12], mode_name(mode), len(ids), ids, config, message_index)

        strategy = self.strategy
        if mode != AUTOSCORE_MODE and strategy.split_field_requests != config.split_field_requests:
            strategy = copy.copy(strategy)
            strategy.split_field_requests = config.split_field_requests

        thread = threading.Thread(
            target=self._execute,
            args=(handle, ids, mode, config, strategy, message_index, on_partial),
            name=f"job-{handle.job_id}",
            daemon=True,
        )
        handle._set_status(JobStatus.RUNNING)
        handle.log("start", f"{handle.mode} job over {len(ids)} records")
        logger.info("Starting %s job %s over %d records", handle.mode, handle.job_id, len(ids))
        thread.start()
        return handle

    def _normalize_mode(self, mode: JobMode) -> JobMode:
        if mode == AUTOSCORE_MODE:
            if self.scorer is None:
                raise ValueError("Autoscore requires a scorer")
            return AUTOSCORE_MODE
        try:
            return RewriteTarget(mode)
        except ValueError:
            raise ValueError(f"Unknown job mode: {mode}")

    def _execute(self, handle, ids, mode, config, strategy, message_index, on_partial) -> None:
        cursor = _Cursor(len(ids))
        workers = max(1, min(config.concurrency, len(ids)))
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"job-{handle.job_id}") as pool:
                futures = [
                    pool.submit(self._worker, handle, cursor, ids, mode, config, strategy, message_index, on_partial)
                    for _ in range(workers)
                ]
                for future in futures:
                    future.result()
        except Exception:
            logger.exception("Job %s crashed", handle.job_id)
            handle.log("error", "Job aborted by an internal error")
        finally:
            status = JobStatus.CANCELLED if handle.cancel_token.cancelled else JobStatus.COMPLETED
            summary = handle.summary()
            summary.status = status
            handle.log("finish", summary.describe())
            logger.info("Job %s finished: %s", handle.job_id, summary.describe())
            handle.finished_at = time.time()
            final = handle.summary()
            final.status = status
            self._remember(final)
            # the finish event is in the log before waiters are released
            handle._set_status(status)

    def _worker(self, handle, cursor, ids, mode, config, strategy, message_index, on_partial) -> None:
        token = handle.cancel_token
        while not token.cancelled:
            index = cursor.take()
            if index is None:
                return
            item_id = ids[index]
            outcome = self._process(handle, item_id, mode, config, strategy, message_index, on_partial)
            handle._count(outcome)
            if config.pace_ms > 0 and cursor.remaining() > 0:
                token.wait(config.pace_ms / 1000.0)

    def _process(self, handle, item_id, mode, config, strategy, message_index, on_partial) -> str:
        key = ItemKey(item_id, message_index)
        item_token = handle.cancel_token.child()
        self._register(key, item_token)
        try:
            record = self.store.get(item_id)
            if record is None:
                handle.log("skip", "Record no longer exists", item_id)
                return SKIPPED
            if mode == AUTOSCORE_MODE and record.score and not config.force:
                handle.log("skip", "Already scored", item_id)
                return SKIPPED

            def publish(accumulated: str) -> None:
                handle.partials[item_id] = accumulated
                if on_partial is not None:
                    on_partial(item_id, accumulated)

            updates = self._attempt(handle, record, mode, config, strategy, message_index, publish, item_token)
            if updates is None:
                return FAILED
            if not updates:
                handle.log("skip", "Model returned nothing usable", item_id)
                return SKIPPED
            item_token.raise_if_cancelled()
            if not self.store.merge(item_id, updates):
                handle.log("skip", "Record deleted before merge", item_id)
                return SKIPPED
            handle.log("update", ", ".join(sorted(updates)), item_id)
            return UPDATED
        except CancellationError:
            logger.debug("Unit %s cancelled", key)
            if handle.cancel_token.cancelled:
                return CANCELLED
            handle.log("skip", "Cancelled individually", item_id)
            return SKIPPED
        except Exception as e:
            # ValueError for mismatched message targets lands here as well
            logger.error("Unit %s failed: %s", key, e)
            handle.log("error", str(e), item_id)
            return FAILED
        finally:
            self._unregister(key, item_token)
            handle.cancel_token.release(item_token)
            handle.partials.pop(item_id, None)

    def _attempt(self, handle, record, mode, config, strategy, message_index, publish, token) -> Optional[Dict]:
        """
        Run one unit, retrying transport failures.

        Returns:
            Field updates ({} for "nothing to change"), or None once retries
            are exhausted
        """

        def sleep(seconds: float) -> None:
            if token.wait(seconds):
                raise CancellationError("Cancelled during retry delay")

        def log_retry(retry_state: tenacity.RetryCallState) -> None:
            error = retry_state.outcome.exception()
            handle.log("retry", f"Attempt {retry_state.attempt_number} failed: {error}", record.id)

        retryer = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(config.max_retries + 1),
            wait=tenacity.wait_fixed(config.retry_delay_ms / 1000.0),
            retry=tenacity.retry_if_exception_type(TransportError),
            sleep=sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            for attempt in retryer:
                with attempt:
                    if mode == AUTOSCORE_MODE:
                        score = self.scorer.score(record, cancel_token=token, on_delta=publish)
                        return {"score": score} if score else {}
                    result = strategy.rewrite(
                        record,
                        mode,
                        on_delta=publish,
                        cancel_token=token,
                        message_index=message_index,
                    )
                    return result.updates
        except TransportError as e:
            attempts = config.max_retries + 1
            logger.warning("Record %s failed after %d attempts: %s", record.id, attempts, e)
            handle.log("error", f"Failed after {attempts} attempts: {e}", record.id)
            return None

    # ---------------- history ----------------

    def history(self) -> List[JobSummary]:
        """Finished jobs, most recent first."""
        with self._history_lock:
            return list(reversed(self._history))

    def get_job(self, job_id: str) -> Optional[JobSummary]:
        with self._history_lock:
            for summary in self._history:
                if summary.job_id == job_id:
                    return summary
        return None

    def rerun(self, job_id: str, on_partial: Optional[PartialCallback] = None) -> JobHandle:
        """
        Start a finished job again with its original worklist, mode and config.

        Records deleted since the first run are skipped like any other
        vanished record.

        Raises:
            KeyError: No finished job with this id
            ValueError: The stored config or mode is no longer valid
        """
        summary = self.get_job(job_id)
        if summary is None:
            raise KeyError(f"No finished job with id {job_id}")
        logger.info("Rerunning job %s (%s)", job_id, summary.mode)
        handle = self.run(summary.item_ids, summary.mode, summary.config, summary.message_index, on_partial)
        handle.log("rerun", f"Rerun of job {job_id}")
        return handle

    def _remember(self, summary: JobSummary) -> None:
        with self._history_lock:
            self._history.append(summary)
            if len(self._history) > _MAX_HISTORY:
                del self._history[: len(self._history) - _MAX_HISTORY]

    # ---------------- single record ----------------

    def rewrite_one(
        self,
        item_id: str,
        target: RewriteTarget,
        message_index: Optional[int] = None,
        on_delta: Optional[Callable[[str], None]] = None,
    ) -> RewriteResult:
        """
        Rewrite one record interactively and merge the result.

        The unit can be aborted through cancel_item().

        Raises:
            NotFoundError: The record does not exist (or vanished before the merge)
            CancellationError, TransportError, ValueError: from the strategy
        """
        record = self.store.get(item_id)
        if record is None:
            raise NotFoundError(item_id)

        key = ItemKey(item_id, message_index)
        token = CancelToken()
        self._register(key, token)
        try:
            result = self.strategy.rewrite(
                record,
                RewriteTarget(target),
                on_delta=on_delta,
                cancel_token=token,
                message_index=message_index,
            )
            token.raise_if_cancelled()
            if result.updates and not self.store.merge(item_id, result.updates):
                raise NotFoundError(item_id)
            return result
        finally:
            self._unregister(key, token)

    def cancel_item(self, item_id: str, message_index: Optional[int] = None) -> bool:
        """Abort the in-flight unit for a record (or one of its messages)."""
        with self._tokens_lock:
            token = self._item_tokens.get(ItemKey(item_id, message_index))
        if token is None:
            return False
        token.cancel()
        return True

    def in_flight(self) -> List[ItemKey]:
        with self._tokens_lock:
            return list(self._item_tokens)

    def _register(self, key: ItemKey, token: CancelToken) -> None:
        with self._tokens_lock:
            self._item_tokens[key] = token

    def _unregister(self, key: ItemKey, token: CancelToken) -> None:
        with self._tokens_lock:
            if self._item_tokens.get(key) is token:
                del self._item_tokens[key]
