"""
Batch runner: the resumable regeneration loop for one job.

The runner is an explicit two-state machine. While RUNNING, each step asks
the backend for exactly one batch at current_offset:

- success: add processed rows, move to the returned nextOffset, write a
  checkpoint, pause batch_delay, and either stay RUNNING (hasMore) or
  become COMPLETED
- only-missing sweep reset: the backend returned nextOffset=0 with the
  restart sentinel, so current_offset goes back to 0 and the job stays
  RUNNING; this is the only time the offset moves backwards
- failure of any kind: offset unchanged, error written to the checkpoint,
  pause retry_delay, try the same batch again

There is no FAILED state. Errors never leave the loop, whether raised by
the backend, the checkpoint store or while applying a result; only
terminating the process stops a job that cannot make progress.
"""

import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .backend import BatchRequest, BatchResult, EmbeddingBackendClient
from .checkpoint import COMPLETED, RUNNING, CheckpointStore, JobCheckpoint, compute_percentage
from .config import RegenSettings, truncate
from .logger import StructuredLogger, get_logger
from .retry import RetryPolicy, classify_failure
from .schema import LaunchParams

FAILURE_LABELS = {
    "transient": "Temporary error",
    "network": "Network error",
    "opaque": "Backend error",
    "unexpected": "Unexpected error",
}


class BatchRunner:
    """Runs one job from its start offset until the backend reports no more rows."""

    def __init__(
        self,
        job_id: str,
        params: LaunchParams,
        backend: EmbeddingBackendClient,
        store: CheckpointStore,
        settings: RegenSettings,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
        logger: Optional[StructuredLogger] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.job_id = job_id
        self.params = params
        self.backend = backend
        self.store = store
        self.settings = settings
        self._sleep = sleep
        self._clock = clock
        self.logger = logger or get_logger()
        self.retry = retry_policy or RetryPolicy(delay=settings.retry_delay, sleep=sleep)

        self.status = RUNNING
        self.current_offset = params.start_offset
        self.total_processed = 0
        self.total_count = 0
        self.error_message: Optional[str] = None
        self.start_time: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.launch_metadata: Dict[str, Any] = {}

    @property
    def is_running(self) -> bool:
        return self.status == RUNNING

    def run(self) -> JobCheckpoint:
        """Loop until COMPLETED and return the final snapshot."""
        self._adopt_launch_row()
        if self.start_time is None:
            self.start_time = self._clock()
        self.logger.info(
            f"Processing {self.params.table} from offset {self.current_offset}",
            job_id=self.job_id,
            model=self.params.model,
            dimensions=self.params.dimensions,
            only_missing=self.params.only_missing,
        )
        self._save(self.snapshot())

        while self.is_running:
            self.step()

        self.logger.info(
            f"Completed {self.params.table}: {self.total_processed} rows",
            job_id=self.job_id,
            elapsed_minutes=self._elapsed_minutes(),
        )
        self.logger.log_metrics_summary()
        return self.snapshot()

    def step(self) -> str:
        """Request one batch and apply the outcome. Returns the new status."""
        if not self.is_running:
            return self.status
        if self.start_time is None:
            self.start_time = self._clock()

        request = BatchRequest(
            table=self.params.table,
            offset=self.current_offset,
            limit=self.settings.batch_limit,
            model=self.params.model,
            dimensions=self.params.dimensions,
            only_missing=self.params.only_missing,
        )
        self.logger.record_batch_attempt()
        try:
            result = self.backend.process_batch(request)
            self._on_success(result)
        except Exception as e:
            self._on_failure(e)
        return self.status

    def _on_success(self, result: BatchResult) -> None:
        retries = self.retry.record_success()
        if retries:
            self.logger.info("Retry succeeded, continuing", job_id=self.job_id, retries=retries)

        self.total_processed += result.processed
        self.total_count = result.total_count
        self.error_message = None
        self.logger.record_batch_success(result.processed)

        if self.params.only_missing and result.restart_sweep:
            self.current_offset = 0
            has_more = True
            self.logger.record_sweep_reset()
            self.logger.info(
                "Rows without embeddings remain, restarting from offset 0",
                job_id=self.job_id,
            )
        else:
            if result.next_offset < self.current_offset:
                self.logger.warning(
                    "Backend returned an earlier offset",
                    job_id=self.job_id,
                    offset=self.current_offset,
                    next_offset=result.next_offset,
                )
            self.current_offset = result.next_offset
            has_more = result.has_more

        if has_more:
            snapshot = self.snapshot()
            self.logger.info(
                f"Progress: {self.current_offset}/{self.total_count} ({snapshot.percentage}%)",
                job_id=self.job_id,
                processed=result.processed,
            )
            self._save(snapshot)
            self._sleep(self.settings.batch_delay)
            return

        self.status = COMPLETED
        self.completed_at = self._clock()
        self._save(self.snapshot())

    def _on_failure(self, error: Exception) -> None:
        category = classify_failure(error)
        retry_number = self.retry.record_failure(error)
        self.logger.record_batch_failure(category)

        message = str(error) or type(error).__name__
        self.logger.warning(
            f"{FAILURE_LABELS.get(category, 'Error')} (retry {retry_number}): "
            f"{truncate(message, self.settings.log_truncate)}",
            job_id=self.job_id,
            offset=self.current_offset,
            retry_in_seconds=self.retry.delay,
        )

        self.error_message = truncate(message, self.settings.error_truncate)
        self._save(self.snapshot())

        if self.retry.should_retry(error):
            self.retry.wait()

    def _adopt_launch_row(self) -> None:
        """Carry over start_time and metadata from the row the launcher wrote."""
        try:
            existing = self.store.load(self.job_id)
        except Exception as e:
            self.logger.warning(
                "Could not read launch checkpoint",
                job_id=self.job_id,
                error=truncate(str(e), self.settings.log_truncate),
            )
            return
        if existing is None:
            return
        if existing.start_time is not None:
            self.start_time = existing.start_time
        self.launch_metadata = dict(existing.metadata or {})

    def _save(self, snapshot: JobCheckpoint) -> bool:
        try:
            return self.store.save(snapshot)
        except Exception as e:
            self.logger.record_checkpoint_failure()
            self.logger.error(
                "Failed to save progress",
                job_id=self.job_id,
                error=truncate(str(e) or type(e).__name__, self.settings.error_truncate),
            )
            return False

    def _elapsed_minutes(self) -> Optional[float]:
        if self.start_time is None:
            return None
        return round((self._clock() - self.start_time).total_seconds() / 60, 1)

    def snapshot(self) -> JobCheckpoint:
        """Full checkpoint for the current state."""
        if self.status == COMPLETED:
            percentage = 100.0
        else:
            percentage = compute_percentage(self.current_offset, self.total_count)
        return JobCheckpoint(
            job_id=self.job_id,
            table_name=self.params.table,
            model=self.params.model,
            dimensions=self.params.dimensions,
            status=self.status,
            start_offset=self.params.start_offset,
            current_offset=self.current_offset,
            total_processed=self.total_processed,
            total_count=self.total_count,
            percentage=percentage,
            start_time=self.start_time,
            elapsed_minutes=self._elapsed_minutes(),
            completed_at=self.completed_at,
            error_message=self.error_message,
            metadata={
                **self.launch_metadata,
                "onlyMissing": self.params.only_missing,
                "batchLimit": self.settings.batch_limit,
            },
        )


def run_job(
    job_id: str,
    params: LaunchParams,
    settings: RegenSettings,
    backend: Optional[EmbeddingBackendClient] = None,
    store: Optional[CheckpointStore] = None,
) -> JobCheckpoint:
    """Build a runner with real collaborators and run it to completion."""
    settings.require_backend()
    backend = backend or EmbeddingBackendClient(settings)
    store = store or CheckpointStore(settings.database_url)
    try:
        return BatchRunner(job_id, params, backend, store, settings).run()
    finally:
        backend.close()
