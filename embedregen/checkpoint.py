"""
Checkpoint store for regeneration jobs.

One row per job in embedding_jobs, written as a full snapshot on every
worker iteration. Writes are best-effort: a failed upsert is logged and
reported on the store's own error channel (write_errors / on_error) but
never raised, so an outage of the checkpoint database cannot stop a run.
The worker's progress depends only on the offsets the backend hands back.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .database import EmbeddingJob, get_session, init_database
from .errors import CheckpointWriteError
from .logger import StructuredLogger, get_logger
from .schema import short_table_name

RUNNING = "running"
COMPLETED = "completed"


def compute_percentage(current_offset: int, total_count: int) -> float:
    """current_offset / total_count * 100, clamped to [0, 100], one decimal."""
    if total_count <= 0:
        return 0.0
    pct = current_offset / total_count * 100
    return round(min(100.0, max(0.0, pct)), 1)


@dataclass
class JobCheckpoint:
    """Snapshot of a job as persisted in the checkpoint store."""

    job_id: str
    table_name: str
    model: str
    dimensions: int
    status: str = RUNNING
    start_offset: int = 0
    current_offset: int = 0
    total_processed: int = 0
    total_count: int = 0
    percentage: float = 0.0
    start_time: Optional[datetime] = None
    elapsed_minutes: Optional[float] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    def to_row(self) -> EmbeddingJob:
        return EmbeddingJob(
            job_id=self.job_id,
            status=self.status,
            table_name=self.table_name,
            model=self.model,
            dimensions=self.dimensions,
            start_offset=self.start_offset,
            current_offset=self.current_offset,
            total_processed=self.total_processed,
            total_count=self.total_count,
            percentage=self.percentage,
            start_time=self.start_time,
            elapsed_minutes=self.elapsed_minutes,
            completed_at=self.completed_at,
            error_message=self.error_message,
            job_metadata=dict(self.metadata or {}),
        )

    @classmethod
    def from_row(cls, row: EmbeddingJob) -> "JobCheckpoint":
        return cls(
            job_id=row.job_id,
            table_name=row.table_name,
            model=row.model,
            dimensions=row.dimensions,
            status=row.status,
            start_offset=row.start_offset or 0,
            current_offset=row.current_offset or 0,
            total_processed=row.total_processed or 0,
            total_count=row.total_count or 0,
            percentage=row.percentage or 0.0,
            start_time=row.start_time,
            elapsed_minutes=row.elapsed_minutes,
            completed_at=row.completed_at,
            error_message=row.error_message,
            metadata=dict(row.job_metadata or {}),
        )


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def describe(checkpoint: Optional[JobCheckpoint]) -> Dict[str, Any]:
    """
    Render a checkpoint as the dashboard progress view.

    Returns {"status": "idle"} when there is no job. Adds
    estimatedMinutesRemaining for a running job once throughput is known.
    """
    if checkpoint is None:
        return {"status": "idle", "message": "No regeneration job has been started"}

    view = {
        "jobId": checkpoint.job_id,
        "status": checkpoint.status,
        "table": short_table_name(checkpoint.table_name),
        "model": checkpoint.model,
        "dimensions": checkpoint.dimensions,
        "startOffset": checkpoint.start_offset,
        "currentOffset": checkpoint.current_offset,
        "totalProcessed": checkpoint.total_processed,
        "totalCount": checkpoint.total_count,
        "percentage": checkpoint.percentage,
        "startTime": _isoformat(checkpoint.start_time),
        "elapsedMinutes": checkpoint.elapsed_minutes,
        "error": checkpoint.error_message,
        "completedAt": _isoformat(checkpoint.completed_at),
    }

    elapsed = checkpoint.elapsed_minutes or 0
    remaining_rows = checkpoint.total_count - checkpoint.current_offset
    if (
        checkpoint.status == RUNNING
        and elapsed > 0
        and checkpoint.total_processed > 0
        and remaining_rows > 0
    ):
        rows_per_minute = checkpoint.total_processed / elapsed
        view["estimatedMinutesRemaining"] = round(remaining_rows / rows_per_minute, 1)

    return view


class CheckpointStore:
    """Upserts and reads job checkpoints keyed by job_id."""

    def __init__(
        self,
        db_url: str,
        on_error: Optional[Callable[[CheckpointWriteError], None]] = None,
        logger: Optional[StructuredLogger] = None,
        create_tables: bool = True,
    ):
        self.db_url = db_url
        self.on_error = on_error
        self.logger = logger or get_logger()
        self.write_errors: List[CheckpointWriteError] = []
        if create_tables:
            try:
                init_database(db_url)
            except Exception as e:
                self._report(CheckpointWriteError("<schema>", str(e)))

    def save(self, checkpoint: JobCheckpoint) -> bool:
        """
        Insert or update the job's row with the full snapshot.

        Returns:
            True if the write landed, False if it failed (already reported)
        """
        session = None
        try:
            session = get_session(self.db_url)
            session.merge(checkpoint.to_row())
            session.commit()
            return True
        except Exception as e:
            # close() below rolls back the open transaction
            self._report(CheckpointWriteError(checkpoint.job_id, str(e) or type(e).__name__))
            return False
        finally:
            if session is not None:
                session.close()

    def _report(self, error: CheckpointWriteError) -> None:
        self.write_errors.append(error)
        self.logger.record_checkpoint_failure()
        self.logger.error(
            "Failed to save progress",
            job_id=error.job_id,
            error=error.message[:200],
        )
        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception as e:
                self.logger.warning(
                    "Checkpoint error callback failed",
                    job_id=error.job_id,
                    error=str(e)[:200],
                )

    def load(self, job_id: str) -> Optional[JobCheckpoint]:
        session = get_session(self.db_url)
        try:
            row = session.get(EmbeddingJob, job_id)
            return JobCheckpoint.from_row(row) if row is not None else None
        finally:
            session.close()

    def latest(self) -> Optional[JobCheckpoint]:
        """Most recently created job, or None."""
        jobs = self.list_jobs(limit=1)
        return jobs[0] if jobs else None

    def list_jobs(self, limit: int = 20) -> List[JobCheckpoint]:
        session = get_session(self.db_url)
        try:
            rows = (
                session.query(EmbeddingJob)
                .order_by(EmbeddingJob.created_at.desc(), EmbeddingJob.job_id.desc())
                .limit(limit)
                .all()
            )
            return [JobCheckpoint.from_row(row) for row in rows]
        finally:
            session.close()
