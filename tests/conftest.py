"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest

from embedregen.logger import get_logger, reset_logger

# Quiet logger before any module binds the global instance
reset_logger()
get_logger(enable_file=False, enable_console=False)

from embedregen.backend import BatchRequest, BatchResult  # noqa: E402
from embedregen.checkpoint import CheckpointStore, JobCheckpoint  # noqa: E402
from embedregen.config import RegenSettings  # noqa: E402
from embedregen.database import dispose_engines, sqlite_url  # noqa: E402
from embedregen.launcher import Operator  # noqa: E402
from embedregen.schema import LaunchParams  # noqa: E402


class DatasetBackend:
    """Backend stub over a table of `total` rows that follows the offset contract."""

    def __init__(self, total: int, failures: Optional[Dict[int, List[Exception]]] = None):
        self.total = total
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.requests: List[BatchRequest] = []
        self.closed = False

    def process_batch(self, request: BatchRequest) -> BatchResult:
        self.requests.append(request)
        pending = self.failures.get(request.offset)
        if pending:
            raise pending.pop(0)
        processed = max(0, min(request.limit, self.total - request.offset))
        next_offset = request.offset + processed
        return BatchResult(
            processed=processed,
            next_offset=next_offset,
            has_more=next_offset < self.total,
            total_count=self.total,
        )

    @property
    def offsets(self) -> List[int]:
        return [r.offset for r in self.requests]

    def close(self):
        self.closed = True


class ScriptedBackend:
    """Backend stub that replays a fixed list of results or exceptions."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests: List[BatchRequest] = []

    def process_batch(self, request: BatchRequest) -> BatchResult:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def offsets(self) -> List[int]:
        return [r.offset for r in self.requests]

    def close(self):
        pass


class MemoryStore:
    """In-memory checkpoint store that keeps every write."""

    def __init__(self):
        self.saves: List[JobCheckpoint] = []
        self.rows: Dict[str, JobCheckpoint] = {}
        self.write_errors: list = []

    def save(self, checkpoint: JobCheckpoint) -> bool:
        self.saves.append(checkpoint)
        self.rows[checkpoint.job_id] = checkpoint
        return True

    def load(self, job_id: str) -> Optional[JobCheckpoint]:
        return self.rows.get(job_id)

    def latest(self) -> Optional[JobCheckpoint]:
        return self.saves[-1] if self.saves else None

    def list_jobs(self, limit: int = 20) -> List[JobCheckpoint]:
        return list(self.rows.values())[:limit]


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    """Returns a fixed start time advanced by `step` on every call."""

    def __init__(self, start: datetime = datetime(2026, 1, 5, 9, 0, 0), step: timedelta = timedelta(seconds=30)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture(autouse=True)
def quiet_logger():
    """Fresh quiet logger (and metrics) for every test."""
    reset_logger()
    logger = get_logger(enable_file=False, enable_console=False)
    yield logger
    reset_logger()
    get_logger(enable_file=False, enable_console=False)


@pytest.fixture
def db_url(tmp_path) -> str:
    url = sqlite_url(tmp_path / "embedding_jobs.db")
    yield url
    dispose_engines()


@pytest.fixture
def checkpoint_store(db_url) -> CheckpointStore:
    return CheckpointStore(db_url)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings(db_url) -> RegenSettings:
    return RegenSettings(
        backend_url="https://example.supabase.co/functions/v1/regenerate-embeddings",
        backend_key="anon-key",
        database_url=db_url,
        batch_limit=100,
        batch_delay=0.5,
        retry_delay=5.0,
    )


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recipe_params() -> LaunchParams:
    return LaunchParams.from_dict({
        "table": "recipes",
        "model": "large",
        "dimensions": 1024,
        "startOffset": 0,
        "onlyMissing": False,
    })


@pytest.fixture
def operator() -> Operator:
    return Operator("admin-1", ["user", "super_admin"])


@pytest.fixture
def dataset_backend():
    """Factory for DatasetBackend stubs."""
    return DatasetBackend


@pytest.fixture
def scripted_backend():
    """Factory for ScriptedBackend stubs."""
    return ScriptedBackend
