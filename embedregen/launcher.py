"""
Job launcher.

Validates launch parameters, mints a job id, writes the initial checkpoint
and starts a worker process whose lifetime is independent of the caller.
Parameters reach the worker through environment variables, so a job is
bound to the host that launched it.
"""

import os
import subprocess
import sys
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, Mapping, Optional

from .checkpoint import CheckpointStore, JobCheckpoint
from .config import RegenSettings, truncate
from .errors import ForbiddenError, UnauthorizedError, ValidationError
from .logger import get_logger
from .schema import DEFAULT_MODEL, LaunchParams, resolve_table, short_table_name

logger = get_logger()

REQUIRED_ROLE = "super_admin"

ENV_TABLE = "EMBEDDING_TABLE"
ENV_START_OFFSET = "EMBEDDING_START_OFFSET"
ENV_MODEL = "EMBEDDING_MODEL"
ENV_DIMENSIONS = "EMBEDDING_DIMENSIONS"
ENV_JOB_ID = "EMBEDDING_JOB_ID"
ENV_ONLY_MISSING = "EMBEDDING_ONLY_MISSING"


class Operator:
    """Identity of whoever asks for a launch."""

    def __init__(self, user_id: str, roles: Iterable[str] = ()):
        self.user_id = user_id
        self.roles = frozenset(r.strip() for r in roles if r and r.strip())

    @classmethod
    def from_env(cls) -> Optional["Operator"]:
        user_id = os.getenv("EMBEDREGEN_OPERATOR", "").strip()
        if not user_id:
            return None
        roles = os.getenv("EMBEDREGEN_OPERATOR_ROLES", "").split(",")
        return cls(user_id, roles)


def require_operator(operator: Optional[Operator]) -> Operator:
    """
    Reject callers that may not launch jobs.

    Raises:
        UnauthorizedError: No operator identity
        ForbiddenError: Operator lacks the super_admin role
    """
    if operator is None or not operator.user_id:
        raise UnauthorizedError("Unauthorized")
    if REQUIRED_ROLE not in operator.roles:
        raise ForbiddenError("Forbidden: Super admin access required")
    return operator


class JobIdGenerator:
    """embedding-<table>-<unix ns>, strictly increasing within the process."""

    def __init__(self, clock_ns: Callable[[], int] = time.time_ns):
        self._clock_ns = clock_ns
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self, table: str) -> str:
        with self._lock:
            stamp = self._clock_ns()
            if stamp <= self._last:
                stamp = self._last + 1
            self._last = stamp
        return f"embedding-{short_table_name(table)}-{stamp}"


def worker_environment(job_id: str, params: LaunchParams, settings: RegenSettings) -> Dict[str, str]:
    """Variables handed to the detached worker process."""
    env = dict(os.environ)
    env.update(settings.to_env())
    env.update({
        ENV_TABLE: params.table,
        ENV_START_OFFSET: str(params.start_offset),
        ENV_MODEL: params.model,
        ENV_DIMENSIONS: str(params.dimensions),
        ENV_JOB_ID: job_id,
        ENV_ONLY_MISSING: "true" if params.only_missing else "false",
    })
    return env


def params_from_env(environ: Optional[Mapping[str, str]] = None) -> LaunchParams:
    """Rebuild launch params inside the worker process."""
    environ = os.environ if environ is None else environ

    table = environ.get(ENV_TABLE, "")
    if resolve_table(table) is None:
        raise ValidationError([f"{ENV_TABLE} is missing or invalid: {table!r}"])

    try:
        data = {
            "table": table,
            "model": environ.get(ENV_MODEL) or DEFAULT_MODEL,
            "start_offset": int(environ.get(ENV_START_OFFSET) or 0),
            "only_missing": environ.get(ENV_ONLY_MISSING, "").strip().lower() == "true",
        }
        if environ.get(ENV_DIMENSIONS):
            data["dimensions"] = int(environ[ENV_DIMENSIONS])
    except ValueError as e:
        raise ValidationError([f"Invalid worker environment: {e}"]) from e
    return LaunchParams.from_dict(data)


def spawn_detached_worker(env: Dict[str, str]) -> int:
    """Start `python -m embedregen worker` in its own session; returns the pid."""
    proc = subprocess.Popen(
        [sys.executable, "-m", "embedregen", "worker"],
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )
    return proc.pid


class JobLauncher:
    """Fire-and-forget entry point for regeneration jobs."""

    def __init__(
        self,
        settings: RegenSettings,
        store: Optional[CheckpointStore] = None,
        spawner: Optional[Callable[[Dict[str, str]], int]] = None,
        id_generator: Optional[JobIdGenerator] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self._store = store
        self.spawner = spawner or spawn_detached_worker
        self.id_generator = id_generator or JobIdGenerator()
        self._clock = clock

    @property
    def store(self) -> CheckpointStore:
        """Opened on first use so rejected launches touch no database."""
        if self._store is None:
            self._store = CheckpointStore(self.settings.database_url)
        return self._store

    def start(self, params, operator: Optional[Operator]) -> str:
        """
        Launch a job and return its id without waiting for it.

        Args:
            params: LaunchParams, or a raw dict of launch input
            operator: Caller identity; must hold the super_admin role

        Raises:
            UnauthorizedError / ForbiddenError: Before validation runs
            ValidationError: Bad parameters; nothing is written
            OSError: The worker could not be started; the row keeps the error
        """
        require_operator(operator)
        if not isinstance(params, LaunchParams):
            params = LaunchParams.from_dict(params)

        job_id = self.id_generator.next_id(params.table)
        initial = JobCheckpoint(
            job_id=job_id,
            table_name=params.table,
            model=params.model,
            dimensions=params.dimensions,
            start_offset=params.start_offset,
            current_offset=params.start_offset,
            start_time=self._clock(),
            metadata={
                "onlyMissing": params.only_missing,
                "launchedBy": operator.user_id,
            },
        )
        if not self.store.save(initial):
            logger.warning("Initial checkpoint not written, launching anyway", job_id=job_id)

        try:
            pid = self.spawner(worker_environment(job_id, params, self.settings))
        except Exception as e:
            initial.error_message = truncate(f"Worker failed to start: {e}", self.settings.error_truncate)
            self.store.save(initial)
            logger.error("Worker failed to start", job_id=job_id, error=str(e))
            raise
        logger.info(
            "Embedding regeneration started",
            job_id=job_id,
            pid=pid,
            **params.to_dict(),
        )
        return job_id

    def resume(self, job_id: str, operator: Optional[Operator]) -> str:
        """
        Relaunch a stopped job as a new job from its last persisted offset.

        Raises:
            ValidationError: Unknown or already completed job
        """
        require_operator(operator)
        previous = self.store.load(job_id)
        if previous is None:
            raise ValidationError([f"Unknown job: {job_id}"])
        if previous.is_completed:
            raise ValidationError([f"Job already completed: {job_id}"])

        params = LaunchParams(
            table=previous.table_name,
            model=previous.model,
            dimensions=previous.dimensions,
            start_offset=previous.current_offset,
            only_missing=bool(previous.metadata.get("onlyMissing", True)),
        )
        new_job_id = self.start(params, operator)
        logger.info("Resumed job", previous_job_id=job_id, job_id=new_job_id, offset=params.start_offset)
        return new_job_id
