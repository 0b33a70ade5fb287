from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime

from afip_enrollment.db.engine import get_session
from afip_enrollment.db.enums import JobStatus
from afip_enrollment.db.models import Job
from afip_enrollment.db.repositories.jobs import JobRepository
from afip_enrollment.services.stores import SessionScope
from afip_enrollment.utils.cancellation import CancelToken
from afip_enrollment.utils.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

# Called on a worker thread with the username and the run's cancel token.
JobRunner = Callable[..., object]


@dataclass(frozen=True)
class JobView:
    id: int
    username: str
    status: JobStatus
    error: str | None
    created_at: datetime
    finished_at: datetime | None = None

    @classmethod
    def from_model(cls, job: Job) -> JobView:
        return cls(
            id=job.id,
            username=job.username,
            status=JobStatus(job.status),
            error=job.error,
            created_at=job.created_at,
            finished_at=job.finished_at,
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "status": self.status.value,
            "error": self.error,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class JobManager:
    """
    What it does:
    - Tracks enrollment runs as jobs: submit returns an id at once, the run happens
      on a worker thread, and the job row records the outcome.

    Why it matters:
    - A portal run takes minutes; callers poll instead of holding a request open.
    - The portal cannot sustain many sessions, so runs go through a bounded pool
      (`max_workers`); extra submissions wait in the executor queue as pending jobs.

    Behavior:
    - submit() rejects an empty username with InvalidArgumentError, and raises
      RuntimeError after shutdown() without creating a job row.
    - A row whose run could not be scheduled is finished as error, never left pending.
    - Finished runs are dropped from the in-memory bookkeeping; the row stays queryable.
    - The job row is the only error channel: runner exceptions are caught on the worker,
      logged, and stored as status=error with the message. Nothing is re-raised.
    - Each job moves pending -> success|error exactly once.
    - Every run gets a CancelToken; its deadline starts when the run starts.
      cancel()/shutdown() trip the token, which the portal session checks between steps.
    """

    def __init__(
        self,
        *,
        runner: JobRunner,
        session_scope: SessionScope = get_session,
        max_workers: int = 1,
        run_deadline_s: float | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        self._runner = runner
        self._session_scope = session_scope
        self._run_deadline_s = run_deadline_s
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="enrollment-job"
        )
        self._lock = threading.Lock()
        self._tokens: dict[int, CancelToken] = {}
        self._futures: dict[int, Future] = {}
        self._closed = False

    def submit(self, username: str | None) -> int:
        if not username or not username.strip():
            raise InvalidArgumentError("'username' is required")
        username = username.strip()
        if self._closed:
            raise RuntimeError("Job manager is shut down; no new jobs accepted")

        with self._session_scope() as session:
            job_id = JobRepository(session).create(username=username).id

        token = CancelToken(self._run_deadline_s)
        with self._lock:
            self._tokens[job_id] = token
            try:
                self._futures[job_id] = self._executor.submit(
                    self._run_job, job_id, username, token
                )
            except RuntimeError as e:
                self._tokens.pop(job_id, None)
                scheduling_error = e
            else:
                scheduling_error = None

        if scheduling_error is not None:
            self._finish(job_id, JobStatus.ERROR, f"Job could not be scheduled: {scheduling_error}")
            raise scheduling_error

        logger.info("Job #%s submitted for %s", job_id, username)
        return job_id

    @property
    def in_flight(self) -> int:
        """Jobs submitted by this manager whose run has not finished yet."""
        with self._lock:
            return len(self._futures)

    def get_job(self, job_id: int) -> JobView:
        with self._session_scope() as session:
            return JobView.from_model(JobRepository(session).get(job_id))

    def wait(self, job_id: int, timeout: float | None = None) -> JobView:
        """
        Blocks until the job's run finished (or `timeout` seconds elapsed), then returns
        the current job row. Jobs submitted by another process are returned as-is.
        """
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except FutureTimeoutError:
                logger.info("Job #%s still running after %ss", job_id, timeout)
        return self.get_job(job_id)

    def cancel(self, job_id: int, reason: str = "cancelled by caller") -> bool:
        with self._lock:
            token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def shutdown(self, *, cancel_running: bool = True, wait: bool = True) -> None:
        self._closed = True
        if cancel_running:
            with self._lock:
                tokens = list(self._tokens.values())
            for token in tokens:
                token.cancel("job manager shutting down")
        self._executor.shutdown(wait=wait)

    def _run_job(self, job_id: int, username: str, token: CancelToken) -> None:
        token.start()
        try:
            token.check()
            self._runner(username, cancel=token)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error("Job #%s failed: %s", job_id, message)
            self._finish(job_id, JobStatus.ERROR, message)
        else:
            logger.info("Job #%s completed", job_id)
            self._finish(job_id, JobStatus.SUCCESS)
        finally:
            with self._lock:
                self._tokens.pop(job_id, None)
                self._futures.pop(job_id, None)

    def _finish(self, job_id: int, status: JobStatus, error: str | None = None) -> None:
        try:
            with self._session_scope() as session:
                JobRepository(session).finish(job_id, status, error)
        except Exception:
            # Nobody is waiting on this thread; the log is the last resort.
            logger.exception("Could not record status %s for job #%s", status, job_id)
