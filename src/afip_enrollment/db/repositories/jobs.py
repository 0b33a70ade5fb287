from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select

from afip_enrollment.db.enums import JobStatus
from afip_enrollment.db.models import Job
from afip_enrollment.db.repositories.base import BaseRepository
from afip_enrollment.utils.errors import ConflictError, NotFoundError


class JobRepository(BaseRepository):
    def create(self, *, username: str) -> Job:
        """
        What it does:
        - Inserts a pending Job row for one enrollment run.

        Behavior:
        - Flushes so job.id is available before the background run is scheduled.
        """
        job = Job(username=username, status=JobStatus.PENDING.value)
        self.session.add(job)
        self.session.flush()
        return job

    def get(self, job_id: int) -> Job:
        job = self.session.get(Job, job_id)
        if not job:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def list_for_username(self, username: str, limit: int = 20) -> list[Job]:
        stmt = (
            select(Job).where(Job.username == username).order_by(Job.id.desc()).limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def finish(self, job_id: int, status: JobStatus, error: str | None = None) -> Job:
        """
        What it does:
        - Moves a job from pending to its terminal status.

        Behavior:
        - Terminal statuses are final: finishing a job twice raises ConflictError.
        - Finishing with PENDING raises ValueError.
        - The error text is only stored for ERROR.
        """
        if not status.terminal:
            raise ValueError(f"Cannot finish a job with non-terminal status '{status}'")

        job = self.get(job_id)
        if job.status != JobStatus.PENDING.value:
            raise ConflictError(f"Job {job_id} already finished with status '{job.status}'")

        job.status = status.value
        job.error = error if status is JobStatus.ERROR else None
        job.finished_at = datetime.now(timezone.utc)
        self.session.flush()
        return job
