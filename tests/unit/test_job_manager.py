from __future__ import annotations

import threading

import pytest

from afip_enrollment.db.enums import JobStatus
from afip_enrollment.db.repositories.jobs import JobRepository
from afip_enrollment.services.jobs import JobManager
from afip_enrollment.utils.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
)


@pytest.fixture()
def gate():
    return threading.Event()


def _manager(session_scope, runner, **kwargs) -> JobManager:
    return JobManager(runner=runner, session_scope=session_scope, **kwargs)


@pytest.mark.unit
def test_submit_returns_while_job_is_pending(session_scope, gate):
    manager = _manager(session_scope, lambda username, cancel: gate.wait(5))
    try:
        job_id = manager.submit("20123456789")
        assert manager.get_job(job_id).status is JobStatus.PENDING

        gate.set()
        job = manager.wait(job_id, timeout=5)
        assert job.status is JobStatus.SUCCESS
        assert job.error is None
        assert job.finished_at is not None
    finally:
        manager.shutdown()


@pytest.mark.unit
def test_runner_failure_is_recorded_not_raised(session_scope):
    def runner(username, cancel):
        raise ConflictError("Element #cmdIngresar not found within 16000ms")

    manager = _manager(session_scope, runner)
    try:
        job = manager.wait(manager.submit("20123456789"), timeout=5)
    finally:
        manager.shutdown()

    assert job.status is JobStatus.ERROR
    assert job.error == "Element #cmdIngresar not found within 16000ms"
    assert job.as_dict()["status"] == "error"


@pytest.mark.unit
def test_exception_without_message_records_class_name(session_scope):
    def runner(username, cancel):
        raise RuntimeError()

    manager = _manager(session_scope, runner)
    try:
        job = manager.wait(manager.submit("20123456789"), timeout=5)
    finally:
        manager.shutdown()

    assert job.error == "RuntimeError"


@pytest.mark.unit
@pytest.mark.parametrize("username", [None, "", "   "])
def test_empty_username_rejected(session_scope, username):
    manager = _manager(session_scope, lambda username, cancel: None)
    try:
        with pytest.raises(InvalidArgumentError):
            manager.submit(username)
    finally:
        manager.shutdown()


@pytest.mark.unit
def test_unknown_job_is_not_found(session_scope):
    manager = _manager(session_scope, lambda username, cancel: None)
    try:
        with pytest.raises(NotFoundError):
            manager.get_job(424242)
    finally:
        manager.shutdown()


@pytest.mark.unit
def test_runs_are_bounded_by_the_pool(session_scope, gate):
    running = []
    lock = threading.Lock()
    peak = [0]

    def runner(username, cancel):
        with lock:
            running.append(username)
            peak[0] = max(peak[0], len(running))
        gate.wait(5)
        with lock:
            running.remove(username)

    manager = _manager(session_scope, runner, max_workers=1)
    try:
        first = manager.submit("20111111111")
        second = manager.submit("20222222222")
        assert manager.get_job(second).status is JobStatus.PENDING

        gate.set()
        assert manager.wait(first, timeout=5).status is JobStatus.SUCCESS
        assert manager.wait(second, timeout=5).status is JobStatus.SUCCESS
    finally:
        manager.shutdown()

    assert peak[0] == 1


@pytest.mark.unit
def test_cancel_trips_the_token_seen_by_the_runner(session_scope):
    started = threading.Event()

    def runner(username, cancel):
        started.set()
        while True:
            cancel.check()
            threading.Event().wait(0.01)

    manager = _manager(session_scope, runner)
    try:
        job_id = manager.submit("20123456789")
        assert started.wait(5)
        assert manager.cancel(job_id) is True
        job = manager.wait(job_id, timeout=5)
    finally:
        manager.shutdown()

    assert job.status is JobStatus.ERROR
    assert "cancelled" in job.error


@pytest.mark.unit
def test_deadline_expires_runs(session_scope):
    def runner(username, cancel):
        threading.Event().wait(0.05)
        cancel.check()

    manager = _manager(session_scope, runner, run_deadline_s=0.01)
    try:
        job = manager.wait(manager.submit("20123456789"), timeout=5)
    finally:
        manager.shutdown()

    assert job.status is JobStatus.ERROR
    assert "deadline" in job.error


@pytest.mark.unit
def test_finished_job_cannot_finish_again(session):
    repo = JobRepository(session)
    job = repo.create(username="20123456789")
    repo.finish(job.id, JobStatus.SUCCESS)

    with pytest.raises(ConflictError):
        repo.finish(job.id, JobStatus.ERROR, "late failure")

    with pytest.raises(ValueError):
        repo.finish(repo.create(username="20123456789").id, JobStatus.PENDING)


@pytest.mark.unit
def test_finished_runs_are_not_kept_in_memory(session_scope):
    manager = _manager(session_scope, lambda username, cancel: None)
    try:
        job_ids = [manager.submit(f"2011111111{i}") for i in range(5)]
        for job_id in job_ids:
            assert manager.wait(job_id, timeout=5).status is JobStatus.SUCCESS
        assert manager.in_flight == 0
        # rows remain queryable after the run is forgotten
        assert manager.wait(job_ids[0]).status is JobStatus.SUCCESS
    finally:
        manager.shutdown()


@pytest.mark.unit
def test_submit_after_shutdown_creates_no_row(session_scope):
    manager = _manager(session_scope, lambda username, cancel: None)
    manager.shutdown()

    with pytest.raises(RuntimeError, match="shut down"):
        manager.submit("20123456789")

    with session_scope() as s:
        assert JobRepository(s).list_for_username("20123456789") == []


@pytest.mark.unit
def test_job_that_cannot_be_scheduled_is_finished_as_error(session_scope):
    manager = _manager(session_scope, lambda username, cancel: None)
    manager._executor.shutdown()  # executor gone while the manager still accepts jobs

    with pytest.raises(RuntimeError):
        manager.submit("20123456789")

    with session_scope() as s:
        (job,) = JobRepository(s).list_for_username("20123456789")
        assert job.status == JobStatus.ERROR.value
        assert "could not be scheduled" in job.error
    assert manager.in_flight == 0
