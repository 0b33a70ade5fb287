from __future__ import annotations

import argparse
from datetime import timedelta

from afip_enrollment.config.logging import configure_logging
from afip_enrollment.config.settings import settings
from afip_enrollment.db.engine import create_all, get_session
from afip_enrollment.db.repositories.jobs import JobRepository
from afip_enrollment.scraping.afip_playwright import AfipPortalClient
from afip_enrollment.services.enrollment import EnrollmentService
from afip_enrollment.services.freshness import FreshnessGate
from afip_enrollment.services.jobs import JobManager, JobView
from afip_enrollment.services.staging import StagingArea
from afip_enrollment.services.stores import SqlSecretStore, SqlUserDirectory


def _require_portal_settings() -> None:
    if not settings.portal_url:
        raise RuntimeError("Missing required portal settings: PORTAL_URL")


def build_enrollment_service(*, headless: bool = True) -> EnrollmentService:
    """Wires the SQL stores, the staging area and the Playwright client from settings."""
    _require_portal_settings()
    staging = StagingArea(settings.staging_dir, csr_filename=settings.csr_filename)
    secrets = SqlSecretStore()

    def portal_factory() -> AfipPortalClient:
        return AfipPortalClient(
            base_url=settings.portal_url,
            staging=staging,
            headless=headless,
            artifacts_dir=settings.artifacts_dir,
        )

    return EnrollmentService(
        users=SqlUserDirectory(),
        secrets=secrets,
        portal_factory=portal_factory,
        staging=staging,
        gate=FreshnessGate(secrets, ttl=timedelta(days=settings.freshness_days)),
    )


def build_job_manager(service: EnrollmentService) -> JobManager:
    def runner(username: str, *, cancel=None) -> None:
        service.enroll(username, cancel=cancel)

    return JobManager(
        runner=runner,
        max_workers=settings.max_concurrent_runs,
        run_deadline_s=settings.run_deadline_seconds,
    )


def main(argv: list[str] | None = None) -> int:
    """
    What it does:
    - Provides the run modes:
        1) init-db: create the tables
        2) submit: record a job, run the enrollment in the background and wait for it
        3) status: print a job's status
        4) enroll: run the enrollment synchronously without a job row (debugging)

    Why it matters:
    - One entrypoint for local development and for operators.

    Behavior:
    - `submit` prints the job id before the run starts, then the terminal status.
    - The browser is headless when PORTAL_HEADLESS is set and `--headful` is not given.
    - Returns 0 on success, 1 when the job (or the synchronous run) ended in error.
    """
    parser = argparse.ArgumentParser(prog="afip-enroll")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init-db", help="Create the database tables.")

    p_submit = sub.add_parser("submit", help="Record an enrollment job and run it in the background.")
    p_submit.add_argument("--username", type=str, required=True)
    p_submit.add_argument("--headful", action="store_true", help="Show the browser window for debugging.")

    p_status = sub.add_parser("status", help="Print the status of a job.")
    p_status.add_argument("--job-id", type=int, required=True)

    p_enroll = sub.add_parser("enroll", help="Run an enrollment synchronously (no job record).")
    p_enroll.add_argument("--username", type=str, required=True)
    p_enroll.add_argument("--headful", action="store_true", help="Show the browser window for debugging.")

    args = parser.parse_args(argv)
    configure_logging(settings.log_level)

    if args.cmd == "init-db":
        create_all()
        print("OK: tables created")
        return 0

    if args.cmd == "status":
        with get_session() as session:
            job = JobView.from_model(JobRepository(session).get(args.job_id))
        print(f"job_id={job.id} username={job.username} status={job.status} error={job.error or ''}")
        return 0

    service = build_enrollment_service(headless=settings.portal_headless and not args.headful)

    if args.cmd == "enroll":
        outcome = service.enroll(args.username)
        print(
            f"OK: username={outcome.username} sale_point={outcome.sale_point} "
            f"reused={outcome.reused} alias={outcome.alias or ''}"
        )
        return 0

    manager = build_job_manager(service)
    try:
        job_id = manager.submit(args.username)
        print(f"job_id={job_id}", flush=True)
        job = manager.wait(job_id)
    except KeyboardInterrupt:
        manager.shutdown(cancel_running=True, wait=True)
        raise
    manager.shutdown(cancel_running=False, wait=True)

    print(f"job_id={job.id} status={job.status} error={job.error or ''}")
    return 0 if job.status == "success" else 1


if __name__ == "__main__":
    raise SystemExit(main())
