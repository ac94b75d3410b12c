"""
Celery worker for background status tracking.

Queues:
- status_checks: per-task polls (high volume)
- bulk_operations: sweeps and the stale-task failer (low volume)

Every task body owns a sync session, commits on success and never raises:
unexpected exceptions are logged, recorded as a failed_jobs row and
returned as an error result. Follow-up dispatches are held until the
commit so the next job never reads the pre-transition row.
"""
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from celery import Celery, signals
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.locks import get_lock_backend
from app.core.logging import configure_logging, get_logger
from app.db.repositories.failed_job import FailedJobRepository
from app.db.session import SessionLocal
from app.services.tracking.backoff import PollState
from app.services.tracking.dispatch import CommitBoundDispatcher
from app.services.tracking.monitor import QUEUE_BULK_OPERATIONS, QUEUE_DEFAULT, QUEUE_STATUS_CHECKS
from app.services.tracking.poller import StatusPoller
from app.services.tracking.stale import StaleTaskFailer
from app.services.tracking.sweeper import BulkSweeper
from app.services.vendor.client import get_vendor_client

settings = get_settings()
logger = get_logger(__name__)

TASK_CHECK_STATUS = "check_task_status"
TASK_SWEEP = "check_all_pending_tasks"
TASK_FAIL_STALE = "fail_stale_tasks"

celery_app = Celery(
    "tracker_worker",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,
    task_soft_time_limit=240,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=500,
    task_default_queue=QUEUE_DEFAULT,
    task_routes={
        TASK_CHECK_STATUS: {"queue": QUEUE_STATUS_CHECKS},
        TASK_SWEEP: {"queue": QUEUE_BULK_OPERATIONS},
        TASK_FAIL_STALE: {"queue": QUEUE_BULK_OPERATIONS},
    },
    beat_schedule={
        "check-all-pending-tasks": {
            "task": TASK_SWEEP,
            "schedule": timedelta(minutes=settings.sweep_interval_minutes),
        },
        "fail-stale-tasks": {
            "task": TASK_FAIL_STALE,
            "schedule": timedelta(minutes=settings.stale_interval_minutes),
        },
    },
)


@signals.worker_process_init.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(settings)


class CeleryDispatcher:
    """Schedules tracking jobs on their Celery lanes."""

    def dispatch_poll(self, correlation_id: str, state: PollState, countdown: int = 0) -> None:
        check_task_status.apply_async(
            kwargs={"correlation_id": correlation_id, "state": state.to_dict()},
            countdown=countdown,
            queue=QUEUE_STATUS_CHECKS,
        )

    def dispatch_sweep(self, countdown: int = 0) -> None:
        check_all_pending_tasks.apply_async(
            kwargs={"ignore_interval": True},
            countdown=countdown,
            queue=QUEUE_BULK_OPERATIONS,
        )


def record_failed_job(job_name: str, payload: Dict[str, Any], error: Exception) -> None:
    """Persist a failed job run in its own session."""
    db_fail = SessionLocal()
    try:
        FailedJobRepository(db_fail).create(
            job_name=job_name,
            payload=payload,
            error=f"{type(error).__name__}: {error}",
        )
        db_fail.commit()
    except Exception as record_error:
        logger.error(
            "failed_job_record_failed",
            job_name=job_name,
            error=str(record_error),
        )
        db_fail.rollback()
    finally:
        db_fail.close()


def run_job(job_name: str, payload: Dict[str, Any], body: Callable[[Session], Dict[str, Any]]) -> Dict[str, Any]:
    """Run a job body in a fresh session; failures become data, not exceptions."""
    db = SessionLocal()
    try:
        result = body(db)
        db.commit()
        return result
    except Exception as e:
        logger.error(
            "background_job_failed",
            job_name=job_name,
            error=str(e),
            exc_info=True,
            payload=payload,
        )
        db.rollback()
        record_failed_job(job_name, payload, e)
        return {"status": "error", "job": job_name, "error": str(e)}
    finally:
        db.close()


@celery_app.task(name=TASK_CHECK_STATUS)
def check_task_status(correlation_id: str, state: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Poll one task once and reschedule it if still in flight."""
    poll_state = PollState.from_dict(state)

    def body(db: Session) -> Dict[str, Any]:
        dispatcher = CommitBoundDispatcher(db, CeleryDispatcher())
        poller = StatusPoller(db, get_vendor_client(), dispatcher, get_lock_backend(), settings)
        return poller.poll(correlation_id, poll_state)

    return run_job(TASK_CHECK_STATUS, {"correlation_id": correlation_id, "state": poll_state.to_dict()}, body)


@celery_app.task(name=TASK_SWEEP)
def check_all_pending_tasks(ignore_interval: bool = False) -> Dict[str, Any]:
    """Sweep in-flight tasks and fan out one-shot polls."""

    def body(db: Session) -> Dict[str, Any]:
        sweeper = BulkSweeper(db, CommitBoundDispatcher(db, CeleryDispatcher()), get_lock_backend(), settings)
        return sweeper.run(ignore_interval=ignore_interval)

    return run_job(TASK_SWEEP, {"ignore_interval": ignore_interval}, body)


@celery_app.task(name=TASK_FAIL_STALE)
def fail_stale_tasks(timeout_minutes: Optional[int] = None) -> Dict[str, Any]:
    """Fail in-flight tasks older than the stale timeout."""

    def body(db: Session) -> Dict[str, Any]:
        return StaleTaskFailer(db, settings).run(timeout_minutes=timeout_minutes)

    return run_job(TASK_FAIL_STALE, {"timeout_minutes": timeout_minutes}, body)
