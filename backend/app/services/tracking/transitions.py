"""
Task state transitions.

Every mutation follows the same shape: change the task row, then recompute
the owning generation from the current child rows.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.errors import ErrorKind, classify_error_message
from app.core.logging import get_logger
from app.db.models.task import TaskORM
from app.models.task import TaskStatus, VendorTaskStatus
from app.services.tracking.aggregation import recompute_generation

logger = get_logger(__name__)

RETRY_HISTORY_LIMIT = 20


def merge_meta(task: TaskORM, **updates: Any) -> None:
    # JSON columns only track reassignment
    meta = dict(task.meta or {})
    meta.update(updates)
    task.meta = meta


def task_error_kind(task: TaskORM) -> ErrorKind:
    """Stored error kind, classifying the message for rows written without one."""
    if task.error_kind:
        try:
            return ErrorKind(task.error_kind)
        except ValueError:
            logger.warning("task_error_kind_unknown", correlation_id=task.correlation_id, kind=task.error_kind)
    return classify_error_message(task.error_message)


def apply_vendor_status(
    db: Session,
    task: TaskORM,
    result: VendorTaskStatus,
    now: Optional[datetime] = None,
    trigger: str = "status_poll",
) -> bool:
    """
    Write one vendor status reading onto an in-flight task.

    Returns:
        True if the task reached a terminal state
    """
    now = now or datetime.now()

    if result.state == TaskStatus.COMPLETED:
        mark_completed(db, task, result, now=now, trigger=trigger)
        return True

    if result.state == TaskStatus.FAILED:
        message = result.error_message or "Generation failed"
        mark_failed(
            db,
            task,
            message=message,
            kind=classify_error_message(message, default=ErrorKind.VENDOR_FAILED),
            code=result.error_code,
            now=now,
            trigger=trigger,
            vendor_status=result.raw,
        )
        return True

    mark_in_flight(db, task, result, now=now, trigger=trigger)
    return False


def mark_in_flight(
    db: Session,
    task: TaskORM,
    result: VendorTaskStatus,
    now: Optional[datetime] = None,
    trigger: str = "status_poll",
) -> None:
    now = now or datetime.now()

    # Never move backwards from processing to pending
    if result.state == TaskStatus.PROCESSING or task.status == TaskStatus.PROCESSING.value:
        task.status = TaskStatus.PROCESSING.value
    task.progress = max(task.progress or 0, result.progress)
    task.updated_at = now
    merge_meta(task, vendor_status=result.raw, last_checked_at=now.isoformat())

    recompute_generation(db, task.generation_id, trigger=trigger, now=now)


def mark_completed(
    db: Session,
    task: TaskORM,
    result: VendorTaskStatus,
    now: Optional[datetime] = None,
    trigger: str = "status_poll",
) -> None:
    now = now or datetime.now()

    task.status = TaskStatus.COMPLETED.value
    task.progress = 100
    for field, url in result.result_urls.items():
        setattr(task, field, url)
    task.error_message = None
    task.error_code = None
    task.error_kind = None
    task.completed_at = now
    task.updated_at = now
    merge_meta(task, vendor_status=result.raw, last_checked_at=now.isoformat())

    logger.info(
        "task_completed",
        correlation_id=task.correlation_id,
        content_url=task.content_url,
    )
    recompute_generation(db, task.generation_id, trigger=trigger, now=now)


def mark_failed(
    db: Session,
    task: TaskORM,
    message: str,
    kind: ErrorKind,
    code: Optional[str] = None,
    now: Optional[datetime] = None,
    trigger: str = "status_poll",
    vendor_status: Optional[Dict[str, Any]] = None,
) -> None:
    """Move a task to failed, recording the classified error and bumping retry_count."""
    now = now or datetime.now()

    task.status = TaskStatus.FAILED.value
    task.error_message = message
    task.error_code = code
    task.error_kind = kind.value
    task.retry_count = (task.retry_count or 0) + 1
    task.completed_at = now
    task.updated_at = now
    meta_updates: Dict[str, Any] = {"failed_at": now.isoformat(), "failure_trigger": trigger}
    if vendor_status is not None:
        meta_updates["vendor_status"] = vendor_status
    merge_meta(task, **meta_updates)

    logger.warning(
        "task_failed",
        correlation_id=task.correlation_id,
        error_kind=kind.value,
        error_code=code,
        retry_count=task.retry_count,
        trigger=trigger,
    )
    recompute_generation(db, task.generation_id, trigger=trigger, now=now)


def reset_for_retry(
    db: Session,
    task: TaskORM,
    retried_by: str = "operator",
    reason: str = "manual_retry_command",
    now: Optional[datetime] = None,
) -> None:
    """Force a task back to pending and append a retry history entry."""
    now = now or datetime.now()

    meta = dict(task.meta or {})
    history = list(meta.get("retry_history") or [])
    history.append(
        {
            "retried_at": now.isoformat(),
            "retried_by": retried_by,
            "previous_status": task.status,
            "previous_error": task.error_message,
            "previous_error_kind": task.error_kind,
            "reason": reason,
        }
    )
    meta["retry_history"] = history[-RETRY_HISTORY_LIMIT:]
    meta.pop("poll_state", None)

    task.status = TaskStatus.PENDING.value
    task.progress = 0
    task.error_message = None
    task.error_code = None
    task.error_kind = None
    task.completed_at = None
    task.last_accessed_at = now
    task.updated_at = now
    task.meta = meta

    logger.info(
        "task_reset_for_retry",
        correlation_id=task.correlation_id,
        retried_by=retried_by,
        retry_count=task.retry_count,
    )
    recompute_generation(db, task.generation_id, trigger="manual_retry", now=now)
