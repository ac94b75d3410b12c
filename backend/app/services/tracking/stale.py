"""Stale-task failer."""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.errors import ErrorKind
from app.core.logging import get_logger
from app.db.repositories.task import TaskRepository
from app.services.tracking.transitions import mark_failed

logger = get_logger(__name__)

STALE_MESSAGE = "Generation timed out after {minutes} minutes and was automatically marked as failed."


class StaleTaskFailer:
    """
    Fails in-flight tasks that outlived the timeout.

    Guarantees liveness when polls were lost or never scheduled. Re-running
    is a no-op once the tasks are failed.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.tasks = TaskRepository(db)

    def run(
        self,
        now: Optional[datetime] = None,
        timeout_minutes: Optional[int] = None,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        now = now or datetime.now()
        minutes = timeout_minutes if timeout_minutes is not None else self.settings.stale_timeout_minutes
        cutoff = now - timedelta(minutes=minutes)

        stale = self.tasks.list_stale(cutoff)
        correlation_ids = [task.correlation_id or f"#{task.id}" for task in stale]

        if dry_run or not stale:
            logger.info("stale_tasks_checked", found=len(stale), dry_run=dry_run, timeout_minutes=minutes)
            return {"found": len(stale), "failed": 0, "task_ids": correlation_ids, "dry_run": dry_run}

        message = STALE_MESSAGE.format(minutes=minutes)
        generations = set()
        for task in stale:
            mark_failed(
                self.db,
                task,
                message=message,
                kind=ErrorKind.TIMEOUT,
                code="stale_timeout",
                now=now,
                trigger="stale_task_failer",
            )
            if task.generation_id is not None:
                generations.add(task.generation_id)

        logger.info(
            "stale_tasks_failed",
            failed=len(stale),
            generations_updated=len(generations),
            timeout_minutes=minutes,
        )
        return {
            "found": len(stale),
            "failed": len(stale),
            "generations_updated": len(generations),
            "task_ids": correlation_ids,
            "dry_run": False,
        }
