"""Queue and task health snapshot."""
from datetime import datetime, timedelta
from typing import Optional

import redis
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.locks import SWEEP_LOCK_KEY
from app.core.logging import get_logger
from app.db.repositories.failed_job import FailedJobRepository
from app.db.repositories.generation import GenerationRepository
from app.db.repositories.task import TaskRepository
from app.models.monitor import HealthReport, MonitorSnapshot
from app.models.task import TaskStatus

logger = get_logger(__name__)

QUEUE_STATUS_CHECKS = "status_checks"
QUEUE_BULK_OPERATIONS = "bulk_operations"
QUEUE_DEFAULT = "default"
MONITORED_QUEUES = (QUEUE_STATUS_CHECKS, QUEUE_BULK_OPERATIONS, QUEUE_DEFAULT)


def compute_success_rate(completed: int, failed: int) -> float:
    """Completed share of finished tasks, 100.0 when nothing finished."""
    finished = completed + failed
    if finished == 0:
        return 100.0
    return round(completed / finished * 100, 1)


def is_healthy(failed_jobs: int, success_rate: float, max_failed_jobs: int = 10, min_success_rate: float = 90.0) -> bool:
    return failed_jobs < max_failed_jobs and success_rate >= min_success_rate


class MonitorService:
    """Builds point-in-time monitoring snapshots."""

    def __init__(self, db: Session, lock_backend, settings: Optional[Settings] = None):
        self.db = db
        self.lock_backend = lock_backend
        self.settings = settings or get_settings()
        self.tasks = TaskRepository(db)
        self.generations = GenerationRepository(db)
        self.failed_jobs = FailedJobRepository(db)

    def queue_depths(self) -> dict:
        depths = {}
        for queue in MONITORED_QUEUES:
            try:
                depths[queue] = self.lock_backend.queue_length(queue)
            except redis.RedisError as e:
                logger.warning("queue_depth_unavailable", queue=queue, error=str(e))
                depths[queue] = None
        return depths

    def redis_info(self) -> dict:
        try:
            return self.lock_backend.info()
        except redis.RedisError as e:
            logger.warning("redis_info_unavailable", error=str(e))
            return {"error": str(e)}

    def health(self, now: Optional[datetime] = None) -> HealthReport:
        now = now or datetime.now()
        since = now - timedelta(hours=1)

        failed_jobs = self.failed_jobs.count()
        completed = self.tasks.count_updated_since(since, status=TaskStatus.COMPLETED.value)
        failed = self.tasks.count_updated_since(since, status=TaskStatus.FAILED.value)
        success_rate = compute_success_rate(completed, failed)

        return HealthReport(
            failed_jobs=failed_jobs,
            bulk_check_running=self.lock_backend.get(SWEEP_LOCK_KEY) is not None,
            recent_errors=failed,
            success_rate=success_rate,
            healthy=is_healthy(
                failed_jobs,
                success_rate,
                max_failed_jobs=self.settings.health_max_failed_jobs,
                min_success_rate=self.settings.health_min_success_rate,
            ),
        )

    def snapshot(self, now: Optional[datetime] = None) -> MonitorSnapshot:
        now = now or datetime.now()
        return MonitorSnapshot(
            timestamp=now,
            queues=self.queue_depths(),
            redis=self.redis_info(),
            tasks=self.tasks.count_by_status(),
            generations=self.generations.count_by_status(),
            health=self.health(now),
        )
