"""Database ORM models."""
from app.db.models.generation import GenerationORM
from app.db.models.task import TaskORM
from app.db.models.failed_job import FailedJobORM

__all__ = [
    "GenerationORM",
    "TaskORM",
    "FailedJobORM",
]
