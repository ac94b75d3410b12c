"""Database repositories."""
from app.db.repositories.task import TaskRepository
from app.db.repositories.generation import GenerationRepository
from app.db.repositories.failed_job import FailedJobRepository

__all__ = [
    "TaskRepository",
    "GenerationRepository",
    "FailedJobRepository",
]
