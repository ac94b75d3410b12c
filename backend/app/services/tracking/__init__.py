"""Task status tracking: polling, aggregation, sweeping and operator tooling."""
from app.services.tracking.aggregation import aggregate_status, recompute_generation
from app.services.tracking.backoff import PollState, delay_for_attempt
from app.services.tracking.cleanup import CleanupService
from app.services.tracking.generation import GenerationService
from app.services.tracking.monitor import MonitorService
from app.services.tracking.poller import StatusPoller
from app.services.tracking.retry import RetryService, is_retryable
from app.services.tracking.stale import StaleTaskFailer
from app.services.tracking.status_check import StatusCheckService
from app.services.tracking.sweeper import BulkSweeper

__all__ = [
    "aggregate_status",
    "recompute_generation",
    "PollState",
    "delay_for_attempt",
    "CleanupService",
    "GenerationService",
    "MonitorService",
    "StatusPoller",
    "RetryService",
    "is_retryable",
    "StaleTaskFailer",
    "StatusCheckService",
    "BulkSweeper",
]
