"""Monitoring snapshot models."""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime


class HealthReport(BaseModel):
    """Derived health indicators."""
    failed_jobs: int = 0
    bulk_check_running: bool = False
    recent_errors: int = 0
    success_rate: float = Field(ge=0.0, le=100.0, default=100.0)
    healthy: bool = True


class MonitorSnapshot(BaseModel):
    """Point-in-time view of queues, statuses and health."""
    timestamp: datetime = Field(default_factory=datetime.now)
    queues: Dict[str, Optional[int]] = Field(default_factory=dict)
    redis: Dict[str, Any] = Field(default_factory=dict)
    tasks: Dict[str, int] = Field(default_factory=dict)
    generations: Dict[str, int] = Field(default_factory=dict)
    health: HealthReport = Field(default_factory=HealthReport)
