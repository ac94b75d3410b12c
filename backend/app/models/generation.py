"""Generation models."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum

from app.models.task import TaskRead


class GenerationStatus(str, Enum):
    """Derived generation states."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    MIXED = "mixed"


class StatusChange(BaseModel):
    """상태 변경 이력 항목."""
    status: GenerationStatus
    reason: str
    timestamp: str
    trigger: str


class GenerationSummary(BaseModel):
    """하위 태스크 상태 요약."""
    total: int = 0
    completed: int = 0
    failed: int = 0
    processing: int = 0
    progress: int = Field(ge=0, le=100, default=0, description="완료 비율 (%)")


class GenerationRead(BaseModel):
    """생성 요청 조회 응답."""
    model_config = ConfigDict(from_attributes=True)

    generation_id: str
    device_id: Optional[str] = None
    mode: Optional[str] = None
    status: GenerationStatus
    task_count: int
    created_at: datetime
    completed_at: Optional[datetime] = None
    status_changes: List[StatusChange] = Field(default_factory=list)
    summary: GenerationSummary = Field(default_factory=GenerationSummary)
    tasks: List[TaskRead] = Field(default_factory=list)


class GenerationCreate(BaseModel):
    """생성 요청."""
    device_id: Optional[str] = None
    mode: str = "music"
    request_data: Dict[str, Any] = Field(default_factory=dict)
    task_count: int = Field(default=2, ge=1, le=10, description="벤더에 요청할 태스크 수")
