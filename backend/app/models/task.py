"""Task models."""
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    """Task lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


IN_FLIGHT_STATUSES = (TaskStatus.PENDING.value, TaskStatus.PROCESSING.value)
TERMINAL_STATUSES = (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value)


class VendorTaskStatus(BaseModel):
    """벤더 상태 조회 결과 (로컬 상태로 매핑된 값)."""
    state: TaskStatus
    progress: int = Field(ge=0, le=100, default=0)
    result_urls: Dict[str, str] = Field(default_factory=dict)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class TaskRead(BaseModel):
    """태스크 조회 응답."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    correlation_id: Optional[str] = None
    status: TaskStatus
    progress: int = 0
    title: Optional[str] = None
    content_type: str = "music"
    content_url: Optional[str] = None
    download_url: Optional[str] = None
    preview_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    error_kind: Optional[str] = None
    retry_count: int = 0
    meta: Optional[Dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime
    completed_at: Optional[datetime] = None
