from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.common import PageParams, SortOrder

TaskStatus = Literal["pending", "in_progress", "completed", "cancelled", "on_hold"]
TaskPriority = Literal["low", "medium", "high", "urgent", "critical"]
TaskSortField = Literal["created_at", "updated_at", "due_date", "priority", "title"]

TASK_STATUSES: tuple[str, ...] = ("pending", "in_progress", "completed", "cancelled", "on_hold")
TASK_PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "urgent", "critical")


class ChecklistItem(BaseModel):
    text: str = Field(min_length=1, max_length=255)
    done: bool = False


class _TaskFields(BaseModel):
    description: Optional[str] = Field(default=None, max_length=2000)
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = None
    parent_task_id: Optional[str] = None
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    estimated_hours: Optional[Decimal] = Field(default=None, ge=0, le=10_000)
    actual_hours: Optional[Decimal] = Field(default=None, ge=0, le=10_000)
    tags: Optional[list[str]] = Field(default=None, max_length=20)
    checklist: Optional[list[ChecklistItem]] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        return [tag.strip() for tag in value if tag and tag.strip()]


class TaskCreate(_TaskFields):
    title: str = Field(min_length=1, max_length=255)
    status: Optional[TaskStatus] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("title is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Prepare quarterly stock count",
                "priority": "high",
                "due_date": "2026-11-01T09:00:00Z",
                "tags": ["warehouse"],
            }
        }
    )


class TaskUpdate(_TaskFields):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    status: Optional[TaskStatus] = None
    version: Optional[int] = Field(default=None, ge=1)


class TaskCommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)


class TaskListParams(PageParams):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    parent_task_id: Optional[str] = None
    due_date_from: Optional[datetime] = None
    due_date_to: Optional[datetime] = None
    search: Optional[str] = Field(default=None, min_length=1, max_length=100)
    sort_by: TaskSortField = "created_at"
    sort_order: SortOrder = "desc"
    include_subtasks: bool = False
    my_tasks_only: bool = False
