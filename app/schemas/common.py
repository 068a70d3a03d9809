import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SortOrder = Literal["asc", "desc"]


class PageParams(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    hasNext: bool
    hasPrev: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "page": 2,
                "limit": 5,
                "total": 12,
                "pages": 3,
                "hasNext": True,
                "hasPrev": True,
            }
        }
    )

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit) if limit else 0,
            hasNext=page * limit < total,
            hasPrev=page > 1,
        )


def ok(data: Any = None, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def list_envelope(
    items: list[dict[str, Any]],
    statistics: dict[str, Any],
    pagination: Pagination,
) -> dict[str, Any]:
    return ok(
        {
            "items": items,
            "statistics": statistics,
            "pagination": pagination.model_dump(),
        }
    )


class ValidationIssueOut(BaseModel):
    field: str
    message: str
    type: str | None = None


class ErrorDetailOut(BaseModel):
    type: str
    timestamp: str
    request_id: str
    path: str
    details: Any = None


class ErrorOut(BaseModel):
    success: bool = False
    message: str
    error: ErrorDetailOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "message": "Validation failed",
                "error": {
                    "type": "ValidationError",
                    "timestamp": "2026-10-19T08:30:00+00:00",
                    "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                    "path": "/api/tasks",
                    "details": [{"field": "title", "message": "Field required"}],
                },
            }
        }
    )
