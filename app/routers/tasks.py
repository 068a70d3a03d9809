from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.core.api_docs import error_responses
from app.core.deps import get_db, get_realtime
from app.core.errors import ForbiddenError, ValidationError
from app.core.permissions import ensure_capability, user_has_capability
from app.core.roles import Capability
from app.core.security_current import CurrentUser, require_organization
from app.core.throttle import MEMBER_LIMITS
from app.db.database import Database, FindOptions, JoinSpec, utcnow
from app.db.filters import Eq, Filter, In, Range, TextSearch
from app.schemas.common import Pagination, list_envelope, ok
from app.schemas.task import (
    TASK_PRIORITIES,
    TASK_STATUSES,
    TaskCommentCreate,
    TaskCreate,
    TaskListParams,
    TaskUpdate,
)
from app.services.realtime_service import RealtimeHub
from app.services.tenancy import (
    SAFE_USER_COLUMNS,
    ensure_member,
    ensure_reference,
    get_scoped_record,
    user_summaries,
)

router = APIRouter(prefix="/api/tasks", tags=["tasks"], dependencies=MEMBER_LIMITS)

MAX_TASK_DEPTH = 50
SEARCH_FIELDS = ("title", "description")
REQUIRED_FIELDS = ("title", "status", "priority", "progress")
TASK_JOINS = (
    JoinSpec("users", SAFE_USER_COLUMNS, via="assigned_to", alias="assignee"),
    JoinSpec("users", SAFE_USER_COLUMNS, via="created_by", alias="creator"),
)


def _list_filters(params: TaskListParams, current: CurrentUser) -> list[Filter]:
    filters: list[Filter] = [Eq("organization_id", current.organization_id)]
    if params.status:
        filters.append(Eq("status", params.status))
    if params.priority:
        filters.append(Eq("priority", params.priority))
    if params.my_tasks_only:
        filters.append(Eq("assigned_to", current.id))
    elif params.assigned_to:
        filters.append(Eq("assigned_to", params.assigned_to))
    if params.created_by:
        filters.append(Eq("created_by", params.created_by))
    if params.parent_task_id:
        filters.append(Eq("parent_task_id", params.parent_task_id))
    if params.due_date_from or params.due_date_to:
        filters.append(Range("due_date", gte=params.due_date_from, lte=params.due_date_to))
    if params.search:
        filters.append(TextSearch(params.search, SEARCH_FIELDS))
    return filters


def _statistics(db: Database, filters: list[Filter], total: int) -> dict[str, Any]:
    by_status = db.count_by("tasks", "status", filters)
    by_priority = db.count_by("tasks", "priority", filters)
    return {
        "total": total,
        "by_status": {name: by_status.get(name, 0) for name in TASK_STATUSES},
        "by_priority": {name: by_priority.get(name, 0) for name in TASK_PRIORITIES},
    }


def _depth_error() -> ValidationError:
    return ValidationError(
        "Validation failed",
        details=[{"field": "parent_task_id", "message": f"task hierarchy deeper than {MAX_TASK_DEPTH} levels"}],
    )


def _ancestor_ids(db: Database, parent_id: str, organization_id: str) -> list[str]:
    """Walk up from ``parent_id``; fails when the chain is deeper than the bound."""
    chain: list[str] = []
    cursor: str | None = parent_id
    while cursor:
        if len(chain) >= MAX_TASK_DEPTH:
            raise _depth_error()
        if cursor in chain:
            break
        chain.append(cursor)
        parent = db.find_one("tasks", [Eq("id", cursor), Eq("organization_id", organization_id)])
        cursor = parent["parent_task_id"] if parent else None
    return chain


def _validate_parent(db: Database, task_id: str | None, parent_id: str, organization_id: str) -> None:
    ensure_reference(db, "tasks", parent_id, organization_id, "parent_task_id")
    ancestors = _ancestor_ids(db, parent_id, organization_id)
    if task_id is not None and task_id in ancestors:
        raise ValidationError(
            "Validation failed",
            details=[{"field": "parent_task_id", "message": "would create a cycle in the task hierarchy"}],
        )
    if len(ancestors) >= MAX_TASK_DEPTH:
        raise _depth_error()


def _apply_completion_rule(values: dict[str, Any], existing: dict[str, Any] | None) -> dict[str, Any]:
    was_completed = existing is not None and existing["status"] == "completed"
    progress_supplied = values.get("progress") is not None

    if values.get("progress") == 100 and not was_completed:
        values["status"] = "completed"

    if values.get("status") == "completed" and not was_completed:
        values["completed_at"] = utcnow()
        if not progress_supplied:
            values["progress"] = 100
    elif was_completed and values.get("status") not in (None, "completed"):
        values["completed_at"] = None
    return values


def _task_values(payload: TaskCreate | TaskUpdate) -> dict[str, Any]:
    values = payload.model_dump(exclude_unset=True, exclude={"version"})
    for required in REQUIRED_FIELDS:
        if values.get(required, "") is None:
            del values[required]
    for json_field, empty in (("tags", []), ("checklist", []), ("metadata", {})):
        if json_field in values and values[json_field] is None:
            values[json_field] = empty
    return values


def _load_task_detail(db: Database, task_id: str, organization_id: str) -> dict[str, Any]:
    get_scoped_record(db, "tasks", task_id, organization_id, "Task")
    task = db.find_with_joins("tasks", TASK_JOINS, [Eq("id", task_id)])[0]
    task["subtasks"] = db.find_all(
        "tasks",
        [Eq("parent_task_id", task_id), Eq("organization_id", organization_id)],
        FindOptions(order_by="created_at", ascending=True),
    )
    comments = db.find_all(
        "task_comments",
        [Eq("task_id", task_id)],
        FindOptions(order_by="created_at", ascending=True),
    )
    authors = user_summaries(db, {comment["user_id"] for comment in comments})
    task["comments"] = [{**comment, "user": authors.get(comment["user_id"])} for comment in comments]
    return task


def _notify_assignee(
    background: BackgroundTasks,
    realtime: RealtimeHub,
    task: dict[str, Any],
    current: CurrentUser,
) -> None:
    assignee = task.get("assigned_to")
    if assignee and assignee != current.id:
        background.add_task(
            realtime.send_to_user,
            assignee,
            "task:assigned",
            {"taskId": task["id"], "title": task["title"], "assignedBy": current.id},
        )


@router.get("", summary="List tasks", responses=error_responses(400, 401, 403))
def list_tasks(
    params: Annotated[TaskListParams, Query()],
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
):
    filters = _list_filters(params, current)
    total = db.count("tasks", filters)
    items = db.find_with_joins(
        "tasks",
        TASK_JOINS,
        filters,
        FindOptions(
            order_by=params.sort_by,
            ascending=params.sort_order == "asc",
            limit=params.limit,
            offset=params.offset,
        ),
    )
    if params.include_subtasks and items:
        subtasks = db.find_all(
            "tasks",
            [Eq("organization_id", current.organization_id), In("parent_task_id", [item["id"] for item in items])],
            FindOptions(order_by="created_at", ascending=True),
        )
        for item in items:
            item["subtasks"] = [row for row in subtasks if row["parent_task_id"] == item["id"]]

    return list_envelope(
        items,
        _statistics(db, filters, total),
        Pagination.build(params.page, params.limit, total),
    )


@router.get("/{task_id}", summary="Get a task with subtasks and comments", responses=error_responses(401, 403, 404))
def get_task(
    task_id: str,
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
):
    return ok({"task": _load_task_detail(db, task_id, current.organization_id)})


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a task",
    responses=error_responses(400, 401, 403),
)
def create_task(
    payload: TaskCreate,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    organization_id = current.organization_id
    values = _task_values(payload)
    if values.get("assigned_to"):
        ensure_member(db, values["assigned_to"], organization_id, "assigned_to")
    if values.get("parent_task_id"):
        _validate_parent(db, None, values["parent_task_id"], organization_id)

    values.setdefault("status", "pending")
    values = _apply_completion_rule(values, None)
    task = db.create(
        "tasks",
        {**values, "organization_id": organization_id, "created_by": current.id},
    )

    background.add_task(
        realtime.emit_to_organization,
        organization_id,
        "task:created",
        {"task": task, "createdBy": current.id},
    )
    _notify_assignee(background, realtime, task, current)
    return ok({"task": task}, "Task created successfully")


@router.api_route(
    "/{task_id}",
    methods=["PUT", "PATCH"],
    summary="Update a task",
    responses=error_responses(400, 401, 403, 404, 409),
)
def update_task(
    task_id: str,
    payload: TaskUpdate,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    organization_id = current.organization_id
    existing = get_scoped_record(db, "tasks", task_id, organization_id, "Task")
    can_update = (
        existing["created_by"] == current.id
        or existing["assigned_to"] == current.id
        or user_has_capability(current, Capability.TASK_MANAGE_ANY)
    )
    if not can_update:
        raise ForbiddenError("You do not have permission to update this task")

    values = _task_values(payload)
    if values.get("assigned_to") and values["assigned_to"] != existing["assigned_to"]:
        ensure_member(db, values["assigned_to"], organization_id, "assigned_to")
    if values.get("parent_task_id"):
        if values["parent_task_id"] == task_id:
            raise ValidationError(
                "Validation failed",
                details=[{"field": "parent_task_id", "message": "a task cannot be its own parent"}],
            )
        _validate_parent(db, task_id, values["parent_task_id"], organization_id)

    values = _apply_completion_rule(values, existing)
    task = db.update("tasks", task_id, values, expected_version=payload.version)

    changes = sorted(values)
    background.add_task(
        realtime.emit_to_organization,
        organization_id,
        "task:updated",
        {"task": task, "updatedBy": current.id, "changes": changes},
    )
    background.add_task(realtime.send_task_update, task_id, {"task": task, "changes": changes})
    if task.get("assigned_to") != existing["assigned_to"]:
        _notify_assignee(background, realtime, task, current)
    return ok({"task": task}, "Task updated successfully")


@router.delete("/{task_id}", summary="Delete a task", responses=error_responses(400, 401, 403, 404))
def delete_task(
    task_id: str,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    ensure_capability(current, Capability.TASK_DELETE)
    organization_id = current.organization_id
    get_scoped_record(db, "tasks", task_id, organization_id, "Task")
    if db.count("tasks", [Eq("parent_task_id", task_id)]):
        raise ValidationError("Cannot delete task with subtasks. Please delete or reassign subtasks first.")

    with db.transaction() as tx:
        tx.delete_where("task_comments", [Eq("task_id", task_id)])
        tx.delete("tasks", task_id)

    background.add_task(
        realtime.emit_to_organization,
        organization_id,
        "task:deleted",
        {"taskId": task_id, "deletedBy": current.id},
    )
    return ok(message="Task deleted successfully")


@router.post(
    "/{task_id}/comments",
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a task",
    responses=error_responses(400, 401, 403, 404),
)
def add_comment(
    task_id: str,
    payload: TaskCommentCreate,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    organization_id = current.organization_id
    get_scoped_record(db, "tasks", task_id, organization_id, "Task")
    comment = db.create(
        "task_comments",
        {
            "task_id": task_id,
            "user_id": current.id,
            "organization_id": organization_id,
            "content": payload.content.strip(),
        },
    )
    background.add_task(realtime.send_task_update, task_id, {"comment": comment})
    return ok({"comment": comment}, "Comment added successfully")
