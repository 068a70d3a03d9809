from datetime import datetime, timedelta
from typing import Any, Literal

from app.core.money import average_money, sum_money
from app.db.database import Database, FindOptions, JoinSpec, utcnow
from app.db.filters import Eq, In, Range
from app.schemas.customer import CUSTOMER_TYPES
from app.schemas.order import ORDER_STATUSES
from app.schemas.task import TASK_PRIORITIES, TASK_STATUSES

Period = Literal["today", "week", "month", "quarter", "year"]

RECENT_ACTIVITY_LIMIT = 10


def period_start(period: Period, now: datetime | None = None) -> datetime:
    now = now or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return midnight
    if period == "week":
        return now - timedelta(days=7)
    if period == "quarter":
        return midnight.replace(month=(now.month - 1) // 3 * 3 + 1, day=1)
    if period == "year":
        return midnight.replace(month=1, day=1)
    return midnight.replace(day=1)


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _task_metrics(db: Database, organization_id: str) -> dict[str, Any]:
    scope = [Eq("organization_id", organization_id)]
    by_status = db.count_by("tasks", "status", scope)
    by_priority = db.count_by("tasks", "priority", scope)
    total = sum(by_status.values())
    completed = by_status.get("completed", 0)
    return {
        "total": total,
        "by_status": {name: by_status.get(name, 0) for name in TASK_STATUSES},
        "by_priority": {name: by_priority.get(name, 0) for name in TASK_PRIORITIES},
        "completion_rate": _rate(completed, total),
    }


def _order_metrics(db: Database, organization_id: str, since: datetime) -> dict[str, Any]:
    scope = [Eq("organization_id", organization_id)]
    by_status = db.count_by("orders", "order_status", scope)
    total = sum(by_status.values())

    period_orders = db.find_all("orders", scope + [Range("created_at", gte=since)])
    billable = [order for order in period_orders if order["order_status"] not in ("cancelled", "returned")]
    amounts = [order["total_amount"] for order in billable]
    return {
        "total": total,
        "by_status": {name: by_status.get(name, 0) for name in ORDER_STATUSES},
        "fulfillment_rate": _rate(by_status.get("delivered", 0), total),
        "this_period": len(period_orders),
        "this_period_revenue": sum_money(amounts),
        "average_order_value": average_money(amounts),
    }


def _customer_metrics(db: Database, organization_id: str, since: datetime) -> dict[str, Any]:
    scope = [Eq("organization_id", organization_id)]
    by_type = db.count_by("customers", "customer_type", scope)
    by_active = db.count_by("customers", "is_active", scope)
    return {
        "total": sum(by_type.values()),
        "active": by_active.get(True, 0),
        "new_this_period": db.count("customers", scope + [Range("created_at", gte=since)]),
        "by_type": {name: by_type.get(name, 0) for name in CUSTOMER_TYPES},
    }


def _user_metrics(db: Database, organization_id: str, user_id: str) -> dict[str, int]:
    scope = [Eq("organization_id", organization_id)]
    return {
        "assigned_tasks": db.count(
            "tasks", scope + [Eq("assigned_to", user_id), In("status", ("pending", "in_progress"))]
        ),
        "completed_tasks": db.count("tasks", scope + [Eq("assigned_to", user_id), Eq("status", "completed")]),
        "created_tasks": db.count("tasks", scope + [Eq("created_by", user_id)]),
        "managed_orders": db.count("orders", scope + [Eq("assigned_to", user_id)]),
    }


def _recent_activity(db: Database, organization_id: str) -> list[dict[str, Any]]:
    scope = [Eq("organization_id", organization_id)]
    recent = FindOptions(order_by="updated_at", limit=5)
    tasks = db.find_all("tasks", scope, recent)
    orders = db.find_with_joins(
        "orders",
        [JoinSpec("customers", ("name", "customer_code"), via="customer_id", alias="customer")],
        scope,
        FindOptions(order_by="created_at", limit=5),
    )
    activity = [
        {
            "id": task["id"],
            "type": "task",
            "title": task["title"],
            "status": task["status"],
            "priority": task["priority"],
            "timestamp": task["updated_at"],
        }
        for task in tasks
    ] + [
        {
            "id": order["id"],
            "type": "order",
            "title": f"Order {order['order_number']}",
            "description": f"Order from {(order['customer'] or {}).get('name', 'unknown')} - {order['order_status']}",
            "status": order["order_status"],
            "amount": order["total_amount"],
            "timestamp": order["created_at"],
        }
        for order in orders
    ]
    activity.sort(key=lambda entry: entry["timestamp"], reverse=True)
    return activity[:RECENT_ACTIVITY_LIMIT]


def get_summary(db: Database, organization_id: str, user_id: str, period: Period = "month") -> dict[str, Any]:
    since = period_start(period)
    return {
        "period": period,
        "period_start": since,
        "organization_id": organization_id,
        "metrics": {
            "tasks": _task_metrics(db, organization_id),
            "orders": _order_metrics(db, organization_id, since),
            "customers": _customer_metrics(db, organization_id, since),
            "user": _user_metrics(db, organization_id, user_id),
        },
        "recent_activity": _recent_activity(db, organization_id),
        "timestamp": utcnow(),
    }


def get_analytics(db: Database, organization_id: str) -> dict[str, Any]:
    scope = [Eq("organization_id", organization_id)]
    tasks = _task_metrics(db, organization_id)
    orders = db.count_by("orders", "order_status", scope)
    completed = db.find_all("tasks", scope + [Eq("status", "completed")])

    durations = [
        (task["completed_at"] - task["created_at"]).total_seconds() / 3600
        for task in completed
        if task["completed_at"] is not None and task["created_at"] is not None
    ]
    completed_by_user = db.count_by("tasks", "assigned_to", scope + [Eq("status", "completed")])
    completed_by_user.pop(None, None)
    top_performers = sorted(completed_by_user.items(), key=lambda pair: pair[1], reverse=True)[:5]

    return {
        "productivity": {
            "task_completion_rate": tasks["completion_rate"],
            "average_task_completion_hours": round(sum(durations) / len(durations), 2) if durations else 0.0,
            "order_fulfillment_rate": _rate(orders.get("delivered", 0), sum(orders.values())),
        },
        "top_performers": [{"user_id": user_id, "completed_tasks": count} for user_id, count in top_performers],
        "timestamp": utcnow(),
    }
