from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.core.api_docs import error_responses
from app.core.deps import get_db, get_realtime
from app.core.errors import ConflictError, ValidationError
from app.core.money import average_money, sum_money
from app.core.permissions import require_capability
from app.core.roles import Capability
from app.core.security_current import CurrentUser, require_organization
from app.core.throttle import MEMBER_LIMITS
from app.db.database import Database, FindOptions, JoinSpec
from app.db.filters import Eq, Filter, In, TextSearch
from app.schemas.common import Pagination, list_envelope, ok
from app.schemas.customer import CUSTOMER_TYPES, CustomerCreate, CustomerListParams, CustomerUpdate
from app.services.realtime_service import RealtimeHub
from app.services.tenancy import SAFE_USER_COLUMNS, ensure_member, get_scoped_record

router = APIRouter(prefix="/api/customers", tags=["customers"], dependencies=MEMBER_LIMITS)

SEARCH_FIELDS = ("name", "email", "phone", "company_name")
RECENT_ORDER_LIMIT = 10
CUSTOMER_JOINS = (
    JoinSpec("users", SAFE_USER_COLUMNS, via="assigned_representative", alias="representative"),
)


def _list_filters(params: CustomerListParams, organization_id: str) -> list[Filter]:
    filters: list[Filter] = [Eq("organization_id", organization_id)]
    if params.customer_type:
        filters.append(Eq("customer_type", params.customer_type))
    if params.tier:
        filters.append(Eq("tier", params.tier))
    if params.assigned_representative:
        filters.append(Eq("assigned_representative", params.assigned_representative))
    if params.is_active is not None:
        filters.append(Eq("is_active", params.is_active))
    if params.search:
        filters.append(TextSearch(params.search, SEARCH_FIELDS))
    return filters


def _statistics(db: Database, filters: list[Filter], total: int) -> dict[str, Any]:
    by_type = db.count_by("customers", "customer_type", filters)
    by_active = db.count_by("customers", "is_active", filters)
    return {
        "total": total,
        "by_type": {name: by_type.get(name, 0) for name in CUSTOMER_TYPES},
        "active": by_active.get(True, 0),
        "inactive": by_active.get(False, 0),
    }


def _ensure_unique_email(db: Database, organization_id: str, email: str, exclude_id: str | None = None) -> None:
    existing = db.find_one("customers", [Eq("organization_id", organization_id), Eq("email", email)])
    if existing is not None and existing["id"] != exclude_id:
        raise ConflictError("Customer with this email already exists", details={"email": email})


def _order_metrics(orders: list[dict[str, Any]]) -> dict[str, Any]:
    total_orders = len(orders)
    completed = sum(1 for order in orders if order["order_status"] == "delivered")
    billable = [order for order in orders if order["order_status"] != "cancelled"]
    amounts = [order["total_amount"] for order in billable]
    return {
        "total_orders": total_orders,
        "completed_orders": completed,
        "completion_rate": round(completed / total_orders * 100, 1) if total_orders else 0.0,
        "total_spent": sum_money(amounts),
        "average_order_value": average_money(amounts),
    }


@router.get("", summary="List customers", responses=error_responses(400, 401, 403))
def list_customers(
    params: Annotated[CustomerListParams, Query()],
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
):
    filters = _list_filters(params, current.organization_id)
    total = db.count("customers", filters)
    items = db.find_with_joins(
        "customers",
        CUSTOMER_JOINS,
        filters,
        FindOptions(
            order_by=params.sort_by,
            ascending=params.sort_order == "asc",
            limit=params.limit,
            offset=params.offset,
        ),
    )
    if items:
        order_counts = db.count_by("orders", "customer_id", [In("customer_id", [item["id"] for item in items])])
        for item in items:
            item["total_orders"] = order_counts.get(item["id"], 0)

    return list_envelope(
        items,
        _statistics(db, filters, total),
        Pagination.build(params.page, params.limit, total),
    )


@router.get("/{customer_id}", summary="Get a customer with recent orders", responses=error_responses(401, 403, 404))
def get_customer(
    customer_id: str,
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
):
    organization_id = current.organization_id
    get_scoped_record(db, "customers", customer_id, organization_id, "Customer")
    customer = db.find_with_joins("customers", CUSTOMER_JOINS, [Eq("id", customer_id)])[0]

    orders = db.find_all(
        "orders",
        [Eq("customer_id", customer_id), Eq("organization_id", organization_id)],
        FindOptions(order_by="created_at"),
    )
    customer["recent_orders"] = orders[:RECENT_ORDER_LIMIT]
    customer["metrics"] = _order_metrics(orders)
    return ok({"customer": customer})


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a customer",
    responses=error_responses(400, 401, 403, 409),
)
def create_customer(
    payload: CustomerCreate,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_capability(Capability.CUSTOMER_MANAGE)),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    organization_id = current.organization_id
    values = payload.model_dump(exclude_none=True)
    if values.get("email"):
        _ensure_unique_email(db, organization_id, values["email"])
    if values.get("assigned_representative"):
        ensure_member(db, values["assigned_representative"], organization_id, "assigned_representative")

    with db.transaction() as tx:
        code = tx.next_sequence(organization_id, "customer")
        customer = tx.create(
            "customers",
            {
                **values,
                "organization_id": organization_id,
                "customer_code": f"CUST-{code:06d}",
                "is_active": True,
            },
        )

    background.add_task(
        realtime.emit_to_organization,
        organization_id,
        "customer:created",
        {"customer": customer, "createdBy": current.id},
    )
    return ok({"customer": customer}, "Customer created successfully")


@router.api_route(
    "/{customer_id}",
    methods=["PUT", "PATCH"],
    summary="Update a customer",
    responses=error_responses(400, 401, 403, 404, 409),
)
def update_customer(
    customer_id: str,
    payload: CustomerUpdate,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_capability(Capability.CUSTOMER_MANAGE)),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    organization_id = current.organization_id
    existing = get_scoped_record(db, "customers", customer_id, organization_id, "Customer")
    values = payload.model_dump(exclude_unset=True, exclude={"version"})
    for required in ("name", "customer_type", "tier", "is_active"):
        if values.get(required, "") is None:
            del values[required]

    if values.get("email") and values["email"] != existing["email"]:
        _ensure_unique_email(db, organization_id, values["email"], exclude_id=customer_id)
    representative = values.get("assigned_representative")
    if representative and representative != existing["assigned_representative"]:
        ensure_member(db, representative, organization_id, "assigned_representative")

    customer = db.update("customers", customer_id, values, expected_version=payload.version)
    background.add_task(
        realtime.emit_to_organization,
        organization_id,
        "customer:updated",
        {"customer": customer, "updatedBy": current.id, "changes": sorted(values)},
    )
    return ok({"customer": customer}, "Customer updated successfully")


@router.delete("/{customer_id}", summary="Delete a customer", responses=error_responses(400, 401, 403, 404))
def delete_customer(
    customer_id: str,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_capability(Capability.CUSTOMER_DELETE)),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    organization_id = current.organization_id
    existing = get_scoped_record(db, "customers", customer_id, organization_id, "Customer")
    order_count = db.count("orders", [Eq("customer_id", customer_id)])
    if order_count:
        raise ValidationError(
            "Cannot delete customer with existing orders",
            details=[{"field": "customer_id", "message": f"customer has {order_count} orders"}],
        )

    db.delete("customers", customer_id)
    background.add_task(
        realtime.emit_to_organization,
        organization_id,
        "customer:deleted",
        {"customerId": customer_id, "customerCode": existing["customer_code"], "deletedBy": current.id},
    )
    return ok(message="Customer deleted successfully")
