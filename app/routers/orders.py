from collections import defaultdict
from decimal import Decimal
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.core.api_docs import error_responses
from app.core.deps import get_db, get_realtime
from app.core.errors import ValidationError
from app.core.money import ZERO_MONEY, percent_of, to_money
from app.core.permissions import require_capability
from app.core.roles import Capability
from app.core.security_current import CurrentUser, require_organization
from app.core.throttle import MEMBER_LIMITS
from app.db.database import Database, FindOptions, JoinSpec, utcnow
from app.db.filters import Eq, Filter, In, Range, TextSearch
from app.schemas.common import Pagination, list_envelope, ok
from app.schemas.order import (
    ORDER_STATUSES,
    OrderCreate,
    OrderListParams,
    OrderStatusUpdateIn,
    OrderUpdate,
)
from app.services.realtime_service import RealtimeHub
from app.services.tenancy import SAFE_USER_COLUMNS, ensure_member, ensure_reference, get_scoped_record

router = APIRouter(prefix="/api/orders", tags=["orders"], dependencies=MEMBER_LIMITS)

ALLOWED_ORDER_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "cancelled"},
    "processing": {"packed", "shipped", "cancelled"},
    "packed": {"shipped", "cancelled"},
    "shipped": {"out_for_delivery", "delivered", "returned"},
    "out_for_delivery": {"delivered", "returned"},
    "delivered": {"returned"},
    "cancelled": set(),
    "returned": set(),
}
DELETABLE_STATUSES = {"pending", "cancelled"}
ORDER_JOINS = (
    JoinSpec("customers", ("id", "name", "email", "customer_code"), via="customer_id", alias="customer"),
    JoinSpec("users", SAFE_USER_COLUMNS, via="assigned_to", alias="assignee"),
)


def _ensure_transition_allowed(current_status: str, next_status: str) -> None:
    if current_status == next_status:
        return
    allowed_next = ALLOWED_ORDER_TRANSITIONS.get(current_status, set())
    if next_status not in allowed_next:
        raise ValidationError(
            f"Cannot transition order from '{current_status}' to '{next_status}'",
            details=[
                {
                    "field": "status",
                    "message": f"allowed next statuses: {', '.join(sorted(allowed_next)) or 'none'}",
                }
            ],
        )


def _list_filters(params: OrderListParams, organization_id: str) -> list[Filter]:
    filters: list[Filter] = [Eq("organization_id", organization_id)]
    if params.status:
        filters.append(Eq("order_status", params.status))
    if params.type:
        filters.append(Eq("order_type", params.type))
    if params.customer_id:
        filters.append(Eq("customer_id", params.customer_id))
    if params.assigned_to:
        filters.append(Eq("assigned_to", params.assigned_to))
    if params.date_from or params.date_to:
        filters.append(Range("created_at", gte=params.date_from, lte=params.date_to))
    if params.search:
        filters.append(TextSearch(params.search, ("order_number",)))
    return filters


def _attach_items(db: Database, orders: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not orders:
        return orders
    items = db.find_all(
        "order_items",
        [In("order_id", [order["id"] for order in orders])],
        FindOptions(order_by="created_at", ascending=True),
    )
    grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for item in items:
        grouped[item["order_id"]].append(item)
    for order in orders:
        order_items = grouped.get(order["id"], [])
        order["items"] = order_items
        order["item_count"] = len(order_items)
        order["total_quantity"] = sum(item["quantity"] for item in order_items)
    return orders


def _load_order(db: Database, order_id: str) -> dict[str, Any]:
    order = db.find_with_joins("orders", ORDER_JOINS, [Eq("id", order_id)])[0]
    return _attach_items(db, [order])[0]


def _ensure_stock(db: Database, organization_id: str, products: dict[str, dict], requested: dict[str, int]) -> None:
    rows = db.find_all(
        "inventory",
        [Eq("organization_id", organization_id), In("product_id", list(requested))],
    )
    available: dict[str, int] = defaultdict(int)
    for row in rows:
        available[row["product_id"]] += row["available_quantity"]

    for product_id, quantity in requested.items():
        on_hand = available.get(product_id, 0)
        if on_hand < quantity:
            product = products[product_id]
            raise ValidationError(
                f"Insufficient inventory for product: {product['name']}. "
                f"Available: {on_hand}, Requested: {quantity}",
                details=[
                    {
                        "field": "items.quantity",
                        "message": f"product {product_id} is short by {quantity - on_hand}",
                    }
                ],
            )


def _price_lines(payload: OrderCreate, products: dict[str, dict]) -> tuple[list[dict[str, Any]], dict[str, Decimal]]:
    lines: list[dict[str, Any]] = []
    subtotal = tax_total = discount_total = ZERO_MONEY
    for item in payload.items:
        product = products[item.product_id]
        total_price = to_money(item.unit_price * item.quantity)
        tax_amount = percent_of(total_price, item.tax_rate)
        discount_amount = to_money(item.discount_amount)
        lines.append(
            {
                "product_id": item.product_id,
                "sku": product["sku"],
                "name": product["name"],
                "quantity": item.quantity,
                "unit_price": to_money(item.unit_price),
                "total_price": total_price,
                "tax_rate": item.tax_rate,
                "tax_amount": tax_amount,
                "discount_amount": discount_amount,
                "notes": item.notes,
            }
        )
        subtotal += total_price
        tax_total += tax_amount
        discount_total += discount_amount

    shipping = to_money(payload.shipping_amount)
    totals = {
        "subtotal": subtotal,
        "tax_amount": tax_total,
        "discount_amount": discount_total,
        "shipping_amount": shipping,
        "total_amount": to_money(subtotal + tax_total - discount_total + shipping),
    }
    return lines, totals


def _next_order_number(db: Database, organization_id: str) -> str:
    day = utcnow().strftime("%y%m%d")
    value = db.next_sequence(organization_id, f"order:{day}")
    return f"ORD-{day}-{value:04d}"


@router.get("", summary="List orders", responses=error_responses(400, 401, 403))
def list_orders(
    params: Annotated[OrderListParams, Query()],
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
):
    filters = _list_filters(params, current.organization_id)
    total = db.count("orders", filters)
    items = db.find_with_joins(
        "orders",
        ORDER_JOINS,
        filters,
        FindOptions(
            order_by=params.sort_by,
            ascending=params.sort_order == "asc",
            limit=params.limit,
            offset=params.offset,
        ),
    )
    by_status = db.count_by("orders", "order_status", filters)
    statistics = {
        "total": total,
        "by_status": {name: by_status.get(name, 0) for name in ORDER_STATUSES},
    }
    return list_envelope(
        _attach_items(db, items),
        statistics,
        Pagination.build(params.page, params.limit, total),
    )


@router.get("/{order_id}", summary="Get an order with its items", responses=error_responses(401, 403, 404))
def get_order(
    order_id: str,
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
):
    get_scoped_record(db, "orders", order_id, current.organization_id, "Order")
    return ok({"order": _load_order(db, order_id)})


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description=(
        "Prices every line on the server, checks stock across inventory rows and "
        "opens a processing task for the creator in the same transaction."
    ),
    responses=error_responses(400, 401, 403, 409),
)
def create_order(
    payload: OrderCreate,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_capability(Capability.ORDER_CREATE)),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    organization_id = current.organization_id
    customer = ensure_reference(db, "customers", payload.customer_id, organization_id, "customer_id")

    product_ids = {item.product_id for item in payload.items}
    products = {
        row["id"]: row
        for row in db.find_all("products", [In("id", product_ids), Eq("organization_id", organization_id)])
    }
    missing = sorted(product_ids - set(products))
    if missing:
        raise ValidationError(
            f"Invalid product: {missing[0]}",
            details=[
                {"field": "items.product_id", "message": f"product {product_id} not found"}
                for product_id in missing
            ],
        )

    requested: dict[str, int] = defaultdict(int)
    for item in payload.items:
        requested[item.product_id] += item.quantity
    _ensure_stock(db, organization_id, products, requested)

    lines, totals = _price_lines(payload, products)
    descriptive = payload.model_dump(exclude={"items", "customer_id", "shipping_amount"})

    with db.transaction() as tx:
        order_number = _next_order_number(tx, organization_id)
        order = tx.create(
            "orders",
            {
                **descriptive,
                **totals,
                "organization_id": organization_id,
                "order_number": order_number,
                "customer_id": customer["id"],
                "order_status": "pending",
                "payment_status": "pending",
                "assigned_to": current.id,
                "created_by": current.id,
            },
        )
        tx.bulk_create("order_items", [{**line, "order_id": order["id"]} for line in lines])
        tx.create(
            "tasks",
            {
                "organization_id": organization_id,
                "title": f"Process order {order_number}",
                "description": f"Prepare and confirm order {order_number} for {customer['name']}.",
                "status": "pending",
                "priority": "high",
                "assigned_to": current.id,
                "created_by": current.id,
                "tags": ["order"],
                "metadata": {"order_id": order["id"], "order_number": order_number},
            },
        )

    order = _load_order(db, order["id"])
    background.add_task(
        realtime.emit_to_organization,
        organization_id,
        "order:created",
        {"order": order, "createdBy": current.id},
    )
    return ok({"order": order}, "Order created successfully")


@router.api_route(
    "/{order_id}",
    methods=["PUT", "PATCH"],
    summary="Update order details",
    responses=error_responses(400, 401, 403, 404, 409),
)
def update_order(
    order_id: str,
    payload: OrderUpdate,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_capability(Capability.ORDER_MANAGE)),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    organization_id = current.organization_id
    existing = get_scoped_record(db, "orders", order_id, organization_id, "Order")
    values = payload.model_dump(exclude_unset=True, exclude={"version"})
    if values.get("assigned_to") and values["assigned_to"] != existing["assigned_to"]:
        ensure_member(db, values["assigned_to"], organization_id, "assigned_to")

    db.update("orders", order_id, values, expected_version=payload.version)
    order = _load_order(db, order_id)
    background.add_task(
        realtime.send_order_update,
        order_id,
        {"order": order, "updatedBy": current.id, "changes": sorted(values)},
    )
    return ok({"order": order}, "Order updated successfully")


@router.patch(
    "/{order_id}/status",
    summary="Move an order through its lifecycle",
    responses=error_responses(400, 401, 403, 404),
)
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdateIn,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_capability(Capability.ORDER_MANAGE)),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    existing = get_scoped_record(db, "orders", order_id, current.organization_id, "Order")
    current_status = existing["order_status"]
    next_status = payload.status
    _ensure_transition_allowed(current_status, next_status)

    if next_status != current_status:
        db.update("orders", order_id, {"order_status": next_status})
        background.add_task(
            realtime.send_order_update,
            order_id,
            {
                "status": next_status,
                "previousStatus": current_status,
                "note": payload.note,
                "updatedBy": current.id,
            },
        )
    return ok({"order": _load_order(db, order_id)}, "Order status updated successfully")


@router.delete("/{order_id}", summary="Delete an order", responses=error_responses(400, 401, 403, 404))
def delete_order(
    order_id: str,
    background: BackgroundTasks,
    current: CurrentUser = Depends(require_capability(Capability.ORDER_DELETE)),
    db: Database = Depends(get_db),
    realtime: RealtimeHub = Depends(get_realtime),
):
    existing = get_scoped_record(db, "orders", order_id, current.organization_id, "Order")
    if existing["order_status"] not in DELETABLE_STATUSES:
        raise ValidationError(
            "Only pending or cancelled orders can be deleted",
            details=[{"field": "order_status", "message": f"order is {existing['order_status']}"}],
        )

    with db.transaction() as tx:
        tx.delete_where("order_items", [Eq("order_id", order_id)])
        tx.delete("orders", order_id)

    background.add_task(
        realtime.emit_to_organization,
        current.organization_id,
        "order:deleted",
        {"orderId": order_id, "orderNumber": existing["order_number"], "deletedBy": current.id},
    )
    return ok(message="Order deleted successfully")
