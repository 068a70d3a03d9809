from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.common import PageParams, SortOrder

OrderStatus = Literal[
    "pending",
    "confirmed",
    "processing",
    "packed",
    "shipped",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "returned",
]
OrderType = Literal["standard", "express", "bulk", "subscription", "custom"]
OrderSortField = Literal["created_at", "updated_at", "delivery_date", "total_amount", "order_number"]

ORDER_STATUSES: tuple[str, ...] = (
    "pending",
    "confirmed",
    "processing",
    "packed",
    "shipped",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "returned",
)


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = Field(default=None, max_length=255)


class OrderCreate(BaseModel):
    customer_id: str
    order_type: OrderType = "standard"
    billing_address: dict[str, Any]
    shipping_address: dict[str, Any]
    items: list[OrderItemIn] = Field(min_length=1)
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    delivery_date: Optional[datetime] = None
    special_instructions: Optional[str] = Field(default=None, max_length=1000)
    payment_method: Optional[str] = Field(default=None, max_length=30)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "customer_id": "customer-id-here",
                "billing_address": {"street": "12 Marina Road", "city": "Lagos", "country": "NG"},
                "shipping_address": {"street": "12 Marina Road", "city": "Lagos", "country": "NG"},
                "items": [
                    {"product_id": "product-id-here", "quantity": 2, "unit_price": "120.00", "tax_rate": "7.5"}
                ],
                "shipping_amount": "15.00",
                "payment_method": "card",
            }
        }
    )


class OrderUpdate(BaseModel):
    billing_address: Optional[dict[str, Any]] = None
    shipping_address: Optional[dict[str, Any]] = None
    delivery_date: Optional[datetime] = None
    special_instructions: Optional[str] = Field(default=None, max_length=1000)
    payment_method: Optional[str] = Field(default=None, max_length=30)
    assigned_to: Optional[str] = None
    version: Optional[int] = Field(default=None, ge=1)


class OrderStatusUpdateIn(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "confirmed",
                "note": "Payment confirmed by phone",
            }
        }
    )


class OrderListParams(PageParams):
    status: Optional[OrderStatus] = None
    type: Optional[OrderType] = None
    customer_id: Optional[str] = None
    assigned_to: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = Field(default=None, min_length=1, max_length=100)
    sort_by: OrderSortField = "created_at"
    sort_order: SortOrder = "desc"
