from typing import Any, Optional

from pydantic import Field

from app.schemas.auth import CamelModel


class EnhanceTaskIn(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)


class TicketResponseIn(CamelModel):
    subject: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    customer_history: list[dict[str, Any]] = Field(default_factory=list)


class OrderPatternIn(CamelModel):
    customer_orders: list[dict[str, Any]]
    customer_profile: dict[str, Any]


class InventoryOptimizationIn(CamelModel):
    inventory_data: list[dict[str, Any]]
    sales_data: list[dict[str, Any]]


class PerformanceInsightsIn(CamelModel):
    user_metrics: dict[str, Any]
    team_metrics: dict[str, Any] = Field(default_factory=dict)
