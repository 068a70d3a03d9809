from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func, true
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), index=True)
    customer_code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="individual", server_default="individual"
    )
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="bronze", server_default="bronze")
    billing_address: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    shipping_address: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    assigned_representative: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True, index=True
    )
    payment_terms: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    credit_limit: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ux_customers_org_code", "organization_id", "customer_code", unique=True),
        Index("ix_customers_org_email", "organization_id", "email"),
        Index("ix_customers_org_name_created_at", "organization_id", "name", "created_at"),
    )
