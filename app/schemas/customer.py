from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.schemas.common import PageParams, SortOrder

CustomerType = Literal["individual", "business", "enterprise", "government"]
CustomerTier = Literal["bronze", "silver", "gold", "platinum", "diamond"]
CustomerSortField = Literal["created_at", "updated_at", "name", "customer_code"]

CUSTOMER_TYPES: tuple[str, ...] = ("individual", "business", "enterprise", "government")


class _CustomerFields(BaseModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, pattern=r"^\+?[0-9 ()-]{7,20}$")
    company_name: Optional[str] = Field(default=None, max_length=200)
    customer_type: Optional[CustomerType] = None
    tier: Optional[CustomerTier] = None
    billing_address: Optional[dict[str, Any]] = None
    shipping_address: Optional[dict[str, Any]] = None
    assigned_representative: Optional[str] = None
    payment_terms: Optional[str] = Field(default=None, max_length=60)
    credit_limit: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value


class CustomerCreate(_CustomerFields):
    name: str = Field(min_length=1, max_length=200)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Adaeze Okafor",
                "email": "adaeze@example.com",
                "phone": "+2348012345678",
                "customer_type": "business",
                "company_name": "Okafor Foods",
                "tier": "silver",
            }
        }
    )


class CustomerUpdate(_CustomerFields):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    is_active: Optional[bool] = None
    version: Optional[int] = Field(default=None, ge=1)


class CustomerListParams(PageParams):
    customer_type: Optional[CustomerType] = None
    tier: Optional[CustomerTier] = None
    assigned_representative: Optional[str] = None
    is_active: Optional[bool] = None
    search: Optional[str] = Field(default=None, min_length=1, max_length=100)
    sort_by: CustomerSortField = "created_at"
    sort_order: SortOrder = "desc"
