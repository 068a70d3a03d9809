from typing import Any, Optional

from pydantic import EmailStr, Field, field_validator, model_validator

from app.core.roles import Role
from app.schemas.auth import CamelModel


class OrganizationCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$", max_length=100)
    settings: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned


class MemberAdd(CamelModel):
    user_id: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Role = Role.AGENT

    @model_validator(mode="after")
    def require_target(self) -> "MemberAdd":
        if not self.user_id and not self.email:
            raise ValueError("userId or email is required")
        return self
