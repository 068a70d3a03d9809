import re
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from app.core.roles import SELF_SERVICE_ROLES, Role
from app.core.security import PASSWORD_MAX_LENGTH

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,50}$")


class CamelModel(BaseModel):
    """Accepts camelCase keys from clients as well as snake_case ones."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterIn(CamelModel):
    username: str
    email: EmailStr
    password: str = Field(max_length=PASSWORD_MAX_LENGTH)
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    role: Role = Role.AGENT
    phone: Optional[str] = Field(default=None, max_length=20)
    organization_name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        cleaned = value.strip()
        if not USERNAME_PATTERN.match(cleaned):
            raise ValueError("username must be 3-50 letters, digits or underscores")
        return cleaned.lower()

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_names(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: Role) -> Role:
        if value not in SELF_SERVICE_ROLES:
            raise ValueError("role cannot be self-assigned")
        return value

    @field_validator("organization_name")
    @classmethod
    def normalize_organization_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "username": "alice",
                "email": "a@x.com",
                "password": "Aa1!aaaa",
                "firstName": "A",
                "lastName": "B",
                "organizationName": "Acme Logistics",
            }
        },
    )


class LoginIn(CamelModel):
    identifier: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password: str = Field(min_length=1)
    organization_id: Optional[str] = None

    @model_validator(mode="after")
    def require_identifier(self) -> "LoginIn":
        if not (self.identifier or self.username or self.email):
            raise ValueError("username, email or identifier is required")
        return self

    @property
    def login_identifier(self) -> str:
        return (self.identifier or self.username or self.email or "").strip()


class RefreshIn(CamelModel):
    refresh_token: str = Field(min_length=1)


class VerifyTokenIn(CamelModel):
    token: str = Field(min_length=1)


class ChangePasswordIn(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class SwitchOrganizationIn(CamelModel):
    organization_id: str = Field(min_length=1)


class UpdateProfileIn(CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)
    timezone: Optional[str] = Field(default=None, max_length=50)
    language: Optional[str] = Field(default=None, max_length=10)
    preferences: Optional[dict[str, Any]] = None
    version: Optional[int] = Field(default=None, ge=1)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"version"})
