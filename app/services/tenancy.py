from typing import Any

from app.core.errors import ForbiddenError, NotFoundError, ValidationError
from app.db.database import Database
from app.db.filters import Eq, In

SAFE_USER_COLUMNS = ("id", "username", "first_name", "last_name", "email", "role")


def get_scoped_record(
    db: Database,
    collection: str,
    record_id: str,
    organization_id: str,
    label: str,
) -> dict[str, Any]:
    """Load a record and refuse it outright when it belongs to another organization."""
    record = db.find_by_id(collection, record_id)
    if record is None:
        raise NotFoundError(f"{label} not found")
    if record.get("organization_id") != organization_id:
        raise ForbiddenError(f"{label} belongs to a different organization")
    return record


def ensure_member(db: Database, user_id: str, organization_id: str, field: str) -> None:
    found = db.count(
        "user_organizations",
        [Eq("user_id", user_id), Eq("organization_id", organization_id), Eq("is_active", True)],
    )
    if not found:
        raise ValidationError(
            "Validation failed",
            details=[{"field": field, "message": "user is not a member of this organization"}],
        )


def ensure_reference(
    db: Database,
    collection: str,
    record_id: str,
    organization_id: str,
    field: str,
) -> dict[str, Any]:
    record = db.find_one(collection, [Eq("id", record_id), Eq("organization_id", organization_id)])
    if record is None:
        raise ValidationError(
            "Validation failed",
            details=[{"field": field, "message": "not found in this organization"}],
        )
    return record


def user_summaries(db: Database, user_ids: set[str]) -> dict[str, dict[str, Any]]:
    ids = {user_id for user_id in user_ids if user_id}
    if not ids:
        return {}
    rows = db.find_all("users", [In("id", ids)])
    return {row["id"]: {name: row[name] for name in SAFE_USER_COLUMNS} for row in rows}
