import re
import secrets
from typing import Any

from app.core.errors import ConflictError, ForbiddenError, NotFoundError
from app.core.roles import Role
from app.db.database import Database, FindOptions, JoinSpec
from app.db.filters import Eq

ORGANIZATION_COLUMNS = ("id", "name", "slug", "is_active")


def slugify(name: str) -> str:
    cleaned = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return cleaned[:100] or "organization"


def _unique_slug(db: Database, name: str) -> str:
    base = slugify(name)
    candidate = base
    while db.find_one("organizations", [Eq("slug", candidate)]):
        candidate = f"{base[:92]}-{secrets.token_hex(3)}"
    return candidate


def create_organization(
    db: Database,
    *,
    name: str,
    owner_user_id: str,
    slug: str | None = None,
    settings: dict[str, Any] | None = None,
) -> tuple[dict, dict]:
    if slug:
        if db.find_one("organizations", [Eq("slug", slug)]):
            raise ConflictError("Organization slug already exists")
    else:
        slug = _unique_slug(db, name)

    with db.transaction() as tx:
        organization = tx.create(
            "organizations",
            {"name": name.strip(), "slug": slug, "settings": settings or {}},
        )
        membership = tx.create(
            "user_organizations",
            {
                "user_id": owner_user_id,
                "organization_id": organization["id"],
                "role": Role.ADMIN.value,
            },
        )
    return organization, membership


def list_memberships(db: Database, user_id: str, *, active_only: bool = True) -> list[dict]:
    conditions = [Eq("user_id", user_id)]
    if active_only:
        conditions.append(Eq("is_active", True))
    rows = db.find_with_joins(
        "user_organizations",
        [JoinSpec("organizations", ORGANIZATION_COLUMNS, alias="organization")],
        conditions,
        FindOptions(order_by="created_at", ascending=True),
    )
    return [
        row
        for row in rows
        if row["organization"] is not None and (not active_only or row["organization"]["is_active"])
    ]


def resolve_membership(db: Database, user_id: str, organization_id: str | None) -> dict | None:
    """Pick the requested membership, or the earliest active one when none is requested."""
    memberships = list_memberships(db, user_id)
    if organization_id:
        for membership in memberships:
            if membership["organization_id"] == organization_id:
                return membership
        raise ForbiddenError("You are not a member of this organization")
    return memberships[0] if memberships else None


def add_member(
    db: Database,
    *,
    organization_id: str,
    user_id: str | None = None,
    email: str | None = None,
    role: Role,
) -> dict:
    if user_id:
        user = db.find_by_id("users", user_id)
    else:
        user = db.find_one("users", [Eq("email", (email or "").strip().lower())])
    if not user or not user["is_active"]:
        raise NotFoundError("User not found")

    existing = db.find_one(
        "user_organizations",
        [Eq("user_id", user["id"]), Eq("organization_id", organization_id)],
    )
    if existing:
        if existing["is_active"] and existing["role"] == role.value:
            raise ConflictError("User is already a member of this organization")
        return db.update("user_organizations", existing["id"], {"role": role.value, "is_active": True})

    return db.create(
        "user_organizations",
        {"user_id": user["id"], "organization_id": organization_id, "role": role.value},
    )
