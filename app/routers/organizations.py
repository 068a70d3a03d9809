from fastapi import APIRouter, Depends, status

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.errors import ForbiddenError
from app.core.roles import Capability, has_capability
from app.core.security_current import CurrentUser, get_current_user
from app.core.throttle import MEMBER_LIMITS
from app.db.database import Database
from app.schemas.common import ok
from app.schemas.organization import MemberAdd, OrganizationCreate
from app.services.organization_service import add_member, create_organization, list_memberships

router = APIRouter(prefix="/api/organizations", tags=["organizations"], dependencies=MEMBER_LIMITS)


@router.get("", summary="Organizations the caller belongs to", responses=error_responses(401))
def list_organizations(
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    items = [
        {**membership["organization"], "role": membership["role"], "joined_at": membership["created_at"]}
        for membership in list_memberships(db, current.id)
    ]
    return ok({"items": items, "currentOrganizationId": current.organization_id})


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create an organization",
    description="The caller becomes an admin member of the new organization.",
    responses=error_responses(400, 401, 409),
)
def create(
    payload: OrganizationCreate,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    organization, membership = create_organization(
        db,
        name=payload.name,
        owner_user_id=current.id,
        slug=payload.slug,
        settings=payload.settings,
    )
    return ok({"organization": organization, "membership": membership}, "Organization created successfully")


@router.post(
    "/{organization_id}/members",
    status_code=status.HTTP_201_CREATED,
    summary="Add an existing user to an organization",
    responses=error_responses(400, 401, 403, 404, 409),
)
def add_organization_member(
    organization_id: str,
    payload: MemberAdd,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    membership = current.membership_for(organization_id)
    if membership is None:
        raise ForbiddenError("You are not a member of this organization")
    if not (
        has_capability(membership["role"], Capability.ORGANIZATION_MANAGE_MEMBERS)
        or has_capability(current.role, Capability.ORGANIZATION_MANAGE_MEMBERS)
    ):
        raise ForbiddenError(
            "Insufficient permission for this action",
            details={"required": Capability.ORGANIZATION_MANAGE_MEMBERS.value},
        )
    added = add_member(
        db,
        organization_id=organization_id,
        user_id=payload.user_id,
        email=payload.email,
        role=payload.role,
    )
    return ok({"membership": added}, "Member added successfully")
