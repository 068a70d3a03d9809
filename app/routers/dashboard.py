from fastapi import APIRouter, Depends, Query

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.permissions import authorize, require_capability
from app.core.roles import Capability, Role
from app.core.security_current import CurrentUser, require_organization
from app.core.throttle import MEMBER_LIMITS
from app.db.database import Database
from app.schemas.common import ok
from app.services.dashboard_service import Period, get_analytics, get_summary

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"], dependencies=MEMBER_LIMITS)


@router.get(
    "",
    summary="Organization KPI summary",
    description="Task, order and customer metrics for the current organization, plus recent activity.",
    responses=error_responses(400, 401, 403),
)
def dashboard_summary(
    period: Period = Query(default="month"),
    current: CurrentUser = Depends(require_capability(Capability.DASHBOARD_VIEW)),
    db: Database = Depends(get_db),
):
    return ok(get_summary(db, current.organization_id, current.id, period))


@router.get(
    "/analytics",
    summary="Productivity analytics",
    responses=error_responses(401, 403),
    dependencies=[Depends(authorize(Role.ADMIN, Role.MANAGER))],
)
def dashboard_analytics(
    current: CurrentUser = Depends(require_organization),
    db: Database = Depends(get_db),
):
    return ok(get_analytics(db, current.organization_id))
