"""Placeholder endpoints for business modules that are not built yet.

Each one is authenticated and rate limited like the real modules, and
describes the features it will offer.
"""

from fastapi import APIRouter, Depends

from app.core.api_docs import error_responses
from app.core.security_current import CurrentUser, get_current_user
from app.core.throttle import PUBLIC_LIMITS
from app.schemas.common import ok

UPCOMING_MODULES: dict[str, tuple[str, tuple[str, ...]]] = {
    "financial": (
        "Financial",
        ("Billing Management", "Payment Processing", "Financial Reporting", "Tax Management"),
    ),
    "logistics": (
        "Logistics",
        ("Delivery Management", "Route Optimization", "Vehicle Tracking", "Driver Management"),
    ),
    "warehouse": (
        "Warehouse",
        ("Inventory Management", "Stock Tracking", "Warehouse Operations", "Quality Control"),
    ),
    "customer-service": (
        "Customer Service",
        ("Contact Center", "Ticket Management", "Live Chat", "Knowledge Base"),
    ),
    "reports": (
        "Reports",
        ("Performance Reports", "Financial Analytics", "Operational Metrics", "Custom Dashboards"),
    ),
    "representatives": (
        "Representatives",
        ("Representative Profiles", "Performance Tracking", "Schedule Management", "Incentive System"),
    ),
}

router = APIRouter(prefix="/api", tags=["modules"], dependencies=PUBLIC_LIMITS)


def _register(slug: str, title: str, features: tuple[str, ...]) -> None:
    def module_overview(current: CurrentUser = Depends(get_current_user)):
        return ok({"module": slug, "message": f"{title} module - Coming soon", "features": list(features)})

    router.add_api_route(
        f"/{slug}",
        module_overview,
        methods=["GET"],
        name=f"{slug.replace('-', '_')}_overview",
        summary=f"{title} module overview",
        responses=error_responses(401),
    )


for _slug, (_title, _features) in UPCOMING_MODULES.items():
    _register(_slug, _title, _features)
