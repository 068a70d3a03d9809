from fastapi import APIRouter, Depends

from app.core.api_docs import error_responses
from app.core.deps import get_ai_service
from app.core.permissions import require_capability
from app.core.roles import Capability
from app.core.security_current import CurrentUser, get_current_user
from app.core.throttle import MEMBER_LIMITS
from app.schemas.ai import (
    EnhanceTaskIn,
    InventoryOptimizationIn,
    OrderPatternIn,
    PerformanceInsightsIn,
    TicketResponseIn,
)
from app.schemas.common import ok
from app.services.ai_service import AIService

router = APIRouter(prefix="/api/ai", tags=["ai"], dependencies=MEMBER_LIMITS)


@router.get("/status", summary="AI provider status", responses=error_responses(401))
def ai_status(
    current: CurrentUser = Depends(get_current_user),
    ai: AIService = Depends(get_ai_service),
):
    return ok(ai.status())


@router.post(
    "/enhance-task",
    summary="Rewrite a task title and description",
    description="Returns the input unchanged when the provider is unavailable.",
    responses=error_responses(400, 401),
)
def enhance_task(
    payload: EnhanceTaskIn,
    current: CurrentUser = Depends(get_current_user),
    ai: AIService = Depends(get_ai_service),
):
    enhancement = ai.enhance_task_description(payload.title, payload.description)
    return ok({"enhancement": enhancement})


@router.post(
    "/generate-ticket-response",
    summary="Draft a customer service reply",
    responses=error_responses(400, 401, 403),
)
def generate_ticket_response(
    payload: TicketResponseIn,
    current: CurrentUser = Depends(require_capability(Capability.AI_TICKET_RESPONSE)),
    ai: AIService = Depends(get_ai_service),
):
    response = ai.generate_ticket_response(
        payload.subject, payload.description, payload.customer_history
    )
    return ok({"response": response})


@router.post(
    "/analyze-order-pattern",
    summary="Summarize a customer's ordering behaviour",
    responses=error_responses(400, 401, 403),
)
def analyze_order_pattern(
    payload: OrderPatternIn,
    current: CurrentUser = Depends(require_capability(Capability.AI_ORDER_ANALYSIS)),
    ai: AIService = Depends(get_ai_service),
):
    analysis = ai.analyze_order_pattern(payload.customer_orders, payload.customer_profile)
    return ok({"analysis": analysis})


@router.post(
    "/optimize-inventory",
    summary="Stock level recommendations",
    responses=error_responses(400, 401, 403),
)
def optimize_inventory(
    payload: InventoryOptimizationIn,
    current: CurrentUser = Depends(require_capability(Capability.AI_INVENTORY)),
    ai: AIService = Depends(get_ai_service),
):
    optimization = ai.optimize_inventory(payload.inventory_data, payload.sales_data)
    return ok({"optimization": optimization})


@router.post(
    "/performance-insights",
    summary="Coaching insights from user and team metrics",
    responses=error_responses(400, 401, 403),
)
def performance_insights(
    payload: PerformanceInsightsIn,
    current: CurrentUser = Depends(require_capability(Capability.AI_PERFORMANCE)),
    ai: AIService = Depends(get_ai_service),
):
    insights = ai.generate_performance_insights(payload.user_metrics, payload.team_metrics)
    return ok({"insights": insights})
