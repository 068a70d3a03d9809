"""LLM-backed helpers over the DeepSeek OpenAI-compatible API.

The adapter is optional: without an API key, or when the provider cannot be
reached at startup, every helper returns its fallback instead of raising.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx
from openai import OpenAI, OpenAIError

from app.core.config import Settings
from app.core.observability import log_event

logger = logging.getLogger("productivity.ai")

_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)

FEATURES = (
    "task-enhancement",
    "ticket-response",
    "order-analysis",
    "inventory-optimization",
    "performance-insights",
)


@dataclass(frozen=True)
class PromptSpec:
    system_prompt: str
    max_tokens: int
    temperature: float


TASK_ENHANCEMENT = PromptSpec(
    "You are a productivity expert helping to improve task descriptions for better clarity and actionability.",
    500,
    0.3,
)
TICKET_RESPONSE = PromptSpec(
    "You are a professional customer service expert providing helpful, empathetic responses to customer inquiries.",
    600,
    0.4,
)
ORDER_ANALYSIS = PromptSpec(
    "You are a business analyst expert in customer behavior analysis and sales optimization.",
    800,
    0.3,
)
INVENTORY_OPTIMIZATION = PromptSpec(
    "You are an inventory management expert specializing in supply chain optimization and demand forecasting.",
    1000,
    0.2,
)
PERFORMANCE_INSIGHTS = PromptSpec(
    "You are a performance management expert providing actionable insights for productivity improvement.",
    700,
    0.3,
)


def parse_json_reply(text: str) -> Any | None:
    """Parse a model reply as JSON, tolerating a fenced ```json block."""
    candidate = text.strip()
    fenced = _JSON_FENCE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    try:
        return json.loads(candidate)
    except ValueError:
        return None


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


class AIService:
    def __init__(self, settings: Settings, *, http_client: httpx.Client | None = None):
        self.settings = settings
        self.model = settings.deepseek_model
        self._http_client = http_client
        self._client: OpenAI | None = None
        self.enabled = False

    def initialize(self) -> bool:
        if not self.settings.deepseek_api_key:
            log_event(logger, logging.INFO, "ai_disabled", reason="missing_api_key")
            self.enabled = False
            return False

        client_kwargs: dict[str, Any] = {
            "api_key": self.settings.deepseek_api_key,
            "base_url": self.settings.deepseek_base_url,
            "timeout": self.settings.external_timeout_seconds,
            "max_retries": 0,
        }
        if self._http_client is not None:
            client_kwargs["http_client"] = self._http_client
        client = OpenAI(**client_kwargs)
        try:
            client.models.list()
        except OpenAIError as exc:
            log_event(logger, logging.WARNING, "ai_disabled", reason="provider_unreachable", error=str(exc))
            self.enabled = False
            return False

        self._client = client
        self.enabled = True
        log_event(logger, logging.INFO, "ai_ready", model=self.model)
        return True

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        self.enabled = False

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "provider": "deepseek",
            "model": self.model,
            "features": list(FEATURES) if self.enabled else [],
        }

    def _complete(self, spec: PromptSpec, prompt: str, *, feature: str) -> Any | None:
        if not self.enabled or self._client is None:
            return None
        try:
            completion = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": spec.system_prompt},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=spec.max_tokens,
                temperature=spec.temperature,
            )
        except OpenAIError as exc:
            log_event(logger, logging.WARNING, "ai_request_failed", feature=feature, error=str(exc))
            return None

        text = ""
        if completion.choices and completion.choices[0].message:
            text = completion.choices[0].message.content or ""
        parsed = parse_json_reply(text)
        if parsed is None:
            log_event(logger, logging.WARNING, "ai_unparseable_reply", feature=feature)
        return parsed

    def enhance_task_description(self, title: str, description: str | None) -> dict[str, Any]:
        fallback = {"title": title, "description": description}
        prompt = (
            "Enhance this task description to be more clear and actionable:\n"
            f"Title: {title}\n"
            f"Description: {description or ''}\n\n"
            "Please provide:\n"
            "1. An improved, clear title\n"
            "2. A detailed, actionable description\n"
            "3. Suggested priority level\n"
            "4. Estimated time to complete\n\n"
            "Format as JSON with keys: title, description, priority, estimatedHours"
        )
        result = self._complete(TASK_ENHANCEMENT, prompt, feature="task-enhancement")
        if not isinstance(result, dict):
            return fallback
        return result

    def generate_ticket_response(
        self,
        subject: str,
        description: str,
        customer_history: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any] | None:
        history = "\n".join(
            f"- {item.get('subject', 'Ticket')}: {item.get('resolution') or 'Unresolved'}"
            for item in (customer_history or [])[:3]
        )
        prompt = (
            "Generate a professional customer service response for this support ticket:\n\n"
            f"Subject: {subject}\n"
            f"Description: {description}\n"
            f"Customer History: {history or 'None'}\n\n"
            "Please provide:\n"
            "1. A professional, empathetic response\n"
            "2. Suggested resolution steps\n"
            "3. Estimated resolution time\n"
            "4. Priority level recommendation\n\n"
            "Format as JSON with keys: response, resolutionSteps, estimatedTime, priority"
        )
        return self._complete(TICKET_RESPONSE, prompt, feature="ticket-response")

    def analyze_order_pattern(
        self,
        customer_orders: list[dict[str, Any]],
        customer_profile: dict[str, Any],
    ) -> dict[str, Any] | None:
        summary = [
            {
                "date": order.get("created_at"),
                "total": order.get("total_amount"),
                "items": order.get("item_count", len(order.get("items") or [])),
                "status": order.get("order_status"),
            }
            for order in customer_orders[:10]
        ]
        prompt = (
            "Analyze this customer's order pattern and provide insights:\n\n"
            "Customer Profile:\n"
            f"- Type: {customer_profile.get('customer_type')}\n"
            f"- Tier: {customer_profile.get('tier')}\n"
            f"- Total Orders: {len(customer_orders)}\n\n"
            f"Recent Orders: {_dump(summary)}\n\n"
            "Please provide:\n"
            "1. Order pattern analysis\n"
            "2. Recommended products or services\n"
            "3. Optimal contact timing\n"
            "4. Upselling opportunities\n"
            "5. Risk assessment (payment delays, cancellations)\n\n"
            "Format as JSON with keys: analysis, recommendations, contactTiming, "
            "upsellOpportunities, riskAssessment"
        )
        return self._complete(ORDER_ANALYSIS, prompt, feature="order-analysis")

    def optimize_inventory(
        self,
        inventory: list[dict[str, Any]],
        sales: list[dict[str, Any]],
    ) -> dict[str, Any] | None:
        prompt = (
            "Analyze inventory and sales data to provide optimization recommendations:\n\n"
            f"Current Inventory: {_dump(inventory[:20])}\n"
            f"Recent Sales: {_dump(sales[:10])}\n\n"
            "Please provide:\n"
            "1. Overstocked items that should be promoted\n"
            "2. Understocked items that need reordering\n"
            "3. Seasonal trends and recommendations\n"
            "4. Optimal reorder points and quantities\n"
            "5. Cost optimization opportunities\n\n"
            "Format as JSON with keys: overstocked, understocked, seasonalTrends, "
            "reorderRecommendations, costOptimization"
        )
        return self._complete(INVENTORY_OPTIMIZATION, prompt, feature="inventory-optimization")

    def generate_performance_insights(
        self,
        user_metrics: dict[str, Any],
        team_metrics: dict[str, Any],
    ) -> dict[str, Any] | None:
        prompt = (
            "Analyze performance metrics and provide actionable insights:\n\n"
            f"User Metrics: {_dump(user_metrics)}\n"
            f"Team Metrics: {_dump(team_metrics)}\n\n"
            "Please provide:\n"
            "1. Performance strengths and areas for improvement\n"
            "2. Productivity recommendations\n"
            "3. Training suggestions\n"
            "4. Goal setting recommendations\n"
            "5. Team collaboration insights\n\n"
            "Format as JSON with keys: strengths, improvements, recommendations, training, collaboration"
        )
        return self._complete(PERFORMANCE_INSIGHTS, prompt, feature="performance-insights")
