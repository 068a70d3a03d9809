import json

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import add_member, build_test_services, build_test_settings, register_owner
from app.main import create_app
from app.services.ai_service import AIService, parse_json_reply

MODELS_REPLY = {
    "object": "list",
    "data": [{"id": "deepseek-chat", "object": "model", "created": 0, "owned_by": "deepseek"}],
}


def _completion(content: str) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1_700_000_000,
        "model": "deepseek-chat",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 10, "total_tokens": 20},
    }


class FakeDeepSeek:
    def __init__(self, content: str = "", *, models_status: int = 200):
        self.content = content
        self.models_status = models_status
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/models"):
            if self.models_status != 200:
                return httpx.Response(self.models_status, json={"error": {"message": "down"}})
            return httpx.Response(200, json=MODELS_REPLY)
        if request.url.path.endswith("/chat/completions"):
            self.requests.append(json.loads(request.content))
            return httpx.Response(200, json=_completion(self.content))
        return httpx.Response(404, json={"error": {"message": "not found"}})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture()
def ai_context():
    provider = FakeDeepSeek()
    settings = build_test_settings(deepseek_api_key="sk-test")
    services = build_test_services(settings, ai_http_client=provider.client())
    with TestClient(create_app(services=services)) as client:
        yield client, provider


def test_parse_json_reply_accepts_fenced_and_plain_json():
    assert parse_json_reply('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_reply('Here you go:\n```\n[1, 2]\n```') == [1, 2]
    assert parse_json_reply(' {"b": true} ') == {"b": True}
    assert parse_json_reply("I cannot help with that.") is None


def test_disabled_adapter_falls_back(test_context):
    client, _ = test_context
    owner = register_owner(client)

    status = client.get("/api/ai/status", headers=owner["headers"]).json()["data"]
    assert status["enabled"] is False
    assert status["features"] == []

    enhanced = client.post(
        "/api/ai/enhance-task",
        json={"title": "fix printer", "description": "it jams"},
        headers=owner["headers"],
    )
    assert enhanced.status_code == 200
    assert enhanced.json()["data"]["enhancement"] == {"title": "fix printer", "description": "it jams"}

    ticket = client.post(
        "/api/ai/generate-ticket-response",
        json={"subject": "Late delivery", "description": "My parcel is late"},
        headers=owner["headers"],
    )
    assert ticket.status_code == 200
    assert ticket.json()["data"]["response"] is None


def test_unreachable_provider_disables_the_adapter():
    provider = FakeDeepSeek(models_status=500)
    service = AIService(build_test_settings(deepseek_api_key="sk-test"), http_client=provider.client())

    assert service.initialize() is False
    assert service.enabled is False
    assert service.enhance_task_description("t", None) == {"title": "t", "description": None}


def test_enabled_adapter_parses_fenced_replies(ai_context):
    client, provider = ai_context
    owner = register_owner(client)
    provider.content = (
        "```json\n"
        '{"title": "Fix the office printer", "description": "Clear the jam", '
        '"priority": "high", "estimatedHours": 1}\n'
        "```"
    )

    status = client.get("/api/ai/status", headers=owner["headers"]).json()["data"]
    assert status["enabled"] is True
    assert "task-enhancement" in status["features"]

    res = client.post(
        "/api/ai/enhance-task",
        json={"title": "fix printer", "description": "it jams"},
        headers=owner["headers"],
    )
    assert res.status_code == 200, res.text
    enhancement = res.json()["data"]["enhancement"]
    assert enhancement["title"] == "Fix the office printer"
    assert enhancement["priority"] == "high"

    sent = provider.requests[-1]
    assert sent["model"] == "deepseek-chat"
    assert sent["max_tokens"] == 500
    assert sent["temperature"] == 0.3
    assert sent["messages"][0]["role"] == "system"
    assert "Title: fix printer" in sent["messages"][1]["content"]


def test_unparseable_reply_returns_fallback(ai_context):
    client, provider = ai_context
    owner = register_owner(client)
    provider.content = "Sorry, I am not sure."

    res = client.post("/api/ai/enhance-task", json={"title": "fix printer"}, headers=owner["headers"])
    assert res.json()["data"]["enhancement"] == {"title": "fix printer", "description": None}

    ticket = client.post(
        "/api/ai/generate-ticket-response",
        json={"subject": "Late delivery", "description": "My parcel is late"},
        headers=owner["headers"],
    )
    assert ticket.json()["data"]["response"] is None


def test_ai_endpoints_check_capabilities(ai_context):
    client, provider = ai_context
    owner = register_owner(client)
    agent = add_member(client, owner, "agent1", role="agent")
    provider.content = '{"response": "We are sorry", "resolutionSteps": [], "estimatedTime": "1d", "priority": "high"}'

    ticket = client.post(
        "/api/ai/generate-ticket-response",
        json={
            "subject": "Late delivery",
            "description": "My parcel is late",
            "customerHistory": [{"subject": "Damaged box", "resolution": "Refunded"}],
        },
        headers=agent["headers"],
    )
    assert ticket.status_code == 200, ticket.text
    assert ticket.json()["data"]["response"]["response"] == "We are sorry"
    assert "Damaged box: Refunded" in provider.requests[-1]["messages"][1]["content"]

    body = {"customerOrders": [], "customerProfile": {"customer_type": "individual"}}
    assert client.post("/api/ai/analyze-order-pattern", json=body, headers=agent["headers"]).status_code == 403
    assert client.post("/api/ai/analyze-order-pattern", json=body, headers=owner["headers"]).status_code == 200

    inventory = {"inventoryData": [], "salesData": []}
    assert client.post("/api/ai/optimize-inventory", json=inventory, headers=agent["headers"]).status_code == 403

    insights = {"userMetrics": {"completed": 4}}
    assert client.post("/api/ai/performance-insights", json=insights, headers=agent["headers"]).status_code == 403


def test_ai_requires_authentication(test_context):
    client, _ = test_context
    assert client.post("/api/ai/enhance-task", json={"title": "x"}).status_code == 401
