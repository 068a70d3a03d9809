import pytest

from conftest import register_owner
from app.routers.modules import UPCOMING_MODULES


@pytest.mark.parametrize("slug", sorted(UPCOMING_MODULES))
def test_module_overview_requires_authentication(test_context, slug):
    client, _ = test_context

    assert client.get(f"/api/{slug}").status_code == 401


def test_module_overviews_describe_features(test_context):
    client, _ = test_context
    owner = register_owner(client)

    res = client.get("/api/customer-service", headers=owner["headers"])
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["module"] == "customer-service"
    assert data["message"] == "Customer Service module - Coming soon"
    assert data["features"] == ["Contact Center", "Ticket Management", "Live Chat", "Knowledge Base"]

    for slug in UPCOMING_MODULES:
        assert client.get(f"/api/{slug}", headers=owner["headers"]).json()["data"]["module"] == slug
