import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import add_member, build_test_services, build_test_settings, register_owner
from app.main import create_app
from app.services.mapping_service import (
    MappingService,
    calculate_estimated_delivery_time,
    format_address,
    validate_address,
)

LAGOS_FEATURE = {
    "place_name": "12 Marina, Lagos Island, Lagos, Nigeria",
    "center": [3.3958, 6.4531],
    "address": "12 Marina",
    "relevance": 0.97,
    "context": [
        {"id": "postcode.1", "text": "101001"},
        {"id": "place.2", "text": "Lagos Island"},
        {"id": "region.3", "text": "Lagos"},
        {"id": "country.4", "text": "Nigeria"},
    ],
}


class FakeMapbox:
    def __init__(self):
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/geocoding/"):
            if "nowhere" in path:
                return httpx.Response(200, json={"features": []})
            return httpx.Response(200, json={"features": [LAGOS_FEATURE]})
        if path.startswith("/optimized-trips/"):
            return httpx.Response(
                200,
                json={
                    "trips": [{"distance": 5400.0, "duration": 900.0, "geometry": {"type": "LineString"}}],
                    "waypoints": [
                        {"waypoint_index": 0, "location": [3.39, 6.45]},
                        {"waypoint_index": 2, "location": [3.41, 6.44]},
                        {"waypoint_index": 1, "location": [3.42, 6.46]},
                    ],
                },
            )
        return httpx.Response(500, json={"message": "unexpected"})


@pytest.fixture()
def mapping_context():
    provider = FakeMapbox()
    settings = build_test_settings(mapbox_access_token="pk.test")
    services = build_test_services(settings, mapping_transport=httpx.MockTransport(provider))
    with TestClient(create_app(services=services)) as client:
        yield client, provider


def test_address_helpers():
    address = {"street": "12 Marina", "city": "Lagos", "postcode": "101001", "country": "NG"}
    assert validate_address(address)
    assert format_address(address) == "12 Marina, Lagos, 101001, NG"

    assert not validate_address({"street": "12 Marina", "country": "NG"})
    assert not validate_address({"street": "12 Marina", "city": "  ", "country": "NG"})
    assert not validate_address("12 Marina, Lagos")
    assert format_address({"city": "Lagos"}) == "Invalid Address"


def test_delivery_time_applies_rush_hour_factor():
    quiet = calculate_estimated_delivery_time(10_000, 3)
    assert quiet == {"estimatedMinutes": 30, "estimatedHours": 1, "baseSpeed": 40.0, "trafficFactor": 1.0}

    morning = calculate_estimated_delivery_time(12_000, 8)
    assert morning["estimatedMinutes"] == 45
    assert morning["baseSpeed"] == 24.0
    assert morning["trafficFactor"] == 0.6

    assert calculate_estimated_delivery_time(0, 13)["estimatedMinutes"] == 15


def test_disabled_service_returns_nothing():
    service = MappingService(build_test_settings())
    assert service.initialize() is False
    assert service.geocode_address("12 Marina") is None
    assert service.calculate_route([{"longitude": 0, "latitude": 0}] * 2) is None
    assert service.status()["enabled"] is False


def test_geocode_without_provider_is_not_found(test_context):
    client, _ = test_context
    owner = register_owner(client)

    res = client.post("/api/mapping/geocode", json={"address": "12 Marina"}, headers=owner["headers"])
    assert res.status_code == 404
    assert res.json()["message"] == "Address not found"


def test_geocode_with_provider(mapping_context):
    client, provider = mapping_context
    owner = register_owner(client)

    status = client.get("/api/mapping/status", headers=owner["headers"]).json()["data"]
    assert status["enabled"] is True

    res = client.post("/api/mapping/geocode", json={"address": "12 Marina, Lagos"}, headers=owner["headers"])
    assert res.status_code == 200, res.text
    place = res.json()["data"]["geocoding"]
    assert place["coordinates"] == {"longitude": 3.3958, "latitude": 6.4531}
    assert place["components"]["city"] == "Lagos Island"
    assert place["components"]["country"] == "Nigeria"
    assert place["confidence"] == 0.97
    assert provider.requests[-1].url.params["access_token"] == "pk.test"

    missing = client.post("/api/mapping/geocode", json={"address": "nowhere"}, headers=owner["headers"])
    assert missing.status_code == 404

    failed = client.post(
        "/api/mapping/route",
        json={"coordinates": [{"longitude": 3.39, "latitude": 6.45}, {"longitude": 3.41, "latitude": 6.44}]},
        headers=owner["headers"],
    )
    assert failed.status_code == 404
    assert failed.json()["message"] == "Route could not be calculated"


def test_optimize_route_requires_logistics_role(mapping_context):
    client, _ = mapping_context
    owner = register_owner(client)
    agent = add_member(client, owner, "agent1")
    payload = {
        "depot": {"longitude": 3.39, "latitude": 6.45},
        "destinations": [{"longitude": 3.42, "latitude": 6.46}, {"longitude": 3.41, "latitude": 6.44}],
    }

    denied = client.post("/api/mapping/optimize-delivery-route", json=payload, headers=agent["headers"])
    assert denied.status_code == 403

    res = client.post("/api/mapping/optimize-delivery-route", json=payload, headers=owner["headers"])
    assert res.status_code == 200, res.text
    optimized = res.json()["data"]["optimizedRoute"]
    assert optimized["distance"] == 5400.0
    assert [stop["originalIndex"] for stop in optimized["optimizedOrder"]] == [0, 2, 1]
    assert optimized["optimizedOrder"][1]["coordinates"] == {"longitude": 3.41, "latitude": 6.44}


def test_estimate_and_validate_endpoints(test_context):
    client, _ = test_context
    owner = register_owner(client)

    estimate = client.post(
        "/api/mapping/estimate-delivery-time",
        json={"distanceMeters": 12000, "currentHour": 8},
        headers=owner["headers"],
    )
    assert estimate.status_code == 200
    assert estimate.json()["data"]["deliveryTimeEstimate"]["estimatedMinutes"] == 45

    bad_hour = client.post(
        "/api/mapping/estimate-delivery-time",
        json={"distanceMeters": 100, "currentHour": 24},
        headers=owner["headers"],
    )
    assert bad_hour.status_code == 400

    validated = client.post(
        "/api/mapping/validate-address",
        json={"address": {"street": "12 Marina", "city": "Lagos", "country": "NG"}},
        headers=owner["headers"],
    )
    assert validated.json()["data"]["isValid"] is True
    assert validated.json()["data"]["formattedAddress"] == "12 Marina, Lagos, NG"

    invalid = client.post(
        "/api/mapping/validate-address",
        json={"address": {"city": "Lagos"}},
        headers=owner["headers"],
    )
    assert invalid.json()["data"]["isValid"] is False
    assert invalid.json()["data"]["formattedAddress"] == "Invalid Address"


def test_route_needs_two_points(test_context):
    client, _ = test_context
    owner = register_owner(client)

    res = client.post(
        "/api/mapping/route",
        json={"coordinates": [{"longitude": 3.39, "latitude": 6.45}]},
        headers=owner["headers"],
    )
    assert res.status_code == 400


def _malformed_mapbox(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.startswith("/geocoding/"):
        if "listreply" in path:
            return httpx.Response(200, json=[LAGOS_FEATURE])
        return httpx.Response(200, json={"features": [{"place_name": "Lagos", "center": "3.39,6.45"}]})
    if path.startswith("/optimized-trips/"):
        return httpx.Response(
            200,
            json={"trips": [{"distance": 10.0}], "waypoints": [{"waypoint_index": 0}]},
        )
    return httpx.Response(200, json={"routes": ["not-a-route"]})


def test_malformed_provider_replies_degrade_to_not_found():
    settings = build_test_settings(mapbox_access_token="pk.test")
    service = MappingService(settings, transport=httpx.MockTransport(_malformed_mapbox))
    service.initialize()
    assert service.geocode_address("12 Marina") is None
    assert service.geocode_address("listreply") is None
    assert service.calculate_route([{"longitude": 0, "latitude": 0}] * 2) is None
    assert service.optimize_delivery_route({"longitude": 0, "latitude": 0}, [{"longitude": 1, "latitude": 1}]) is None
    service.close()

    services = build_test_services(settings, mapping_transport=httpx.MockTransport(_malformed_mapbox))
    with TestClient(create_app(services=services)) as client:
        owner = register_owner(client)
        res = client.post("/api/mapping/geocode", json={"address": "12 Marina"}, headers=owner["headers"])
        assert res.status_code == 404
        assert res.json()["message"] == "Address not found"

        route = client.post(
            "/api/mapping/optimize-delivery-route",
            json={
                "depot": {"longitude": 3.39, "latitude": 6.45},
                "destinations": [{"longitude": 3.42, "latitude": 6.46}],
            },
            headers=owner["headers"],
        )
        assert route.status_code == 404
