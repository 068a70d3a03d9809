import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.db.base import Base
from app.db.session import build_engine
from app.main import create_app
from app.services.cache_service import MemoryCache
from app.services.container import build_services

TEST_PASSWORD = "Passw0rd!x"


def build_test_settings(**overrides) -> Settings:
    values = {
        "env": "test",
        "database_url": "sqlite://",
        "redis_url": None,
        "deepseek_api_key": None,
        "mapbox_access_token": None,
        "bcrypt_rounds": 4,
        "jwt_secret": "test-jwt-secret",
        "jwt_refresh_secret": "test-jwt-refresh-secret",
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def build_test_services(settings: Settings, **kwargs):
    engine = build_engine(settings, url="sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    return build_services(settings, engine=engine, cache=MemoryCache(), **kwargs)


@pytest.fixture()
def test_settings():
    return build_test_settings()


@pytest.fixture()
def test_context(test_settings):
    services = build_test_services(test_settings)
    app = create_app(services=services)

    with TestClient(app) as client:
        yield client, services


def register(
    client,
    username: str,
    *,
    organization_name: str | None = "Acme Logistics",
    role: str | None = None,
    password: str = TEST_PASSWORD,
):
    payload = {
        "username": username,
        "email": f"{username}@example.com",
        "password": password,
        "firstName": username.title(),
        "lastName": "Tester",
    }
    if organization_name:
        payload["organizationName"] = organization_name
    if role:
        payload["role"] = role
    return client.post("/api/auth/register", json=payload)


def auth_headers(token: str, organization_id: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {token}"}
    if organization_id:
        headers["X-Organization-ID"] = organization_id
    return headers


def register_owner(client, username: str = "owner", organization_name: str = "Acme Logistics") -> dict:
    """Register a user who owns a fresh organization; returns tokens, user and org ids."""
    res = register(client, username, organization_name=organization_name)
    assert res.status_code == 201, res.text
    data = res.json()["data"]
    return {
        "token": data["accessToken"],
        "refresh_token": data["refreshToken"],
        "user_id": data["user"]["id"],
        "organization_id": data["organization"]["id"],
        "headers": auth_headers(data["accessToken"]),
    }


def add_member(client, owner: dict, username: str, role: str = "agent") -> dict:
    """Register ``username`` without an organization and add them to the owner's."""
    res = register(client, username, organization_name=None)
    assert res.status_code == 201, res.text
    user_id = res.json()["data"]["user"]["id"]

    added = client.post(
        f"/api/organizations/{owner['organization_id']}/members",
        json={"userId": user_id, "role": role},
        headers=owner["headers"],
    )
    assert added.status_code == 201, added.text

    login = client.post(
        "/api/auth/login",
        json={"identifier": username, "password": TEST_PASSWORD, "organizationId": owner["organization_id"]},
    )
    assert login.status_code == 200, login.text
    token = login.json()["data"]["accessToken"]
    return {"token": token, "user_id": user_id, "headers": auth_headers(token)}
