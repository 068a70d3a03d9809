from datetime import timedelta

from jose import jwt

from conftest import TEST_PASSWORD, add_member, auth_headers, register, register_owner
from app.db.database import utcnow
from app.services.auth_service import refresh_token_key


def test_register_returns_tokens_and_owner_organization(test_context):
    client, services = test_context

    res = register(client, "alice")
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["success"] is True
    assert body["message"] == "User registered successfully"

    data = body["data"]
    assert data["accessToken"]
    assert data["refreshToken"]
    assert data["expiresIn"] == 8 * 3600
    assert data["organization"]["name"] == "Acme Logistics"
    assert data["organization"]["slug"] == "acme-logistics"
    assert "password_hash" not in data["user"]
    assert "login_attempts" not in data["user"]

    claims = jwt.get_unverified_claims(data["accessToken"])
    assert claims["sub"] == data["user"]["id"]
    assert claims["type"] == "access"
    assert claims["org"] == data["organization"]["id"]
    assert claims["org_role"] == "admin"

    stored = services.cache.get(refresh_token_key(data["user"]["id"]))
    assert stored["organization_id"] == data["organization"]["id"]
    assert stored["jti"] == jwt.get_unverified_claims(data["refreshToken"])["jti"]


def test_register_rejects_duplicates_and_weak_passwords(test_context):
    client, _ = test_context

    assert register(client, "bob").status_code == 201

    duplicate = register(client, "bob")
    assert duplicate.status_code == 409, duplicate.text
    assert duplicate.json()["error"]["type"] == "ConflictError"
    assert duplicate.json()["message"] == "Username already exists"

    weak = register(client, "carol", password="password")
    assert weak.status_code == 400, weak.text
    fields = {item["field"] for item in weak.json()["error"]["details"]}
    assert fields == {"password"}


def test_register_rejects_password_beyond_bcrypt_limit(test_context):
    client, _ = test_context

    res = register(client, "longpw", password="Aa1!" + "x" * 80)
    assert res.status_code == 400, res.text
    details = res.json()["error"]["details"]
    assert details == [{"field": "password", "message": "password must be at most 72 bytes"}]

    # Multi-byte characters count by their encoded size.
    wide = register(client, "widepw", password="Aa1!" + "é" * 40)
    assert wide.status_code == 400, wide.text

    oversized = register(client, "hugepw", password="Aa1!" + "x" * 200)
    assert oversized.status_code == 400
    assert oversized.json()["error"]["details"][0]["field"] == "password"


def test_register_refuses_privileged_self_assigned_role(test_context):
    client, _ = test_context

    res = register(client, "mallory", role="admin")
    assert res.status_code == 400, res.text
    assert res.json()["error"]["details"][0]["field"] == "role"


def test_login_with_username_or_email(test_context):
    client, _ = test_context
    register_owner(client, "dave")

    by_username = client.post("/api/auth/login", json={"username": "dave", "password": TEST_PASSWORD})
    assert by_username.status_code == 200, by_username.text
    assert by_username.json()["message"] == "Login successful"
    assert by_username.json()["data"]["user"]["last_login"] is not None

    by_email = client.post("/api/auth/login", json={"identifier": "DAVE@example.com", "password": TEST_PASSWORD})
    assert by_email.status_code == 200, by_email.text

    wrong = client.post("/api/auth/login", json={"email": "dave@example.com", "password": "Wr0ng!pass"})
    assert wrong.status_code == 401
    assert wrong.json()["message"] == "Invalid credentials"

    unknown = client.post("/api/auth/login", json={"identifier": "nobody", "password": TEST_PASSWORD})
    assert unknown.status_code == 401


def test_login_locks_account_after_repeated_failures(test_context):
    client, services = test_context
    owner = register_owner(client, "erin")

    for _ in range(services.settings.login_max_attempts):
        res = client.post("/api/auth/login", json={"identifier": "erin", "password": "Wr0ng!pass"})
        assert res.status_code == 401

    locked = client.post("/api/auth/login", json={"identifier": "erin", "password": TEST_PASSWORD})
    assert locked.status_code == 403, locked.text
    assert "locked" in locked.json()["message"]

    user = services.database.find_by_id("users", owner["user_id"])
    assert user["login_attempts"] == services.settings.login_max_attempts
    assert user["locked_until"] is not None

    # Existing access tokens stop working while the lock holds.
    profile = client.get("/api/auth/profile", headers=owner["headers"])
    assert profile.status_code == 403


def test_login_succeeds_once_lock_window_has_elapsed(test_context):
    client, services = test_context
    owner = register_owner(client, "erika")

    for _ in range(services.settings.login_max_attempts):
        client.post("/api/auth/login", json={"identifier": "erika", "password": "Wr0ng!pass"})
    locked = client.post("/api/auth/login", json={"identifier": "erika", "password": TEST_PASSWORD})
    assert locked.status_code == 403

    later = utcnow() + timedelta(minutes=services.settings.login_lock_minutes, seconds=1)
    services.auth.clock = lambda: later

    res = client.post("/api/auth/login", json={"identifier": "erika", "password": TEST_PASSWORD})
    assert res.status_code == 200, res.text
    user = services.database.find_by_id("users", owner["user_id"])
    assert user["login_attempts"] == 0
    assert user["locked_until"] is None


def test_successful_login_resets_failed_attempts(test_context):
    client, services = test_context
    owner = register_owner(client, "frank")

    client.post("/api/auth/login", json={"identifier": "frank", "password": "Wr0ng!pass"})
    client.post("/api/auth/login", json={"identifier": "frank", "password": "Wr0ng!pass"})
    assert services.database.find_by_id("users", owner["user_id"])["login_attempts"] == 2

    ok_res = client.post("/api/auth/login", json={"identifier": "frank", "password": TEST_PASSWORD})
    assert ok_res.status_code == 200
    assert services.database.find_by_id("users", owner["user_id"])["login_attempts"] == 0


def test_refresh_and_logout(test_context):
    client, _ = test_context
    owner = register_owner(client, "grace")

    refreshed = client.post("/api/auth/refresh", json={"refreshToken": owner["refresh_token"]})
    assert refreshed.status_code == 200, refreshed.text
    new_access = refreshed.json()["data"]["accessToken"]
    assert jwt.get_unverified_claims(new_access)["org"] == owner["organization_id"]

    # An access token is not accepted as a refresh token.
    wrong_type = client.post("/api/auth/refresh", json={"refreshToken": owner["token"]})
    assert wrong_type.status_code == 401

    logout = client.post("/api/auth/logout", headers=owner["headers"])
    assert logout.status_code == 200
    assert logout.json()["message"] == "Logged out successfully"

    revoked = client.post("/api/auth/refresh", json={"refreshToken": owner["refresh_token"]})
    assert revoked.status_code == 401
    assert revoked.json()["message"] == "Invalid refresh token"


def test_protected_route_requires_valid_token(test_context):
    client, _ = test_context

    missing = client.get("/api/auth/profile")
    assert missing.status_code == 401
    assert missing.json()["error"]["type"] == "UnauthorizedError"

    garbage = client.get("/api/auth/profile", headers=auth_headers("not-a-token"))
    assert garbage.status_code == 401
    assert garbage.json()["message"] == "Invalid token"


def test_profile_lists_organizations_and_updates(test_context):
    client, _ = test_context
    owner = register_owner(client, "heidi")

    profile = client.get("/api/auth/profile", headers=owner["headers"])
    assert profile.status_code == 200, profile.text
    user = profile.json()["data"]["user"]
    assert user["current_organization_id"] == owner["organization_id"]
    assert [org["role"] for org in user["organizations"]] == ["admin"]

    updated = client.put(
        "/api/auth/profile",
        json={"department": "Operations", "timezone": "Africa/Lagos", "version": user["version"]},
        headers=owner["headers"],
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["data"]["user"]["department"] == "Operations"

    stale = client.put(
        "/api/auth/profile",
        json={"department": "Finance", "version": user["version"]},
        headers=owner["headers"],
    )
    assert stale.status_code == 409


def test_change_password_revokes_refresh_token(test_context):
    client, _ = test_context
    owner = register_owner(client, "ivan")

    wrong = client.post(
        "/api/auth/change-password",
        json={"currentPassword": "Wr0ng!pass", "newPassword": "N3w!password"},
        headers=owner["headers"],
    )
    assert wrong.status_code == 401

    changed = client.post(
        "/api/auth/change-password",
        json={"currentPassword": TEST_PASSWORD, "newPassword": "N3w!password"},
        headers=owner["headers"],
    )
    assert changed.status_code == 200, changed.text

    assert client.post("/api/auth/refresh", json={"refreshToken": owner["refresh_token"]}).status_code == 401
    assert client.post("/api/auth/login", json={"identifier": "ivan", "password": "N3w!password"}).status_code == 200


def test_verify_token(test_context):
    client, _ = test_context
    owner = register_owner(client, "judy")

    res = client.post("/api/auth/verify-token", json={"token": owner["token"]})
    assert res.status_code == 200, res.text
    data = res.json()["data"]
    assert data["valid"] is True
    assert data["userId"] == owner["user_id"]
    assert data["organizationId"] == owner["organization_id"]


def test_switch_organization_and_header_override(test_context):
    client, _ = test_context
    owner = register_owner(client, "ken")

    second = client.post("/api/organizations", json={"name": "Second Branch"}, headers=owner["headers"])
    assert second.status_code == 201, second.text
    second_id = second.json()["data"]["organization"]["id"]

    switched = client.post(
        "/api/auth/switch-organization",
        json={"organizationId": second_id},
        headers=owner["headers"],
    )
    assert switched.status_code == 200, switched.text
    assert jwt.get_unverified_claims(switched.json()["data"]["accessToken"])["org"] == second_id

    via_header = client.get("/api/auth/profile", headers=auth_headers(owner["token"], second_id))
    assert via_header.json()["data"]["user"]["current_organization_id"] == second_id

    stranger = register_owner(client, "leo", organization_name="Leo Traders")
    refused = client.get("/api/tasks", headers=auth_headers(stranger["token"], owner["organization_id"]))
    assert refused.status_code == 403


def test_member_added_to_organization_can_log_in_there(test_context):
    client, _ = test_context
    owner = register_owner(client, "mia")
    member = add_member(client, owner, "nina", role="agent")

    claims = jwt.get_unverified_claims(member["token"])
    assert claims["org"] == owner["organization_id"]
    assert claims["org_role"] == "agent"

    # Agents cannot manage members.
    res = client.post(
        f"/api/organizations/{owner['organization_id']}/members",
        json={"email": "mia@example.com", "role": "agent"},
        headers=member["headers"],
    )
    assert res.status_code == 403
