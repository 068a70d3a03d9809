"""Credential handling, token issuance and the login lockout policy."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from app.core.config import Settings
from app.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.core.observability import log_event
from app.core.roles import Role
from app.core.security import (
    TokenExpiredError,
    TokenValidationError,
    create_token,
    decode_token,
    hash_password,
    password_policy_violations,
    verify_password,
)
from app.db.database import Database, utcnow
from app.db.filters import Eq
from app.services.cache_service import BaseCache
from app.services.organization_service import create_organization, list_memberships, resolve_membership

logger = logging.getLogger("productivity.auth")

SENSITIVE_USER_FIELDS = frozenset({"password_hash", "login_attempts", "locked_until"})
PROFILE_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "phone",
        "department",
        "position",
        "timezone",
        "language",
        "preferences",
    }
)


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in user.items() if key not in SENSITIVE_USER_FIELDS}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def refresh_token_key(user_id: str) -> str:
    return f"refresh_token:{user_id}"


class AuthService:
    def __init__(
        self,
        database: Database,
        cache: BaseCache,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.database = database
        self.cache = cache
        self.settings = settings
        self.clock = clock

    # -- passwords ----------------------------------------------------------

    def hash_password(self, plaintext: str) -> str:
        problems = password_policy_violations(plaintext)
        if problems:
            raise ValidationError(
                "Password does not meet requirements",
                details=[{"field": "password", "message": problem} for problem in problems],
            )
        return hash_password(plaintext, rounds=self.settings.bcrypt_rounds)

    def verify_password(self, plaintext: str, hashed: str) -> bool:
        return verify_password(plaintext, hashed)

    # -- tokens -------------------------------------------------------------

    def _access_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.jwt_expires_in_hours)

    def _refresh_ttl(self) -> timedelta:
        return timedelta(days=self.settings.jwt_refresh_expires_in_days)

    def create_access_token(self, user: dict[str, Any], membership: dict[str, Any] | None) -> str:
        return create_token(
            user["id"],
            self._access_ttl(),
            "access",
            secret=self.settings.jwt_secret,
            issuer=self.settings.jwt_issuer,
            audience=self.settings.jwt_audience,
            claims={
                "username": user["username"],
                "email": user["email"],
                "role": user["role"],
                "org": membership["organization_id"] if membership else None,
                "org_role": membership["role"] if membership else None,
            },
        )

    def issue_tokens(self, user: dict[str, Any], organization_id: str | None = None) -> dict[str, Any]:
        membership = resolve_membership(self.database, user["id"], organization_id)
        access_token = self.create_access_token(user, membership)

        refresh_ttl = self._refresh_ttl()
        jti = str(uuid4())
        refresh_token = create_token(
            user["id"],
            refresh_ttl,
            "refresh",
            secret=self.settings.jwt_refresh_secret,
            issuer=self.settings.jwt_issuer,
            audience=self.settings.jwt_audience,
            jti=jti,
        )
        self.cache.set(
            refresh_token_key(user["id"]),
            {
                "jti": jti,
                "organization_id": membership["organization_id"] if membership else None,
            },
            ttl=int(refresh_ttl.total_seconds()),
        )
        return {
            "accessToken": access_token,
            "refreshToken": refresh_token,
            "organization": membership["organization"] if membership else None,
            "expiresIn": int(self._access_ttl().total_seconds()),
        }

    def verify_token(self, token: str, *, is_refresh: bool = False) -> dict[str, Any]:
        try:
            return decode_token(
                token,
                secret=self.settings.jwt_refresh_secret if is_refresh else self.settings.jwt_secret,
                issuer=self.settings.jwt_issuer,
                audience=self.settings.jwt_audience,
                expected_type="refresh" if is_refresh else "access",
            )
        except TokenExpiredError as exc:
            raise UnauthorizedError("Token has expired") from exc
        except TokenValidationError as exc:
            raise UnauthorizedError("Invalid token") from exc

    # -- users --------------------------------------------------------------

    def get_user(self, user_id: str) -> dict[str, Any]:
        user = self.database.find_by_id("users", user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def find_by_identifier(self, identifier: str) -> dict[str, Any] | None:
        normalized = identifier.strip().lower()
        field = "email" if "@" in normalized else "username"
        return self.database.find_one("users", [Eq(field, normalized)])

    def is_locked(self, user: dict[str, Any]) -> bool:
        locked_until = _as_utc(user.get("locked_until"))
        return locked_until is not None and locked_until > self.clock()

    def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: Role = Role.AGENT,
        phone: str | None = None,
        organization_name: str | None = None,
    ) -> dict[str, Any]:
        username = username.strip().lower()
        email = email.strip().lower()
        if self.database.find_one("users", [Eq("username", username)]):
            raise ConflictError("Username already exists")
        if self.database.find_one("users", [Eq("email", email)]):
            raise ConflictError("Email already exists")

        password_hash = self.hash_password(password)
        organization_id = None
        with self.database.transaction() as tx:
            user = tx.create(
                "users",
                {
                    "username": username,
                    "email": email,
                    "password_hash": password_hash,
                    "first_name": first_name.strip(),
                    "last_name": last_name.strip(),
                    "phone": phone,
                    "role": role.value,
                },
            )
            if organization_name:
                organization, _ = create_organization(tx, name=organization_name, owner_user_id=user["id"])
                organization_id = organization["id"]

        tokens = self.issue_tokens(user, organization_id)
        log_event(logger, logging.INFO, "user_registered", user_id=user["id"])
        return {"user": public_user(user), **tokens}

    def login(
        self,
        identifier: str,
        password: str,
        organization_id: str | None = None,
    ) -> dict[str, Any]:
        user = self.find_by_identifier(identifier)
        if not user:
            raise UnauthorizedError("Invalid credentials")
        if not user["is_active"]:
            raise ForbiddenError("Account is deactivated")

        now = self.clock()
        locked_until = _as_utc(user.get("locked_until"))
        if locked_until is not None:
            if locked_until > now:
                log_event(logger, logging.WARNING, "login_locked", user_id=user["id"])
                raise ForbiddenError(
                    "Account is temporarily locked due to multiple failed login attempts",
                    details={"locked_until": locked_until.isoformat()},
                )
            user = self.database.update("users", user["id"], {"login_attempts": 0, "locked_until": None})

        if not self.verify_password(password, user["password_hash"]):
            attempts = int(user["login_attempts"] or 0) + 1
            changes: dict[str, Any] = {"login_attempts": attempts}
            if attempts >= self.settings.login_max_attempts:
                changes["locked_until"] = now + timedelta(minutes=self.settings.login_lock_minutes)
                log_event(logger, logging.WARNING, "account_locked", user_id=user["id"], attempts=attempts)
            self.database.update("users", user["id"], changes)
            raise UnauthorizedError("Invalid credentials")

        user = self.database.update(
            "users",
            user["id"],
            {"login_attempts": 0, "locked_until": None, "last_login": now},
        )
        tokens = self.issue_tokens(user, organization_id)
        log_event(logger, logging.INFO, "user_logged_in", user_id=user["id"])
        return {"user": public_user(user), **tokens}

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        claims = self.verify_token(refresh_token, is_refresh=True)
        user_id = claims["sub"]
        stored = self.cache.get(refresh_token_key(user_id))
        if not isinstance(stored, dict) or stored.get("jti") != claims["jti"]:
            raise UnauthorizedError("Invalid refresh token")

        user = self.database.find_by_id("users", user_id)
        if not user or not user["is_active"]:
            raise UnauthorizedError("User not found or inactive")

        membership = None
        organization_id = stored.get("organization_id")
        if organization_id:
            try:
                membership = resolve_membership(self.database, user_id, organization_id)
            except ForbiddenError:
                membership = None
        if membership is None:
            membership = resolve_membership(self.database, user_id, None)
        return {
            "accessToken": self.create_access_token(user, membership),
            "expiresIn": int(self._access_ttl().total_seconds()),
        }

    def logout(self, user_id: str) -> None:
        self.cache.delete(refresh_token_key(user_id))
        log_event(logger, logging.INFO, "user_logged_out", user_id=user_id)

    def switch_organization(self, user_id: str, organization_id: str) -> dict[str, Any]:
        user = self.get_user(user_id)
        membership = resolve_membership(self.database, user_id, organization_id)
        stored = self.cache.get(refresh_token_key(user_id))
        if isinstance(stored, dict):
            stored["organization_id"] = organization_id
            remaining = self.cache.ttl(refresh_token_key(user_id))
            self.cache.set(refresh_token_key(user_id), stored, ttl=remaining)
        return {
            "accessToken": self.create_access_token(user, membership),
            "organization": membership["organization"] if membership else None,
        }

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self.get_user(user_id)
        if not self.verify_password(current_password, user["password_hash"]):
            raise UnauthorizedError("Current password is incorrect")
        if current_password == new_password:
            raise ValidationError(
                "New password must be different from the current password",
                details=[{"field": "newPassword", "message": "must differ from current password"}],
            )
        self.database.update("users", user_id, {"password_hash": self.hash_password(new_password)})
        # Outstanding refresh tokens stop working after a password change.
        self.cache.delete(refresh_token_key(user_id))
        log_event(logger, logging.INFO, "password_changed", user_id=user_id)

    def update_profile(
        self,
        user_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        unknown = sorted(set(changes) - PROFILE_FIELDS)
        if unknown:
            raise ValidationError(
                "Validation failed",
                details=[{"field": name, "message": "field cannot be updated"} for name in unknown],
            )
        if not changes:
            return public_user(self.get_user(user_id))
        user = self.database.update("users", user_id, changes, expected_version=expected_version)
        return public_user(user)

    def get_user_with_organizations(self, user_id: str) -> dict[str, Any]:
        user = public_user(self.get_user(user_id))
        user["organizations"] = [
            {
                "id": membership["organization"]["id"],
                "name": membership["organization"]["name"],
                "slug": membership["organization"]["slug"],
                "role": membership["role"],
            }
            for membership in list_memberships(self.database, user_id)
        ]
        return user
