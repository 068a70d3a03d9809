from fastapi import APIRouter, Depends, status

from app.core.api_docs import error_responses
from app.core.deps import get_auth_service
from app.core.security_current import CurrentUser, get_current_user
from app.core.throttle import PUBLIC_LIMITS, auth_rate_limit, strict_rate_limit
from app.schemas.auth import (
    ChangePasswordIn,
    LoginIn,
    RefreshIn,
    RegisterIn,
    SwitchOrganizationIn,
    UpdateProfileIn,
    VerifyTokenIn,
)
from app.schemas.common import ok
from app.services.auth_service import AuthService

router = APIRouter(prefix="/api/auth", tags=["auth"], dependencies=PUBLIC_LIMITS)


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    summary="Register a user",
    description="Creates a user, optionally with a new organization, and returns access + refresh tokens.",
    responses=error_responses(400, 409, 429, 500),
    dependencies=[Depends(auth_rate_limit)],
)
def register(payload: RegisterIn, auth: AuthService = Depends(get_auth_service)):
    result = auth.register(
        username=payload.username,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        role=payload.role,
        phone=payload.phone,
        organization_name=payload.organization_name,
    )
    return ok(result, "User registered successfully")


@router.post(
    "/login",
    summary="Login with username or email",
    responses=error_responses(400, 401, 403, 429, 500),
    dependencies=[Depends(auth_rate_limit)],
)
def login(payload: LoginIn, auth: AuthService = Depends(get_auth_service)):
    result = auth.login(payload.login_identifier, payload.password, payload.organization_id)
    return ok(result, "Login successful")


@router.post(
    "/refresh",
    summary="Exchange a refresh token for a new access token",
    responses=error_responses(400, 401, 429, 500),
    dependencies=[Depends(auth_rate_limit)],
)
def refresh(payload: RefreshIn, auth: AuthService = Depends(get_auth_service)):
    return ok(auth.refresh(payload.refresh_token), "Token refreshed successfully")


@router.get("/profile", summary="Current user profile", responses=error_responses(401, 403))
def profile(
    current: CurrentUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    user = auth.get_user_with_organizations(current.id)
    user["current_organization_id"] = current.organization_id
    return ok({"user": user})


@router.put("/profile", summary="Update profile fields", responses=error_responses(400, 401, 409))
def update_profile(
    payload: UpdateProfileIn,
    current: CurrentUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    user = auth.update_profile(current.id, payload.changes(), expected_version=payload.version)
    return ok({"user": user}, "Profile updated successfully")


@router.post(
    "/change-password",
    summary="Change password",
    description="Requires the current password. Outstanding refresh tokens are revoked.",
    responses=error_responses(400, 401, 429),
    dependencies=[Depends(strict_rate_limit)],
)
def change_password(
    payload: ChangePasswordIn,
    current: CurrentUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    auth.change_password(current.id, payload.current_password, payload.new_password)
    return ok(message="Password changed successfully")


@router.post("/logout", summary="Revoke the refresh token", responses=error_responses(401))
def logout(
    current: CurrentUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    auth.logout(current.id)
    return ok(message="Logged out successfully")


@router.post("/verify-token", summary="Check an access token", responses=error_responses(400, 401))
def verify_token(payload: VerifyTokenIn, auth: AuthService = Depends(get_auth_service)):
    claims = auth.verify_token(payload.token)
    return ok(
        {
            "valid": True,
            "userId": claims["sub"],
            "role": claims.get("role"),
            "organizationId": claims.get("org"),
            "expiresAt": claims.get("exp"),
        }
    )


@router.post(
    "/switch-organization",
    summary="Issue an access token for another organization",
    responses=error_responses(400, 401, 403),
)
def switch_organization(
    payload: SwitchOrganizationIn,
    current: CurrentUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    return ok(auth.switch_organization(current.id, payload.organization_id), "Organization switched")
