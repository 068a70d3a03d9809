"""FastAPI dependencies that apply the rate-limit policies to routes."""

from collections.abc import Iterator

from fastapi import Depends, Request, Response

from app.core.deps import client_ip, get_services
from app.core.rate_limit import RateLimitHit
from app.core.security_current import CurrentUser, get_current_user, get_optional_user
from app.services.container import Services


def _set_headers(response: Response, hit: RateLimitHit) -> None:
    response.headers["X-RateLimit-Limit"] = str(hit.limit)
    response.headers["X-RateLimit-Remaining"] = str(hit.remaining)
    response.headers["X-RateLimit-Reset"] = str(int(hit.reset_at))


def api_rate_limit(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> RateLimitHit:
    limiter = services.rate_limiter
    hit = limiter.check(limiter.policies.api, client_ip(request))
    _set_headers(response, hit)
    return hit


def auth_rate_limit(
    request: Request,
    services: Services = Depends(get_services),
) -> Iterator[RateLimitHit]:
    """Count an authentication attempt; give it back if the handler succeeds."""
    limiter = services.rate_limiter
    hit = limiter.check(limiter.policies.auth, client_ip(request))
    yield hit
    limiter.refund(hit)


def strict_rate_limit(
    response: Response,
    current: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> RateLimitHit:
    limiter = services.rate_limiter
    hit = limiter.check(limiter.policies.strict, f"user:{current.id}")
    _set_headers(response, hit)
    return hit


def role_rate_limit(
    request: Request,
    current: CurrentUser | None = Depends(get_optional_user),
    services: Services = Depends(get_services),
) -> RateLimitHit:
    limiter = services.rate_limiter
    if current is None:
        return limiter.check(limiter.policies.for_role(None), f"ip:{client_ip(request)}")
    return limiter.check(limiter.policies.for_role(current.role), f"user:{current.id}")


def organization_rate_limit(
    current: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> RateLimitHit | None:
    if not current.organization_id:
        return None
    limiter = services.rate_limiter
    return limiter.check(limiter.policies.organization, current.organization_id)


PUBLIC_LIMITS = [Depends(api_rate_limit)]
MEMBER_LIMITS = [
    Depends(api_rate_limit),
    Depends(role_rate_limit),
    Depends(organization_rate_limit),
]
