import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from app.core.config import Settings
from app.core.errors import TooManyRequestsError
from app.core.observability import log_event
from app.core.roles import Role, parse_role
from app.services.cache_service import BaseCache

logger = logging.getLogger("productivity.rate_limit")

ROLE_WINDOW_SECONDS = 15 * 60
ROLE_QUOTAS: dict[Role | None, int] = {
    Role.ADMIN: 5000,
    Role.MANAGER: 2000,
    Role.WAREHOUSE_MANAGER: 1500,
    Role.FINANCIAL_MANAGER: 1200,
    Role.AGENT: 1000,
    Role.LOGISTICS_COORDINATOR: 1000,
    Role.REPRESENTATIVE: 800,
    Role.CUSTOMER: 200,
    None: 100,
}


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    limit: int
    window_seconds: int
    message: str = "Too many requests, please try again later"


@dataclass(frozen=True)
class RateLimitPolicies:
    api: RateLimitPolicy
    auth: RateLimitPolicy
    strict: RateLimitPolicy
    organization: RateLimitPolicy

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitPolicies":
        return cls(
            api=RateLimitPolicy("api", settings.rate_limit_max, settings.rate_limit_window_minutes * 60),
            auth=RateLimitPolicy(
                "auth",
                settings.rate_limit_auth_max,
                15 * 60,
                "Too many authentication attempts, please try again later",
            ),
            strict=RateLimitPolicy(
                "strict",
                settings.rate_limit_strict_max,
                settings.rate_limit_strict_window_minutes * 60,
                "Too many requests for this sensitive operation",
            ),
            organization=RateLimitPolicy(
                "organization",
                settings.rate_limit_organization_max,
                60,
                "Organization request quota exceeded",
            ),
        )

    def for_role(self, role: str | None) -> RateLimitPolicy:
        parsed = parse_role(role)
        return RateLimitPolicy(
            f"role:{parsed.value if parsed else 'anonymous'}",
            ROLE_QUOTAS[parsed],
            ROLE_WINDOW_SECONDS,
            "Request quota for your role exceeded",
        )


@dataclass(frozen=True)
class RateLimitHit:
    key: str
    count: int | None
    limit: int
    reset_at: float
    now: float

    @property
    def allowed(self) -> bool:
        # Unknown count means the cache is down; let the request through.
        return self.count is None or self.count <= self.limit

    @property
    def remaining(self) -> int:
        if self.count is None:
            return self.limit
        return max(self.limit - self.count, 0)

    @property
    def retry_after(self) -> int:
        return max(math.ceil(self.reset_at - self.now), 1)


class FixedWindowRateLimiter:
    """Counts requests per ``(policy, scope, window)`` in the shared cache."""

    def __init__(
        self,
        cache: BaseCache,
        policies: RateLimitPolicies,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.policies = policies
        self.clock = clock

    def hit(self, policy: RateLimitPolicy, scope: str) -> RateLimitHit:
        now = self.clock()
        window_index = int(now // policy.window_seconds)
        key = f"rate:{policy.name}:{scope}:{window_index}"
        count = self.cache.increment(key, 1, ttl=policy.window_seconds)
        return RateLimitHit(
            key=key,
            count=count,
            limit=policy.limit,
            reset_at=(window_index + 1) * policy.window_seconds,
            now=now,
        )

    def check(self, policy: RateLimitPolicy, scope: str) -> RateLimitHit:
        hit = self.hit(policy, scope)
        if not hit.allowed:
            log_event(
                logger,
                logging.WARNING,
                "rate_limited",
                policy=policy.name,
                scope=scope,
                retry_after=hit.retry_after,
            )
            raise TooManyRequestsError(
                policy.message,
                retry_after=hit.retry_after,
                details={"policy": policy.name, "limit": policy.limit, "retryAfter": hit.retry_after},
            )
        return hit

    def refund(self, hit: RateLimitHit) -> None:
        if hit.count is not None:
            self.cache.increment(hit.key, -1)
