import logging
from dataclasses import dataclass

import httpx
from sqlalchemy import Engine
from starlette.concurrency import run_in_threadpool

from app.core.config import Settings
from app.core.observability import log_event
from app.core.rate_limit import FixedWindowRateLimiter, RateLimitPolicies
from app.db.database import Database
from app.db.session import build_engine
from app.services.ai_service import AIService
from app.services.auth_service import AuthService
from app.services.cache_service import BaseCache, build_cache
from app.services.mapping_service import MappingService
from app.services.realtime_service import RealtimeHub

logger = logging.getLogger("productivity.services")


@dataclass
class Services:
    """Process-lifetime collaborators shared by every request."""

    settings: Settings
    database: Database
    cache: BaseCache
    auth: AuthService
    rate_limiter: FixedWindowRateLimiter
    realtime: RealtimeHub
    ai: AIService
    mapping: MappingService

    async def start(self) -> None:
        await run_in_threadpool(self.ai.initialize)
        await run_in_threadpool(self.mapping.initialize)
        await self.realtime.start()
        log_event(
            logger,
            logging.INFO,
            "services_started",
            ai=self.ai.enabled,
            mapping=self.mapping.enabled,
        )

    async def close(self) -> None:
        await self.realtime.close()
        self.ai.close()
        self.mapping.close()
        self.cache.close()
        self.database.close()
        log_event(logger, logging.INFO, "services_stopped")


def build_services(
    settings: Settings,
    *,
    engine: Engine | None = None,
    cache: BaseCache | None = None,
    ai_http_client: httpx.Client | None = None,
    mapping_transport: httpx.BaseTransport | None = None,
) -> Services:
    database = Database(engine or build_engine(settings))
    cache = cache or build_cache(settings)
    return Services(
        settings=settings,
        database=database,
        cache=cache,
        auth=AuthService(database, cache, settings),
        rate_limiter=FixedWindowRateLimiter(cache, RateLimitPolicies.from_settings(settings)),
        realtime=RealtimeHub(
            cache,
            database=database,
            redis_url=settings.redis_url,
            backplane=settings.realtime_backplane,
        ),
        ai=AIService(settings, http_client=ai_http_client),
        mapping=MappingService(settings, transport=mapping_transport),
    )
