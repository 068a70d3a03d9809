from fastapi import APIRouter, Depends

from app.core.deps import get_services
from app.db.database import utcnow
from app.schemas.common import ok
from app.services.container import Services

router = APIRouter(tags=["health"])


def _health_report(services: Services) -> dict:
    return ok(
        {
            "status": "healthy",
            "database": services.database.ping(),
            "cache": services.cache.ping(),
            "ai": services.ai.enabled,
            "mapping": services.mapping.enabled,
            "realtimeConnections": services.realtime.connection_count,
            "environment": services.settings.env,
            "timestamp": utcnow(),
        }
    )


@router.get("/api/health", summary="Liveness and dependency status")
def api_health(services: Services = Depends(get_services)):
    return _health_report(services)


@router.get("/health", include_in_schema=False)
def health(services: Services = Depends(get_services)):
    return _health_report(services)
