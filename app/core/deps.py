from fastapi import Depends, Request

from app.db.database import Database
from app.services.ai_service import AIService
from app.services.auth_service import AuthService
from app.services.cache_service import BaseCache
from app.services.container import Services
from app.services.mapping_service import MappingService
from app.services.realtime_service import RealtimeHub


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db(services: Services = Depends(get_services)) -> Database:
    return services.database


def get_cache(services: Services = Depends(get_services)) -> BaseCache:
    return services.cache


def get_auth_service(services: Services = Depends(get_services)) -> AuthService:
    return services.auth


def get_realtime(services: Services = Depends(get_services)) -> RealtimeHub:
    return services.realtime


def get_ai_service(services: Services = Depends(get_services)) -> AIService:
    return services.ai


def get_mapping_service(services: Services = Depends(get_services)) -> MappingService:
    return services.mapping


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
