from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import Settings, settings as default_settings
from app.core.errors import AppError
from app.core.observability import (
    app_error_handler,
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from app.routers import (
    ai,
    auth,
    customers,
    dashboard,
    health,
    mapping,
    modules,
    orders,
    organizations,
    realtime,
    tasks,
)
from app.services.container import Services, build_services

OPENAPI_TAGS = [
    {"name": "health", "description": "Service status and dependency checks."},
    {"name": "auth", "description": "Registration, login, token lifecycle and profile."},
    {"name": "organizations", "description": "Organizations and their members."},
    {"name": "tasks", "description": "Tasks, subtasks and task comments."},
    {"name": "orders", "description": "Order capture, pricing and lifecycle transitions."},
    {"name": "customers", "description": "Customer records and order history."},
    {"name": "dashboard", "description": "Organization KPIs and productivity analytics."},
    {"name": "ai", "description": "LLM-assisted task, ticket, order and inventory helpers."},
    {"name": "mapping", "description": "Geocoding, routing and delivery estimates."},
    {"name": "modules", "description": "Modules that are announced but not built yet."},
    {"name": "realtime", "description": "WebSocket notifications."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services | None = getattr(app.state, "services", None)
    if services is None:
        services = build_services(app.state.settings)
        app.state.services = services
    await services.start()
    try:
        yield
    finally:
        await services.close()


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or (services.settings if services is not None else default_settings)
    setup_observability(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        description=(
            "Multi-tenant productivity API: tasks, orders, customers and real-time notifications.\n\n"
            "Authenticate with `POST /api/auth/login` and send the access token as a Bearer token. "
            "Pick the organization with the `X-Organization-ID` header or `POST /api/auth/switch-organization`."
        ),
        lifespan=lifespan,
        openapi_tags=OPENAPI_TAGS,
        swagger_ui_parameters={
            "persistAuthorization": True,
            "displayRequestDuration": True,
        },
    )
    app.state.settings = settings
    if services is not None:
        app.state.services = services

    app.middleware("http")(request_logging_middleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    cors_origins = settings.cors_origins or ["http://localhost:3000"]
    allow_all_origins = "*" in cors_origins
    allow_origin_regex = None
    if settings.is_development:
        allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all_origins else cors_origins,
        allow_origin_regex=allow_origin_regex,
        allow_credentials=not allow_all_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(organizations.router)
    app.include_router(tasks.router)
    app.include_router(orders.router)
    app.include_router(customers.router)
    app.include_router(dashboard.router)
    app.include_router(ai.router)
    app.include_router(mapping.router)
    app.include_router(modules.router)
    app.include_router(realtime.router)

    @app.get("/", tags=["health"], include_in_schema=False)
    def root():
        return {
            "app": settings.app_name,
            "docs": "/docs",
            "health": "/api/health",
            "websocket": "/ws",
        }

    return app


app = create_app()
