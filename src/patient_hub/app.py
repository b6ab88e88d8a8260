"""Main FastAPI application module."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from patient_hub.api.api_router import build_api_router
from patient_hub.api.health import router as health_router
from patient_hub.constants import PROFILE_ANALYTICS, PROFILE_BILLING, PROFILE_PATIENT
from patient_hub.database import dispose_db, init_db
from patient_hub.exception_handlers import register_exception_handlers
from patient_hub.logging import setup_logging, setup_sqlalchemy_logging
from patient_hub.profile import parse_profile, set_active_profiles
from patient_hub.services.di import register_all_services, shutdown_services
from patient_hub.services.registry import get_service_registry
from patient_hub.settings import Settings, get_settings


def _log_server_endpoints_summary(settings: Settings, active_profiles: set[str]) -> None:
    """Log the server URL and the endpoints mounted for the active profiles."""
    server_url = f"http://{settings.host}:{settings.port}"
    logger.info(f"Server running at: {server_url}")

    endpoints = [("Health", "/health"), ("OpenAPI Schema", "/openapi.json"), ("API Docs", "/docs")]
    if PROFILE_PATIENT in active_profiles:
        endpoints.append(("Patients", "/api/patients"))
    if PROFILE_BILLING in active_profiles:
        endpoints.append(("Billing accounts", "/api/billing/accounts"))
    if PROFILE_ANALYTICS in active_profiles:
        endpoints.append(("Analytics", "/api/analytics/summary"))

    logger.info("Available endpoints:")
    for name, path in endpoints:
        logger.info(f"   {name}: {server_url}{path}")

    logger.info(f"Active profiles: {', '.join(sorted(active_profiles))}")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application for ``settings`` (defaults to the cached settings).

    The profiles in ``settings`` decide which routers are mounted and whether
    this process consumes the patient topic.
    """
    app_settings = settings or get_settings()
    active_profiles = parse_profile(app_settings.profiles)

    @asynccontextmanager
    async def app_lifespan(_app: FastAPI):
        """Handle startup and shutdown events for the main application."""
        setup_logging(log_level=app_settings.log_level)
        setup_sqlalchemy_logging(app_settings.sql_log)
        set_active_profiles(active_profiles)

        init_db(app_settings)

        logger.info("Registering services in the service registry")
        registry = get_service_registry()
        register_all_services(registry, app_settings, active_profiles)

        _log_server_endpoints_summary(app_settings, active_profiles)

        yield

        logger.info("Patient hub shutting down")
        await shutdown_services(registry)
        dispose_db()

    app = FastAPI(
        lifespan=app_lifespan,
        title="Patient hub",
        description="Patient registration with billing account provisioning and event-driven analytics",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = app_settings  # type: ignore[attr-defined]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, replace with specific origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # System endpoints - always enabled
    app.include_router(health_router, prefix="")

    # Profile-based endpoints
    app.include_router(build_api_router(active_profiles), prefix="/api")

    return app
