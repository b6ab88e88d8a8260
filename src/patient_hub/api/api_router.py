"""API router initialization."""

from fastapi import APIRouter
from loguru import logger

from patient_hub.api.analytics import router as analytics_router
from patient_hub.api.billing import router as billing_router
from patient_hub.api.patients import router as patients_router
from patient_hub.constants import PROFILE_ANALYTICS, PROFILE_BILLING, PROFILE_PATIENT


def build_api_router(profiles: set[str]) -> APIRouter:
    """Create the ``/api`` router with the endpoints of the active profiles."""
    router = APIRouter()

    if PROFILE_PATIENT in profiles:
        router.include_router(patients_router, tags=["patients"])
    if PROFILE_BILLING in profiles:
        router.include_router(billing_router, tags=["billing"])
    if PROFILE_ANALYTICS in profiles:
        router.include_router(analytics_router, tags=["analytics"])

    logger.debug(f"API router initialized ({', '.join(sorted(profiles))} routers mounted)")
    return router
