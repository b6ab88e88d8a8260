"""Health API endpoint."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from patient_hub.api.dependencies import service
from patient_hub.database import get_db_session, is_healthy
from patient_hub.event_bus import EventBusClient, InMemoryEventBus, Subscription
from patient_hub.profile import get_active_profiles
from patient_hub.services.registry import get_service_registry
from patient_hub.settings import Settings

router = APIRouter(tags=["System"])


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    profiles: list[str]
    database: dict[str, Any]
    consumer: dict[str, Any] | None = None


@router.get("/health", response_model=HealthResponse)
def health(
    session: Session = Depends(get_db_session),
    bus: EventBusClient = Depends(service(EventBusClient)),
    settings: Settings = Depends(service(Settings)),
) -> HealthResponse:
    """Report database connectivity and the state of the analytics consumer.

    The consumer section is only present when this process consumes events.
    """
    database = is_healthy(session)

    consumer = None
    registry = get_service_registry()
    if registry.has(Subscription):
        subscription = registry.get(Subscription)
        consumer = {"group": subscription.group, "topic": subscription.topic, "active": subscription.active}
        if isinstance(bus, InMemoryEventBus):
            consumer["lag"] = bus.lag(settings.patient_topic, settings.analytics_consumer_group)
            consumer["dead_letters"] = len(bus.dead_letters)

    healthy = database["status"] == "healthy" and (consumer is None or consumer["active"])
    return HealthResponse(
        status="ok" if healthy else "degraded",
        profiles=sorted(get_active_profiles()),
        database=database,
        consumer=consumer,
    )
