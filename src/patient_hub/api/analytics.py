"""Analytics API - aggregates built from the patient event topic."""

from fastapi import APIRouter, Depends

from patient_hub.api.dependencies import service
from patient_hub.event_bus import EventBusClient, InMemoryEventBus
from patient_hub.models.api_model import AnalyticsSummary
from patient_hub.services.analytics_service import AnalyticsStore
from patient_hub.settings import Settings

router = APIRouter()


@router.get("/analytics/summary", response_model=AnalyticsSummary)
async def get_analytics_summary(
    store: AnalyticsStore = Depends(service(AnalyticsStore)),
    bus: EventBusClient = Depends(service(EventBusClient)),
    settings: Settings = Depends(service(Settings)),
) -> AnalyticsSummary:
    """Aggregated patient analytics and how far the consumer lags behind."""
    summary = store.summary()
    if isinstance(bus, InMemoryEventBus):
        summary.consumer_lag = bus.lag(settings.patient_topic, settings.analytics_consumer_group)
    return summary
