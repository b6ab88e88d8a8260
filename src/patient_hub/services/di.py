"""Dependency injection setup module.

Builds the long-lived collaborators (event bus, billing client, services) once
at startup and registers them in the service registry, so request handlers
and background consumers share the same instances.
"""

from loguru import logger

from patient_hub.billing.client import AccountServiceClient, HttpAccountServiceClient, LocalAccountServiceClient
from patient_hub.billing.service import BillingService
from patient_hub.constants import PROFILE_ANALYTICS
from patient_hub.event_bus import EventBusClient, Subscription, create_event_bus
from patient_hub.events import register_event_handlers
from patient_hub.events.publisher import PatientEventPublisher
from patient_hub.services.analytics_service import AnalyticsEventProcessor, AnalyticsStore
from patient_hub.services.patient_service import PatientService
from patient_hub.services.registry import ServiceRegistry
from patient_hub.settings import Settings


def _build_account_client(settings: Settings, billing_service: BillingService) -> AccountServiceClient:
    if settings.billing_transport == "http":
        return HttpAccountServiceClient(settings.billing_base_url)
    return LocalAccountServiceClient(billing_service)


def register_core_services(registry: ServiceRegistry, settings: Settings) -> None:
    """Register the shared transport-level collaborators.

    Args:
        registry: Service registry instance to register services in
        settings: Settings the collaborators are built from
    """
    logger.debug("Registering core services in DI container")

    billing_service = BillingService()
    registry.register_singleton(Settings, settings)
    registry.register_singleton(EventBusClient, create_event_bus(settings))
    registry.register_singleton(BillingService, billing_service)
    registry.register_singleton(AccountServiceClient, _build_account_client(settings, billing_service))


def register_app_services(registry: ServiceRegistry, settings: Settings, profiles: set[str]) -> None:
    """Register the patient and analytics services; start consuming when analytics is enabled.

    Must run inside the event loop that will drive the consumer.

    Args:
        registry: Service registry instance to register services in
        settings: Settings the services are built from
        profiles: Active server profiles
    """
    logger.debug("Registering application services in DI container")

    bus = registry.get(EventBusClient)
    publisher = PatientEventPublisher(
        bus,
        topic=settings.patient_topic,
        retries=settings.publish_retries,
        backoff_seconds=settings.publish_retry_backoff_seconds,
    )
    registry.register_singleton(PatientService, PatientService(registry.get(AccountServiceClient), publisher, settings))

    store = AnalyticsStore()
    registry.register_singleton(AnalyticsStore, store)
    if PROFILE_ANALYTICS in profiles:
        processor = AnalyticsEventProcessor(store)
        registry.register_singleton(AnalyticsEventProcessor, processor)
        registry.register_singleton(Subscription, register_event_handlers(bus, processor, settings))


def register_all_services(registry: ServiceRegistry, settings: Settings, profiles: set[str]) -> None:
    """Register all services in the service registry."""
    register_core_services(registry, settings)
    register_app_services(registry, settings, profiles)


async def shutdown_services(registry: ServiceRegistry) -> None:
    """Stop consuming, let pending side effects finish and close transports."""
    if registry.has(Subscription):
        await registry.get(Subscription).cancel()
    if registry.has(PatientService):
        await registry.get(PatientService).wait_for_background_tasks()
    if registry.has(AccountServiceClient):
        await registry.get(AccountServiceClient).close()
    if registry.has(EventBusClient):
        await registry.get(EventBusClient).close()
    registry.clear()
    logger.debug("Services shut down")
