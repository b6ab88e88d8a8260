"""Event system for the patient hub.

This package provides the patient domain event, its publisher, and the
registration of the consumers that react to it.
"""

from loguru import logger

from patient_hub.event_bus.core import EventBusClient, MessageCallback, Subscription
from patient_hub.events.publisher import PatientEventPublisher
from patient_hub.events.types import PatientEvent, PatientEventType
from patient_hub.settings import Settings

__all__ = [
    "PatientEvent",
    "PatientEventPublisher",
    "PatientEventType",
    "register_event_handlers",
]


def register_event_handlers(bus: EventBusClient, analytics_handler: MessageCallback, settings: Settings) -> Subscription:
    """Subscribe the analytics processor to the patient topic.

    Returns:
        The subscription handle; cancel it to stop consuming
    """
    logger.debug(f"Subscribing {settings.analytics_consumer_group} to {settings.patient_topic}")
    subscription = bus.subscribe(settings.patient_topic, settings.analytics_consumer_group, analytics_handler)
    logger.info("Event handlers registered successfully")
    return subscription
