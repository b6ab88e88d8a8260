"""Analytics over the patient event topic.

``AnalyticsEventProcessor`` is subscribed to the patient topic as consumer
group ``analytics-service``. The bus delivers at-least-once, so the same event
can arrive more than once; ``AnalyticsStore`` keys its state on the event's
natural identity ``(patient_id, event_type)`` and counts each fact once.
"""

from collections import Counter
from datetime import datetime

from loguru import logger

from patient_hub.event_bus.core import BusMessage, MessageHandler
from patient_hub.events.types import PatientEvent, PatientEventType
from patient_hub.exceptions import DecodeError
from patient_hub.models.api_model import AnalyticsSummary


class AnalyticsStore:
    """Idempotent aggregation state for patient events."""

    def __init__(self):
        self._seen: set[tuple[str, PatientEventType]] = set()
        self._events_by_type: Counter[str] = Counter()
        self._email_domains: Counter[str] = Counter()
        self._duplicates = 0
        self._decode_failures = 0
        self._last_event_at: datetime | None = None

    def apply(self, event: PatientEvent) -> bool:
        """Fold ``event`` into the aggregates.

        Returns:
            True if the event was new, False if it was a duplicate and changed nothing
            but the duplicate counter
        """
        if event.identity in self._seen:
            self._duplicates += 1
            return False

        # Everything that can fail is computed before any state changes
        domain = event.email.rsplit("@", 1)[-1].lower() if event.event_type == PatientEventType.PATIENT_CREATED else None
        newest = self._last_event_at is None or event.occurred_at > self._last_event_at

        self._seen.add(event.identity)
        self._events_by_type[event.event_type] += 1
        if domain is not None:
            self._email_domains[domain] += 1
        if newest:
            self._last_event_at = event.occurred_at
        return True

    def record_decode_failure(self) -> None:
        self._decode_failures += 1

    def has_seen(self, patient_id: str, event_type: PatientEventType) -> bool:
        return (patient_id, event_type) in self._seen

    def summary(self) -> AnalyticsSummary:
        return AnalyticsSummary(
            patients_created=self._events_by_type[PatientEventType.PATIENT_CREATED],
            events_by_type=dict(self._events_by_type),
            patients_by_email_domain=dict(self._email_domains),
            duplicates_ignored=self._duplicates,
            decode_failures=self._decode_failures,
            last_event_at=self._last_event_at,
        )


class AnalyticsEventProcessor(MessageHandler):
    """Decodes patient events from the bus and applies them to the store.

    Undecodable messages are logged, counted and acknowledged so they never
    block the rest of their partition.
    """

    def __init__(self, store: AnalyticsStore):
        self.store = store

    async def handle(self, message: BusMessage) -> bool:
        """Process one delivered message.

        Returns:
            True if the message changed the aggregates
        """
        try:
            event = PatientEvent.decode(message.value)
        except DecodeError as e:
            self.store.record_decode_failure()
            logger.error(f"Skipping undecodable message {message.topic}/{message.partition}@{message.offset} (key={message.key}): {e}")
            return False

        applied = self.store.apply(event)
        if applied:
            logger.info(f"Received {event.event_type} event: [patient_id={event.patient_id}, name={event.name}, email={event.email}]")
        else:
            logger.debug(f"Ignored duplicate {event.event_type} event for patient {event.patient_id} at offset {message.offset}")
        return applied

