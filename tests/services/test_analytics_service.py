"""Tests for the analytics store and event processor."""

from datetime import UTC, datetime

import pytest

from patient_hub.event_bus import BusMessage, InMemoryEventBus
from patient_hub.events.types import PatientEvent, PatientEventType, patient_created
from patient_hub.services.analytics_service import AnalyticsEventProcessor, AnalyticsStore


def _message(value: bytes, offset: int = 0) -> BusMessage:
    return BusMessage(topic="patient", partition=0, offset=offset, key="P1", value=value, timestamp=datetime.now(UTC))


class TestAnalyticsStore:
    def test_counts_created_patients_by_domain(self):
        store = AnalyticsStore()
        store.apply(patient_created("P1", "Ada", "ada@Example.com"))
        store.apply(patient_created("P2", "Grace", "grace@example.com"))
        store.apply(patient_created("P3", "Alan", "alan@other.org"))

        summary = store.summary()

        assert summary.patients_created == 3
        assert summary.events_by_type == {"PATIENT_CREATED": 3}
        assert summary.patients_by_email_domain == {"example.com": 2, "other.org": 1}
        assert summary.last_event_at is not None

    def test_duplicate_event_counted_once(self):
        store = AnalyticsStore()
        event = patient_created("P1", "Ada", "ada@example.com")

        assert store.apply(event) is True
        assert store.apply(event) is False
        # Same fact delivered again with a different timestamp is still a duplicate
        assert store.apply(patient_created("P1", "Ada", "ada@example.com")) is False

        summary = store.summary()
        assert summary.patients_created == 1
        assert summary.duplicates_ignored == 2
        assert store.has_seen("P1", PatientEventType.PATIENT_CREATED)

    def test_naive_and_aware_timestamps_mix(self):
        store = AnalyticsStore()
        store.apply(patient_created("P1", "Ada", "ada@example.com"))
        naive = PatientEvent.decode(
            b'{"patientId": "P2", "name": "Grace", "email": "grace@example.com",'
            b' "eventType": "PATIENT_CREATED", "occurredAt": "2030-01-01T00:00:00"}'
        )

        assert store.apply(naive) is True

        summary = store.summary()
        assert summary.patients_created == 2
        assert summary.duplicates_ignored == 0
        assert summary.last_event_at == datetime(2030, 1, 1, tzinfo=UTC)

    def test_empty_summary(self):
        summary = AnalyticsStore().summary()
        assert summary.patients_created == 0
        assert summary.last_event_at is None


class TestAnalyticsEventProcessor:
    @pytest.mark.asyncio
    async def test_applies_decoded_event(self):
        store = AnalyticsStore()
        processor = AnalyticsEventProcessor(store)

        applied = await processor.handle(_message(patient_created("P1", "Ada", "ada@example.com").encode()))

        assert applied is True
        assert store.summary().patients_created == 1

    @pytest.mark.asyncio
    async def test_undecodable_message_is_counted_and_skipped(self):
        store = AnalyticsStore()
        processor = AnalyticsEventProcessor(store)

        applied = await processor.handle(_message(b"{broken"))

        assert applied is False
        assert store.summary().decode_failures == 1
        assert store.summary().patients_created == 0

    @pytest.mark.asyncio
    async def test_redelivered_message_does_not_double_count(self):
        bus = InMemoryEventBus(partitions=1)
        store = AnalyticsStore()
        bus.subscribe("patient", "analytics-service", AnalyticsEventProcessor(store))
        payload = patient_created("P1", "Ada", "ada@example.com").encode()

        await bus.publish("patient", "P1", payload)
        await bus.publish("patient", "P1", payload)
        await bus.publish("patient", "P1", b"garbage")
        await bus.publish("patient", "P2", patient_created("P2", "Grace", "grace@example.com").encode())
        await bus.drain("patient", "analytics-service")

        summary = store.summary()
        assert summary.patients_created == 2
        assert summary.duplicates_ignored == 1
        assert summary.decode_failures == 1
        assert bus.dead_letters == []
        await bus.close()

    @pytest.mark.asyncio
    async def test_timestamp_without_offset_is_counted_once(self):
        bus = InMemoryEventBus(partitions=1, redelivery_backoff_seconds=0)
        store = AnalyticsStore()
        bus.subscribe("patient", "analytics-service", AnalyticsEventProcessor(store))

        await bus.publish("patient", "P1", patient_created("P1", "Ada", "ada@example.com").encode())
        await bus.publish(
            "patient",
            "P2",
            b'{"patientId": "P2", "name": "Grace", "email": "grace@example.com",'
            b' "eventType": "PATIENT_CREATED", "occurredAt": "2030-01-01T00:00:00"}',
        )
        await bus.drain("patient", "analytics-service")

        summary = store.summary()
        assert summary.patients_created == 2
        assert summary.duplicates_ignored == 0
        assert bus.dead_letters == []
        await bus.close()
