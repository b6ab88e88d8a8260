"""Tests for the in-memory partitioned event bus."""

import asyncio

import pytest

from patient_hub.event_bus import (
    BusMessage,
    InMemoryEventBus,
    MessageHandler,
    PermanentPublishError,
    SubscriptionError,
    TransientPublishError,
    create_event_bus,
)
from patient_hub.settings import Settings

TOPIC = "patient"
GROUP = "analytics-service"


class RecordingHandler(MessageHandler):
    """Class-based handler that remembers what it received."""

    def __init__(self):
        self.received: list[BusMessage] = []

    async def handle(self, message: BusMessage) -> None:
        self.received.append(message)


class FlakyHandler(MessageHandler):
    """Fails a fixed number of times per message before succeeding."""

    def __init__(self, failures: int):
        self.failures = failures
        self.attempts: dict[int, int] = {}
        self.handled: list[bytes] = []

    async def handle(self, message: BusMessage) -> None:
        count = self.attempts.get(message.offset, 0) + 1
        self.attempts[message.offset] = count
        if count <= self.failures:
            raise RuntimeError(f"failure {count}")
        self.handled.append(message.value)


class TestPublish:
    """Publishing to the bus."""

    @pytest.mark.asyncio
    async def test_publish_returns_ack_with_increasing_offsets(self):
        bus = InMemoryEventBus(partitions=3)

        first = await bus.publish(TOPIC, "P1", b"one")
        second = await bus.publish(TOPIC, "P1", b"two")

        assert first.topic == TOPIC
        assert first.partition == second.partition == bus.partition_for("P1")
        assert (first.offset, second.offset) == (0, 1)
        await bus.close()

    def test_partition_for_is_stable_and_in_range(self):
        bus = InMemoryEventBus(partitions=4)
        assert bus.partition_for("patient-42") == bus.partition_for("patient-42")
        assert all(0 <= bus.partition_for(f"P{i}") < 4 for i in range(50))

    @pytest.mark.asyncio
    async def test_oversized_payload_fails_permanently(self):
        bus = InMemoryEventBus(max_message_bytes=8)

        with pytest.raises(PermanentPublishError) as exc_info:
            await bus.publish(TOPIC, "P1", b"x" * 9)

        assert exc_info.value.transient is False
        assert exc_info.value.kind == "PERMANENT"
        assert bus.messages(TOPIC) == []

    @pytest.mark.asyncio
    async def test_empty_key_fails_permanently(self):
        bus = InMemoryEventBus()
        with pytest.raises(PermanentPublishError):
            await bus.publish(TOPIC, "", b"{}")

    @pytest.mark.asyncio
    async def test_publish_after_close_fails_transiently(self):
        bus = InMemoryEventBus()
        await bus.close()

        with pytest.raises(TransientPublishError) as exc_info:
            await bus.publish(TOPIC, "P1", b"{}")

        assert exc_info.value.kind == "TRANSIENT"
        assert exc_info.value.topic == TOPIC

    @pytest.mark.asyncio
    async def test_lag_counts_uncommitted_messages(self):
        bus = InMemoryEventBus()
        for i in range(3):
            await bus.publish(TOPIC, f"P{i}", b"{}")

        assert bus.lag(TOPIC, GROUP) == 3
        assert sum(bus.end_offsets(TOPIC).values()) == 3


class TestSubscribe:
    """Delivery to consumer groups."""

    @pytest.mark.asyncio
    async def test_same_key_delivered_in_publish_order(self):
        bus = InMemoryEventBus(partitions=3)
        handler = RecordingHandler()
        bus.subscribe(TOPIC, GROUP, handler)

        for i in range(10):
            await bus.publish(TOPIC, "P1", str(i).encode())
        await bus.drain(TOPIC, GROUP)

        assert [m.value for m in handler.received] == [str(i).encode() for i in range(10)]
        assert bus.lag(TOPIC, GROUP) == 0
        await bus.close()

    @pytest.mark.asyncio
    async def test_function_handlers_are_supported(self):
        bus = InMemoryEventBus()
        keys: list[str] = []
        bus.subscribe(TOPIC, GROUP, lambda message: keys.append(message.key))

        await bus.publish(TOPIC, "P1", b"{}")
        await bus.drain(TOPIC, GROUP)

        assert keys == ["P1"]
        await bus.close()

    @pytest.mark.asyncio
    async def test_members_of_a_group_share_partitions(self):
        bus = InMemoryEventBus(partitions=3)
        first, second = RecordingHandler(), RecordingHandler()
        sub1 = bus.subscribe(TOPIC, GROUP, first)
        sub2 = bus.subscribe(TOPIC, GROUP, second)

        assert sorted(sub1.partitions + sub2.partitions) == [0, 1, 2]
        assert not set(sub1.partitions) & set(sub2.partitions)

        for i in range(30):
            await bus.publish(TOPIC, f"P{i}", str(i).encode())
        await bus.drain(TOPIC, GROUP)

        delivered = sorted(int(m.value) for m in first.received + second.received)
        assert delivered == list(range(30))
        assert {m.partition for m in first.received} <= set(sub1.partitions)
        assert {m.partition for m in second.received} <= set(sub2.partitions)
        await bus.close()

    @pytest.mark.asyncio
    async def test_each_group_receives_every_message(self):
        bus = InMemoryEventBus()
        analytics, audit = RecordingHandler(), RecordingHandler()
        bus.subscribe(TOPIC, GROUP, analytics)
        bus.subscribe(TOPIC, "audit", audit)

        for i in range(5):
            await bus.publish(TOPIC, f"P{i}", b"{}")
        await bus.drain(TOPIC, GROUP)
        await bus.drain(TOPIC, "audit")

        assert len(analytics.received) == len(audit.received) == 5
        await bus.close()

    @pytest.mark.asyncio
    async def test_resubscribing_resumes_from_committed_offset(self):
        bus = InMemoryEventBus()
        before = RecordingHandler()
        subscription = bus.subscribe(TOPIC, GROUP, before)
        await bus.publish(TOPIC, "P1", b"a")
        await bus.publish(TOPIC, "P1", b"b")
        await bus.drain(TOPIC, GROUP)
        await subscription.cancel()
        assert not subscription.active

        await bus.publish(TOPIC, "P1", b"c")
        after = RecordingHandler()
        bus.subscribe(TOPIC, GROUP, after)
        await bus.drain(TOPIC, GROUP)

        assert [m.value for m in before.received] == [b"a", b"b"]
        assert [m.value for m in after.received] == [b"c"]
        await bus.close()

    @pytest.mark.asyncio
    async def test_failed_message_is_redelivered(self):
        bus = InMemoryEventBus(redelivery_attempts=3, redelivery_backoff_seconds=0)
        handler = FlakyHandler(failures=2)
        bus.subscribe(TOPIC, GROUP, handler)

        await bus.publish(TOPIC, "P1", b"payload")
        await bus.drain(TOPIC, GROUP)

        assert handler.handled == [b"payload"]
        assert handler.attempts[0] == 3
        assert bus.dead_letters == []
        await bus.close()

    @pytest.mark.asyncio
    async def test_poison_message_is_dead_lettered_and_skipped(self):
        bus = InMemoryEventBus(partitions=1, redelivery_attempts=2, redelivery_backoff_seconds=0)
        seen: list[bytes] = []

        async def handler(message: BusMessage) -> None:
            if message.value == b"poison":
                raise ValueError("cannot process")
            seen.append(message.value)

        bus.subscribe(TOPIC, GROUP, handler)
        await bus.publish(TOPIC, "P1", b"poison")
        await bus.publish(TOPIC, "P1", b"fine")
        await bus.drain(TOPIC, GROUP)

        assert seen == [b"fine"]
        assert len(bus.dead_letters) == 1
        dead_letter = bus.dead_letters[0]
        assert dead_letter.group == GROUP
        assert dead_letter.message.value == b"poison"
        assert dead_letter.attempts == 2
        await bus.close()

    @pytest.mark.asyncio
    async def test_close_cancels_subscriptions(self):
        bus = InMemoryEventBus()
        subscription = bus.subscribe(TOPIC, GROUP, RecordingHandler())

        await bus.close()

        assert bus.closed
        assert not subscription.active
        assert subscription.partitions == []

    @pytest.mark.asyncio
    async def test_drain_times_out_without_consumer(self):
        bus = InMemoryEventBus()
        await bus.publish(TOPIC, "P1", b"{}")
        with pytest.raises(TimeoutError):
            await bus.drain(TOPIC, GROUP, timeout=0.05)

    def test_subscribe_requires_running_loop(self):
        bus = InMemoryEventBus()
        with pytest.raises(SubscriptionError):
            bus.subscribe(TOPIC, GROUP, RecordingHandler())

    @pytest.mark.asyncio
    async def test_subscribe_rejects_non_callable_handler(self):
        bus = InMemoryEventBus()
        with pytest.raises(SubscriptionError):
            bus.subscribe(TOPIC, GROUP, "not a handler")  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_buffer_smaller_than_backlog_still_delivers_everything(self):
        bus = InMemoryEventBus(partitions=1, buffer_size=2)
        for i in range(20):
            await bus.publish(TOPIC, "P1", str(i).encode())

        handler = RecordingHandler()
        bus.subscribe(TOPIC, GROUP, handler)
        await bus.drain(TOPIC, GROUP)

        assert len(handler.received) == 20
        await asyncio.sleep(0)
        await bus.close()


def test_create_event_bus_from_settings():
    bus = create_event_bus(Settings(_env_file=None, bus_partitions=5))
    assert isinstance(bus, InMemoryEventBus)
    assert bus.partition_for("x") < 5


def test_create_event_bus_rejects_unknown_address():
    with pytest.raises(ValueError, match="Unsupported event bus address"):
        create_event_bus(Settings(_env_file=None, bus_address="kafka://localhost:9092"))
