"""In-memory Event Bus Implementation.

This module provides ``InMemoryEventBus``, a partitioned, consumer-group based
broker that runs inside the application's event loop. It behaves like the
external brokers the ``EventBusClient`` interface stands for, so the write
path and the analytics processor can be exercised end to end in one process.

## Key Features

- **Partitioned topics**: a key always maps to the same partition, so messages
  for one key are delivered in publish order
- **Consumer groups**: partitions are spread round-robin over the group's
  subscriptions and rebalanced when members join or leave
- **At-least-once delivery**: offsets are committed only after the handler
  returns; anything uncommitted is delivered again after a rebalance
- **Bounded buffering**: a fetch loop feeds a bounded queue per assigned
  partition and a handler loop drains it
- **Failure isolation**: a failing handler is retried, then dead-lettered and
  skipped so one poison message never stalls its partition

## Usage

```python
bus = InMemoryEventBus(partitions=3)

async def on_message(message: BusMessage) -> None:
    print(message.key, message.value)

subscription = bus.subscribe("patient", "analytics-service", on_message)
ack = await bus.publish("patient", "P1", b'{"eventType": "PATIENT_CREATED"}')
await bus.drain("patient", "analytics-service")
await bus.close()
```
"""

import asyncio
import inspect
import time
import zlib
from datetime import UTC, datetime

from loguru import logger
from pydantic import BaseModel

from patient_hub.settings import Settings

from .core import (
    Ack,
    BusMessage,
    EventBusClient,
    MessageCallback,
    PermanentPublishError,
    Subscription,
    SubscriptionError,
    TransientPublishError,
)


class DeadLetter(BaseModel):
    """A message a consumer group gave up on after exhausting redelivery."""

    group: str
    message: BusMessage
    error: str
    attempts: int


class _Partition:
    """Append-only log of one topic partition."""

    def __init__(self, topic: str, index: int):
        self.topic = topic
        self.index = index
        self.log: list[BusMessage] = []
        self._appended = asyncio.Event()

    def append(self, key: str, value: bytes) -> BusMessage:
        message = BusMessage(
            topic=self.topic,
            partition=self.index,
            offset=len(self.log),
            key=key,
            value=value,
            timestamp=datetime.now(UTC),
        )
        self.log.append(message)
        # Wake every waiter, then start a fresh event for the next append
        appended, self._appended = self._appended, asyncio.Event()
        appended.set()
        return message

    async def wait_beyond(self, offset: int) -> None:
        """Block until the log holds a message at ``offset``."""
        while offset >= len(self.log):
            await self._appended.wait()


class _ConsumerGroup:
    """Committed offsets and partition ownership of one consumer group."""

    def __init__(self, name: str, topic: str, partitions: int):
        self.name = name
        self.topic = topic
        self.committed: dict[int, int] = dict.fromkeys(range(partitions), 0)
        self.members: list[InMemorySubscription] = []
        self._owners: dict[int, InMemorySubscription] = {}
        self._workers: dict[int, asyncio.Task] = {}

    def commit(self, partition: int, offset: int) -> None:
        if offset > self.committed[partition]:
            self.committed[partition] = offset

    def join(self, member: "InMemorySubscription") -> None:
        self.members.append(member)
        self.rebalance()

    def leave(self, member: "InMemorySubscription") -> list[asyncio.Task]:
        if member in self.members:
            self.members.remove(member)
        return self.rebalance()

    def owned_by(self, member: "InMemorySubscription") -> list[int]:
        return sorted(p for p, owner in self._owners.items() if owner is member)

    def rebalance(self) -> list[asyncio.Task]:
        """Spread partitions round-robin over members; return the workers that were stopped."""
        count = len(self.members)
        target = {p: self.members[p % count] for p in self.committed} if count else {}

        stopped: list[asyncio.Task] = []
        for partition in self.committed:
            owner = target.get(partition)
            worker = self._workers.get(partition)
            if owner is not None and owner is self._owners.get(partition) and worker and not worker.done():
                continue

            previous = self._workers.pop(partition, None)
            if previous is not None and not previous.done():
                previous.cancel()
                stopped.append(previous)
            self._owners.pop(partition, None)

            if owner is not None:
                self._owners[partition] = owner
                # The new worker waits for the previous one, so a partition is never processed twice at once
                self._workers[partition] = asyncio.create_task(
                    owner.run_partition(partition, previous),
                    name=f"consume:{self.topic}:{self.name}:{partition}",
                )

        logger.debug(f"Rebalanced group {self.name} on {self.topic}: {count} member(s), {len(self._workers)} worker(s)")
        return stopped


class InMemorySubscription(Subscription):
    """Subscription of one handler to a topic within a consumer group."""

    def __init__(
        self,
        bus: "InMemoryEventBus",
        group: _ConsumerGroup,
        handler: MessageCallback,
        buffer_size: int,
        redelivery_attempts: int,
        redelivery_backoff_seconds: float,
    ):
        super().__init__(group.topic, group.name)
        self._bus = bus
        self._group = group
        self._handler = handler
        self._buffer_size = buffer_size
        self._redelivery_attempts = redelivery_attempts
        self._redelivery_backoff_seconds = redelivery_backoff_seconds
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def partitions(self) -> list[int]:
        """Partitions currently assigned to this subscription."""
        return self._group.owned_by(self) if self._active else []

    async def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        stopped = self._group.leave(self)
        self._bus.forget(self)
        if stopped:
            await asyncio.gather(*stopped, return_exceptions=True)
        logger.info(f"Subscription of group {self.group} to {self.topic} cancelled")

    async def run_partition(self, partition: int, previous: asyncio.Task | None) -> None:
        """Fetch and handle messages of one partition until cancelled."""
        if previous is not None:
            await asyncio.wait([previous])

        buffer: asyncio.Queue[BusMessage] = asyncio.Queue(maxsize=self._buffer_size)
        fetcher = asyncio.create_task(self._fetch(partition, buffer))
        try:
            while True:
                message = await buffer.get()
                await self._deliver(message)
                self._group.commit(partition, message.offset + 1)
        finally:
            fetcher.cancel()
            await asyncio.gather(fetcher, return_exceptions=True)

    async def _fetch(self, partition: int, buffer: asyncio.Queue[BusMessage]) -> None:
        log_partition = self._bus.partition(self.topic, partition)
        offset = self._group.committed[partition]
        while True:
            await log_partition.wait_beyond(offset)
            while offset < len(log_partition.log):
                await buffer.put(log_partition.log[offset])
                offset += 1

    async def _deliver(self, message: BusMessage) -> None:
        for attempt in range(1, self._redelivery_attempts + 1):
            try:
                result = self._handler(message)
                if inspect.isawaitable(result):
                    await result
                return
            except Exception as e:
                where = f"{message.topic}/{message.partition}@{message.offset}"
                if attempt >= self._redelivery_attempts:
                    logger.error(f"Group {self.group} gave up on {where} after {attempt} attempt(s): {e!r}")
                    self._bus.record_dead_letter(
                        DeadLetter(group=self.group, message=message, error=repr(e), attempts=attempt)
                    )
                    return
                logger.warning(f"Group {self.group} failed on {where} (attempt {attempt}/{self._redelivery_attempts}): {e!r}")
                await asyncio.sleep(self._redelivery_backoff_seconds)


class InMemoryEventBus(EventBusClient):
    """Partitioned in-process broker implementing ``EventBusClient``.

    Publishing is a synchronous append to the partition log, so a publish is
    either fully applied or not applied at all, and it never waits for any
    consumer. Instances are meant to be shared by every request handler.
    """

    def __init__(
        self,
        partitions: int = 3,
        buffer_size: int = 100,
        max_message_bytes: int = 1024 * 1024,
        redelivery_attempts: int = 3,
        redelivery_backoff_seconds: float = 0.5,
    ) -> None:
        if partitions < 1:
            raise ValueError("An event bus needs at least one partition per topic")
        self._partitions = partitions
        self._buffer_size = buffer_size
        self._max_message_bytes = max_message_bytes
        self._redelivery_attempts = redelivery_attempts
        self._redelivery_backoff_seconds = redelivery_backoff_seconds
        self._topics: dict[str, list[_Partition]] = {}
        self._groups: dict[tuple[str, str], _ConsumerGroup] = {}
        self._subscriptions: list[InMemorySubscription] = []
        self._dead_letters: list[DeadLetter] = []
        self._closed = False
        logger.debug(f"InMemoryEventBus initialized (partitions={partitions}, max_message_bytes={max_message_bytes})")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dead_letters(self) -> list[DeadLetter]:
        return list(self._dead_letters)

    def partition_for(self, key: str) -> int:
        """Partition a key maps to; stable across processes."""
        return zlib.crc32(key.encode("utf-8")) % self._partitions

    def partition(self, topic: str, index: int) -> _Partition:
        return self._topic(topic)[index]

    def _topic(self, topic: str) -> list[_Partition]:
        if topic not in self._topics:
            self._topics[topic] = [_Partition(topic, i) for i in range(self._partitions)]
            logger.debug(f"Created topic {topic} with {self._partitions} partitions")
        return self._topics[topic]

    async def publish(self, topic: str, key: str, payload: bytes) -> Ack:
        if self._closed:
            raise TransientPublishError("Event bus is closed", topic=topic, key=key)
        if not key:
            raise PermanentPublishError("A partition key is required", topic=topic, key=key)
        if len(payload) > self._max_message_bytes:
            raise PermanentPublishError(
                f"Payload of {len(payload)} bytes exceeds the {self._max_message_bytes} byte limit",
                topic=topic,
                key=key,
            )

        message = self._topic(topic)[self.partition_for(key)].append(key, payload)
        logger.trace(f"Published to {topic}/{message.partition}@{message.offset} (key={key})")
        return Ack(topic=topic, partition=message.partition, offset=message.offset)

    def subscribe(self, topic: str, group: str, handler: MessageCallback) -> InMemorySubscription:
        if self._closed:
            raise SubscriptionError("Event bus is closed")
        if not callable(handler):
            raise SubscriptionError(f"Handler must be callable: {handler}")
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            raise SubscriptionError("subscribe() must be called from a running event loop") from None

        self._topic(topic)
        group_state = self._groups.get((topic, group))
        if group_state is None:
            group_state = self._groups[(topic, group)] = _ConsumerGroup(group, topic, self._partitions)

        subscription = InMemorySubscription(
            self,
            group_state,
            handler,
            buffer_size=self._buffer_size,
            redelivery_attempts=self._redelivery_attempts,
            redelivery_backoff_seconds=self._redelivery_backoff_seconds,
        )
        self._subscriptions.append(subscription)
        group_state.join(subscription)
        logger.info(f"Group {group} subscribed to {topic} (partitions {subscription.partitions})")
        return subscription

    def forget(self, subscription: InMemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def record_dead_letter(self, dead_letter: DeadLetter) -> None:
        self._dead_letters.append(dead_letter)

    def messages(self, topic: str) -> list[BusMessage]:
        """Every message of a topic, ordered by partition then offset."""
        return [message for partition in self._topic(topic) for message in partition.log]

    def end_offsets(self, topic: str) -> dict[int, int]:
        return {partition.index: len(partition.log) for partition in self._topic(topic)}

    def committed(self, topic: str, group: str) -> dict[int, int]:
        group_state = self._groups.get((topic, group))
        if group_state is None:
            return dict.fromkeys(range(self._partitions), 0)
        return dict(group_state.committed)

    def lag(self, topic: str, group: str) -> int:
        """Messages published to ``topic`` that ``group`` has not committed yet."""
        committed = self.committed(topic, group)
        return sum(end - committed[p] for p, end in self.end_offsets(topic).items())

    async def drain(self, topic: str, group: str, timeout: float = 5.0) -> None:
        """Wait until ``group`` has committed everything published to ``topic``.

        Raises:
            TimeoutError: If the group still lags behind after ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        while self.lag(topic, group) > 0:
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Group {group} still lags {self.lag(topic, group)} message(s) behind on {topic}")
            await asyncio.sleep(0.01)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subscription in list(self._subscriptions):
            await subscription.cancel()
        logger.debug("InMemoryEventBus closed")


def create_event_bus(settings: Settings) -> EventBusClient:
    """Build the event bus named by ``settings.bus_address``.

    Raises:
        ValueError: If the address uses a scheme no bus implementation handles
    """
    if settings.bus_address.startswith("memory://"):
        return InMemoryEventBus(
            partitions=settings.bus_partitions,
            buffer_size=settings.bus_buffer_size,
            max_message_bytes=settings.bus_max_message_bytes,
            redelivery_attempts=settings.bus_redelivery_attempts,
            redelivery_backoff_seconds=settings.bus_redelivery_backoff_seconds,
        )
    raise ValueError(f"Unsupported event bus address: {settings.bus_address}")
