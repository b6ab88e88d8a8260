"""Core Event Bus Components.

This module contains the broker-neutral abstractions every event bus
implementation provides. The write path and the analytics processor only
depend on these types, so any transport (in-process, a real broker client)
can be plugged in behind them.

## Key Components

- **EventBusClient**: publish bytes to a topic, subscribe a consumer group
- **Subscription**: cancellable handle returned by ``subscribe``
- **MessageHandler**: base class for class-based message handlers
- **BusMessage** / **Ack**: what handlers receive and what publishers get back
- **PublishError**: transient (retry) vs permanent (give up) publish failures

## Usage Example

```python
from patient_hub.event_bus.core import BusMessage, MessageHandler


class AuditHandler(MessageHandler):
    async def handle(self, message: BusMessage) -> None:
        print(f"{message.topic}/{message.partition}@{message.offset}: {message.key}")


subscription = bus.subscribe("patient", "audit", AuditHandler())
ack = await bus.publish("patient", "P1", b"{}")
await subscription.cancel()
```
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class BusMessage(BaseModel):
    """A message as delivered to a consumer group."""

    model_config = ConfigDict(frozen=True)

    topic: str
    partition: int
    offset: int
    key: str
    value: bytes
    timestamp: datetime


class Ack(BaseModel):
    """Acknowledgment returned once the bus has accepted a message."""

    model_config = ConfigDict(frozen=True)

    topic: str
    partition: int
    offset: int


class MessageHandler(ABC):
    """Base class for class-based message handlers.

    Subclasses implement ``handle``. Instances are callable, so they can be
    passed to ``EventBusClient.subscribe`` like plain functions.
    """

    @abstractmethod
    async def handle(self, message: BusMessage) -> Any:
        """Handle one delivered message.

        Raising makes the bus redeliver the message; returning acknowledges it.
        """

    def __call__(self, message: BusMessage) -> Any:
        return self.handle(message)


MessageCallback = Callable[[BusMessage], Awaitable[Any] | Any]


class Subscription(ABC):
    """Handle for a registered consumer-group subscription."""

    def __init__(self, topic: str, group: str):
        self.topic = topic
        self.group = group

    @property
    @abstractmethod
    def active(self) -> bool:
        """Whether the subscription is still receiving messages."""

    @abstractmethod
    async def cancel(self) -> None:
        """Stop delivery. Offsets committed so far are kept by the group."""


class EventBusClient(ABC):
    """Capability to publish to and subscribe from named topics."""

    @abstractmethod
    async def publish(self, topic: str, key: str, payload: bytes) -> Ack:
        """Publish ``payload`` to ``topic`` using ``key`` as partition key.

        Returns once the bus has accepted the message; never waits for consumers.

        Raises:
            TransientPublishError: The bus could not be reached; safe to retry
            PermanentPublishError: The message can never be accepted
        """

    @abstractmethod
    def subscribe(self, topic: str, group: str, handler: MessageCallback) -> Subscription:
        """Register ``handler`` for ``topic`` as a member of consumer ``group``.

        Delivery is at-least-once and ordered per partition key only.
        """

    @abstractmethod
    async def close(self) -> None:
        """Cancel all subscriptions and refuse further publishes."""


class EventBusError(Exception):
    """Base exception for all event bus related errors.

    Use this for catching any event bus related error:
        ```python
        try:
            await bus.publish("patient", key, payload)
        except EventBusError as e:
            logger.error(f"Event bus error: {e}")
        ```
    """


class PublishError(EventBusError):
    """Raised when a message could not be published.

    ``transient`` tells callers whether retrying can succeed.
    """

    transient: bool = False

    def __init__(self, message: str, topic: str | None = None, key: str | None = None):
        self.topic = topic
        self.key = key
        super().__init__(message)

    @property
    def kind(self) -> str:
        """``TRANSIENT`` or ``PERMANENT``, for log lines and warnings."""
        return "TRANSIENT" if self.transient else "PERMANENT"


class TransientPublishError(PublishError):
    """The bus was unreachable or timed out; the publish may be retried."""

    transient = True


class PermanentPublishError(PublishError):
    """The bus rejected the message (e.g. oversized payload); never retry."""

    transient = False


class SubscriptionError(EventBusError):
    """Raised when a subscription cannot be registered.

    This occurs when:
    - The handler is not callable
    - The bus has been closed
    - No event loop is running to drive delivery
    """
