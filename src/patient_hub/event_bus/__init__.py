"""Event Bus System for the patient event topic.

This package defines the capability the write path publishes through and the
analytics processor consumes from, plus an in-process implementation of it:

- **EventBusClient**: ``publish(topic, key, payload)`` and
  ``subscribe(topic, group, handler)``; the only surface the rest of the code
  depends on
- **InMemoryEventBus**: partitioned topics, consumer groups, at-least-once
  delivery with committed offsets, dead letters for poison messages
- **PublishError**: ``TransientPublishError`` is retryable,
  ``PermanentPublishError`` is not

## Quick Start

```python
from patient_hub.event_bus import InMemoryEventBus

bus = InMemoryEventBus()

async def print_message(message):
    print(f"{message.key}: {message.value!r}")

subscription = bus.subscribe("patient", "analytics-service", print_message)
await bus.publish("patient", "P1", b"hello")
```

For the abstractions, see ``core.py``. For the broker itself, see ``bus.py``.
"""

from .bus import DeadLetter, InMemoryEventBus, InMemorySubscription, create_event_bus
from .core import (
    Ack,
    BusMessage,
    EventBusClient,
    EventBusError,
    MessageHandler,
    PermanentPublishError,
    PublishError,
    Subscription,
    SubscriptionError,
    TransientPublishError,
)

__all__ = [
    "Ack",
    "BusMessage",
    "DeadLetter",
    "EventBusClient",
    "EventBusError",
    "InMemoryEventBus",
    "InMemorySubscription",
    "MessageHandler",
    "PermanentPublishError",
    "PublishError",
    "Subscription",
    "SubscriptionError",
    "TransientPublishError",
    "create_event_bus",
]
