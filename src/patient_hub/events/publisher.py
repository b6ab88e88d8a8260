"""Publisher for patient domain events."""

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from patient_hub.constants import PATIENT_TOPIC
from patient_hub.event_bus.core import Ack, EventBusClient, TransientPublishError
from patient_hub.events.types import PatientEvent


def _log_publish_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Publish attempt {retry_state.attempt_number} failed ({error}); "
        f"retrying in {retry_state.next_action.sleep if retry_state.next_action else 0:.2f}s"
    )


class PatientEventPublisher:
    """Encodes patient events and hands them to the event bus.

    Transient bus failures are retried with exponential backoff up to
    ``retries`` times. Permanent failures (and the last transient one) are
    raised to the caller unchanged; this class never logs them as errors, so
    the caller decides how a failed publish is escalated.
    """

    def __init__(
        self,
        bus: EventBusClient,
        topic: str = PATIENT_TOPIC,
        retries: int = 3,
        backoff_seconds: float = 0.1,
    ):
        self.bus = bus
        self.topic = topic
        self.retries = retries
        self.backoff_seconds = backoff_seconds

    async def publish(self, event: PatientEvent) -> Ack:
        """Publish ``event`` keyed by its patient id.

        Returns:
            The bus acknowledgment

        Raises:
            PublishError: When the bus rejected the message or stayed unreachable
        """
        payload = event.encode()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=self.backoff_seconds * 16),
            retry=retry_if_exception_type(TransientPublishError),
            before_sleep=_log_publish_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                ack = await self.bus.publish(self.topic, event.partition_key, payload)

        logger.info(
            f"{event.event_type} event for patient {event.patient_id} published to "
            f"{ack.topic}/{ack.partition}@{ack.offset}"
        )
        return ack
