"""Best-effort outcome notifications published to Kafka."""

import asyncio

from chargeflow.common.config import settings
from chargeflow.common.events import EventEnvelope, KafkaBus
from chargeflow.common.logging import logger, trace_id_ctx
from chargeflow.services.orchestrator.schemas import AuthorizationOutcome


class KafkaNotificationSink:
    """Fire-and-forget publisher; failures are logged and never reach the caller."""

    def __init__(self, kafka: KafkaBus | None = None, topic: str | None = None) -> None:
        self.kafka = kafka or KafkaBus()
        self.topic = topic or settings.notification_topic
        self._pending: set[asyncio.Task] = set()

    def notify(self, reference: str, outcome: AuthorizationOutcome) -> None:
        event = EventEnvelope(
            event_type="payments.authorization.succeeded" if outcome.succeeded else "payments.authorization.failed",
            aggregate_id=reference,
            trace_id=trace_id_ctx.get() or outcome.attempt_id,
            payload=outcome.model_dump(),
        )
        task = asyncio.get_running_loop().create_task(self._publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, event: EventEnvelope) -> None:
        try:
            await self.kafka.publish(self.topic, event)
        except Exception as exc:
            logger.warning(
                "notification_publish_failed topic=%s event_type=%s error=%s", self.topic, event.event_type, exc
            )

    async def close(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        await self.kafka.close()
