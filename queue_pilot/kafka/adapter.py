"""
Kafka Adapter

Topics play the role of queues. Kafka has no ready/unacked counts and no
namespaces, so those come back as ``None`` and ``scope`` is ignored. The
declared message type travels as a ``type`` record header.
"""

from typing import Any, Dict, List

from queue_pilot.broker.types import (
    DEFAULT_SCOPE,
    BrokerAdapter,
    CreateQueueParams,
    CreateQueueResult,
    HealthResult,
    Message,
    MessageProperties,
    PublishParams,
    PublishResult,
    PurgeResult,
    QueueInfo,
)
from queue_pilot.kafka.client import KafkaClient, PeekedMessage
from queue_pilot.logging_config import get_logger

logger = get_logger(__name__)

TYPE_HEADER = "type"


class KafkaAdapter(BrokerAdapter):
    """Overview and consumer capabilities; no connection listing."""

    broker = "kafka"

    def __init__(self, client: KafkaClient):
        self.client = client

    def list_queues(self, scope: str = DEFAULT_SCOPE) -> List[QueueInfo]:
        topics = self.client.describe_topics(self.client.list_topics())
        return [
            QueueInfo(
                name=t.name,
                messages_ready=None,
                messages_unacknowledged=None,
                state="active",
                metadata={"partitions": len(t.partitions)},
            )
            for t in topics
        ]

    def get_queue(self, name: str, scope: str = DEFAULT_SCOPE) -> QueueInfo:
        topic = self.client.describe_topic(name)
        return QueueInfo(
            name=topic.name,
            messages_ready=None,
            messages_unacknowledged=None,
            state="active",
            metadata={"partitions": topic.to_dict()["partitions"]},
        )

    def create_queue(self, params: CreateQueueParams) -> CreateQueueResult:
        # durable / auto_delete have no Kafka equivalent
        self.client.create_topic(params.name, 1, 1)
        return CreateQueueResult(name=params.name, created=True)

    def delete_queue(self, name: str, scope: str = DEFAULT_SCOPE) -> None:
        self.client.delete_topic(name)

    def purge_queue(self, name: str, scope: str = DEFAULT_SCOPE) -> PurgeResult:
        return PurgeResult(messages_removed=self.client.purge(name))

    def peek_messages(self, queue: str, count: int,
                      scope: str = DEFAULT_SCOPE) -> List[Message]:
        return [_to_message(m) for m in self.client.peek_messages(queue, count)]

    def publish_message(self, params: PublishParams) -> PublishResult:
        headers = {k: str(v) for k, v in (params.headers or {}).items()}
        if params.message_type:
            headers[TYPE_HEADER] = params.message_type
        self.client.publish(params.destination, params.routing_key or None,
                            params.payload, headers or None)
        return PublishResult(published=True, routed=True)

    def check_health(self) -> HealthResult:
        result = self.client.check_health()
        details = {}
        if "brokers_connected" in result:
            details["brokers_connected"] = result["brokers_connected"]
        return HealthResult(status=result["status"], reason=result.get("reason"),
                            details=details)

    def disconnect(self) -> None:
        try:
            self.client.disconnect()
        except Exception as e:
            logger.debug("Closing Kafka client failed.", error=str(e))

    # --- optional capabilities ---

    def get_overview(self) -> Dict[str, Any]:
        return self.client.get_overview()

    def list_consumers(self, scope: str = DEFAULT_SCOPE) -> List[Dict[str, Any]]:
        return self.client.list_consumer_groups()


def _to_message(m: PeekedMessage) -> Message:
    headers = dict(m.headers)
    return Message(
        payload=m.value or "",
        payload_encoding=m.value_encoding,
        properties=MessageProperties(
            type=headers.get(TYPE_HEADER),
            timestamp=m.timestamp,
            headers=headers,
        ),
        metadata={
            "partition": m.partition,
            "offset": m.offset,
            "key": m.key,
            "topic": m.topic,
        },
    )
