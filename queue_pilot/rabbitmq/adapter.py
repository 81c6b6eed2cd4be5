"""
RabbitMQ Adapter

Maps management API shapes onto the broker-agnostic vocabulary. Implements
the full optional capability set (overview, consumers, connections).
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
from queue_pilot.logging_config import get_logger
from queue_pilot.rabbitmq.client import RabbitMQClient

logger = get_logger(__name__)

_DETAIL_KEYS = (
    "vhost", "consumers", "consumer_utilisation", "memory",
    "message_stats", "policy", "arguments", "node",
)


class RabbitMQAdapter(BrokerAdapter):

    broker = "rabbitmq"

    def __init__(self, client: RabbitMQClient):
        self.client = client

    def list_queues(self, scope: str = DEFAULT_SCOPE) -> List[QueueInfo]:
        return [
            QueueInfo(
                name=q["name"],
                messages_ready=q.get("messages_ready"),
                messages_unacknowledged=q.get("messages_unacknowledged"),
                state=q.get("state", "unknown"),
                metadata={"vhost": q.get("vhost", scope)},
            )
            for q in self.client.list_queues(scope)
        ]

    def get_queue(self, name: str, scope: str = DEFAULT_SCOPE) -> QueueInfo:
        detail = self.client.get_queue(scope, name)
        return QueueInfo(
            name=detail["name"],
            messages_ready=detail.get("messages_ready"),
            messages_unacknowledged=detail.get("messages_unacknowledged"),
            state=detail.get("state", "unknown"),
            metadata={key: detail.get(key) for key in _DETAIL_KEYS},
        )

    def create_queue(self, params: CreateQueueParams) -> CreateQueueResult:
        self.client.create_queue(params.scope, params.name,
                                 durable=params.durable,
                                 auto_delete=params.auto_delete)
        return CreateQueueResult(name=params.name, created=True)

    def delete_queue(self, name: str, scope: str = DEFAULT_SCOPE) -> None:
        self.client.delete_queue(scope, name)

    def purge_queue(self, name: str, scope: str = DEFAULT_SCOPE) -> PurgeResult:
        response = self.client.purge_queue(scope, name)
        return PurgeResult(messages_removed=response["message_count"])

    def peek_messages(self, queue: str, count: int,
                      scope: str = DEFAULT_SCOPE) -> List[Message]:
        return [_to_message(raw) for raw in self.client.peek_messages(scope, queue, count)]

    def publish_message(self, params: PublishParams) -> PublishResult:
        properties: Dict[str, Any] = {"content_type": "application/json"}
        if params.message_type:
            properties["type"] = params.message_type
        if params.headers:
            properties["headers"] = params.headers

        response = self.client.publish_message(params.scope, params.destination, {
            "routing_key": params.routing_key,
            "payload": params.payload,
            "payload_encoding": "string",
            "properties": properties,
        })
        return PublishResult(published=True, routed=bool(response.get("routed", False)))

    def check_health(self) -> HealthResult:
        health = self.client.check_health()
        return HealthResult(status=health.get("status", "unknown"),
                            reason=health.get("reason"))

    def disconnect(self) -> None:
        try:
            self.client.close()
        except Exception as e:
            logger.debug("Closing RabbitMQ session failed.", error=str(e))

    # --- optional capabilities ---

    def get_overview(self) -> Dict[str, Any]:
        return self.client.get_overview()

    def list_consumers(self, scope: str = DEFAULT_SCOPE) -> List[Dict[str, Any]]:
        return self.client.list_consumers(scope)

    def list_connections(self) -> List[Dict[str, Any]]:
        return self.client.list_connections()


def _to_message(raw: Dict[str, Any]) -> Message:
    props = raw.get("properties") or {}
    return Message(
        payload=raw.get("payload", ""),
        payload_encoding=raw.get("payload_encoding", "string"),
        properties=MessageProperties(
            correlation_id=props.get("correlation_id"),
            message_id=props.get("message_id"),
            type=props.get("type"),
            timestamp=props.get("timestamp"),
            headers=props.get("headers"),
            content_type=props.get("content_type"),
        ),
        metadata={
            "exchange": raw.get("exchange"),
            "routing_key": raw.get("routing_key"),
            "message_count": raw.get("message_count"),
            "redelivered": raw.get("redelivered"),
        },
    )
