"""
Broker-Agnostic Types

The vocabulary every adapter speaks. Broker-specific details (vhost,
exchange, routing key, partition, offset, ...) only ever appear inside the
opaque ``metadata`` dicts.

Adapters implement the mandatory ``BrokerAdapter`` contract. Optional
operation groups are plain protocols; callers probe an adapter instance with
``has_overview`` / ``has_consumers`` / ``has_connections`` instead of
switching on broker type.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


DEFAULT_SCOPE = "/"


@dataclass
class QueueInfo:
    name: str
    messages_ready: Optional[int]
    messages_unacknowledged: Optional[int]
    state: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MessageProperties:
    correlation_id: Optional[str] = None
    message_id: Optional[str] = None
    type: Optional[str] = None
    timestamp: Optional[int] = None
    headers: Optional[Dict[str, Any]] = None
    content_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Message:
    """A peeked message. ``payload`` is the raw string as the broker gave it."""

    payload: str
    payload_encoding: str = "string"
    properties: MessageProperties = field(default_factory=MessageProperties)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_binary(self) -> bool:
        return self.payload_encoding == "base64"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": self.payload,
            "payload_encoding": self.payload_encoding,
            "properties": self.properties.to_dict(),
            "metadata": dict(self.metadata),
        }


@dataclass
class CreateQueueParams:
    name: str
    durable: bool = False
    auto_delete: bool = False
    scope: str = DEFAULT_SCOPE


@dataclass
class CreateQueueResult:
    name: str
    created: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PurgeResult:
    messages_removed: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PublishParams:
    destination: str
    routing_key: str
    payload: str
    message_type: Optional[str] = None
    headers: Optional[Dict[str, Any]] = None
    scope: str = DEFAULT_SCOPE


@dataclass
class PublishResult:
    published: bool
    routed: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HealthResult:
    status: str
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.status}
        if self.reason:
            result["reason"] = self.reason
        result.update(self.details)
        return result


class BrokerAdapter(ABC):
    """Mandatory operations every broker adapter provides.

    ``scope`` is RabbitMQ's vhost; adapters for brokers without namespaces
    accept and ignore it.
    """

    @abstractmethod
    def list_queues(self, scope: str = DEFAULT_SCOPE) -> List[QueueInfo]:
        ...

    @abstractmethod
    def get_queue(self, name: str, scope: str = DEFAULT_SCOPE) -> QueueInfo:
        ...

    @abstractmethod
    def create_queue(self, params: CreateQueueParams) -> CreateQueueResult:
        ...

    @abstractmethod
    def delete_queue(self, name: str, scope: str = DEFAULT_SCOPE) -> None:
        ...

    @abstractmethod
    def purge_queue(self, name: str, scope: str = DEFAULT_SCOPE) -> PurgeResult:
        ...

    @abstractmethod
    def peek_messages(self, queue: str, count: int,
                      scope: str = DEFAULT_SCOPE) -> List[Message]:
        """Read up to ``count`` messages without removing or acknowledging them."""

    @abstractmethod
    def publish_message(self, params: PublishParams) -> PublishResult:
        ...

    @abstractmethod
    def check_health(self) -> HealthResult:
        ...

    @abstractmethod
    def disconnect(self) -> None:
        """Release broker handles. Best-effort: never raises."""


@runtime_checkable
class OverviewCapability(Protocol):
    def get_overview(self) -> Dict[str, Any]:
        ...


@runtime_checkable
class ConsumerCapability(Protocol):
    def list_consumers(self, scope: str = DEFAULT_SCOPE) -> List[Dict[str, Any]]:
        ...


@runtime_checkable
class ConnectionCapability(Protocol):
    def list_connections(self) -> List[Dict[str, Any]]:
        ...


def has_overview(adapter: BrokerAdapter) -> bool:
    return isinstance(adapter, OverviewCapability)


def has_consumers(adapter: BrokerAdapter) -> bool:
    return isinstance(adapter, ConsumerCapability)


def has_connections(adapter: BrokerAdapter) -> bool:
    return isinstance(adapter, ConnectionCapability)


def capabilities(adapter: BrokerAdapter) -> Dict[str, bool]:
    """Which optional operation groups ``adapter`` exposes."""
    return {
        "overview": has_overview(adapter),
        "consumers": has_consumers(adapter),
        "connections": has_connections(adapter),
    }
