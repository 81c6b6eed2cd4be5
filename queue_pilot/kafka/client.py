"""
Kafka Client via confluent-kafka

Topic administration, peek and publish on top of confluent-kafka
(librdkafka). One ``AdminClient`` and one ``Producer`` per client instance,
created lazily and reused until ``disconnect()``. Peek uses a throwaway
consumer group that is always closed and deleted afterwards.

Consumer-group descriptions go over the raw wire protocol
(``queue_pilot.kafka.connection``) because the member assignment bytes are
only available there.
"""

import base64
import secrets
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from confluent_kafka import Consumer, KafkaError, KafkaException, Producer, TopicPartition
from confluent_kafka.admin import AdminClient, NewTopic, OffsetSpec

from queue_pilot.config import KafkaBrokerConfig
from queue_pilot.errors import (
    BrokerError,
    ConsumerGroupNotFoundError,
    KafkaProtocolError,
    TopicNotFoundError,
)
from queue_pilot.kafka.connection import KafkaConnection
from queue_pilot.kafka.protocol import (
    DEAD_GROUP_STATE,
    GROUP_ID_NOT_FOUND,
    TopicPartitionAssignment,
    decode_member_assignment,
)
from queue_pilot.logging_config import get_logger

logger = get_logger(__name__)

PEEK_GROUP_PREFIX = "queue-pilot-peek"
DEFAULT_KAFKA_PORT = 9092
DESCRIBE_WORKERS = 8


# =========================================================================
#  Result types
# =========================================================================

@dataclass
class PartitionInfo:
    partition_id: int
    leader: int
    replicas: List[int] = field(default_factory=list)
    isr: List[int] = field(default_factory=list)


@dataclass
class TopicInfo:
    name: str
    partitions: List[PartitionInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PartitionOffsets:
    partition: int
    low: int
    high: int

    def to_dict(self) -> Dict[str, Any]:
        return {"partition": self.partition, "offset": self.high,
                "high": self.high, "low": self.low}


@dataclass
class PeekedMessage:
    topic: str
    partition: int
    offset: int
    key: Optional[str]
    value: Optional[str]
    headers: Dict[str, str] = field(default_factory=dict)
    timestamp: Optional[int] = None
    # "base64" when the value is not valid UTF-8
    value_encoding: str = "string"


@dataclass
class ConsumerGroupMember:
    member_id: str
    client_id: str
    client_host: str
    assignment: List[TopicPartitionAssignment] = field(default_factory=list)


@dataclass
class ConsumerGroupInfo:
    group_id: str
    state: str
    protocol: str
    protocol_type: str
    members: List[ConsumerGroupMember] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =========================================================================
#  Client
# =========================================================================

class KafkaClient:
    """confluent-kafka backed client for one cluster."""

    def __init__(self, config: KafkaBrokerConfig):
        self.config = config
        self.conf = config.client_config()
        self.request_timeout = config.request_timeout
        self.peek_timeout = config.peek_timeout
        self._admin: Optional[AdminClient] = None
        self._producer: Optional[Producer] = None
        self._lock = threading.Lock()

    def admin(self) -> AdminClient:
        """Get or create the AdminClient."""
        with self._lock:
            if self._admin is None:
                self._admin = AdminClient(self.conf)
            return self._admin

    def producer(self) -> Producer:
        """Get or create the Producer."""
        with self._lock:
            if self._producer is None:
                self._producer = Producer(self.conf)
            return self._producer

    # =====================================================================
    #  Topics
    # =====================================================================

    def list_topics(self) -> List[str]:
        md = self.admin().list_topics(timeout=self.request_timeout)
        return sorted(md.topics.keys())

    def describe_topic(self, name: str) -> TopicInfo:
        md = self.admin().list_topics(topic=name, timeout=self.request_timeout)
        topic_md = md.topics.get(name)
        if topic_md is None:
            raise TopicNotFoundError(name)
        if topic_md.error is not None:
            if topic_md.error.code() == KafkaError.UNKNOWN_TOPIC_OR_PART:
                raise TopicNotFoundError(name)
            raise KafkaException(topic_md.error)

        partitions = [
            PartitionInfo(
                partition_id=pid,
                leader=part_md.leader,
                replicas=list(part_md.replicas),
                isr=list(part_md.isrs),
            )
            for pid, part_md in sorted(topic_md.partitions.items())
        ]
        return TopicInfo(name=name, partitions=partitions)

    def describe_topics(self, names: List[str]) -> List[TopicInfo]:
        """Describe several topics concurrently; results follow ``names`` order."""
        if not names:
            return []
        with ThreadPoolExecutor(max_workers=min(DESCRIBE_WORKERS, len(names))) as pool:
            return list(pool.map(self.describe_topic, names))

    def create_topic(self, name: str, num_partitions: int = 1,
                     replication_factor: int = 1) -> bool:
        fs = self.admin().create_topics(
            [NewTopic(name, num_partitions=num_partitions,
                      replication_factor=replication_factor)],
            request_timeout=self.request_timeout,
        )
        for _, f in fs.items():
            f.result()
        return True

    def delete_topic(self, name: str) -> None:
        fs = self.admin().delete_topics([name], request_timeout=self.request_timeout)
        for _, f in fs.items():
            f.result()

    def fetch_topic_offsets(self, topic: str) -> List[PartitionOffsets]:
        """Earliest and latest offset of every partition of ``topic``."""
        partitions = [p.partition_id for p in self.describe_topic(topic).partitions]
        low = self._list_offsets(topic, partitions, OffsetSpec.earliest())
        high = self._list_offsets(topic, partitions, OffsetSpec.latest())
        return [
            PartitionOffsets(partition=p, low=low.get(p, 0), high=high.get(p, 0))
            for p in partitions
        ]

    def _list_offsets(self, topic: str, partitions: List[int],
                      spec: OffsetSpec) -> Dict[int, int]:
        request = {TopicPartition(topic, p): spec for p in partitions}
        futures = self.admin().list_offsets(request, request_timeout=self.request_timeout)
        return {tp.partition: f.result().offset for tp, f in futures.items()}

    def purge(self, topic: str) -> int:
        """Delete every record currently in ``topic``.

        Offsets are read first, then records are deleted up to each
        partition's latest offset. Not atomic across partitions: records
        produced in between survive. Returns the record count observed at
        fetch time.
        """
        offsets = self.fetch_topic_offsets(topic)
        targets = [TopicPartition(topic, o.partition, o.high)
                   for o in offsets if o.high > o.low]
        if not targets:
            return 0

        futures = self.admin().delete_records(targets, request_timeout=self.request_timeout)
        for _, f in futures.items():
            f.result()
        return sum(o.high - o.low for o in offsets if o.high > o.low)

    # =====================================================================
    #  Messages
    # =====================================================================

    def peek_messages(self, topic: str, count: int) -> List[PeekedMessage]:
        """Read up to ``count`` messages from the beginning of ``topic``.

        Stops at ``count``, when every partition has reported EOF, or when
        ``peek_timeout`` seconds have passed, whichever comes first. Nothing
        is committed.
        """
        if count <= 0:
            return []
        partition_count = len(self.describe_topic(topic).partitions)

        group_id = f"{PEEK_GROUP_PREFIX}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
        conf = dict(self.conf)
        conf["group.id"] = group_id
        conf["auto.offset.reset"] = "earliest"
        conf["enable.auto.commit"] = "false"
        conf["enable.partition.eof"] = "true"
        consumer = Consumer(conf)

        messages: List[PeekedMessage] = []
        try:
            consumer.subscribe([topic])
            eof_partitions = set()
            deadline = time.time() + self.peek_timeout
            while len(messages) < count and time.time() < deadline:
                msg = consumer.poll(min(1.0, max(deadline - time.time(), 0.0)))
                if msg is None:
                    continue
                if msg.error():
                    if msg.error().code() == KafkaError._PARTITION_EOF:
                        eof_partitions.add(msg.partition())
                        if len(eof_partitions) >= partition_count:
                            break
                        continue
                    raise KafkaException(msg.error())
                messages.append(_to_peeked(msg))
        finally:
            try:
                consumer.close()
            except Exception as e:
                logger.warning("Closing peek consumer failed.", group_id=group_id, error=str(e))
            self._delete_group(group_id)

        return messages

    def _delete_group(self, group_id: str) -> None:
        try:
            fs = self.admin().delete_consumer_groups([group_id],
                                                     request_timeout=self.request_timeout)
            for _, f in fs.items():
                f.result()
        except Exception as e:
            logger.debug("Transient consumer group cleanup failed.",
                         group_id=group_id, error=str(e))

    def publish(self, topic: str, key: Optional[str], value: str,
                headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Produce one message and wait for its delivery report.

        Raises:
            KafkaException: the broker rejected the message
            BrokerError: no delivery report before the request timeout
        """
        reports: List[Tuple[Optional[KafkaError], Any]] = []

        def on_delivery(err, msg):
            reports.append((err, msg))

        producer = self.producer()
        producer.produce(
            topic,
            value=value.encode("utf-8"),
            key=key.encode("utf-8") if key else None,
            headers=list(headers.items()) if headers else None,
            on_delivery=on_delivery,
        )
        producer.flush(self.request_timeout)

        if not reports:
            raise BrokerError(f"Timed out delivering message to topic '{topic}'",
                              code="KAFKA_DELIVERY_TIMEOUT", details={"topic": topic})
        err, msg = reports[0]
        if err is not None:
            raise KafkaException(err)
        return {"topic": msg.topic(), "partition": msg.partition(), "offset": msg.offset()}

    # =====================================================================
    #  Cluster
    # =====================================================================

    def check_health(self) -> Dict[str, Any]:
        try:
            cluster = self.admin().describe_cluster(
                request_timeout=self.request_timeout).result()
        except Exception as e:
            return {"status": "failed", "reason": str(e)}
        return {"status": "ok", "brokers_connected": len(cluster.nodes)}

    def get_overview(self) -> Dict[str, Any]:
        cluster = self.admin().describe_cluster(request_timeout=self.request_timeout).result()
        return {
            "cluster": {
                "cluster_id": cluster.cluster_id,
                "controller": cluster.controller.id if cluster.controller else None,
                "brokers": [
                    {"node_id": n.id, "host": n.host, "port": n.port}
                    for n in cluster.nodes
                ],
            },
            "topics": self.list_topics(),
        }

    def list_consumer_groups(self) -> List[Dict[str, Any]]:
        result = self.admin().list_consumer_groups(
            request_timeout=self.request_timeout).result()
        return [
            {
                "group_id": g.group_id,
                "state": _enum_name(g.state),
                "is_simple_consumer_group": g.is_simple_consumer_group,
            }
            for g in result.valid
        ]

    def describe_consumer_group(self, group_id: str) -> ConsumerGroupInfo:
        """Describe a group, decoding each member's partition assignment.

        Raises:
            ConsumerGroupNotFoundError: the coordinator has no live group
            KafkaProtocolError: FindCoordinator or DescribeGroups failed
        """
        host, port = _split_host_port(self.config.brokers[0])
        with self._connect(host, port) as conn:
            coordinator = conn.find_coordinator(group_id)
        if coordinator["error_code"] != 0:
            raise KafkaProtocolError("FindCoordinator", coordinator["error_code"],
                                     coordinator["error"])

        with self._connect(coordinator["host"], coordinator["port"]) as conn:
            response = conn.describe_groups([group_id])

        group = next((g for g in response["groups"] if g["group_id"] == group_id), None)
        if group is None or group["error_code"] == GROUP_ID_NOT_FOUND:
            raise ConsumerGroupNotFoundError(group_id)
        if group["error_code"] != 0:
            raise KafkaProtocolError("DescribeGroups", group["error_code"], group["error"])
        if group["state"] == DEAD_GROUP_STATE:
            raise ConsumerGroupNotFoundError(group_id)

        return ConsumerGroupInfo(
            group_id=group["group_id"],
            state=group["state"],
            protocol=group["protocol"],
            protocol_type=group["protocol_type"],
            members=[
                ConsumerGroupMember(
                    member_id=m["member_id"],
                    client_id=m["client_id"],
                    client_host=m["client_host"],
                    assignment=decode_member_assignment(m["member_assignment"]),
                )
                for m in group["members"]
            ],
        )

    def _connect(self, host: str, port: int) -> KafkaConnection:
        sasl = self.config.sasl
        return KafkaConnection(
            host, port,
            use_ssl=self.config.ssl,
            sasl_mechanism=sasl.mechanism if sasl else None,
            username=sasl.username if sasl else None,
            password=sasl.password if sasl else None,
            client_id=self.config.client_id,
            timeout=self.request_timeout,
        )

    def disconnect(self) -> None:
        """Flush and drop the producer and admin handles. Never raises."""
        with self._lock:
            producer, self._producer = self._producer, None
            self._admin = None
        if producer is not None:
            try:
                producer.flush(5)
            except Exception as e:
                logger.warning("Flushing Kafka producer on shutdown failed.", error=str(e))


# =========================================================================
#  Helpers
# =========================================================================

def _to_peeked(msg) -> PeekedMessage:
    _, ts = msg.timestamp()
    value, value_encoding = _decode_value(msg.value())
    return PeekedMessage(
        topic=msg.topic(),
        partition=msg.partition(),
        offset=msg.offset(),
        key=_decode(msg.key()),
        value=value,
        headers={k: _decode(v) or "" for k, v in (msg.headers() or [])},
        timestamp=ts if ts and ts > 0 else None,
        value_encoding=value_encoding,
    )


def _decode(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def _decode_value(data: Optional[bytes]) -> Tuple[Optional[str], str]:
    """Text if the bytes are UTF-8, base64 otherwise, with the encoding used."""
    if data is None or isinstance(data, str):
        return data, "string"
    try:
        return data.decode("utf-8"), "string"
    except UnicodeDecodeError:
        return base64.b64encode(data).decode("ascii"), "base64"


def _enum_name(value: Any) -> str:
    return getattr(value, "name", str(value))


def _split_host_port(address: str) -> Tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        return address.strip("[]"), DEFAULT_KAFKA_PORT
    return host.strip("[]"), int(port)
