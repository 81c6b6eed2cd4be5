"""
Queue-Pilot Server

MCP server for inspecting, validating and publishing messages on RabbitMQ
or Kafka through one tool set.

Tools cover: schemas (list, get, validate), queues (list, get, create,
delete, purge), messages (peek, inspect, publish), health, and whatever
optional capabilities the selected broker adapter exposes. Broker-specific
extras (RabbitMQ exchanges and bindings, Kafka consumer groups and offsets)
are registered only for that broker.

Run:
    queue-pilot --schemas ./schemas --broker rabbitmq
"""

import argparse
import atexit
import json
import sys
from typing import Any, Dict, List, Optional, Sequence

from mcp.server.fastmcp import FastMCP

from queue_pilot.broker.factory import create_adapter
from queue_pilot.broker.types import (
    DEFAULT_SCOPE,
    BrokerAdapter,
    CreateQueueParams,
    has_connections,
    has_consumers,
    has_overview,
)
from queue_pilot.config import SUPPORTED_BROKERS, AppSettings, build_broker_config
from queue_pilot.errors import QueuePilotError
from queue_pilot.kafka.client import KafkaClient
from queue_pilot.logging_config import configure_logging, get_logger
from queue_pilot.pipeline import PublishRequest, inspect_queue as run_inspect
from queue_pilot.pipeline import publish_message as run_publish
from queue_pilot.pipeline import validate_message as run_validate
from queue_pilot.rabbitmq.client import RabbitMQClient
from queue_pilot.schemas.loader import load_schemas
from queue_pilot.schemas.validator import SchemaEntry, SchemaValidator
from queue_pilot.startup import check_broker_connectivity, check_schema_count

logger = get_logger(__name__)

VERSION = "0.1.0"
MAX_PEEK = 50
SCHEMA_MIME_TYPE = "application/schema+json"

INSTRUCTIONS = (
    "Queue-Pilot inspects and publishes messages on a RabbitMQ or Kafka broker "
    "and validates payloads against JSON Schemas. "
    "Workflow: list_schemas / list_queues -> peek_messages or inspect_queue "
    "-> publish_message (validates before sending unless validate=false). "
    "For Kafka, queues are topics and vhost is ignored."
)


# =====================================================================
#  Helpers
# =====================================================================

def _fmt_json(obj, indent=2) -> str:
    """Format object as JSON string."""
    return json.dumps(obj, indent=indent, default=str)


def _clamp_count(count: int) -> int:
    return max(1, min(count, MAX_PEEK))


# =====================================================================
#  SCHEMA TOOLS
# =====================================================================

def register_schema_tools(mcp: FastMCP, validator: SchemaValidator) -> None:

    @mcp.tool()
    def list_schemas() -> str:
        """List all loaded message schemas."""
        schemas = []
        for name in validator.get_schema_names():
            entry = validator.get_schema(name)
            schemas.append({"name": entry.name, "version": entry.version,
                            "title": entry.title, "description": entry.description})
        return _fmt_json({"schemas": schemas})

    @mcp.tool()
    def get_schema(name: str) -> str:
        """Get the full definition of a specific schema.

        Args:
            name: Schema name (e.g. 'order.created')
        """
        entry = validator.get_schema(name)
        if entry is None:
            return _fmt_json({
                "found": False, "name": name,
                "error": f'Schema "{name}" not found. Use list_schemas to see available schemas.',
            })
        return _fmt_json({"found": True, "name": entry.name, "schema": entry.schema})

    @mcp.tool()
    def validate_message(schema_name: str, message: str) -> str:
        """Validate a JSON message against a schema without publishing it.

        Args:
            schema_name: Schema name to validate against
            message: JSON message payload to validate
        """
        return _fmt_json(run_validate(validator, schema_name, message))


# =====================================================================
#  UNIVERSAL TOOLS
# =====================================================================

def register_universal_tools(mcp: FastMCP, adapter: BrokerAdapter,
                             validator: SchemaValidator) -> None:

    @mcp.tool()
    def list_queues(vhost: str = DEFAULT_SCOPE) -> str:
        """List all queues (RabbitMQ) or topics (Kafka) with message counts.

        Args:
            vhost: Virtual host / scope (default: '/'; ignored by Kafka)
        """
        return _fmt_json({"queues": [q.to_dict() for q in adapter.list_queues(vhost)]})

    @mcp.tool()
    def get_queue(queue: str, vhost: str = DEFAULT_SCOPE) -> str:
        """Get detailed information about a specific queue or topic.

        Args:
            queue: Queue or topic name
            vhost: Virtual host / scope (default: '/')
        """
        return _fmt_json(adapter.get_queue(queue, vhost).to_dict())

    @mcp.tool()
    def create_queue(queue: str, durable: bool = False, auto_delete: bool = False,
                     vhost: str = DEFAULT_SCOPE) -> str:
        """Create a queue (RabbitMQ) or a single-partition topic (Kafka).

        Idempotent on RabbitMQ if the settings match; errors if the queue
        already exists with different settings.

        Args:
            queue: Queue or topic name
            durable: Survive broker restart (default: false)
            auto_delete: Delete when last consumer disconnects (default: false)
            vhost: Virtual host / scope (default: '/')
        """
        adapter.create_queue(CreateQueueParams(name=queue, durable=durable,
                                               auto_delete=auto_delete, scope=vhost))
        return _fmt_json({"queue": queue, "durable": durable,
                          "auto_delete": auto_delete, "vhost": vhost})

    @mcp.tool()
    def delete_queue(queue: str, vhost: str = DEFAULT_SCOPE) -> str:
        """Delete a queue or topic.

        Args:
            queue: Queue or topic name
            vhost: Virtual host / scope (default: '/')
        """
        adapter.delete_queue(queue, vhost)
        return _fmt_json({"queue": queue, "vhost": vhost, "deleted": True})

    @mcp.tool()
    def purge_queue(queue: str, vhost: str = DEFAULT_SCOPE) -> str:
        """Remove all messages from a queue or topic. Returns the number purged.

        Args:
            queue: Queue or topic name
            vhost: Virtual host / scope (default: '/')
        """
        result = adapter.purge_queue(queue, vhost)
        return _fmt_json({"queue": queue, "messages_purged": result.messages_removed})

    @mcp.tool()
    def peek_messages(queue: str, count: int = 5, vhost: str = DEFAULT_SCOPE) -> str:
        """View messages without consuming them.

        Args:
            queue: Queue or topic name
            count: Number of messages to peek (default 5, max 50)
            vhost: Virtual host / scope (default: '/')
        """
        messages = adapter.peek_messages(queue, _clamp_count(count), vhost)
        return _fmt_json({"messages": [m.to_dict() for m in messages],
                          "count": len(messages)})

    @mcp.tool()
    def inspect_queue(queue: str, count: int = 5, vhost: str = DEFAULT_SCOPE) -> str:
        """View messages and validate each against the schema named by its type.

        Args:
            queue: Queue or topic name
            count: Number of messages to inspect (default 5, max 50)
            vhost: Virtual host / scope (default: '/')
        """
        result = run_inspect(adapter, validator, queue, _clamp_count(count), vhost)
        return _fmt_json(result.to_dict())

    @mcp.tool()
    def publish_message(exchange: str, routing_key: str, payload: str,
                        message_type: Optional[str] = None,
                        headers: Optional[Dict[str, Any]] = None,
                        validate: bool = True,
                        vhost: str = DEFAULT_SCOPE) -> str:
        """Publish a message. If validation is requested and fails, the message is NOT sent.

        Args:
            exchange: Exchange name (RabbitMQ; 'amq.default' for direct-to-queue) or topic (Kafka)
            routing_key: Routing key (RabbitMQ) or record key (Kafka; empty for none)
            payload: JSON message payload
            message_type: Message type (e.g. 'order.created'), used for schema lookup
            headers: Optional message headers
            validate: Validate before publishing (default: true)
            vhost: Virtual host / scope (default: '/')
        """
        outcome = run_publish(adapter, validator, PublishRequest(
            destination=exchange, routing_key=routing_key, payload=payload,
            message_type=message_type, headers=headers,
            validate=validate, scope=vhost,
        ))
        return _fmt_json(outcome.to_dict())

    @mcp.tool()
    def check_health() -> str:
        """Check broker health. Returns ok, or failed with a reason."""
        return _fmt_json(adapter.check_health().to_dict())


# =====================================================================
#  CAPABILITY TOOLS
# =====================================================================

def register_capability_tools(mcp: FastMCP, adapter: BrokerAdapter) -> None:
    """Register the optional tools the adapter actually supports."""
    if has_overview(adapter):
        @mcp.tool()
        def get_overview() -> str:
            """Get a cluster overview: versions, rates, totals, brokers, topics."""
            return _fmt_json(adapter.get_overview())

    if has_consumers(adapter):
        @mcp.tool()
        def list_consumers(vhost: str = DEFAULT_SCOPE) -> str:
            """List consumers (RabbitMQ) or consumer groups (Kafka).

            Args:
                vhost: Virtual host / scope (default: '/')
            """
            return _fmt_json({"consumers": adapter.list_consumers(vhost)})

    if has_connections(adapter):
        @mcp.tool()
        def list_connections() -> str:
            """List all client connections to the broker."""
            return _fmt_json({"connections": adapter.list_connections()})


# =====================================================================
#  RABBITMQ TOOLS
# =====================================================================

def register_rabbitmq_tools(mcp: FastMCP, client: RabbitMQClient) -> None:

    @mcp.tool()
    def list_exchanges(vhost: str = DEFAULT_SCOPE) -> str:
        """List all exchanges in a RabbitMQ vhost.

        Args:
            vhost: RabbitMQ vhost (default: /)
        """
        exchanges = [{"name": e.get("name"), "type": e.get("type"), "durable": e.get("durable")}
                     for e in client.list_exchanges(vhost)]
        return _fmt_json({"exchanges": exchanges})

    @mcp.tool()
    def create_exchange(exchange: str, type: str = "direct", durable: bool = False,
                        auto_delete: bool = False, vhost: str = DEFAULT_SCOPE) -> str:
        """Create a RabbitMQ exchange.

        Args:
            exchange: Exchange name
            type: direct, fanout, topic or headers (default: direct)
            durable: Survive broker restart (default: false)
            auto_delete: Delete when last queue unbinds (default: false)
            vhost: RabbitMQ vhost (default: /)
        """
        if type not in ("direct", "fanout", "topic", "headers"):
            raise ValueError(f"Invalid exchange type '{type}'. "
                             f"Must be one of: direct, fanout, topic, headers")
        client.create_exchange(vhost, exchange, exchange_type=type,
                               durable=durable, auto_delete=auto_delete)
        return _fmt_json({"exchange": exchange, "type": type, "durable": durable,
                          "auto_delete": auto_delete, "vhost": vhost})

    @mcp.tool()
    def delete_exchange(exchange: str, vhost: str = DEFAULT_SCOPE) -> str:
        """Delete a RabbitMQ exchange.

        Args:
            exchange: Exchange name
            vhost: RabbitMQ vhost (default: /)
        """
        client.delete_exchange(vhost, exchange)
        return _fmt_json({"exchange": exchange, "vhost": vhost, "deleted": True})

    @mcp.tool()
    def list_bindings(vhost: str = DEFAULT_SCOPE) -> str:
        """List all bindings in a RabbitMQ vhost.

        Args:
            vhost: RabbitMQ vhost (default: /)
        """
        keys = ("source", "destination", "destination_type", "routing_key", "properties_key")
        bindings = [{k: b.get(k) for k in keys} for b in client.list_bindings(vhost)]
        return _fmt_json({"bindings": bindings})

    @mcp.tool()
    def create_binding(exchange: str, queue: str, routing_key: str = "",
                       vhost: str = DEFAULT_SCOPE) -> str:
        """Bind a queue to an exchange.

        Args:
            exchange: Source exchange name
            queue: Destination queue name
            routing_key: Routing key (default: empty)
            vhost: RabbitMQ vhost (default: /)
        """
        client.create_binding(vhost, exchange, queue, routing_key)
        return _fmt_json({"exchange": exchange, "queue": queue,
                          "routing_key": routing_key, "vhost": vhost})

    @mcp.tool()
    def delete_binding(exchange: str, queue: str, properties_key: str = "~",
                       vhost: str = DEFAULT_SCOPE) -> str:
        """Remove a binding between an exchange and a queue.

        Args:
            exchange: Source exchange name
            queue: Destination queue name
            properties_key: Binding properties key from list_bindings (default: ~)
            vhost: RabbitMQ vhost (default: /)
        """
        client.delete_binding(vhost, exchange, queue, properties_key)
        return _fmt_json({"exchange": exchange, "queue": queue,
                          "properties_key": properties_key, "vhost": vhost, "deleted": True})


# =====================================================================
#  KAFKA TOOLS
# =====================================================================

def register_kafka_tools(mcp: FastMCP, client: KafkaClient) -> None:

    @mcp.tool()
    def list_consumer_groups() -> str:
        """List all Kafka consumer groups with their state."""
        return _fmt_json({"consumer_groups": client.list_consumer_groups()})

    @mcp.tool()
    def describe_consumer_group(group_id: str) -> str:
        """Show members, partition assignments and state of a consumer group.

        Args:
            group_id: Consumer group ID
        """
        return _fmt_json(client.describe_consumer_group(group_id).to_dict())

    @mcp.tool()
    def list_partitions(topic: str) -> str:
        """Show partition details for a topic (leader, replicas, ISR).

        Args:
            topic: Topic name
        """
        info = client.describe_topic(topic).to_dict()
        return _fmt_json({"topic": info["name"], "partitions": info["partitions"]})

    @mcp.tool()
    def get_offsets(topic: str) -> str:
        """Show earliest/latest offsets per partition for a topic.

        Args:
            topic: Topic name
        """
        offsets = [o.to_dict() for o in client.fetch_topic_offsets(topic)]
        return _fmt_json({"topic": topic, "offsets": offsets})


BROKER_TOOLS = {
    "rabbitmq": register_rabbitmq_tools,
    "kafka": register_kafka_tools,
}


def register_broker_tools(mcp: FastMCP, adapter: BrokerAdapter) -> None:
    """Register the extras for the adapter's ``broker``, if it names one."""
    register = BROKER_TOOLS.get(getattr(adapter, "broker", None))
    if register is not None:
        register(mcp, adapter.client)


# =====================================================================
#  RESOURCES AND PROMPTS
# =====================================================================

def register_schema_resource(mcp: FastMCP, entry: SchemaEntry) -> None:

    @mcp.resource(f"schema:///{entry.name}", name=entry.name,
                  description=entry.description or entry.title,
                  mime_type=SCHEMA_MIME_TYPE)
    def read_schema() -> str:
        return _fmt_json(entry.schema)


def register_prompts(mcp: FastMCP) -> None:

    @mcp.prompt(name="debug-flow")
    def debug_flow(exchange: str, queue: str) -> str:
        """Trace bindings from exchange to queue, peek messages, validate against schemas."""
        return "\n".join([
            f'Debug the message flow from exchange "{exchange}" to queue "{queue}":',
            "",
            "1. Use list_bindings to find routing configuration between the exchange and queue",
            "2. Use peek_messages to view messages currently in the queue",
            "3. Use validate_message to check each message against its schema",
            "",
            "Report any misrouted messages, schema violations, or missing bindings.",
        ])

    @mcp.prompt(name="health-report")
    def health_report() -> str:
        """Check broker health, list queues, flag queues with backed-up messages."""
        return "\n".join([
            "Generate a broker health report:",
            "",
            "1. Use check_health to verify broker status",
            "2. Use get_overview for cluster-wide statistics",
            "3. Use list_queues to enumerate all queues",
            "4. Flag any queues where messages_ready > 0 or messages_unacknowledged > 0",
            "",
            "Provide a summary of the broker's health and any queues that need attention.",
        ])

    @mcp.prompt(name="schema-compliance")
    def schema_compliance(queue: str = "") -> str:
        """Peek messages in queues and validate each against its schema."""
        if queue:
            return "\n".join([
                f'Check schema compliance for queue "{queue}":',
                "",
                "1. Use inspect_queue to view and validate the messages in the queue",
                "2. Report which messages pass and which fail validation",
            ])
        return "\n".join([
            "Check schema compliance across all queues:",
            "",
            "1. Use list_queues to find all queues with messages",
            "2. For each queue, use inspect_queue to view and validate its messages",
            "3. Report compliance status per queue",
        ])


# =====================================================================
#  Server
# =====================================================================

def create_server(schemas: List[SchemaEntry], adapter: BrokerAdapter) -> FastMCP:
    """Build a FastMCP server wired to ``adapter`` and ``schemas``."""
    validator = SchemaValidator(schemas)
    mcp = FastMCP("queue-pilot", instructions=INSTRUCTIONS)

    register_schema_tools(mcp, validator)
    register_universal_tools(mcp, adapter, validator)
    register_capability_tools(mcp, adapter)

    register_broker_tools(mcp, adapter)

    for name in validator.get_schema_names():
        register_schema_resource(mcp, validator.get_schema(name))
    register_prompts(mcp)

    return mcp


# =====================================================================
#  ENTRY POINT
# =====================================================================

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="queue-pilot",
        description="MCP server for message queue inspection with JSON Schema validation",
    )
    parser.add_argument("--schemas", required=True,
                        help="Directory containing JSON Schema files")
    parser.add_argument("--broker", choices=SUPPORTED_BROKERS, default="rabbitmq",
                        help="Broker type (default: rabbitmq)")
    parser.add_argument("--rabbitmq-url", help="RabbitMQ management API URL "
                        "(env RABBITMQ_URL, default http://localhost:15672)")
    parser.add_argument("--rabbitmq-user", help="RabbitMQ username (env RABBITMQ_USER, default guest)")
    parser.add_argument("--rabbitmq-pass", help="RabbitMQ password (env RABBITMQ_PASS, default guest)")
    parser.add_argument("--kafka-brokers", help="Comma-separated Kafka brokers "
                        "(env KAFKA_BROKERS, default localhost:9092)")
    parser.add_argument("--kafka-client-id", help="Kafka client id (env KAFKA_CLIENT_ID)")
    parser.add_argument("--log-level", help="Log level (env LOG_LEVEL, default INFO)")
    parser.add_argument("--log-json", action="store_true", help="Log JSON lines to stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Start the Queue-Pilot server with stdio transport."""
    args = parse_args(argv)
    settings = AppSettings()
    configure_logging(args.log_level or settings.log_level, json_output=args.log_json)

    try:
        schemas = load_schemas(args.schemas)
        broker_config = build_broker_config(args.broker, settings, {
            "rabbitmq_url": args.rabbitmq_url,
            "rabbitmq_user": args.rabbitmq_user,
            "rabbitmq_pass": args.rabbitmq_pass,
            "kafka_brokers": args.kafka_brokers,
            "kafka_client_id": args.kafka_client_id,
        })
        adapter = create_adapter(broker_config)
    except QueuePilotError as e:
        logger.error("Startup failed.", error=e.message, code=e.code)
        sys.exit(1)

    schema_check = check_schema_count(len(schemas))
    if schema_check.warning:
        logger.warning(schema_check.warning)

    broker_name = "RabbitMQ" if args.broker == "rabbitmq" else "Kafka"
    connectivity = check_broker_connectivity(adapter.check_health, broker=broker_name)
    if connectivity.reachable and connectivity.status == "ok":
        logger.info(connectivity.message)
    else:
        logger.warning("Broker not ready; tools will fail until it is.",
                       message=connectivity.message)

    atexit.register(adapter.disconnect)
    mcp = create_server(schemas, adapter)
    logger.info("Queue-Pilot ready.", broker=args.broker, schemas=len(schemas))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
