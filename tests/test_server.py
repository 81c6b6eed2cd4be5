"""Tests for MCP tool registration and the command line."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from queue_pilot.broker.types import BrokerAdapter
from queue_pilot.kafka.adapter import KafkaAdapter
from queue_pilot.rabbitmq.adapter import RabbitMQAdapter
from queue_pilot.server import create_server, parse_args

UNIVERSAL = {
    "list_schemas", "get_schema", "validate_message",
    "list_queues", "get_queue", "create_queue", "delete_queue", "purge_queue",
    "peek_messages", "inspect_queue", "publish_message", "check_health",
}
RABBITMQ_ONLY = {
    "list_exchanges", "create_exchange", "delete_exchange",
    "list_bindings", "create_binding", "delete_binding",
}
KAFKA_ONLY = {"list_consumer_groups", "describe_consumer_group", "list_partitions", "get_offsets"}


def _tool_names(server):
    return {tool.name for tool in asyncio.run(server.list_tools())}


def _call(server, name, arguments=None):
    result = asyncio.run(server.call_tool(name, arguments or {}))
    if isinstance(result, tuple):
        result = result[0]
    if isinstance(result, dict):
        return json.loads(result["result"])
    return json.loads(result[0].text)


@pytest.fixture
def rabbit_client():
    client = MagicMock()
    client.publish_message.return_value = {"routed": True}
    return client


@pytest.fixture
def rabbit_server(order_entry, rabbit_client):
    return create_server([order_entry], RabbitMQAdapter(rabbit_client))


class TestRegistration:

    def test_rabbitmq_tools(self, rabbit_server):
        assert _tool_names(rabbit_server) == (
            UNIVERSAL | RABBITMQ_ONLY | {"get_overview", "list_consumers", "list_connections"})

    def test_kafka_tools(self, order_entry):
        server = create_server([order_entry], KafkaAdapter(MagicMock()))
        assert _tool_names(server) == UNIVERSAL | KAFKA_ONLY | {"get_overview", "list_consumers"}

    def test_bare_adapter_gets_only_universal_tools(self, order_entry):
        adapter = MagicMock(spec=BrokerAdapter)
        assert _tool_names(create_server([order_entry], adapter)) == UNIVERSAL

    def test_broker_extras_follow_declared_broker(self, order_entry):
        adapter = MagicMock(spec=BrokerAdapter)
        adapter.broker = "kafka"
        adapter.client = MagicMock()
        assert _tool_names(create_server([order_entry], adapter)) == UNIVERSAL | KAFKA_ONLY

    def test_prompts(self, rabbit_server):
        names = {p.name for p in asyncio.run(rabbit_server.list_prompts())}
        assert names == {"debug-flow", "health-report", "schema-compliance"}

    def test_schema_resources(self, rabbit_server):
        resources = asyncio.run(rabbit_server.list_resources())
        assert [r.name for r in resources] == ["order.created"]
        assert str(resources[0].uri).startswith("schema:")


class TestToolCalls:

    def test_publish_rejects_invalid_payload(self, rabbit_server, rabbit_client):
        result = _call(rabbit_server, "publish_message", {
            "exchange": "amq.topic", "routing_key": "test.order",
            "payload": '{"orderId":"ORD-1"}', "message_type": "order.created",
        })
        assert result["published"] is False
        assert result["validation"]["valid"] is False
        rabbit_client.publish_message.assert_not_called()

    def test_publish_valid_payload(self, rabbit_server, rabbit_client):
        result = _call(rabbit_server, "publish_message", {
            "exchange": "amq.topic", "routing_key": "test.order",
            "payload": '{"orderId":"ORD-1","amount":10}', "message_type": "order.created",
            "validate": True,
        })
        assert result["published"] is True
        assert result["validation"]["valid"] is True
        assert rabbit_client.publish_message.call_args.args[0] == "/"

    def test_list_queues_defaults_vhost(self, rabbit_server, rabbit_client):
        rabbit_client.list_queues.return_value = []
        assert _call(rabbit_server, "list_queues") == {"queues": []}
        rabbit_client.list_queues.assert_called_once_with("/")

    def test_peek_count_is_capped(self, rabbit_server, rabbit_client):
        rabbit_client.peek_messages.return_value = []
        _call(rabbit_server, "peek_messages", {"queue": "orders", "count": 500})
        rabbit_client.peek_messages.assert_called_once_with("/", "orders", 50)

    def test_get_schema_not_found(self, rabbit_server):
        result = _call(rabbit_server, "get_schema", {"name": "nope"})
        assert result["found"] is False

    def test_list_schemas(self, rabbit_server):
        assert _call(rabbit_server, "list_schemas") == {"schemas": [{
            "name": "order.created", "version": "1.0.0", "title": "Order Created",
            "description": "Emitted when an order is placed",
        }]}


class TestCommandLine:

    def test_schemas_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_defaults(self):
        args = parse_args(["--schemas", "./schemas"])
        assert args.broker == "rabbitmq"
        assert args.rabbitmq_url is None
        assert not args.log_json

    def test_rejects_unknown_broker(self):
        with pytest.raises(SystemExit):
            parse_args(["--schemas", "s", "--broker", "redis"])
