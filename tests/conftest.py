"""Shared fixtures for Queue-Pilot tests."""

import json
import os
import sys
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from queue_pilot.broker.types import Message, MessageProperties, PublishResult
from queue_pilot.logging_config import configure_logging
from queue_pilot.schemas.validator import SchemaEntry, SchemaValidator


ORDER_SCHEMA: Dict[str, Any] = {
    "$id": "order.created",
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Order Created",
    "description": "Emitted when an order is placed",
    "version": "1.0.0",
    "type": "object",
    "required": ["orderId", "amount"],
    "properties": {
        "orderId": {"type": "string"},
        "amount": {"type": "number", "minimum": 0},
        "email": {"type": "string", "format": "email"},
    },
}


@pytest.fixture(scope="session", autouse=True)
def _logging() -> None:
    configure_logging("DEBUG")


@pytest.fixture
def order_entry() -> SchemaEntry:
    return SchemaEntry(
        name="order.created",
        version="1.0.0",
        title="Order Created",
        description="Emitted when an order is placed",
        schema=dict(ORDER_SCHEMA),
    )


@pytest.fixture
def validator(order_entry: SchemaEntry) -> SchemaValidator:
    return SchemaValidator([order_entry])


@pytest.fixture
def mock_adapter() -> MagicMock:
    """A broker adapter whose publish always succeeds and routes."""
    adapter = MagicMock()
    adapter.publish_message.return_value = PublishResult(published=True, routed=True)
    adapter.peek_messages.return_value = []
    return adapter


def make_message(payload: Any, message_type: Optional[str] = None,
                 encoding: str = "string") -> Message:
    if not isinstance(payload, str):
        payload = json.dumps(payload)
    return Message(
        payload=payload,
        payload_encoding=encoding,
        properties=MessageProperties(type=message_type),
        metadata={"exchange": "amq.topic", "routing_key": "test.order"},
    )


def make_response(status: int = 200, json_data: Any = None, text: Optional[str] = None,
                  reason: str = "OK") -> MagicMock:
    """A stand-in for ``requests.Response``."""
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.reason = reason
    if text is None:
        text = json.dumps(json_data) if json_data is not None else ""
    response.text = text
    response.content = text.encode("utf-8")
    response.json.return_value = json_data
    return response


@pytest.fixture
def mock_session() -> MagicMock:
    session = MagicMock()
    session.request.return_value = make_response(json_data=[])
    return session


def sent_body(session: MagicMock) -> Dict[str, Any]:
    """JSON body of the last request made through ``session``."""
    return json.loads(session.request.call_args.kwargs["data"])


def messages_of(payloads: List[Any]) -> List[Message]:
    return [make_message(p) for p in payloads]
