"""
Inspect and Publish Pipeline

``inspect_queue`` peeks messages and validates each against the schema named
by its declared type. ``publish_message`` is the validate-before-send guard:
a message reaches the broker only if validation was not requested, or it was
requested and the payload passed against an existing schema.

Payload problems are returned as data, never raised. Broker errors propagate.
"""

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from queue_pilot.broker.types import DEFAULT_SCOPE, BrokerAdapter, Message, PublishParams
from queue_pilot.logging_config import get_logger
from queue_pilot.schemas.validator import SchemaValidator, ValidationError

logger = get_logger(__name__)

INVALID_JSON = "Invalid JSON payload"

_NOT_PARSED = object()


class ValidationOutcome(enum.Enum):
    NOT_ATTEMPTED = "not_attempted"
    PASSED = "passed"
    FAILED = "failed"

    @property
    def valid(self) -> Optional[bool]:
        """``None`` / ``True`` / ``False`` for JSON output."""
        if self is ValidationOutcome.NOT_ATTEMPTED:
            return None
        return self is ValidationOutcome.PASSED


def _schema_not_found(name: str) -> ValidationError:
    return ValidationError(path="", message=f'Schema "{name}" not found')


def _parse_json(payload: str) -> Any:
    try:
        return json.loads(payload)
    except (TypeError, ValueError):
        return _NOT_PARSED


# =========================================================================
#  Inspect
# =========================================================================

class InspectStatus(enum.Enum):
    VALID = "valid"
    INVALID = "invalid"
    NO_SCHEMA = "no_schema"
    SKIPPED = "skipped"


@dataclass
class InspectedMessage:
    message: Message
    status: InspectStatus
    parsed_payload: Any = None
    errors: List[ValidationError] = field(default_factory=list)

    @property
    def outcome(self) -> ValidationOutcome:
        if self.status is InspectStatus.VALID:
            return ValidationOutcome.PASSED
        if self.status is InspectStatus.INVALID:
            return ValidationOutcome.FAILED
        return ValidationOutcome.NOT_ATTEMPTED

    def to_dict(self) -> Dict[str, Any]:
        result = self.message.to_dict()
        result["parsed_payload"] = self.parsed_payload
        result["validation"] = {
            "schema_name": self.message.properties.type,
            "status": self.status.value,
            "valid": self.outcome.valid,
            "errors": [e.to_dict() for e in self.errors],
        }
        return result


@dataclass
class InspectResult:
    queue: str
    messages: List[InspectedMessage] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        counts = {status: 0 for status in InspectStatus}
        for m in self.messages:
            counts[m.status] += 1
        return {
            "total": len(self.messages),
            "valid": counts[InspectStatus.VALID],
            "invalid": counts[InspectStatus.INVALID],
            "no_schema": counts[InspectStatus.NO_SCHEMA],
            "skipped": counts[InspectStatus.SKIPPED],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queue": self.queue,
            "messages": [m.to_dict() for m in self.messages],
            "count": len(self.messages),
            "summary": self.summary,
        }


def inspect_message(validator: SchemaValidator, message: Message) -> InspectedMessage:
    if message.is_binary:
        return InspectedMessage(message, InspectStatus.SKIPPED)

    parsed = _parse_json(message.payload)
    if parsed is _NOT_PARSED:
        return InspectedMessage(message, InspectStatus.INVALID,
                                errors=[ValidationError(path="", message=INVALID_JSON)])

    schema_name = message.properties.type
    if not schema_name:
        return InspectedMessage(message, InspectStatus.NO_SCHEMA, parsed_payload=parsed)
    if validator.get_schema(schema_name) is None:
        return InspectedMessage(message, InspectStatus.NO_SCHEMA, parsed_payload=parsed,
                                errors=[_schema_not_found(schema_name)])

    result = validator.validate(schema_name, parsed)
    status = InspectStatus.VALID if result.valid else InspectStatus.INVALID
    return InspectedMessage(message, status, parsed_payload=parsed, errors=result.errors)


def inspect_queue(adapter: BrokerAdapter, validator: SchemaValidator, queue: str,
                  count: int = 5, scope: str = DEFAULT_SCOPE) -> InspectResult:
    """Peek up to ``count`` messages and validate each one."""
    messages = adapter.peek_messages(queue, count, scope)
    return InspectResult(queue=queue,
                         messages=[inspect_message(validator, m) for m in messages])


# =========================================================================
#  Publish
# =========================================================================

@dataclass
class PublishRequest:
    destination: str
    routing_key: str
    payload: str
    message_type: Optional[str] = None
    headers: Optional[Dict[str, Any]] = None
    validate: bool = True
    scope: str = DEFAULT_SCOPE


@dataclass
class PublishOutcome:
    request: PublishRequest
    published: bool = False
    routed: bool = False
    validation: ValidationOutcome = ValidationOutcome.NOT_ATTEMPTED
    errors: List[ValidationError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "published": self.published,
            "routed": self.routed,
            "destination": self.request.destination,
            "routing_key": self.request.routing_key,
            "validation": {
                "validated": self.validation is not ValidationOutcome.NOT_ATTEMPTED,
                "schema_name": self.request.message_type,
                "valid": self.validation.valid,
                "errors": [e.to_dict() for e in self.errors],
            },
        }


def _rejected(request: PublishRequest, errors: List[ValidationError]) -> PublishOutcome:
    logger.info("Publish rejected.", destination=request.destination,
                schema=request.message_type, errors=len(errors))
    return PublishOutcome(request, validation=ValidationOutcome.FAILED, errors=errors)


def publish_message(adapter: BrokerAdapter, validator: SchemaValidator,
                    request: PublishRequest) -> PublishOutcome:
    """Validate then publish.

    Steps, each either stopping with ``published=False`` or falling through:

    1. The payload must parse as JSON, whether or not validation is requested.
    2. With ``validate`` set and a ``message_type`` given, the schema must
       exist and the payload must pass it.
    3. Otherwise validation is ``NOT_ATTEMPTED`` and the message goes out.
    """
    parsed = _parse_json(request.payload)
    if parsed is _NOT_PARSED:
        return _rejected(request, [ValidationError(path="", message=INVALID_JSON)])

    validation = ValidationOutcome.NOT_ATTEMPTED
    if request.validate and request.message_type:
        if validator.get_schema(request.message_type) is None:
            return _rejected(request, [_schema_not_found(request.message_type)])
        result = validator.validate(request.message_type, parsed)
        if not result.valid:
            return _rejected(request, result.errors)
        validation = ValidationOutcome.PASSED

    sent = adapter.publish_message(PublishParams(
        destination=request.destination,
        routing_key=request.routing_key,
        payload=request.payload,
        message_type=request.message_type,
        headers=request.headers,
        scope=request.scope,
    ))
    return PublishOutcome(request, published=sent.published, routed=sent.routed,
                          validation=validation)


# =========================================================================
#  Standalone validation
# =========================================================================

def validate_message(validator: SchemaValidator, schema_name: str,
                     message_json: str) -> Dict[str, Any]:
    """Validate a JSON string against a named schema without publishing."""
    parsed = _parse_json(message_json)
    if parsed is _NOT_PARSED:
        return {"schema_name": schema_name, "valid": False,
                "errors": [{"path": "", "message": INVALID_JSON}]}
    result = validator.validate(schema_name, parsed)
    return {"schema_name": schema_name, **result.to_dict()}
