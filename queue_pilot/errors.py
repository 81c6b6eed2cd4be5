"""
Queue Pilot Exceptions

Broker transport and protocol failures are raised and reach the caller
unchanged. Payload problems (invalid JSON, unknown schema, failed validation)
are never raised; they are returned as data by the pipeline.
"""

from typing import Any, Dict, Optional


class QueuePilotError(Exception):
    """Base exception carrying a machine-readable code and context."""

    def __init__(self, message: str, code: str = "QUEUE_PILOT_ERROR",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ConfigurationError(QueuePilotError):
    """Broker configuration is missing or names an unsupported broker."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class SchemaDirectoryError(QueuePilotError):
    """The schema directory does not exist or cannot be listed."""

    def __init__(self, directory: str):
        super().__init__(
            f"Schema directory not found: {directory}",
            code="SCHEMA_DIRECTORY_ERROR",
            details={"directory": directory},
        )


class BrokerError(QueuePilotError):
    """A broker rejected a request or returned something unusable."""


class RabbitMQApiError(BrokerError):
    """Non-2xx response from the RabbitMQ management API.

    The response body is kept verbatim so a caller can tell, for example, a
    409 PRECONDITION_FAILED on queue declaration from a 404 on a binding.
    """

    def __init__(self, status: int, status_text: str, body: Optional[str] = None):
        message = f"RabbitMQ API error: {status} {status_text}"
        if body:
            message = f"{message}: {body}"
        super().__init__(
            message,
            code="RABBITMQ_API_ERROR",
            details={"status": status, "status_text": status_text},
        )
        self.status = status
        self.status_text = status_text
        self.body = body


class TopicNotFoundError(BrokerError):

    def __init__(self, topic: str):
        super().__init__(f"Topic '{topic}' not found", code="TOPIC_NOT_FOUND",
                         details={"topic": topic})
        self.topic = topic


class ConsumerGroupNotFoundError(BrokerError):

    def __init__(self, group_id: str):
        super().__init__(f"Consumer group '{group_id}' not found",
                         code="CONSUMER_GROUP_NOT_FOUND",
                         details={"group_id": group_id})
        self.group_id = group_id


class KafkaProtocolError(BrokerError):
    """A raw Kafka wire request returned a non-zero error code."""

    def __init__(self, operation: str, error_code: int, error: str):
        super().__init__(
            f"{operation} failed: {error} (error code {error_code})",
            code="KAFKA_PROTOCOL_ERROR",
            details={"operation": operation, "error_code": error_code},
        )
        self.error_code = error_code
