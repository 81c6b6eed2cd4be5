"""Build the adapter for a broker configuration."""

from typing import Any, Mapping, Union

from queue_pilot.broker.types import BrokerAdapter
from queue_pilot.config import BrokerConfig, KafkaBrokerConfig, parse_broker_config
from queue_pilot.kafka.adapter import KafkaAdapter
from queue_pilot.kafka.client import KafkaClient
from queue_pilot.logging_config import get_logger
from queue_pilot.rabbitmq.adapter import RabbitMQAdapter
from queue_pilot.rabbitmq.client import RabbitMQClient

logger = get_logger(__name__)


def create_adapter(config: Union[BrokerConfig, Mapping[str, Any]]) -> BrokerAdapter:
    """Return a ready adapter. No network I/O happens here.

    Raises:
        ConfigurationError: ``broker`` is not one of the supported values
    """
    config = parse_broker_config(config)

    if isinstance(config, KafkaBrokerConfig):
        logger.info("Using Kafka broker.", brokers=config.brokers,
                    security_protocol=config.security_protocol)
        return KafkaAdapter(KafkaClient(config))

    logger.info("Using RabbitMQ broker.", url=config.url)
    return RabbitMQAdapter(RabbitMQClient(config.url, config.username, config.password))
