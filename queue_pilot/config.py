"""
Configuration

Two layers:

* ``RabbitMQBrokerConfig`` / ``KafkaBrokerConfig``: the mutually exclusive
  broker configurations handed to the adapter factory, discriminated on
  ``broker``.
* ``AppSettings``: environment-variable fallbacks for the command line,
  loaded with pydantic-settings.
"""

from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from queue_pilot.errors import ConfigurationError


DEFAULT_RABBITMQ_URL = "http://localhost:15672"
DEFAULT_RABBITMQ_USER = "guest"
DEFAULT_RABBITMQ_PASS = "guest"
DEFAULT_KAFKA_BROKERS = "localhost:9092"
DEFAULT_CLIENT_ID = "queue-pilot"

SUPPORTED_BROKERS = ("rabbitmq", "kafka")


class RabbitMQBrokerConfig(BaseModel):
    broker: Literal["rabbitmq"] = "rabbitmq"
    url: str = DEFAULT_RABBITMQ_URL
    username: str = DEFAULT_RABBITMQ_USER
    password: str = DEFAULT_RABBITMQ_PASS


class SaslConfig(BaseModel):
    mechanism: Literal["plain", "scram-sha-256", "scram-sha-512"]
    username: str
    password: str

    @field_validator("mechanism", mode="before")
    @classmethod
    def lower_mechanism(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class KafkaBrokerConfig(BaseModel):
    broker: Literal["kafka"] = "kafka"
    brokers: List[str] = Field(min_length=1)
    client_id: str = DEFAULT_CLIENT_ID
    sasl: Optional[SaslConfig] = None
    ssl: bool = False
    # seconds; passed to admin calls and used as the peek window
    request_timeout: float = 10.0
    peek_timeout: float = 10.0

    @property
    def security_protocol(self) -> str:
        if self.sasl and self.ssl:
            return "SASL_SSL"
        if self.sasl:
            return "SASL_PLAINTEXT"
        if self.ssl:
            return "SSL"
        return "PLAINTEXT"

    def client_config(self) -> Dict[str, str]:
        """confluent-kafka / librdkafka configuration dict."""
        conf = {
            "bootstrap.servers": ",".join(self.brokers),
            "client.id": self.client_id,
            "security.protocol": self.security_protocol,
        }
        if self.sasl:
            conf["sasl.mechanism"] = self.sasl.mechanism.upper()
            conf["sasl.username"] = self.sasl.username
            conf["sasl.password"] = self.sasl.password
        return conf


BrokerConfig = Union[RabbitMQBrokerConfig, KafkaBrokerConfig]


def parse_broker_config(raw: Union[BrokerConfig, Mapping[str, Any]]) -> BrokerConfig:
    """Validate a raw broker config mapping.

    Raises:
        ConfigurationError: unknown ``broker`` value or invalid fields
    """
    if isinstance(raw, (RabbitMQBrokerConfig, KafkaBrokerConfig)):
        return raw
    broker = raw.get("broker")
    if broker not in SUPPORTED_BROKERS:
        raise ConfigurationError(f"Unsupported broker: {broker}",
                                 details={"supported": list(SUPPORTED_BROKERS)})
    model = RabbitMQBrokerConfig if broker == "rabbitmq" else KafkaBrokerConfig
    try:
        return model.model_validate(dict(raw))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {broker} configuration: {e}") from e


class AppSettings(BaseSettings):
    """Environment fallbacks for command-line options."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    rabbitmq_url: str = Field(default=DEFAULT_RABBITMQ_URL, alias="RABBITMQ_URL")
    rabbitmq_user: str = Field(default=DEFAULT_RABBITMQ_USER, alias="RABBITMQ_USER")
    rabbitmq_pass: str = Field(default=DEFAULT_RABBITMQ_PASS, alias="RABBITMQ_PASS")

    kafka_brokers: str = Field(default=DEFAULT_KAFKA_BROKERS, alias="KAFKA_BROKERS")
    kafka_client_id: str = Field(default=DEFAULT_CLIENT_ID, alias="KAFKA_CLIENT_ID")
    kafka_sasl_mechanism: Optional[str] = Field(default=None, alias="KAFKA_SASL_MECHANISM")
    kafka_sasl_username: Optional[str] = Field(default=None, alias="KAFKA_SASL_USERNAME")
    kafka_sasl_password: Optional[str] = Field(default=None, alias="KAFKA_SASL_PASSWORD")
    kafka_ssl: bool = Field(default=False, alias="KAFKA_SSL")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def build_broker_config(broker: str, settings: AppSettings,
                        overrides: Optional[Mapping[str, Optional[str]]] = None) -> BrokerConfig:
    """Combine command-line overrides with environment settings.

    Command-line values win over environment values, which win over defaults.
    """
    overrides = {k: v for k, v in (overrides or {}).items() if v}

    if broker == "rabbitmq":
        return parse_broker_config({
            "broker": "rabbitmq",
            "url": overrides.get("rabbitmq_url", settings.rabbitmq_url),
            "username": overrides.get("rabbitmq_user", settings.rabbitmq_user),
            "password": overrides.get("rabbitmq_pass", settings.rabbitmq_pass),
        })

    if broker == "kafka":
        brokers = overrides.get("kafka_brokers", settings.kafka_brokers)
        raw: Dict[str, Any] = {
            "broker": "kafka",
            "brokers": [b.strip() for b in brokers.split(",") if b.strip()],
            "client_id": overrides.get("kafka_client_id", settings.kafka_client_id),
            "ssl": settings.kafka_ssl,
        }
        if settings.kafka_sasl_mechanism:
            raw["sasl"] = {
                "mechanism": settings.kafka_sasl_mechanism,
                "username": settings.kafka_sasl_username or "",
                "password": settings.kafka_sasl_password or "",
            }
        return parse_broker_config(raw)

    return parse_broker_config({"broker": broker})
