"""Tests for broker configuration, settings and the adapter factory."""

import pytest

from queue_pilot.broker.factory import create_adapter
from queue_pilot.config import (
    AppSettings,
    KafkaBrokerConfig,
    RabbitMQBrokerConfig,
    build_broker_config,
    parse_broker_config,
)
from queue_pilot.errors import ConfigurationError
from queue_pilot.kafka.adapter import KafkaAdapter
from queue_pilot.rabbitmq.adapter import RabbitMQAdapter

ENV_VARS = (
    "RABBITMQ_URL", "RABBITMQ_USER", "RABBITMQ_PASS", "KAFKA_BROKERS", "KAFKA_CLIENT_ID",
    "KAFKA_SASL_MECHANISM", "KAFKA_SASL_USERNAME", "KAFKA_SASL_PASSWORD", "KAFKA_SSL",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestParseBrokerConfig:

    def test_unsupported_broker(self):
        with pytest.raises(ConfigurationError, match="Unsupported broker: redis"):
            parse_broker_config({"broker": "redis"})

    def test_missing_broker(self):
        with pytest.raises(ConfigurationError, match="Unsupported broker: None"):
            parse_broker_config({})

    def test_rabbitmq_defaults(self):
        config = parse_broker_config({"broker": "rabbitmq"})
        assert isinstance(config, RabbitMQBrokerConfig)
        assert (config.url, config.username, config.password) == (
            "http://localhost:15672", "guest", "guest")

    def test_kafka_requires_brokers(self):
        with pytest.raises(ConfigurationError, match="Invalid kafka configuration"):
            parse_broker_config({"broker": "kafka", "brokers": []})

    def test_models_pass_through(self):
        config = KafkaBrokerConfig(brokers=["b:9092"])
        assert parse_broker_config(config) is config


class TestKafkaClientConfig:

    def test_plaintext(self):
        conf = KafkaBrokerConfig(brokers=["a:9092", "b:9092"]).client_config()
        assert conf == {
            "bootstrap.servers": "a:9092,b:9092",
            "client.id": "queue-pilot",
            "security.protocol": "PLAINTEXT",
        }

    @pytest.mark.parametrize("sasl, ssl, protocol", [
        (False, True, "SSL"),
        (True, False, "SASL_PLAINTEXT"),
        (True, True, "SASL_SSL"),
    ])
    def test_security_protocol(self, sasl, ssl, protocol):
        raw = {"broker": "kafka", "brokers": ["a:9092"], "ssl": ssl}
        if sasl:
            raw["sasl"] = {"mechanism": "SCRAM-SHA-512", "username": "u", "password": "p"}
        conf = parse_broker_config(raw).client_config()
        assert conf["security.protocol"] == protocol
        if sasl:
            assert conf["sasl.mechanism"] == "SCRAM-SHA-512"
            assert conf["sasl.username"] == "u"

    def test_unknown_sasl_mechanism(self):
        with pytest.raises(ConfigurationError):
            parse_broker_config({"broker": "kafka", "brokers": ["a:9092"],
                                 "sasl": {"mechanism": "gssapi", "username": "u",
                                          "password": "p"}})


class TestBuildBrokerConfig:

    def test_environment_fallback(self, monkeypatch):
        monkeypatch.setenv("RABBITMQ_URL", "http://rabbit:15672")
        monkeypatch.setenv("RABBITMQ_USER", "admin")

        config = build_broker_config("rabbitmq", AppSettings(_env_file=None))

        assert (config.url, config.username, config.password) == (
            "http://rabbit:15672", "admin", "guest")

    def test_command_line_wins(self, monkeypatch):
        monkeypatch.setenv("RABBITMQ_URL", "http://rabbit:15672")

        config = build_broker_config("rabbitmq", AppSettings(_env_file=None),
                                     {"rabbitmq_url": "http://cli:15672", "rabbitmq_user": None})

        assert config.url == "http://cli:15672"
        assert config.username == "guest"

    def test_kafka_from_environment(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BROKERS", "k1:9092, k2:9092")
        monkeypatch.setenv("KAFKA_SASL_MECHANISM", "PLAIN")
        monkeypatch.setenv("KAFKA_SASL_USERNAME", "svc")
        monkeypatch.setenv("KAFKA_SASL_PASSWORD", "secret")
        monkeypatch.setenv("KAFKA_SSL", "true")

        config = build_broker_config("kafka", AppSettings(_env_file=None))

        assert config.brokers == ["k1:9092", "k2:9092"]
        assert config.sasl.mechanism == "plain"
        assert config.security_protocol == "SASL_SSL"

    def test_unknown_broker(self):
        with pytest.raises(ConfigurationError):
            build_broker_config("nats", AppSettings(_env_file=None))


class TestCreateAdapter:

    def test_rabbitmq(self):
        adapter = create_adapter({"broker": "rabbitmq", "url": "http://rabbit:15672",
                                  "username": "u", "password": "p"})
        assert isinstance(adapter, RabbitMQAdapter)
        assert adapter.client.base_url == "http://rabbit:15672"

    def test_kafka_is_lazy(self):
        adapter = create_adapter({"broker": "kafka", "brokers": ["k1:9092"]})
        assert isinstance(adapter, KafkaAdapter)
        assert adapter.client._admin is None
        assert adapter.client._producer is None

    def test_unknown(self):
        with pytest.raises(ConfigurationError, match="Unsupported broker: sqs"):
            create_adapter({"broker": "sqs"})
