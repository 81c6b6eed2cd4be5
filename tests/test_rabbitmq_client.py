"""Tests for the RabbitMQ management API client."""

import pytest
import requests
from requests.auth import HTTPBasicAuth

from queue_pilot.errors import RabbitMQApiError
from queue_pilot.rabbitmq.client import RabbitMQClient, encode_segment, encode_vhost

from conftest import make_response, sent_body

BASE = "http://localhost:15672"


@pytest.fixture
def client(mock_session):
    return RabbitMQClient(BASE + "/", "guest", "guest", session=mock_session)


def _url(session):
    args = session.request.call_args.args
    return args[0], args[1]


class TestEncoding:

    def test_default_vhost(self):
        assert encode_vhost("/") == "%2F"

    def test_default_vhost_is_stable(self):
        assert encode_vhost("/") == encode_vhost("/") == "%2F"

    def test_empty_vhost_rejected(self):
        with pytest.raises(ValueError, match="vhost must not be empty"):
            encode_vhost("")

    def test_named_vhost(self):
        assert encode_vhost("staging env") == "staging%20env"
        assert encode_vhost("/prod") == "%2Fprod"

    def test_segment_has_no_safe_characters(self):
        assert encode_segment("events/dead#1") == "events%2Fdead%231"


class TestQueues:

    def test_auth_and_headers(self, client, mock_session):
        assert isinstance(mock_session.auth, HTTPBasicAuth)
        assert mock_session.auth.username == "guest"
        mock_session.headers.update.assert_called_once_with({"Content-Type": "application/json"})

    def test_list_queues_default_vhost(self, client, mock_session):
        mock_session.request.return_value = make_response(json_data=[{"name": "orders"}])

        assert client.list_queues("/") == [{"name": "orders"}]
        assert _url(mock_session) == ("GET", f"{BASE}/api/queues/%2F")

    def test_get_queue_encodes_name(self, client, mock_session):
        mock_session.request.return_value = make_response(json_data={"name": "a/b"})
        client.get_queue("/", "a/b")
        assert _url(mock_session) == ("GET", f"{BASE}/api/queues/%2F/a%2Fb")

    def test_create_queue_body(self, client, mock_session):
        mock_session.request.return_value = make_response(201)
        client.create_queue("/", "orders", durable=True)
        assert _url(mock_session) == ("PUT", f"{BASE}/api/queues/%2F/orders")
        assert sent_body(mock_session) == {"durable": True, "auto_delete": False}

    def test_conflicting_declare_keeps_body(self, client, mock_session):
        body = '{"error":"precondition_failed","reason":"inequivalent arg \'durable\'"}'
        mock_session.request.return_value = make_response(
            400, text=body, reason="Bad Request")

        with pytest.raises(RabbitMQApiError) as exc:
            client.create_queue("/", "orders", durable=False)

        assert exc.value.status == 400
        assert exc.value.body == body
        assert str(exc.value) == f"RabbitMQ API error: 400 Bad Request: {body}"

    def test_not_found(self, client, mock_session):
        mock_session.request.return_value = make_response(
            404, text='{"error":"Object Not Found","reason":"Not Found"}', reason="Not Found")
        with pytest.raises(RabbitMQApiError, match="404 Not Found"):
            client.get_queue("/", "missing")

    def test_empty_vhost_makes_no_request(self, client, mock_session):
        with pytest.raises(ValueError):
            client.list_queues("")
        mock_session.request.assert_not_called()

    def test_transport_errors_propagate(self, client, mock_session):
        mock_session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(requests.ConnectionError):
            client.list_queues("/")

    def test_purge_no_content(self, client, mock_session):
        mock_session.request.return_value = make_response(204)
        assert client.purge_queue("/", "orders") == {"message_count": 0}
        assert _url(mock_session) == ("DELETE", f"{BASE}/api/queues/%2F/orders/contents")

    def test_purge_with_count(self, client, mock_session):
        mock_session.request.return_value = make_response(200, json_data={"message_count": 7})
        assert client.purge_queue("/", "orders") == {"message_count": 7}

    def test_peek_requeues(self, client, mock_session):
        mock_session.request.return_value = make_response(json_data=[])
        client.peek_messages("/", "orders", 3)
        assert _url(mock_session) == ("POST", f"{BASE}/api/queues/%2F/orders/get")
        assert sent_body(mock_session) == {
            "count": 3, "ackmode": "ack_requeue_true", "encoding": "auto",
        }


class TestExchangesAndBindings:

    def test_publish(self, client, mock_session):
        mock_session.request.return_value = make_response(json_data={"routed": False})
        result = client.publish_message("/", "amq.topic", {"routing_key": "a.b", "payload": "{}"})
        assert result == {"routed": False}
        assert _url(mock_session) == ("POST", f"{BASE}/api/exchanges/%2F/amq.topic/publish")

    def test_create_exchange(self, client, mock_session):
        mock_session.request.return_value = make_response(201)
        client.create_exchange("/", "events", exchange_type="topic", durable=True)
        assert sent_body(mock_session) == {"type": "topic", "durable": True, "auto_delete": False}

    def test_create_binding(self, client, mock_session):
        mock_session.request.return_value = make_response(201)
        client.create_binding("/", "events", "orders", "order.*")
        assert _url(mock_session) == ("POST", f"{BASE}/api/bindings/%2F/e/events/q/orders")
        assert sent_body(mock_session) == {"routing_key": "order.*"}

    def test_delete_binding_default_properties_key(self, client, mock_session):
        mock_session.request.return_value = make_response(204)
        client.delete_binding("/", "events", "orders")
        assert _url(mock_session) == ("DELETE", f"{BASE}/api/bindings/%2F/e/events/q/orders/~")


class TestCluster:

    def test_health_ok(self, client, mock_session):
        mock_session.request.return_value = make_response(json_data={"status": "ok"})
        assert client.check_health() == {"status": "ok"}
        assert _url(mock_session) == ("GET", f"{BASE}/api/health/checks/alarms")

    def test_health_503_is_a_verdict(self, client, mock_session):
        mock_session.request.return_value = make_response(
            503, json_data={"status": "failed", "reason": "memory alarm"},
            reason="Service Unavailable")
        assert client.check_health() == {"status": "failed", "reason": "memory alarm"}

    def test_health_non_json_body(self, client, mock_session):
        response = make_response(502, text="<html>Bad Gateway</html>", reason="Bad Gateway")
        response.json.side_effect = ValueError("Expecting value")
        mock_session.request.return_value = response
        with pytest.raises(RabbitMQApiError, match="502 Bad Gateway: <html>Bad Gateway</html>") as exc:
            client.check_health()
        assert exc.value.details["status"] == 502

    def test_overview_consumers_connections(self, client, mock_session):
        mock_session.request.return_value = make_response(json_data=[])
        client.list_consumers("/")
        assert _url(mock_session)[1] == f"{BASE}/api/consumers/%2F"
        client.list_connections()
        assert _url(mock_session)[1] == f"{BASE}/api/connections"
        mock_session.request.return_value = make_response(json_data={"rabbitmq_version": "3.13"})
        assert client.get_overview()["rabbitmq_version"] == "3.13"

    def test_close(self, client, mock_session):
        client.close()
        mock_session.close.assert_called_once()
