"""
RabbitMQ Management API Client

Thin synchronous client for the RabbitMQ management HTTP API
(``/api/...``) using a shared ``requests`` session with HTTP Basic auth.

Every path segment is percent-encoded with no safe characters, so the
default vhost ``/`` becomes ``%2F`` and names such as ``events/dead#1``
survive intact. Any non-2xx response raises ``RabbitMQApiError`` with the
body verbatim; the only exception is the health check, whose JSON body is
the verdict regardless of status code.
"""

import json
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests.auth import HTTPBasicAuth

from queue_pilot.errors import RabbitMQApiError


PEEK_ACK_MODE = "ack_requeue_true"


def encode_vhost(vhost: str) -> str:
    """Encode a vhost as a URL path segment (``/`` -> ``%2F``)."""
    if vhost == "":
        raise ValueError("vhost must not be empty")
    if vhost == "/":
        return "%2F"
    return quote(vhost, safe="")


def encode_segment(name: str) -> str:
    return quote(name, safe="")


class RabbitMQClient:
    """RabbitMQ management API client.

    Args:
        url: Management API base URL, e.g. ``http://localhost:15672``
        username: Management user
        password: Management password
        session: Optional pre-built ``requests.Session`` (tests inject one)
    """

    def __init__(self, url: str, username: str, password: str,
                 session: Optional[requests.Session] = None):
        self.base_url = url.rstrip("/")
        self._session = session or requests.Session()
        self._session.auth = HTTPBasicAuth(username, password)
        self._session.headers.update({"Content-Type": "application/json"})

    # =====================================================================
    #  Transport
    # =====================================================================

    def _send(self, method: str, path: str,
              body: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self._session.request(
            method,
            f"{self.base_url}{path}",
            data=json.dumps(body) if body is not None else None,
        )

    def _request(self, method: str, path: str,
                 body: Optional[Dict[str, Any]] = None) -> requests.Response:
        response = self._send(method, path, body)
        if not response.ok:
            raise RabbitMQApiError(response.status_code, response.reason,
                                   _read_body(response))
        return response

    def _request_json(self, method: str, path: str,
                      body: Optional[Dict[str, Any]] = None) -> Any:
        return self._request(method, path, body).json()

    # =====================================================================
    #  Queues
    # =====================================================================

    def list_queues(self, vhost: str) -> List[Dict[str, Any]]:
        return self._request_json("GET", f"/api/queues/{encode_vhost(vhost)}")

    def get_queue(self, vhost: str, queue: str) -> Dict[str, Any]:
        return self._request_json(
            "GET", f"/api/queues/{encode_vhost(vhost)}/{encode_segment(queue)}")

    def create_queue(self, vhost: str, queue: str, durable: bool = False,
                     auto_delete: bool = False) -> None:
        self._request(
            "PUT",
            f"/api/queues/{encode_vhost(vhost)}/{encode_segment(queue)}",
            {"durable": durable, "auto_delete": auto_delete},
        )

    def delete_queue(self, vhost: str, queue: str) -> None:
        self._request(
            "DELETE", f"/api/queues/{encode_vhost(vhost)}/{encode_segment(queue)}")

    def purge_queue(self, vhost: str, queue: str) -> Dict[str, Any]:
        """Remove every message from a queue.

        Newer brokers answer 204 with no body; that means nothing was
        reported and is treated as zero messages purged.
        """
        response = self._request(
            "DELETE",
            f"/api/queues/{encode_vhost(vhost)}/{encode_segment(queue)}/contents",
        )
        if response.status_code == 204 or not response.content:
            return {"message_count": 0}
        try:
            data = response.json()
        except ValueError:
            return {"message_count": 0}
        return {"message_count": int(data.get("message_count", 0) or 0)}

    def peek_messages(self, vhost: str, queue: str, count: int) -> List[Dict[str, Any]]:
        """Fetch messages and requeue them immediately (non-destructive)."""
        return self._request_json(
            "POST",
            f"/api/queues/{encode_vhost(vhost)}/{encode_segment(queue)}/get",
            {"count": count, "ackmode": PEEK_ACK_MODE, "encoding": "auto"},
        )

    # =====================================================================
    #  Exchanges, bindings, publish
    # =====================================================================

    def list_exchanges(self, vhost: str) -> List[Dict[str, Any]]:
        return self._request_json("GET", f"/api/exchanges/{encode_vhost(vhost)}")

    def create_exchange(self, vhost: str, exchange: str, exchange_type: str = "direct",
                        durable: bool = False, auto_delete: bool = False) -> None:
        self._request(
            "PUT",
            f"/api/exchanges/{encode_vhost(vhost)}/{encode_segment(exchange)}",
            {"type": exchange_type, "durable": durable, "auto_delete": auto_delete},
        )

    def delete_exchange(self, vhost: str, exchange: str) -> None:
        self._request(
            "DELETE",
            f"/api/exchanges/{encode_vhost(vhost)}/{encode_segment(exchange)}")

    def publish_message(self, vhost: str, exchange: str,
                        body: Dict[str, Any]) -> Dict[str, Any]:
        """Publish via the management API. Returns ``{"routed": bool}``."""
        return self._request_json(
            "POST",
            f"/api/exchanges/{encode_vhost(vhost)}/{encode_segment(exchange)}/publish",
            body,
        )

    def list_bindings(self, vhost: str) -> List[Dict[str, Any]]:
        return self._request_json("GET", f"/api/bindings/{encode_vhost(vhost)}")

    def create_binding(self, vhost: str, exchange: str, queue: str,
                       routing_key: str = "") -> None:
        self._request(
            "POST",
            f"/api/bindings/{encode_vhost(vhost)}/e/{encode_segment(exchange)}"
            f"/q/{encode_segment(queue)}",
            {"routing_key": routing_key},
        )

    def delete_binding(self, vhost: str, exchange: str, queue: str,
                       properties_key: str = "~") -> None:
        self._request(
            "DELETE",
            f"/api/bindings/{encode_vhost(vhost)}/e/{encode_segment(exchange)}"
            f"/q/{encode_segment(queue)}/{encode_segment(properties_key)}",
        )

    # =====================================================================
    #  Cluster
    # =====================================================================

    def get_overview(self) -> Dict[str, Any]:
        return self._request_json("GET", "/api/overview")

    def list_consumers(self, vhost: str) -> List[Dict[str, Any]]:
        return self._request_json("GET", f"/api/consumers/{encode_vhost(vhost)}")

    def list_connections(self) -> List[Dict[str, Any]]:
        return self._request_json("GET", "/api/connections")

    def check_health(self) -> Dict[str, Any]:
        """Run the alarms health check.

        A 503 here means "alarms in effect", not a transport failure, so the
        body is decoded whatever the status code.
        """
        response = self._send("GET", "/api/health/checks/alarms")
        try:
            return response.json()
        except ValueError as e:
            # e.g. an HTML error page from a proxy in front of the API
            raise RabbitMQApiError(response.status_code, response.reason,
                                   _read_body(response)) from e

    def close(self) -> None:
        self._session.close()


def _read_body(response: requests.Response) -> Optional[str]:
    try:
        return response.text
    except (requests.RequestException, UnicodeDecodeError):
        return None
