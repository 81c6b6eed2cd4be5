"""
Raw Kafka Broker Connection

A blocking, single-broker TCP connection speaking the wire protocol from
``queue_pilot.kafka.protocol``. It exists for the one thing confluent-kafka
does not hand back: the raw consumer-group member assignment bytes.

Security: PLAINTEXT, SSL, SASL_PLAINTEXT and SASL_SSL, with SASL mechanisms
PLAIN, SCRAM-SHA-256 and SCRAM-SHA-512.
"""

import base64
import hashlib
import hmac
import secrets
import socket
import ssl
import struct
import threading
from typing import Any, Dict, List, Optional

from queue_pilot.kafka.protocol import RequestBuilder, ResponseParser


# =========================================================================
#  SCRAM (RFC 5802)
# =========================================================================

class ScramClient:
    """SCRAM-SHA-256 / SCRAM-SHA-512 client side of the exchange."""

    _HASHES = {
        "SCRAM-SHA-256": ("sha256", hashlib.sha256),
        "SCRAM-SHA-512": ("sha512", hashlib.sha512),
    }

    def __init__(self, username: str, password: str, mechanism: str = "SCRAM-SHA-256"):
        if mechanism not in self._HASHES:
            raise ValueError(f"Unsupported SCRAM mechanism: {mechanism}")
        self._hash_name, self._hash_func = self._HASHES[mechanism]
        self.password = password
        self._nonce = base64.b64encode(secrets.token_bytes(24)).decode('ascii')
        self._first_bare = f"n={_saslname(username)},r={self._nonce}"
        self._auth_message: Optional[str] = None
        self._salted_password: Optional[bytes] = None

    def client_first_message(self) -> bytes:
        return f"n,,{self._first_bare}".encode('utf-8')

    def process_server_first(self, server_first: bytes) -> bytes:
        text = server_first.decode('utf-8')
        attrs = _parse_attrs(text)
        nonce = attrs.get('r', '')
        if not nonce.startswith(self._nonce):
            raise ValueError("Server nonce does not start with client nonce")

        self._salted_password = hashlib.pbkdf2_hmac(
            self._hash_name,
            self.password.encode('utf-8'),
            base64.b64decode(attrs.get('s', '')),
            int(attrs.get('i', '4096')),
        )
        client_key = hmac.new(self._salted_password, b"Client Key", self._hash_func).digest()
        stored_key = self._hash_func(client_key).digest()

        without_proof = f"c=biws,r={nonce}"
        self._auth_message = f"{self._first_bare},{text},{without_proof}"
        signature = hmac.new(stored_key, self._auth_message.encode('utf-8'),
                             self._hash_func).digest()
        proof = bytes(a ^ b for a, b in zip(client_key, signature))
        return f"{without_proof},p={base64.b64encode(proof).decode('ascii')}".encode('utf-8')

    def verify_server_final(self, server_final: bytes) -> bool:
        verifier = _parse_attrs(server_final.decode('utf-8')).get('v', '')
        if not verifier or not self._salted_password or not self._auth_message:
            return False
        server_key = hmac.new(self._salted_password, b"Server Key", self._hash_func).digest()
        expected = hmac.new(server_key, self._auth_message.encode('utf-8'),
                            self._hash_func).digest()
        return hmac.compare_digest(verifier, base64.b64encode(expected).decode('ascii'))


def _saslname(s: str) -> str:
    return s.replace('=', '=3D').replace(',', '=2C')


def _parse_attrs(message: str) -> Dict[str, str]:
    return {part[0]: part[2:] for part in message.split(',') if len(part) > 1 and part[1] == '='}


# =========================================================================
#  Connection
# =========================================================================

class KafkaConnection:
    """One blocking connection to one Kafka broker."""

    VALID_MECHANISMS = {"PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512"}

    def __init__(self, host: str, port: int,
                 use_ssl: bool = False,
                 sasl_mechanism: Optional[str] = None,
                 username: Optional[str] = None,
                 password: Optional[str] = None,
                 client_id: str = "queue-pilot",
                 timeout: float = 10.0):
        self.host = host
        self.port = port
        self.use_ssl = use_ssl
        self.sasl_mechanism = sasl_mechanism.upper() if sasl_mechanism else None
        self.username = username
        self.password = password
        self.timeout = timeout

        if self.sasl_mechanism and self.sasl_mechanism not in self.VALID_MECHANISMS:
            raise ValueError(
                f"Invalid sasl_mechanism '{sasl_mechanism}'. "
                f"Must be one of: {', '.join(sorted(self.VALID_MECHANISMS))}"
            )

        self.builder = RequestBuilder(client_id)
        self.parser = ResponseParser()
        self._sock: Optional[socket.socket] = None
        self._lock = threading.RLock()

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> None:
        """Open the socket, wrap it in TLS if configured, then authenticate."""
        with self._lock:
            if self._sock:
                return
            try:
                raw_sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
            except OSError as e:
                raise ConnectionError(f"Failed to connect to {self.host}:{self.port}: {e}") from e

            if self.use_ssl:
                ctx = ssl.create_default_context()
                try:
                    self._sock = ctx.wrap_socket(raw_sock, server_hostname=self.host)
                except (ssl.SSLError, OSError):
                    raw_sock.close()
                    raise
            else:
                self._sock = raw_sock

            if self.sasl_mechanism:
                try:
                    self._authenticate()
                except Exception:
                    self.disconnect()
                    raise

    def disconnect(self) -> None:
        with self._lock:
            if self._sock:
                try:
                    self._sock.close()
                except OSError:
                    pass
                self._sock = None

    def __enter__(self) -> "KafkaConnection":
        self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.disconnect()

    def send_recv(self, data: bytes) -> bytes:
        """Send a framed request and return the response body minus correlation id."""
        with self._lock:
            if not self._sock:
                raise ConnectionError("Not connected")
            self._sock.sendall(data)
            length = struct.unpack('>i', self._recv_exact(4))[0]
            return self._recv_exact(length)[4:]

    def _recv_exact(self, n: int) -> bytes:
        buf = b''
        while len(buf) < n:
            chunk = self._sock.recv(min(n - len(buf), 65536))
            if not chunk:
                self._sock = None
                raise ConnectionError(f"Connection to {self.host}:{self.port} closed mid-response")
            buf += chunk
        return buf

    # =====================================================================
    #  SASL
    # =====================================================================

    def _authenticate(self) -> None:
        mechanism = self.sasl_mechanism
        if not self.username or not self.password:
            raise ConnectionError(f"SASL/{mechanism} requires username and password")

        req, _ = self.builder.sasl_handshake(mechanism)
        hs = self.parser.parse_sasl_handshake(self.send_recv(req))
        if hs["error_code"] != 0:
            raise ConnectionError(
                f"SaslHandshake failed: {hs['error']}. "
                f"Broker supports: {', '.join(hs['mechanisms'])}"
            )

        if mechanism == "PLAIN":
            token = b'\x00' + self.username.encode('utf-8') + b'\x00' + self.password.encode('utf-8')
            self._sasl_step(token)
            return

        scram = ScramClient(self.username, self.password, mechanism)
        server_first = self._sasl_step(scram.client_first_message())
        server_final = self._sasl_step(scram.process_server_first(server_first))
        if server_final and not scram.verify_server_final(server_final):
            raise ConnectionError("SCRAM server signature verification failed")

    def _sasl_step(self, token: bytes) -> bytes:
        req, _ = self.builder.sasl_authenticate(token)
        result = self.parser.parse_sasl_authenticate(self.send_recv(req))
        if result["error_code"] != 0:
            raise ConnectionError(
                f"SASL/{self.sasl_mechanism} authentication failed: "
                f"{result['error_message'] or result['error']}"
            )
        return result["auth_bytes"]

    # =====================================================================
    #  Group coordinator requests
    # =====================================================================

    def find_coordinator(self, group_id: str) -> Dict[str, Any]:
        req, _ = self.builder.find_coordinator(group_id)
        return self.parser.parse_find_coordinator(self.send_recv(req))

    def describe_groups(self, group_ids: List[str]) -> Dict[str, Any]:
        req, _ = self.builder.describe_groups(group_ids)
        return self.parser.parse_describe_groups(self.send_recv(req))
