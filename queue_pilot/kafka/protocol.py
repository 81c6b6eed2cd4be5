"""
Kafka Wire Protocol Subset

Just enough of the Kafka binary protocol to talk to a group coordinator:
SASL handshake/authenticate, FindCoordinator and DescribeGroups, plus the
decoder for the consumer-protocol member assignment that DescribeGroups
returns as an opaque byte blob. Everything else goes through confluent-kafka.

All integers are big-endian. Standard library only.
"""

import struct
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple


# =========================================================================
#  Primitives
# =========================================================================

def encode_int32(v: int) -> bytes:
    return struct.pack('>i', v)


def encode_string(s: str) -> bytes:
    b = s.encode('utf-8')
    return struct.pack('>h', len(b)) + b


def encode_bytes(b: Optional[bytes]) -> bytes:
    if b is None:
        return struct.pack('>i', -1)
    return struct.pack('>i', len(b)) + b


def decode_int16(data: bytes, off: int) -> Tuple[int, int]:
    return struct.unpack_from('>h', data, off)[0], off + 2


def decode_int32(data: bytes, off: int) -> Tuple[int, int]:
    return struct.unpack_from('>i', data, off)[0], off + 4


def decode_string(data: bytes, off: int) -> Tuple[str, int]:
    length, off = decode_int16(data, off)
    if length < 0:
        return "", off
    if off + length > len(data):
        raise struct.error(f"string of length {length} runs past end of buffer")
    return data[off:off + length].decode('utf-8', errors='replace'), off + length


def decode_nullable_string(data: bytes, off: int) -> Tuple[Optional[str], int]:
    length, off = decode_int16(data, off)
    if length < 0:
        return None, off
    return data[off:off + length].decode('utf-8', errors='replace'), off + length


def decode_bytes(data: bytes, off: int) -> Tuple[Optional[bytes], int]:
    length, off = decode_int32(data, off)
    if length < 0:
        return None, off
    return data[off:off + length], off + length


# =========================================================================
#  Error codes and API keys
# =========================================================================

KAFKA_ERRORS = {
    0: "NONE", -1: "UNKNOWN_SERVER_ERROR",
    14: "COORDINATOR_LOAD_IN_PROGRESS", 15: "COORDINATOR_NOT_AVAILABLE",
    16: "NOT_COORDINATOR", 24: "INVALID_GROUP_ID",
    30: "GROUP_AUTHORIZATION_FAILED", 31: "CLUSTER_AUTHORIZATION_FAILED",
    33: "UNSUPPORTED_SASL_MECHANISM", 34: "ILLEGAL_SASL_STATE",
    35: "UNSUPPORTED_VERSION", 58: "SASL_AUTHENTICATION_FAILED",
    69: "GROUP_ID_NOT_FOUND",
}

GROUP_ID_NOT_FOUND = 69

API_FIND_COORDINATOR = 10
API_DESCRIBE_GROUPS = 15
API_SASL_HANDSHAKE = 17
API_SASL_AUTHENTICATE = 36

# Consumer groups the coordinator has no record of come back as "Dead"
DEAD_GROUP_STATE = "Dead"


def error_name(code: int) -> str:
    return KAFKA_ERRORS.get(code, f"UNKNOWN_ERROR_{code}")


# =========================================================================
#  Request building
# =========================================================================

class RequestBuilder:
    """Builds framed Kafka requests (request header v1, non-flexible)."""

    def __init__(self, client_id: str = "queue-pilot"):
        self.client_id = client_id.encode('utf-8')
        self._correlation_id = 0

    def _header(self, api_key: int, api_version: int) -> Tuple[bytes, int]:
        self._correlation_id += 1
        corr = self._correlation_id
        hdr = struct.pack('>hhih', api_key, api_version, corr, len(self.client_id))
        return hdr + self.client_id, corr

    @staticmethod
    def _frame(header: bytes, body: bytes) -> bytes:
        msg = header + body
        return struct.pack('>i', len(msg)) + msg

    # --- SaslHandshake (key 17, v1) ---
    def sasl_handshake(self, mechanism: str) -> Tuple[bytes, int]:
        hdr, corr = self._header(API_SASL_HANDSHAKE, 1)
        return self._frame(hdr, encode_string(mechanism)), corr

    # --- SaslAuthenticate (key 36, v1) ---
    def sasl_authenticate(self, sasl_bytes: bytes) -> Tuple[bytes, int]:
        hdr, corr = self._header(API_SASL_AUTHENTICATE, 1)
        return self._frame(hdr, encode_bytes(sasl_bytes)), corr

    # --- FindCoordinator (key 10, v0) ---
    def find_coordinator(self, group_id: str) -> Tuple[bytes, int]:
        hdr, corr = self._header(API_FIND_COORDINATOR, 0)
        return self._frame(hdr, encode_string(group_id)), corr

    # --- DescribeGroups (key 15, v0) ---
    def describe_groups(self, group_ids: List[str]) -> Tuple[bytes, int]:
        hdr, corr = self._header(API_DESCRIBE_GROUPS, 0)
        body = encode_int32(len(group_ids))
        for gid in group_ids:
            body += encode_string(gid)
        return self._frame(hdr, body), corr


# =========================================================================
#  Response parsing
# =========================================================================

class ResponseParser:
    """Parses response bodies (correlation id already stripped)."""

    @staticmethod
    def parse_sasl_handshake(data: bytes) -> Dict[str, Any]:
        off = 0
        ec, off = decode_int16(data, off)
        count, off = decode_int32(data, off)
        mechanisms = []
        for _ in range(count):
            m, off = decode_string(data, off)
            mechanisms.append(m)
        return {"error_code": ec, "error": error_name(ec), "mechanisms": mechanisms}

    @staticmethod
    def parse_sasl_authenticate(data: bytes) -> Dict[str, Any]:
        off = 0
        ec, off = decode_int16(data, off)
        emsg, off = decode_nullable_string(data, off)
        auth_bytes, off = decode_bytes(data, off)
        return {
            "error_code": ec, "error": error_name(ec),
            "error_message": emsg,
            "auth_bytes": auth_bytes or b"",
        }

    @staticmethod
    def parse_find_coordinator(data: bytes) -> Dict[str, Any]:
        off = 0
        ec, off = decode_int16(data, off)
        node_id, off = decode_int32(data, off)
        host, off = decode_string(data, off)
        port, off = decode_int32(data, off)
        return {"error_code": ec, "error": error_name(ec),
                "node_id": node_id, "host": host, "port": port}

    @staticmethod
    def parse_describe_groups(data: bytes) -> Dict[str, Any]:
        """DescribeGroups v0. Member assignments are returned undecoded."""
        off = 0
        count, off = decode_int32(data, off)
        groups = []
        for _ in range(count):
            ec, off = decode_int16(data, off)
            gid, off = decode_string(data, off)
            state, off = decode_string(data, off)
            proto_type, off = decode_string(data, off)
            proto, off = decode_string(data, off)
            member_count, off = decode_int32(data, off)
            members = []
            for _ in range(member_count):
                mid, off = decode_string(data, off)
                client_id, off = decode_string(data, off)
                client_host, off = decode_string(data, off)
                _metadata, off = decode_bytes(data, off)
                assignment, off = decode_bytes(data, off)
                members.append({
                    "member_id": mid, "client_id": client_id,
                    "client_host": client_host,
                    "member_assignment": assignment or b"",
                })
            groups.append({
                "error_code": ec, "error": error_name(ec),
                "group_id": gid, "state": state,
                "protocol_type": proto_type, "protocol": proto,
                "members": members,
            })
        return {"groups": groups}


# =========================================================================
#  Consumer protocol member assignment
# =========================================================================

@dataclass
class TopicPartitionAssignment:
    topic: str
    partitions: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def decode_member_assignment(buffer: Optional[bytes]) -> List[TopicPartitionAssignment]:
    """Decode a consumer-protocol MemberAssignment blob.

    Layout: int16 version, int32 topic count, then per topic an int16-length
    UTF-8 name, an int32 partition count and that many int32 partition ids.
    Trailing user data is ignored.

    The result is diagnostic only: an empty, truncated or otherwise malformed
    buffer yields ``[]`` rather than an exception.
    """
    if not buffer:
        return []
    try:
        off = 2  # version
        topic_count, off = decode_int32(buffer, off)
        assignments = []
        for _ in range(topic_count):
            topic, off = decode_string(buffer, off)
            partition_count, off = decode_int32(buffer, off)
            partitions = []
            for _ in range(partition_count):
                pid, off = decode_int32(buffer, off)
                partitions.append(pid)
            assignments.append(TopicPartitionAssignment(topic=topic, partitions=partitions))
        return assignments
    except (struct.error, UnicodeDecodeError, MemoryError):
        return []
