"""HCS-10 handshake messages: parsing connection requests and building replies"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from hcs.errors import ParseError

PROTOCOL_TAG = "hcs-10"
OP_CONNECTION_REQUEST = "connection_request"
OP_CONNECTION_CREATED = "connection_created"
OP_MESSAGE = "message"

RESOURCE_ID_PATTERN = re.compile(r"\b(0\.0\.\d+)\b")


class NotConnectionRequest(ParseError):
    """well-formed json that is not an hcs-10 connection_request"""


@dataclass(frozen=True)
class ChannelRef:
    """`<channel-id>@<account-id>` pair"""
    channel_id: str
    account_id: str

    @classmethod
    def parse(cls, value: Any) -> "ChannelRef":
        if not isinstance(value, str) or value.count("@") != 1:
            raise ParseError(f"Invalid or missing operator_id: {value!r}")
        channel_id, account_id = (part.strip() for part in value.split("@"))
        if not channel_id or not account_id:
            raise ParseError(f"Invalid or missing operator_id: {value!r}")
        return cls(channel_id, account_id)

    def __str__(self) -> str:
        return f"{self.channel_id}@{self.account_id}"


@dataclass(frozen=True)
class ConnectionRequest:
    protocol_tag: str
    operation: str
    requester: ChannelRef
    query: Optional[str]


def parse_connection_request(payload: Union[bytes, str]) -> ConnectionRequest:
    """
    Parse an inbound payload.

    Raises NotConnectionRequest when the protocol or operation tag does not
    match and ParseError for anything else malformed (bad json, bad
    operator_id). The freeform `m` field is returned as-is, possibly None.
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Payload is not valid UTF-8: {e}") from e

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ParseError(f"Payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")

    protocol_tag = data.get("p")
    operation = data.get("op")
    if protocol_tag != PROTOCOL_TAG or operation != OP_CONNECTION_REQUEST:
        raise NotConnectionRequest(f"Not a connection_request (p={protocol_tag!r}, op={operation!r})")

    query = data.get("m")
    if query is not None and not isinstance(query, str):
        query = str(query)

    return ConnectionRequest(
        protocol_tag=protocol_tag,
        operation=operation,
        requester=ChannelRef.parse(data.get("operator_id")),
        query=query,
    )


def extract_resource_id(text: Optional[str]) -> Optional[str]:
    """first `0.0.<digits>` token in free text"""
    if not text:
        return None
    match = RESOURCE_ID_PATTERN.search(text)
    return match.group(1) if match else None


def build_message(operation: str, operator_id: str, **fields: Any) -> str:
    message: Dict[str, Any] = {"p": PROTOCOL_TAG, "op": operation, "operator_id": operator_id}
    message.update(fields)
    return json.dumps(message, separators=(",", ":"))


def connection_created(operator_id: str, connection_topic_id: str, connected_account_id: str, connection_id: int) -> str:
    return build_message(
        OP_CONNECTION_CREATED,
        operator_id,
        connection_topic_id=connection_topic_id,
        connected_account_id=connected_account_id,
        connection_id=int(connection_id),
    )


def result_pointer(operator_id: str, reference: str, resource_id: str) -> str:
    return build_message(OP_MESSAGE, operator_id, data=reference, m=f"Audit result for {resource_id}")


def inline_message(operator_id: str, data: str) -> str:
    return build_message(OP_MESSAGE, operator_id, data=data)


def connection_topic_memo(inbound_topic_id: str, ttl_seconds: int = 86400, now_ms: Optional[int] = None) -> str:
    """memo format `hcs-10:1:<ttl>:2:<inbound-topic>:<millis>` for private connection channels"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"hcs-10:1:{ttl_seconds}:2:{inbound_topic_id}:{now_ms}"
