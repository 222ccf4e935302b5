"""
Status-bar protocol messages and their wire codec.

Every datagram carries one compact JSON object:
{
  "type":    "INIT" | "ACK" | "ALIVE" | "UPDATE",
  "payload": { ...type specific fields... }
}

INIT    {"name": str}                                        client -> server
ACK     {"session_id": int, "heartbeat_interval": int,
         "version": int}                                     server -> client
ALIVE   {"session_id": int}                                  client -> server
UPDATE  {"session_id": int, "content": str}                  client -> server

Decoding is total: anything that is not one of the shapes above decodes to
Unknown rather than raising.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Protocol, Union


class MessageType(str, Enum):
    """Message types understood by the status bar server"""

    INIT = "INIT"        # Handshake request carrying the client name
    ACK = "ACK"          # Handshake accepted, session parameters
    ALIVE = "ALIVE"      # Heartbeat
    UPDATE = "UPDATE"    # Status push

    @classmethod
    def is_valid(cls, value: str) -> bool:
        try:
            cls(value)
            return True
        except ValueError:
            return False


@dataclass(frozen=True)
class Init:
    TYPE: ClassVar[MessageType] = MessageType.INIT
    name: str


@dataclass(frozen=True)
class Ack:
    TYPE: ClassVar[MessageType] = MessageType.ACK
    session_id: int
    heartbeat_interval: int
    version: int


@dataclass(frozen=True)
class Alive:
    TYPE: ClassVar[MessageType] = MessageType.ALIVE
    session_id: int


@dataclass(frozen=True)
class Update:
    TYPE: ClassVar[MessageType] = MessageType.UPDATE
    session_id: int
    content: str


@dataclass(frozen=True)
class Unknown:
    """A datagram that did not decode to any known message"""
    raw: bytes
    reason: str


Message = Union[Init, Ack, Alive, Update, Unknown]

_MESSAGE_CLASSES = {cls.TYPE: cls for cls in (Init, Ack, Alive, Update)}


def encode_message(message: Message) -> bytes:
    """Encode a message as a compact, key-sorted JSON datagram"""
    if isinstance(message, Unknown):
        raise ValueError("Unknown messages cannot be encoded")
    payload = {f.name: getattr(message, f.name) for f in fields(message)}
    data = {"type": message.TYPE.value, "payload": payload}
    return json.dumps(data, separators=(',', ':'), sort_keys=True).encode('utf-8')


def parse_message(data: bytes) -> Message:
    """Decode a datagram; never raises"""
    try:
        obj = json.loads(data.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return Unknown(data, f"Invalid JSON: {e}")
    except RecursionError:
        return Unknown(data, "JSON nested too deeply")

    if not isinstance(obj, dict):
        return Unknown(data, "Message must be a JSON object")

    msg_type = obj.get("type")
    payload = obj.get("payload")
    if not isinstance(msg_type, str) or not MessageType.is_valid(msg_type):
        return Unknown(data, f"Unknown message type: {msg_type!r}")
    if not isinstance(payload, dict):
        return Unknown(data, "'payload' must be an object")

    cls = _MESSAGE_CLASSES[MessageType(msg_type)]
    values: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in payload:
            return Unknown(data, f"Missing field '{f.name}' for {msg_type}")
        value = payload[f.name]
        if not _has_type(value, f.type):
            return Unknown(data, f"Field '{f.name}' has wrong type for {msg_type}")
        values[f.name] = value
    return cls(**values)


def _has_type(value: Any, annotation: Any) -> bool:
    # Annotations are strings under `from __future__ import annotations`
    if annotation in (int, "int"):
        return isinstance(value, int) and not isinstance(value, bool)
    if annotation in (str, "str"):
        return isinstance(value, str)
    return False


class MessageCodec(Protocol):
    def encode(self, message: Message) -> bytes: ...

    def decode(self, data: bytes) -> Message: ...


class JsonCodec:
    """Default codec used by the client operations"""

    def encode(self, message: Message) -> bytes:
        return encode_message(message)

    def decode(self, data: bytes) -> Message:
        return parse_message(data)


DEFAULT_CODEC = JsonCodec()
