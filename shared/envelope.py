from __future__ import annotations
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Union
import json

from server.core.MessageTypes import MessageType
from shared.utils import normalize_aux_address


class DuplicateIdentityError(Exception):
    """Raised when an identity is already bound to an open connection."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f'User "{identity}" is already registered.')

class MalformedEnvelopeError(Exception):
    """Raised when an inbound frame is not a well-formed envelope."""
    pass

class UnknownTypeError(Exception):
    """Raised when an inbound frame declares a type the relay does not handle."""

    def __init__(self, msg_type: Any):
        self.msg_type = msg_type
        super().__init__(f"Unknown message type: {msg_type!r}")

class UnroutableDestinationError(Exception):
    """Raised when no open connection is registered under the destination."""

    def __init__(self, destination: str):
        self.destination = destination
        super().__init__(f"Recipient {destination!r} not connected")


@dataclass(frozen=True)
class RegisterEnvelope:
    """
    {"type": "register", "userId": STRING, "tailscaleIP": STRING (optional)}
    """
    type: ClassVar[MessageType] = MessageType.REGISTER
    user_id: str
    tailscale_ip: str

@dataclass(frozen=True)
class DirectMessage:
    """
    {"type": "message", "from": ANY, "to": STRING, "message": ANY, "timestamp": ANY}

    ``from``, ``message`` and ``timestamp`` are opaque and forwarded untouched.
    """
    type: ClassVar[MessageType] = MessageType.MESSAGE
    from_: Any          # renamed to avoid keyword collision
    to: str
    message: Any
    timestamp: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'to': self.to,
            'from': self.from_,
            'message': self.message,
            'timestamp': self.timestamp,
        }

@dataclass(frozen=True)
class SignalEnvelope:
    """
    {"type": "webrtc-signal", "from": ANY, "to": STRING, "data": {"type": STRING, ...}}
    """
    type: ClassVar[MessageType] = MessageType.WEBRTC_SIGNAL
    from_: Any
    to: str
    data: Dict[str, Any]

    @property
    def signal_type(self) -> Any:
        return self.data.get('type')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'from': self.from_,
            'to': self.to,
            'data': self.data,
        }


InboundEnvelope = Union[RegisterEnvelope, DirectMessage, SignalEnvelope]
RoutedEnvelope = Union[DirectMessage, SignalEnvelope]


def decode_envelope(raw: Union[str, bytes]) -> InboundEnvelope:
    """Parse one inbound frame into its typed envelope, validating structure"""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedEnvelopeError(f"Frame is not UTF-8: {e}")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedEnvelopeError(f"Invalid JSON: {e}")

    if not isinstance(data, dict):
        raise MalformedEnvelopeError("Envelope must be a JSON object")

    msg_type = data.get('type')
    if not isinstance(msg_type, str) or not MessageType.is_valid(msg_type):
        raise UnknownTypeError(msg_type)

    decoder = _DECODERS.get(MessageType(msg_type))
    if decoder is None:
        # Valid type, but one only the server sends
        raise UnknownTypeError(msg_type)
    return decoder(data)

def _require(data: Dict[str, Any], fields: tuple) -> None:
    missing = [f for f in fields if f not in data]
    if missing:
        raise MalformedEnvelopeError(f"Missing required fields: {missing} for type {data['type']}")

def _require_str(data: Dict[str, Any], field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str):
        raise MalformedEnvelopeError(f"'{field}' must be a string")
    return value

def _decode_register(data: Dict[str, Any]) -> RegisterEnvelope:
    return RegisterEnvelope(
        user_id=_require_str(data, 'userId'),
        tailscale_ip=normalize_aux_address(data.get('tailscaleIP')),
    )

def _decode_message(data: Dict[str, Any]) -> DirectMessage:
    _require(data, ('from', 'to', 'message', 'timestamp'))
    return DirectMessage(
        from_=data['from'],
        to=_require_str(data, 'to'),
        message=data['message'],
        timestamp=data['timestamp'],
    )

def _decode_signal(data: Dict[str, Any]) -> SignalEnvelope:
    _require(data, ('from', 'to', 'data'))
    signal = data['data']
    if not isinstance(signal, dict):
        raise MalformedEnvelopeError("'data' must be an object")
    return SignalEnvelope(
        from_=data['from'],
        to=_require_str(data, 'to'),
        data=signal,
    )

_DECODERS = {
    MessageType.REGISTER: _decode_register,
    MessageType.MESSAGE: _decode_message,
    MessageType.WEBRTC_SIGNAL: _decode_signal,
}


def to_json(payload: Dict[str, Any]) -> str:
    """Serialize an outbound envelope; key order is preserved"""
    return json.dumps(payload, separators=(',', ':'), ensure_ascii=False)

def create_registered(user_id: str, tailscale_ip: str) -> Dict[str, Any]:
    return {'type': MessageType.REGISTERED.value, 'userId': user_id, 'tailscaleIp': tailscale_ip}

def create_error(message: str) -> Dict[str, Any]:
    return {'type': MessageType.ERROR.value, 'message': message}

def create_ping() -> Dict[str, Any]:
    return {'type': MessageType.PING.value}
