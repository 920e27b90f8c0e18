from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Union

from server.core.MemoryTable import ConnectionRecord
from server.core.MessageTypes import INBOUND_MESSAGES, MessageType
from shared.envelope import (
    DirectMessage,
    DuplicateIdentityError,
    MalformedEnvelopeError,
    RegisterEnvelope,
    RoutedEnvelope,
    SignalEnvelope,
    UnknownTypeError,
    UnroutableDestinationError,
    create_error,
    create_registered,
    decode_envelope,
)
from shared.log import get_logger, log_relay_event

if TYPE_CHECKING:
    from server.core.ConnectionLink import ConnectionLink
    from server.core.ConnectionRegistry import ConnectionRegistry

logger = get_logger(__name__)

# Type alias for handler functions
MessageHandler = Callable[["ConnectionRegistry", "ConnectionLink", Any], Awaitable[None]]


class GenericRouters:
    """Routing helpers shared by every envelope kind that targets another identity."""

    @staticmethod
    async def route_to_identity(registry: "ConnectionRegistry", envelope: RoutedEnvelope) -> ConnectionRecord:
        """
        Forward ``envelope`` to the connection registered under ``envelope.to``.

        Raises UnroutableDestinationError when nobody with an open channel holds
        that identity. Delivery is at-most-once: there is no queue and no retry.
        """
        record = registry.lookup_live(envelope.to)
        if record is None or not await record.link.send_envelope(envelope.to_dict()):
            raise UnroutableDestinationError(envelope.to)
        return record


class RelayMessageHandlers:
    """
    One static handler per inbound message type.

    Handlers receive the registry explicitly; none of them keeps state between
    calls, and none reaches into the registry beyond its public methods.
    """

    @staticmethod
    async def handle_register(registry: "ConnectionRegistry", connection: "ConnectionLink", envelope: RegisterEnvelope) -> None:
        """Bind the identity and confirm, or tell the requester it is taken."""
        try:
            outcome = registry.register(envelope.user_id, connection, envelope.tailscale_ip)
        except DuplicateIdentityError as e:
            await connection.send_envelope(create_error(str(e)))
            return

        logger.info(f"Registered user: {envelope.user_id} (Tailscale IP: {outcome.aux_address})",
                    extra={"connection_id": connection.connection_id})
        registry.log_connected_users()
        await connection.send_envelope(create_registered(envelope.user_id, outcome.aux_address))

    @staticmethod
    async def handle_direct_message(registry: "ConnectionRegistry", connection: "ConnectionLink", envelope: DirectMessage) -> None:
        logger.debug("Message from %s to %s: %s", envelope.from_, envelope.to, envelope.message)
        try:
            await GenericRouters.route_to_identity(registry, envelope)
        except UnroutableDestinationError:
            # Offline recipients are not queued
            log_relay_event(logger, "info", f"Recipient {envelope.to} not connected, message from {envelope.from_} dropped",
                            envelope=envelope.to_dict(), connection_id=connection.connection_id)
            return
        logger.info("Message forwarded from %s to %s", envelope.from_, envelope.to)

    @staticmethod
    async def handle_webrtc_signal(registry: "ConnectionRegistry", connection: "ConnectionLink", envelope: SignalEnvelope) -> None:
        try:
            await GenericRouters.route_to_identity(registry, envelope)
        except UnroutableDestinationError:
            log_relay_event(logger, "info", f"Could not relay signal: recipient {envelope.to} not connected",
                            envelope=envelope.to_dict(), connection_id=connection.connection_id)
            return
        logger.info("Relayed WebRTC signal (%s) from %s to %s", envelope.signal_type, envelope.from_, envelope.to)


# Handler registry mapping message types to their handlers
HANDLER_REGISTRY: Dict[MessageType, MessageHandler] = {
    MessageType.REGISTER: RelayMessageHandlers.handle_register,
    MessageType.MESSAGE: RelayMessageHandlers.handle_direct_message,
    MessageType.WEBRTC_SIGNAL: RelayMessageHandlers.handle_webrtc_signal,
}

_unhandled = INBOUND_MESSAGES - HANDLER_REGISTRY.keys()
if _unhandled:
    raise RuntimeError(f"No handler registered for inbound types: {sorted(t.value for t in _unhandled)}")


class EnvelopeRouter:
    """Decodes inbound frames once and dispatches them through HANDLER_REGISTRY."""

    def __init__(self, registry: "ConnectionRegistry"):
        self.registry = registry

    async def dispatch(self, connection: "ConnectionLink", raw: Union[str, bytes]) -> None:
        """
        Handle one inbound frame. Malformed or unknown frames are logged and
        dropped without a reply; nothing here raises to the connection loop
        for bad input.
        """
        logger.debug("Received raw message: %s", raw, extra={"connection_id": connection.connection_id})
        try:
            envelope = decode_envelope(raw)
        except MalformedEnvelopeError as e:
            logger.error(f"Invalid message received: {e}", extra={"connection_id": connection.connection_id})
            return
        except UnknownTypeError as e:
            logger.warning(f"Ignoring frame: {e}", extra={"connection_id": connection.connection_id})
            return

        handler = HANDLER_REGISTRY[envelope.type]
        await handler(self.registry, connection, envelope)
