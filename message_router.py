from typing import Union

from lifecycle import SessionLifecycleManager
from logging_config import get_logger
from schemas.messages import (
    AnswerReceivedEvent,
    CandidateReceivedEvent,
    JoinMessage,
    MalformedMessageError,
    OfferReceivedEvent,
    PublisherNotFoundEvent,
    PublisherRequestedEvent,
    RelayAnswerMessage,
    RelayCandidateMessage,
    RelayMessage,
    RelayOfferMessage,
    RequestPublisherMessage,
    SignalingMessage,
    parse_message,
)
from session import Session

logger = get_logger(__name__)

RELAYED_EVENTS = {
    "relay-offer": OfferReceivedEvent,
    "relay-answer": AnswerReceivedEvent,
    "relay-candidate": CandidateReceivedEvent,
}


class MessageRouter:
    """Dispatches inbound signaling messages by type on behalf of a sender session."""

    def __init__(self, lifecycle: SessionLifecycleManager):
        self.lifecycle = lifecycle
        self.registry = lifecycle.registry
        self._handlers = {
            JoinMessage: self._handle_join,
            RelayOfferMessage: self._handle_relay,
            RelayAnswerMessage: self._handle_relay,
            RelayCandidateMessage: self._handle_relay,
            RequestPublisherMessage: self._handle_request_publisher,
        }

    async def dispatch(self, session: Session, raw: Union[str, bytes]):
        """Parse and route one frame from ``session``. Bad input is logged and dropped."""
        if not session.id:
            logger.warning("Dropping message from session without an id")
            return

        try:
            message = parse_message(raw)
        except MalformedMessageError as e:
            kind = f"{e.message_type} " if e.message_type else ""
            logger.warning(f"Dropping malformed {kind}message from session {session.id}: {e.reason}")
            return

        await self.route(session, message)

    async def route(self, session: Session, message: SignalingMessage):
        handler = self._handlers.get(type(message))
        if handler is None:
            logger.info(f"Unknown message type from session {session.id}: {message.type}")
            return
        await handler(session, message)

    async def _handle_join(self, session: Session, message: JoinMessage):
        await self.lifecycle.join(session, message)

    async def _handle_relay(self, session: Session, message: RelayMessage):
        event = RELAYED_EVENTS[message.type](sender_id=session.id, payload_json=message.payload_json)
        if self.lifecycle.send_to_session(message.target_id, event):
            logger.debug(f"Relayed {message.type} from {session.id} to {message.target_id}")
        else:
            logger.info(f"Dropped {message.type} from {session.id}: target {message.target_id} not connected")

    async def _handle_request_publisher(self, session: Session, message: RequestPublisherMessage):
        async with self.registry.lock:
            owner_id = None
            if session.room is not None:
                owner_id = self.registry.lookup_directory_entry(session.room, message.publisher_key)
            owner = self.registry.get_session(owner_id) if owner_id else None

            if owner is None:
                logger.info(f"Publisher {message.publisher_key} requested by {session.id} not found in room {session.room}")
                session.send(PublisherNotFoundEvent(publisher_key=message.publisher_key))
                return

            owner.send(PublisherRequestedEvent(requester_id=session.id, correlation_id=message.correlation_id))
            logger.debug(f"Session {session.id} requested publisher {message.publisher_key} ({owner.id})")
