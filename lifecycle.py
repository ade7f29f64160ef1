import uuid
from typing import Optional

from constants import DEFAULT_ROOM, OUTBOUND_QUEUE_SIZE
from logging_config import get_logger
from registry import RoomRegistry
from schemas.messages import (
    JoinedEvent,
    JoinMessage,
    OutboundEvent,
    PeerJoinedEvent,
    PeerLeftEvent,
    PublisherAvailableEvent,
    PublisherUnavailableEvent,
    Role,
    WelcomeEvent,
)
from session import Session, Transport

logger = get_logger(__name__)


class SessionLifecycleManager:
    """Creates sessions on connect, moves them between rooms, tears them down."""

    def __init__(self, registry: RoomRegistry, default_room: str = DEFAULT_ROOM, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.registry = registry
        self.default_room = default_room
        self.queue_size = queue_size

    def generate_session_id(self) -> str:
        while True:
            session_id = uuid.uuid4().hex
            if not self.registry.has_session(session_id):
                return session_id

    async def connect(self, transport: Transport) -> Session:
        async with self.registry.lock:
            session = Session(self.generate_session_id(), transport, queue_size=self.queue_size)
            self.registry.add_session(session)
        session.start()
        session.send(WelcomeEvent(session_id=session.id))
        logger.info(f"Session {session.id} connected ({self.registry.session_count()} connected)")
        return session

    async def join(self, session: Session, message: JoinMessage):
        room = message.room or self.default_room

        async with self.registry.lock:
            if not self.registry.has_session(session.id):
                logger.warning(f"Ignoring join from unregistered session {session.id}")
                return

            role = message.role or session.role or Role.SUBSCRIBER
            if role == Role.PUBLISHER:
                publisher_key = message.publisher_key or session.publisher_key
            else:
                publisher_key = None
                if message.publisher_key:
                    logger.info(f"Session {session.id} sent publisherKey without publisher role, ignoring it")

            if session.room is not None:
                self._leave_room(session, new_room=room, new_key=publisher_key)

            session.room = room
            session.role = role
            session.publisher_key = publisher_key
            self.registry.add_to_room(room, session.id)

            session.send(JoinedEvent(room=room))
            self.broadcast_to_room(
                room,
                PeerJoinedEvent(session_id=session.id, role=role, publisher_key=publisher_key),
                exclude=session.id,
            )

            if session.directory_key:
                displaced = self.registry.set_directory_entry(room, session.directory_key, session.id)
                if displaced:
                    logger.warning(f"Publisher key {session.directory_key} in room {room} taken over from {displaced} by {session.id}")
                    self._release_key(displaced)
                    self.broadcast_to_room(
                        room,
                        PublisherUnavailableEvent(publisher_key=session.directory_key, session_id=displaced),
                        exclude=session.id,
                    )
                self.broadcast_to_room(
                    room,
                    PublisherAvailableEvent(publisher_key=session.directory_key, session_id=session.id),
                    exclude=session.id,
                )
            elif role != Role.PUBLISHER:
                for key, owner_id in self.registry.room_directory(room).items():
                    session.send(PublisherAvailableEvent(publisher_key=key, session_id=owner_id))

        logger.info(f"Session {session.id} joined room {room} as {role.value}" + (f" with key {publisher_key}" if publisher_key else ""))

    def _release_key(self, session_id: str):
        # a displaced owner stays a publisher but no longer holds any key
        displaced = self.registry.get_session(session_id)
        if displaced is not None:
            displaced.publisher_key = None

    def _leave_room(self, session: Session, new_room: str, new_key: Optional[str]):
        """Take ``session`` out of its current room ahead of joining ``new_room``."""
        old_room = session.room
        old_key = session.directory_key

        held_entry = old_key is not None and self.registry.remove_directory_entry(old_room, old_key, session.id)
        self.registry.remove_from_room(old_room, session.id)

        # Re-announcing the same key in the same room needs no retraction
        if held_entry and (old_room != new_room or old_key != new_key):
            self.broadcast_to_room(old_room, PublisherUnavailableEvent(publisher_key=old_key, session_id=session.id))
        if old_room != new_room:
            self.broadcast_to_room(old_room, PeerLeftEvent(session_id=session.id))
            logger.info(f"Session {session.id} left room {old_room}")

    async def disconnect(self, session: Session):
        """Remove ``session`` everywhere and tell its room. Safe to call more than once."""
        async with self.registry.lock:
            if self.registry.remove_session(session.id) is None:
                logger.debug(f"Session {session.id} already disconnected")
                return

            room = session.room
            if room is not None:
                key = session.directory_key
                if key is not None and self.registry.remove_directory_entry(room, key, session.id):
                    self.broadcast_to_room(room, PublisherUnavailableEvent(publisher_key=key, session_id=session.id))
                self.registry.remove_from_room(room, session.id)
                self.broadcast_to_room(room, PeerLeftEvent(session_id=session.id))

        await session.close()
        logger.info(f"Session {session.id} disconnected ({self.registry.session_count()} connected)")

    def send_to_session(self, session_id: str, event: OutboundEvent) -> bool:
        session = self.registry.get_session(session_id)
        if session is None or session.closed:
            logger.debug(f"Session {session_id} not found or closed, {event.type} not sent")
            return False
        return session.send(event)

    def broadcast_to_room(self, room: str, event: OutboundEvent, exclude: Optional[str] = None) -> int:
        sent = 0
        for member in self.registry.room_members(room):
            if member.id == exclude:
                continue
            try:
                if member.send(event):
                    sent += 1
            except Exception as e:
                logger.warning(f"Error sending {event.type} to session {member.id} in room {room}: {e}")
        logger.debug(f"Broadcast {event.type} to {sent} session(s) in room {room}")
        return sent
