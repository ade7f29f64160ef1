import asyncio
from typing import Dict, List, Optional, Set

from logging_config import get_logger
from session import Session

logger = get_logger(__name__)


class RoomRegistry:
    """In-memory registry of sessions, room membership and publisher directories.

    The individual operations never await, so each is atomic on the event
    loop. Multi-step transitions (join, disconnect, publisher lookup) must be
    done while holding ``lock`` so no other event observes a half-moved
    session.
    """

    def __init__(self):
        self.lock = asyncio.Lock()
        self._sessions: Dict[str, Session] = {}
        # room -> session ids
        self._rooms: Dict[str, Set[str]] = {}
        # room -> publisher key -> session id
        self._directories: Dict[str, Dict[str, str]] = {}

    # Sessions

    def add_session(self, session: Session):
        if session.id in self._sessions:
            raise ValueError(f"Session id {session.id} already registered")
        self._sessions[session.id] = session
        logger.debug(f"Registered session {session.id} ({len(self._sessions)} connected)")

    def remove_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug(f"Unregistered session {session_id} ({len(self._sessions)} connected)")
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def session_count(self) -> int:
        return len(self._sessions)

    # Rooms

    def add_to_room(self, room: str, session_id: str):
        if room not in self._rooms:
            self._rooms[room] = set()
            logger.info(f"Room {room} created")
        self._rooms[room].add(session_id)
        logger.debug(f"Session {session_id} added to room {room} ({len(self._rooms[room])} members)")

    def remove_from_room(self, room: str, session_id: str) -> bool:
        members = self._rooms.get(room)
        if members is None or session_id not in members:
            return False
        members.discard(session_id)
        logger.debug(f"Session {session_id} removed from room {room} ({len(members)} members)")
        if not members:
            del self._rooms[room]
            self._directories.pop(room, None)
            logger.info(f"Room {room} is empty, removed")
        return True

    def room_members(self, room: str) -> List[Session]:
        """Live sessions currently in ``room``."""
        return [self._sessions[sid] for sid in self._rooms.get(room, ()) if sid in self._sessions]

    def room_names(self) -> List[str]:
        return sorted(self._rooms)

    # Publisher directory

    def set_directory_entry(self, room: str, publisher_key: str, session_id: str) -> Optional[str]:
        """Point ``publisher_key`` in ``room`` at ``session_id``.

        Returns the id of a different live session that previously owned the
        key, if one was displaced.
        """
        directory = self._directories.setdefault(room, {})
        previous = directory.get(publisher_key)
        directory[publisher_key] = session_id
        logger.debug(f"Directory {room}: {publisher_key} -> {session_id}")
        if previous is not None and previous != session_id and previous in self._sessions:
            return previous
        return None

    def remove_directory_entry(self, room: str, publisher_key: str, session_id: Optional[str] = None) -> bool:
        """Delete an entry. When ``session_id`` is given, only if that session still owns it."""
        directory = self._directories.get(room)
        if not directory or publisher_key not in directory:
            return False
        if session_id is not None and directory[publisher_key] != session_id:
            return False
        del directory[publisher_key]
        logger.debug(f"Directory {room}: removed {publisher_key}")
        if not directory:
            del self._directories[room]
        return True

    def lookup_directory_entry(self, room: str, publisher_key: str) -> Optional[str]:
        """Owner of ``publisher_key`` in ``room``; stale entries are purged and treated as absent."""
        owner_id = self._directories.get(room, {}).get(publisher_key)
        if owner_id is None:
            return None
        if owner_id not in self._sessions:
            logger.info(f"Purging stale directory entry {publisher_key} -> {owner_id} in room {room}")
            self.remove_directory_entry(room, publisher_key, owner_id)
            return None
        return owner_id

    def room_directory(self, room: str) -> Dict[str, str]:
        """Snapshot of ``room``'s live directory entries, purging stale ones."""
        entries = {}
        for publisher_key in list(self._directories.get(room, {})):
            owner_id = self.lookup_directory_entry(room, publisher_key)
            if owner_id is not None:
                entries[publisher_key] = owner_id
        return entries
