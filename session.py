import asyncio
from datetime import datetime
from typing import Optional, Protocol

from constants import OUTBOUND_QUEUE_SIZE
from logging_config import get_logger
from schemas.messages import OutboundEvent, Role

logger = get_logger(__name__)


class Transport(Protocol):
    async def send_text(self, data: str) -> None:
        ...


class Session:
    """One live signaling connection.

    Outbound events go through a bounded per-session queue drained by a
    writer task, so a slow or dead peer never holds up whoever triggered the
    event. Delivery order to this session matches the order of ``send`` calls.
    """

    def __init__(self, session_id: str, transport: Transport, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.id = session_id
        self.transport = transport
        self.room: Optional[str] = None
        self.role: Optional[Role] = None
        self.publisher_key: Optional[str] = None
        self.connected_at = datetime.now().isoformat()
        self.closed = False
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None

    def __repr__(self):
        return f"Session(id={self.id!r}, room={self.room!r}, role={self.role!r}, publisher_key={self.publisher_key!r})"

    @property
    def is_publisher(self) -> bool:
        return self.role == Role.PUBLISHER

    @property
    def directory_key(self) -> Optional[str]:
        """Key this session should be listed under in its room's directory, if any."""
        if self.is_publisher and self.publisher_key:
            return self.publisher_key
        return None

    def start(self):
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop(), name=f"session-writer-{self.id}")

    def send(self, event: OutboundEvent) -> bool:
        """Queue an event for delivery. Never blocks; returns False if dropped."""
        if self.closed:
            logger.debug(f"Dropping {event.type} for closed session {self.id}")
            return False
        try:
            self._outbox.put_nowait(event.to_wire())
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for session {self.id}, dropping {event.type}")
            return False
        logger.debug(f"Queued {event.type} for session {self.id}")
        return True

    async def _write_loop(self):
        while True:
            text = await self._outbox.get()
            try:
                if not self.closed:
                    await self.transport.send_text(text)
            except Exception as e:
                self.closed = True
                logger.warning(f"Send to session {self.id} failed, marking closed: {e}")
            finally:
                self._outbox.task_done()

    async def flush(self):
        """Wait until everything queued so far has been handed to the transport."""
        if self._writer is None or self._writer.done():
            return
        await self._outbox.join()

    async def close(self):
        self.closed = True
        if self._writer is None:
            return
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass
        logger.debug(f"Writer for session {self.id} stopped")
