"""Test configuration and fixtures."""
import json

import pytest_asyncio

from lifecycle import SessionLifecycleManager
from message_router import MessageRouter
from registry import RoomRegistry


class FakeTransport:
    """Stands in for a websocket; records every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []
        self.frames = []

    async def send_text(self, data: str):
        if self.fail:
            raise RuntimeError("transport closed")
        self.frames.append(data)
        self.sent.append(json.loads(data))

    def types(self):
        return [message["type"] for message in self.sent]

    def of_type(self, message_type: str):
        return [message for message in self.sent if message["type"] == message_type]

    def clear(self):
        self.sent.clear()
        self.frames.clear()


class RelayHarness:
    """Registry, lifecycle manager and router wired together over fake transports."""

    def __init__(self, queue_size: int = 256):
        self.registry = RoomRegistry()
        self.lifecycle = SessionLifecycleManager(self.registry, default_room="default", queue_size=queue_size)
        self.router = MessageRouter(self.lifecycle)
        self.sessions = []

    async def connect(self, fail: bool = False):
        transport = FakeTransport(fail=fail)
        session = await self.lifecycle.connect(transport)
        self.sessions.append(session)
        await session.flush()
        return session, transport

    async def send(self, session, message):
        raw = message if isinstance(message, (str, bytes)) else json.dumps(message)
        await self.router.dispatch(session, raw)
        await self.flush()

    async def join(self, session, room=None, **fields):
        message = {"type": "join", **fields}
        if room is not None:
            message["room"] = room
        await self.send(session, message)

    async def disconnect(self, session):
        await self.lifecycle.disconnect(session)
        await self.flush()

    async def flush(self):
        for session in self.sessions:
            await session.flush()

    async def close(self):
        for session in self.sessions:
            await self.lifecycle.disconnect(session)
            # sessions pulled out of the registry by a test still own a writer task
            await session.close()


@pytest_asyncio.fixture
async def relay():
    harness = RelayHarness()
    yield harness
    await harness.close()


@pytest_asyncio.fixture
async def small_queue_relay():
    harness = RelayHarness(queue_size=1)
    yield harness
    await harness.close()
