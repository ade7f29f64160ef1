"""Many sessions joining, moving and leaving at once must never leave the registry half-updated."""
import asyncio
import json

import pytest

SESSIONS = 40
ROOMS = 3


def assert_registry_consistent(registry):
    # raw maps, so stale entries are seen instead of purged
    seen = set()
    for room in registry.room_names():
        member_ids = registry._rooms[room]
        assert member_ids, f"empty room {room} kept"
        for session_id in member_ids:
            session = registry.get_session(session_id)
            assert session is not None, f"{session_id} in {room} is not connected"
            assert session.room == room
            assert session_id not in seen, f"{session_id} is in more than one room"
            seen.add(session_id)

    for room, directory in registry._directories.items():
        for key, owner_id in directory.items():
            owner = registry.get_session(owner_id)
            assert owner is not None, f"{key} in {room} owned by disconnected {owner_id}"
            assert owner.room == room
            assert owner.directory_key == key


async def churn(relay, index):
    session, _ = await relay.connect()
    key = f"cam{index % 4}"
    home = f"r{index % ROOMS}"
    away = f"r{(index + 1) % ROOMS}"
    last = f"r{(index + 2) % ROOMS}"
    steps = [
        {"type": "join", "room": home, "role": "publisher", "publisherKey": key},
        {"type": "join", "room": away},
        {"type": "join", "room": away, "publisherKey": f"{key}-b"},
        {"type": "request-publisher", "publisherKey": key},
        {"type": "join", "room": home, "role": "subscriber"},
        {"type": "relay-candidate", "targetId": session.id, "payload": {"candidate": str(index)}},
        {"type": "join", "room": last, "role": "publisher", "publisherKey": key},
    ]
    for message in steps:
        await relay.router.dispatch(session, json.dumps(message))
        await asyncio.sleep(0)
    if index % 2:
        await relay.lifecycle.disconnect(session)
    return session


@pytest.mark.asyncio
async def test_concurrent_churn_keeps_registry_consistent(relay):
    registry = relay.registry
    done = asyncio.Event()
    checks = 0

    async def observe():
        nonlocal checks
        while not done.is_set():
            async with registry.lock:
                assert_registry_consistent(registry)
                checks += 1
            await asyncio.sleep(0)

    observer = asyncio.create_task(observe())
    sessions = await asyncio.gather(*(churn(relay, i) for i in range(SESSIONS)))
    done.set()
    await observer
    await relay.flush()

    assert checks > 0
    assert_registry_consistent(registry)
    assert registry.session_count() == SESSIONS // 2

    for index, session in enumerate(sessions):
        if index % 2:
            assert not registry.has_session(session.id)
            assert all(session.id not in registry._rooms[room] for room in registry.room_names())
        else:
            assert session.room == f"r{(index + 2) % ROOMS}"
            assert session.id in {member.id for member in registry.room_members(session.room)}
            if session.directory_key is not None:
                assert registry.lookup_directory_entry(session.room, session.directory_key) == session.id


@pytest.mark.asyncio
async def test_concurrent_takeovers_leave_one_owner_per_key(relay):
    publishers = [await relay.connect() for _ in range(10)]

    await asyncio.gather(*(
        relay.join(session, room="r1", role="publisher", publisherKey="cam1")
        for session, _ in publishers
    ))

    owners = [session for session, _ in publishers if session.directory_key == "cam1"]
    assert len(owners) == 1
    assert relay.registry.room_directory("r1") == {"cam1": owners[0].id}
    assert_registry_consistent(relay.registry)
