"""Tests for room membership and the publisher directory."""
import pytest

from registry import RoomRegistry
from session import Session


@pytest.fixture
def registry():
    return RoomRegistry()


def make_session(registry, session_id):
    session = Session(session_id, transport=None)
    registry.add_session(session)
    return session


def test_add_session_rejects_duplicate_id(registry):
    make_session(registry, "a")
    with pytest.raises(ValueError):
        registry.add_session(Session("a", transport=None))


def test_remove_session_returns_none_second_time(registry):
    session = make_session(registry, "a")
    assert registry.remove_session("a") is session
    assert registry.remove_session("a") is None
    assert registry.session_count() == 0


def test_room_members_and_pruning(registry):
    make_session(registry, "a")
    make_session(registry, "b")
    registry.add_to_room("r1", "a")
    registry.add_to_room("r1", "b")
    assert {s.id for s in registry.room_members("r1")} == {"a", "b"}
    assert registry.room_names() == ["r1"]

    assert registry.remove_from_room("r1", "a") is True
    assert registry.remove_from_room("r1", "a") is False
    assert [s.id for s in registry.room_members("r1")] == ["b"]

    registry.remove_from_room("r1", "b")
    assert registry.room_names() == []
    assert registry.room_members("r1") == []


def test_room_members_skips_sessions_missing_from_global_map(registry):
    make_session(registry, "a")
    registry.add_to_room("r1", "a")
    registry.remove_session("a")
    assert registry.room_members("r1") == []


def test_empty_room_drops_its_directory(registry):
    make_session(registry, "a")
    registry.add_to_room("r1", "a")
    registry.set_directory_entry("r1", "cam1", "a")
    registry.remove_from_room("r1", "a")
    assert registry.room_directory("r1") == {}


def test_directory_lookup(registry):
    make_session(registry, "a")
    registry.add_to_room("r1", "a")
    assert registry.set_directory_entry("r1", "cam1", "a") is None
    assert registry.lookup_directory_entry("r1", "cam1") == "a"
    assert registry.lookup_directory_entry("r1", "cam2") is None
    assert registry.lookup_directory_entry("r2", "cam1") is None


def test_stale_directory_entry_is_purged_on_lookup(registry):
    make_session(registry, "a")
    make_session(registry, "b")
    registry.add_to_room("r1", "a")
    registry.add_to_room("r1", "b")
    registry.set_directory_entry("r1", "cam1", "a")
    registry.remove_session("a")

    assert registry.lookup_directory_entry("r1", "cam1") is None
    # purged, so a direct conditional remove finds nothing
    assert registry.remove_directory_entry("r1", "cam1") is False


def test_room_directory_snapshot_purges_stale_entries(registry):
    make_session(registry, "a")
    make_session(registry, "b")
    registry.add_to_room("r1", "a")
    registry.add_to_room("r1", "b")
    registry.set_directory_entry("r1", "cam1", "a")
    registry.set_directory_entry("r1", "cam2", "b")
    registry.remove_session("b")

    snapshot = registry.room_directory("r1")
    assert snapshot == {"cam1": "a"}
    snapshot["cam3"] = "x"
    assert registry.room_directory("r1") == {"cam1": "a"}


def test_takeover_reports_displaced_owner(registry):
    make_session(registry, "a")
    make_session(registry, "b")
    registry.set_directory_entry("r1", "cam1", "a")
    assert registry.set_directory_entry("r1", "cam1", "b") == "a"
    assert registry.lookup_directory_entry("r1", "cam1") == "b"


def test_remove_directory_entry_only_by_owner(registry):
    make_session(registry, "a")
    make_session(registry, "b")
    registry.set_directory_entry("r1", "cam1", "b")
    assert registry.remove_directory_entry("r1", "cam1", "a") is False
    assert registry.lookup_directory_entry("r1", "cam1") == "b"
    assert registry.remove_directory_entry("r1", "cam1", "b") is True
    assert registry.lookup_directory_entry("r1", "cam1") is None
