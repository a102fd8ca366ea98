"""RoomManager 유닛 테스트."""

import pytest

from swapcall.relay import RoomFullError, RoomManager


@pytest.fixture
def manager():
    return RoomManager()


def test_first_joiner_is_caller(manager):
    caller = manager.join_room("r", "a", "user-1", "Alice", None)
    answerer = manager.join_room("r", "b", "user-2", "Bob", None)

    assert (caller.role, answerer.role) == ("caller", "answerer")
    assert manager.get_partner("a") is answerer
    assert manager.get_partner("b") is caller
    assert manager.get_room_count("r") == 2


def test_room_full(manager):
    manager.join_room("r", "a", "user-1", "Alice", None)
    manager.join_room("r", "b", "user-2", "Bob", None)

    with pytest.raises(RoomFullError):
        manager.join_room("r", "c", "user-3", "Carol", None)
    assert manager.get_room_id("c") is None


def test_rejoin_keeps_role(manager):
    manager.join_room("r", "a", "user-1", "Alice", None)

    again = manager.join_room("r", "a", "user-1", "Alice B.", None)

    assert again.role == "caller"
    assert again.user_name == "Alice B."
    assert manager.get_room_count("r") == 1


def test_free_role_assigned_after_leave(manager):
    manager.join_room("r", "a", "user-1", "Alice", None)
    manager.join_room("r", "b", "user-2", "Bob", None)

    manager.leave_room("a")
    newcomer = manager.join_room("r", "c", "user-3", "Carol", None)

    assert newcomer.role == "caller"


def test_empty_room_deleted(manager):
    manager.join_room("r", "a", "user-1", "Alice", None)

    assert manager.leave_room("a") == "r"
    assert manager.leave_room("a") is None
    assert manager.rooms == {}
    assert manager.get_partner("a") is None
    assert manager.get_participants("r") == []
