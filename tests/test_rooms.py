"""Room sessions: capacity, readiness, start transitions and helpers."""

import random

import pytest

from snarkels.exceptions import ConflictError, NotFoundError, PermissionDeniedError
from snarkels.models import Room, RoomState, Snarkel
from snarkels.services import rooms
from snarkels.storage import quiz as store

ADMIN = "admin-user"


@pytest.fixture
def snarkel(temp_db):
    return store.create_snarkel(
        temp_db,
        Snarkel(id="quiz-1", title="Celo Basics", snarkel_code="ABC123", creator_id=ADMIN),
    )


@pytest.fixture
def room(temp_db, snarkel):
    return store.create_room(
        temp_db,
        Room(id="room-1", name="Celo Basics Room", snarkel_id=snarkel.id, admin_id=ADMIN, max_participants=2),
    )


def _count(conn, room_id="room-1") -> int:
    return store.get_room(conn, room_id).current_participants


def test_join_increments_by_one(temp_db, room):
    result = rooms.join_room(temp_db, room.id, "u1")
    assert result["participant"].user_id == "u1"
    assert result["room"].current_participants == 1


def test_rejoin_while_active_is_noop(temp_db, room):
    rooms.join_room(temp_db, room.id, "u1")
    rooms.join_room(temp_db, room.id, "u1")
    assert _count(temp_db) == 1


def test_full_room_rejects_join(temp_db, room):
    rooms.join_room(temp_db, room.id, "u1")
    rooms.join_room(temp_db, room.id, "u2")
    with pytest.raises(ConflictError, match="Room is full"):
        rooms.join_room(temp_db, room.id, "u3")
    assert _count(temp_db) == 2
    assert store.get_room_participant(temp_db, room.id, "u3") is None


def test_leave_then_rejoin(temp_db, room):
    rooms.join_room(temp_db, room.id, "u1")
    left = rooms.leave_room(temp_db, room.id, "u1")
    assert left.is_active is False
    assert _count(temp_db) == 0
    rooms.join_room(temp_db, room.id, "u1")
    assert _count(temp_db) == 1
    assert len(store.get_room_participants(temp_db, room.id)) == 1


def test_join_missing_or_finished_room(temp_db, room):
    with pytest.raises(NotFoundError):
        rooms.join_room(temp_db, "nope", "u1")
    rooms.finish_room(temp_db, ADMIN, room.id)
    with pytest.raises(ConflictError, match="finished"):
        rooms.join_room(temp_db, room.id, "u1")


def test_set_ready(temp_db, room):
    rooms.join_room(temp_db, room.id, "u1")
    assert rooms.set_participant_ready(temp_db, room.id, "u1", True).is_ready is True
    with pytest.raises(NotFoundError):
        rooms.set_participant_ready(temp_db, room.id, "ghost", True)


def test_countdown_requires_admin_and_participants(temp_db, room):
    with pytest.raises(PermissionDeniedError):
        rooms.start_room_countdown(temp_db, "someone-else", room.id)
    with pytest.raises(ConflictError, match="Need at least 1 participants"):
        rooms.start_room_countdown(temp_db, ADMIN, room.id)


def test_countdown_schedules_start(temp_db, room):
    rooms.join_room(temp_db, room.id, "u1")
    result = rooms.start_room_countdown(temp_db, ADMIN, room.id, now_ms=1_000_000)
    assert result["countdownDuration"] == 10
    updated = result["room"]
    assert updated.is_waiting is False
    assert updated.is_started is False
    assert updated.actual_start_time == 1_010_000
    assert updated.state == RoomState.COUNTDOWN

    status = rooms.get_room_status(temp_db, room.id, now_ms=1_004_000)
    assert status["state"] == "countdown"
    assert status["timeUntilStart"] == 6_000
    assert status["countdownActive"] is True


def test_only_one_start_succeeds(temp_db, room):
    rooms.join_room(temp_db, room.id, "u1")
    started = rooms.start_snarkel_immediately(temp_db, ADMIN, room.id, now_ms=5)
    assert started.is_started is True
    assert started.actual_start_time == 5
    with pytest.raises(ConflictError, match="already started"):
        rooms.start_snarkel_immediately(temp_db, ADMIN, room.id)
    with pytest.raises(ConflictError, match="already started"):
        rooms.start_room_countdown(temp_db, ADMIN, room.id)
    assert rooms.get_room_status(temp_db, room.id)["state"] == "started"


def test_finish_room(temp_db, room):
    with pytest.raises(PermissionDeniedError):
        rooms.finish_room(temp_db, "u1", room.id)
    finished = rooms.finish_room(temp_db, ADMIN, room.id)
    assert finished.state == RoomState.FINISHED
    with pytest.raises(ConflictError):
        rooms.finish_room(temp_db, ADMIN, room.id)


def test_get_or_create_room(temp_db, snarkel):
    room = rooms.get_or_create_room(temp_db, snarkel.id, ADMIN)
    assert room.name == "Celo Basics Room"
    assert room.current_participants == 1
    admin = store.get_room_participant(temp_db, room.id, ADMIN)
    assert admin.is_admin and admin.is_ready
    assert rooms.get_or_create_room(temp_db, snarkel.id, ADMIN).id == room.id
    with pytest.raises(NotFoundError):
        rooms.get_or_create_room(temp_db, "missing", ADMIN)


def test_is_wallet_allowed(temp_db, snarkel):
    assert rooms.is_wallet_allowed(temp_db, snarkel.id, "0xanyone")
    private = store.create_snarkel(
        temp_db,
        Snarkel(id="quiz-2", title="Members only", snarkel_code="PRIV01", creator_id=ADMIN, is_public=False),
    )
    store.add_allowlist_address(temp_db, private.id, "0xAbC")
    assert rooms.is_wallet_allowed(temp_db, private.id, "0xabc")
    assert not rooms.is_wallet_allowed(temp_db, private.id, "0xdef")
    assert not rooms.is_wallet_allowed(temp_db, "missing", "0xabc")


def test_generate_snarkel_code_skips_taken_codes(temp_db):
    first = rooms.generate_snarkel_code(temp_db, random.Random(7))
    assert len(first) == 6
    assert all(c in rooms.SNARKEL_CODE_ALPHABET for c in first)
    store.create_snarkel(temp_db, Snarkel(id="q", title="Taken", snarkel_code=first, creator_id=ADMIN))
    assert rooms.generate_snarkel_code(temp_db, random.Random(7)) != first
