"""Quiz room sessions - join/leave, readiness and the start state machine.

waiting -> countdown -> started -> finished. The server only records the
scheduled start time; clients run the countdown.
"""

from __future__ import annotations

import random
import string
from typing import TYPE_CHECKING, Any

import structlog

from snarkels.exceptions import ConflictError, NotFoundError, PermissionDeniedError
from snarkels.models import Room, RoomParticipant
from snarkels.storage import quiz as store

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)

SNARKEL_CODE_ALPHABET = string.ascii_uppercase + string.digits
SNARKEL_CODE_LENGTH = 6


def _require_room(conn: DuckDBPyConnection, room_id: str) -> Room:
    room = store.get_room(conn, room_id)
    if room is None:
        raise NotFoundError("Room not found", details={"roomId": room_id})
    return room


def _require_admin(room: Room, admin_id: str, action: str) -> None:
    if room.admin_id != admin_id:
        raise PermissionDeniedError(f"Only admin can {action}")


def join_room(conn: DuckDBPyConnection, room_id: str, user_id: str) -> dict[str, Any]:
    """Add user to the room. Returns {room, participant}. Rejoining while active is a no-op."""
    room = _require_room(conn, room_id)
    if room.is_finished:
        raise ConflictError("Room is finished")
    existing = store.get_room_participant(conn, room_id, user_id)
    if existing is not None and existing.is_active:
        return {"room": room, "participant": existing}

    conn.begin()
    try:
        if not store.increment_room_participants(conn, room_id):
            raise ConflictError("Room is full", details={"maxParticipants": room.max_participants})
        if existing is not None:
            store.set_room_participant_active(conn, room_id, user_id, True)
        else:
            store.add_room_participant(conn, room_id, user_id)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    log.info("room_joined", room_id=room_id, user_id=user_id)
    return {
        "room": store.get_room(conn, room_id),
        "participant": store.get_room_participant(conn, room_id, user_id),
    }


def leave_room(conn: DuckDBPyConnection, room_id: str, user_id: str) -> RoomParticipant:
    _require_room(conn, room_id)
    participant = store.get_room_participant(conn, room_id, user_id)
    if participant is None:
        raise NotFoundError("Participant not found", details={"roomId": room_id, "userId": user_id})
    if not participant.is_active:
        return participant
    conn.begin()
    try:
        store.set_room_participant_active(conn, room_id, user_id, False)
        store.decrement_room_participants(conn, room_id)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    log.info("room_left", room_id=room_id, user_id=user_id)
    return participant.model_copy(update={"is_active": False})


def set_participant_ready(conn: DuckDBPyConnection, room_id: str, user_id: str, is_ready: bool) -> RoomParticipant:
    participant = store.set_room_participant_ready(conn, room_id, user_id, bool(is_ready))
    if participant is None:
        raise NotFoundError("Participant not found", details={"roomId": room_id, "userId": user_id})
    return participant


def start_room_countdown(
    conn: DuckDBPyConnection, admin_id: str, room_id: str, now_ms: int | None = None
) -> dict[str, Any]:
    """Schedule the start countdownDuration seconds from now. Returns {room, countdownDuration}."""
    room = _require_room(conn, room_id)
    _require_admin(room, admin_id, "start countdown")
    if room.is_finished:
        raise ConflictError("Room is finished")
    if room.is_started:
        raise ConflictError("Room already started")
    if room.current_participants < room.min_participants:
        raise ConflictError(f"Need at least {room.min_participants} participants to start")
    now_ms = store.now_ms() if now_ms is None else now_ms
    if not store.mark_room_countdown(conn, room_id, now_ms + room.countdown_duration * 1000):
        raise ConflictError("Room already started")
    log.info("room_countdown_started", room_id=room_id, seconds=room.countdown_duration)
    return {"room": store.get_room(conn, room_id), "countdownDuration": room.countdown_duration}


def start_snarkel_immediately(
    conn: DuckDBPyConnection, admin_id: str, room_id: str, now_ms: int | None = None
) -> Room:
    room = _require_room(conn, room_id)
    _require_admin(room, admin_id, "start snarkel")
    if room.is_finished:
        raise ConflictError("Room is finished")
    if room.is_started:
        raise ConflictError("Room already started")
    now_ms = store.now_ms() if now_ms is None else now_ms
    if not store.mark_room_started(conn, room_id, now_ms):
        raise ConflictError("Room already started")
    log.info("room_started", room_id=room_id)
    return store.get_room(conn, room_id)


def finish_room(conn: DuckDBPyConnection, admin_id: str, room_id: str) -> Room:
    room = _require_room(conn, room_id)
    _require_admin(room, admin_id, "finish room")
    if not store.mark_room_finished(conn, room_id):
        raise ConflictError("Room is finished")
    log.info("room_finished", room_id=room_id)
    return store.get_room(conn, room_id)


def get_room_status(conn: DuckDBPyConnection, room_id: str, now_ms: int | None = None) -> dict[str, Any]:
    """Room, active participants, state and ms until the scheduled start."""
    room = _require_room(conn, room_id)
    now_ms = store.now_ms() if now_ms is None else now_ms
    time_until_start = max(0, room.actual_start_time - now_ms) if room.actual_start_time else 0
    return {
        "room": room,
        "participants": store.get_room_participants(conn, room_id),
        "state": room.state.value,
        "timeUntilStart": time_until_start,
        "countdownActive": bool(room.actual_start_time and not room.is_started and time_until_start > 0),
    }


def get_or_create_room(conn: DuckDBPyConnection, snarkel_id: str, admin_id: str) -> Room:
    """Latest room of a snarkel, or a new one with the admin as first (ready) participant."""
    rooms = store.get_rooms_for_snarkel(conn, snarkel_id)
    if rooms:
        return rooms[0]
    snarkel = store.get_snarkel(conn, snarkel_id)
    if snarkel is None:
        raise NotFoundError("Snarkel not found", details={"snarkelId": snarkel_id})
    room = Room(
        id=store.new_id(),
        name=f"{snarkel.title} Room",
        description=snarkel.description,
        snarkel_id=snarkel_id,
        admin_id=admin_id,
        min_participants=1,
        current_participants=1,
        countdown_duration=10,
        auto_start_enabled=False,
    )
    conn.begin()
    try:
        store.create_room(conn, room)
        store.add_room_participant(conn, room.id, admin_id, is_admin=True, is_ready=True)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    log.info("room_created", room_id=room.id, snarkel_id=snarkel_id)
    return store.get_room(conn, room.id)


def is_wallet_allowed(conn: DuckDBPyConnection, snarkel_id: str, wallet_address: str) -> bool:
    """Public snarkels admit everyone; private ones only allowlisted addresses."""
    snarkel = store.get_snarkel(conn, snarkel_id)
    if snarkel is None:
        return False
    if snarkel.is_public:
        return True
    return store.is_address_allowlisted(conn, snarkel_id, wallet_address)


def generate_snarkel_code(conn: DuckDBPyConnection, rng: random.Random | None = None) -> str:
    """Unused 6-character uppercase alphanumeric join code."""
    rng = rng or random.Random()
    while True:
        code = "".join(rng.choice(SNARKEL_CODE_ALPHABET) for _ in range(SNARKEL_CODE_LENGTH))
        if not store.snarkel_code_exists(conn, code):
            return code
