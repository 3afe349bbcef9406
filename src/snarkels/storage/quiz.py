"""Users, snarkels (quizzes), rooms and questions.

Room counter and state changes are single conditional UPDATEs so concurrent
requests cannot push a room past its capacity or start it twice.
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from pydantic import BaseModel

from snarkels.models import (
    Answer,
    Option,
    Question,
    Room,
    RoomParticipant,
    Snarkel,
    SnarkelReward,
    Submission,
    User,
)
from snarkels.storage.db import fetch_dict, fetch_dicts
from snarkels.storage.fields import (
    ANSWERS,
    OPTIONS,
    QUESTIONS,
    ROOM_PARTICIPANTS,
    ROOMS,
    SNARKEL_REWARDS,
    SNARKELS,
    SUBMISSIONS,
    USERS,
    FieldMap,
    quote,
)

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


def new_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


def _insert(conn: DuckDBPyConnection, fmap: FieldMap, obj: BaseModel) -> None:
    row = fmap.model_to_row(obj)
    columns = list(row)
    conn.execute(
        f"INSERT INTO {fmap.table} ({', '.join(quote(c) for c in columns)}) "
        f"VALUES ({', '.join('?' for _ in columns)})",
        [row[c] for c in columns],
    )


def _get_one(conn: DuckDBPyConnection, fmap: FieldMap, where: str, params: list) -> BaseModel | None:
    row = fetch_dict(conn, f"SELECT {fmap.select_list()} FROM {fmap.table} WHERE {where}", params)
    return fmap.row_to_model(row) if row else None


# --- users ---


def create_user(conn: DuckDBPyConnection, address: str, name: str = "") -> User:
    user = User(id=new_id(), address=address.lower(), name=name, created_at=now_ms())
    _insert(conn, USERS, user)
    return user


def get_user(conn: DuckDBPyConnection, user_id: str) -> User | None:
    return _get_one(conn, USERS, "id = ?", [user_id])


def get_user_by_address(conn: DuckDBPyConnection, address: str) -> User | None:
    return _get_one(conn, USERS, "address = ?", [address.lower()])


# --- snarkels ---


def create_snarkel(conn: DuckDBPyConnection, snarkel: Snarkel) -> Snarkel:
    if snarkel.created_at is None:
        snarkel = snarkel.model_copy(update={"created_at": now_ms()})
    _insert(conn, SNARKELS, snarkel)
    return snarkel


def get_snarkel(conn: DuckDBPyConnection, snarkel_id: str) -> Snarkel | None:
    return _get_one(conn, SNARKELS, "id = ?", [snarkel_id])


def get_snarkel_by_code(conn: DuckDBPyConnection, code: str) -> Snarkel | None:
    return _get_one(conn, SNARKELS, "snarkelcode = ?", [code])


def snarkel_code_exists(conn: DuckDBPyConnection, code: str) -> bool:
    return conn.execute("SELECT 1 FROM snarkels WHERE snarkelcode = ?", [code]).fetchone() is not None


def add_allowlist_address(conn: DuckDBPyConnection, snarkel_id: str, address: str) -> None:
    conn.execute(
        "INSERT INTO snarkel_allowlists (snarkelid, address) VALUES (?, ?) ON CONFLICT DO NOTHING",
        [snarkel_id, address.lower()],
    )


def mark_snarkel_completed(conn: DuckDBPyConnection, snarkel_id: str, completed_at_ms: int) -> None:
    conn.execute(
        "UPDATE snarkels SET iscompleted = true, completedat = ? WHERE id = ? AND iscompleted = false",
        [completed_at_ms, snarkel_id],
    )


def set_snarkel_reward(conn: DuckDBPyConnection, reward: SnarkelReward) -> SnarkelReward:
    row = SNARKEL_REWARDS.model_to_row(reward)
    columns = list(row)
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "snarkelid")
    conn.execute(
        f"INSERT INTO snarkel_rewards ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)}) "
        f"ON CONFLICT (snarkelid) DO UPDATE SET {updates}",
        [row[c] for c in columns],
    )
    return reward


def get_snarkel_reward(conn: DuckDBPyConnection, snarkel_id: str) -> SnarkelReward | None:
    return _get_one(conn, SNARKEL_REWARDS, "snarkelid = ?", [snarkel_id])


def is_address_allowlisted(conn: DuckDBPyConnection, snarkel_id: str, address: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM snarkel_allowlists WHERE snarkelid = ? AND address = ?",
        [snarkel_id, address.lower()],
    ).fetchone()
    return row is not None


# --- rooms ---


def create_room(conn: DuckDBPyConnection, room: Room) -> Room:
    if room.created_at is None:
        room = room.model_copy(update={"created_at": now_ms()})
    _insert(conn, ROOMS, room)
    return room


def get_room(conn: DuckDBPyConnection, room_id: str) -> Room | None:
    return _get_one(conn, ROOMS, "id = ?", [room_id])


def get_rooms_for_snarkel(conn: DuckDBPyConnection, snarkel_id: str) -> list[Room]:
    """Rooms of a snarkel, latest session first."""
    rows = fetch_dicts(
        conn,
        f"SELECT {ROOMS.select_list()} FROM rooms WHERE snarkelid = ? ORDER BY sessionnumber DESC, createdat DESC",
        [snarkel_id],
    )
    return [ROOMS.row_to_model(r) for r in rows]


def increment_room_participants(conn: DuckDBPyConnection, room_id: str) -> bool:
    """Add one to the counter unless the room is full. False when full."""
    rows = conn.execute(
        """
        UPDATE rooms SET currentparticipants = currentparticipants + 1
        WHERE id = ? AND currentparticipants < maxparticipants
        RETURNING id
        """,
        [room_id],
    ).fetchall()
    return bool(rows)


def decrement_room_participants(conn: DuckDBPyConnection, room_id: str) -> None:
    conn.execute(
        "UPDATE rooms SET currentparticipants = currentparticipants - 1 WHERE id = ? AND currentparticipants > 0",
        [room_id],
    )


def mark_room_countdown(conn: DuckDBPyConnection, room_id: str, start_at_ms: int) -> bool:
    """Leave the waiting state with a scheduled start. False if already started."""
    rows = conn.execute(
        """
        UPDATE rooms SET iswaiting = false, actualstarttime = ?
        WHERE id = ? AND isstarted = false AND isfinished = false
        RETURNING id
        """,
        [start_at_ms, room_id],
    ).fetchall()
    return bool(rows)


def mark_room_started(conn: DuckDBPyConnection, room_id: str, started_at_ms: int) -> bool:
    rows = conn.execute(
        """
        UPDATE rooms SET iswaiting = false, isstarted = true, actualstarttime = ?
        WHERE id = ? AND isstarted = false AND isfinished = false
        RETURNING id
        """,
        [started_at_ms, room_id],
    ).fetchall()
    return bool(rows)


def mark_room_finished(conn: DuckDBPyConnection, room_id: str) -> bool:
    rows = conn.execute(
        """
        UPDATE rooms SET iswaiting = false, isfinished = true, isactive = false
        WHERE id = ? AND isfinished = false
        RETURNING id
        """,
        [room_id],
    ).fetchall()
    return bool(rows)


# --- room participants ---


def get_room_participant(conn: DuckDBPyConnection, room_id: str, user_id: str) -> RoomParticipant | None:
    return _get_one(conn, ROOM_PARTICIPANTS, "roomid = ? AND userid = ?", [room_id, user_id])


def get_room_participants(conn: DuckDBPyConnection, room_id: str, active_only: bool = True) -> list[RoomParticipant]:
    sql = f"SELECT {ROOM_PARTICIPANTS.select_list()} FROM room_participants WHERE roomid = ?"
    if active_only:
        sql += " AND isactive = true"
    rows = fetch_dicts(conn, sql + " ORDER BY joinedat, id", [room_id])
    return [ROOM_PARTICIPANTS.row_to_model(r) for r in rows]


def add_room_participant(
    conn: DuckDBPyConnection,
    room_id: str,
    user_id: str,
    is_admin: bool = False,
    is_ready: bool = False,
) -> RoomParticipant:
    participant = RoomParticipant(
        id=new_id(),
        room_id=room_id,
        user_id=user_id,
        is_admin=is_admin,
        is_ready=is_ready,
        joined_at=now_ms(),
    )
    _insert(conn, ROOM_PARTICIPANTS, participant)
    return participant


def set_room_participant_active(conn: DuckDBPyConnection, room_id: str, user_id: str, active: bool) -> None:
    conn.execute(
        "UPDATE room_participants SET isactive = ? WHERE roomid = ? AND userid = ?",
        [active, room_id, user_id],
    )


def set_room_participant_ready(
    conn: DuckDBPyConnection, room_id: str, user_id: str, is_ready: bool
) -> RoomParticipant | None:
    rows = conn.execute(
        "UPDATE room_participants SET isready = ? WHERE roomid = ? AND userid = ? RETURNING id",
        [is_ready, room_id, user_id],
    ).fetchall()
    if not rows:
        return None
    return get_room_participant(conn, room_id, user_id)


# --- questions ---


def add_question(conn: DuckDBPyConnection, question: Question) -> Question:
    """Insert a question and its options."""
    _insert(conn, QUESTIONS, question)
    for option in question.options:
        _insert(conn, OPTIONS, option)
    return question


def get_questions(conn: DuckDBPyConnection, snarkel_id: str) -> list[Question]:
    """Questions of a snarkel in order, each with its options in order."""
    question_rows = fetch_dicts(
        conn,
        f'SELECT {QUESTIONS.select_list()} FROM questions WHERE snarkelid = ? ORDER BY "order", id',
        [snarkel_id],
    )
    if not question_rows:
        return []
    option_rows = fetch_dicts(
        conn,
        f"""
        SELECT {OPTIONS.select_list("o.")} FROM options o
        JOIN questions q ON q.id = o.questionid
        WHERE q.snarkelid = ?
        ORDER BY o."order", o.id
        """,
        [snarkel_id],
    )
    options: dict[str, list[Option]] = {}
    for r in option_rows:
        options.setdefault(r["questionid"], []).append(OPTIONS.row_to_model(r))
    questions = []
    for r in question_rows:
        q = QUESTIONS.row_to_model(r)
        questions.append(q.model_copy(update={"options": options.get(q.id, [])}))
    return questions


def count_questions(conn: DuckDBPyConnection, snarkel_id: str) -> int:
    return conn.execute("SELECT COUNT(*) FROM questions WHERE snarkelid = ?", [snarkel_id]).fetchone()[0]


def get_question(conn: DuckDBPyConnection, question_id: str) -> Question | None:
    question = _get_one(conn, QUESTIONS, "id = ?", [question_id])
    if question is None:
        return None
    rows = fetch_dicts(
        conn,
        f'SELECT {OPTIONS.select_list()} FROM options WHERE questionid = ? ORDER BY "order", id',
        [question_id],
    )
    return question.model_copy(update={"options": [OPTIONS.row_to_model(r) for r in rows]})


# --- submissions and answers ---


def get_submission(conn: DuckDBPyConnection, snarkel_id: str, user_id: str, room_id: str) -> Submission | None:
    return _get_one(conn, SUBMISSIONS, "snarkelid = ? AND userid = ? AND roomid = ?", [snarkel_id, user_id, room_id])


def get_or_create_submission(conn: DuckDBPyConnection, snarkel_id: str, user_id: str, room_id: str) -> Submission:
    submission = get_submission(conn, snarkel_id, user_id, room_id)
    if submission is not None:
        return submission
    submission = Submission(id=new_id(), snarkel_id=snarkel_id, user_id=user_id, room_id=room_id)
    _insert(conn, SUBMISSIONS, submission)
    return submission


def has_answer(conn: DuckDBPyConnection, submission_id: str, question_id: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM answers WHERE submissionid = ? AND questionid = ?",
        [submission_id, question_id],
    ).fetchone()
    return row is not None


def record_answer(conn: DuckDBPyConnection, submission: Submission, answer: Answer, answered_at_ms: int) -> Submission:
    """Insert an answer and fold it into the submission totals and the user's points."""
    _insert(conn, ANSWERS, answer)
    row = fetch_dict(
        conn,
        f"""
        UPDATE submissions SET
            score = score + ?,
            totalquestions = totalquestions + 1,
            correctanswers = correctanswers + ?,
            completedat = ?
        WHERE id = ?
        RETURNING {SUBMISSIONS.select_list()}
        """,
        [answer.points_earned, int(answer.is_correct), answered_at_ms, submission.id],
    )
    if answer.points_earned:
        conn.execute(
            "UPDATE users SET totalpoints = totalpoints + ? WHERE id = ?",
            [answer.points_earned, submission.user_id],
        )
    return SUBMISSIONS.row_to_model(row)


def get_leaderboard_rows(conn: DuckDBPyConnection, snarkel_id: str) -> list[dict]:
    """Scoring submissions with their user and average answer time, best first."""
    return fetch_dicts(
        conn,
        """
        SELECT s.id, s.userid, s.score, s.totalquestions, s.correctanswers, s.completedat,
               u.address, u.name,
               (SELECT AVG(a.timetoanswer) FROM answers a WHERE a.submissionid = s.id) AS avgtime
        FROM submissions s
        JOIN users u ON u.id = s.userid
        WHERE s.snarkelid = ? AND s.score > 0
        ORDER BY s.score DESC, s.completedat ASC NULLS LAST, s.id
        """,
        [snarkel_id],
    )
