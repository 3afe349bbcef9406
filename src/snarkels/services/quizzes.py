"""Snarkel authoring, joining by code, answer scoring and leaderboards."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from snarkels.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from snarkels.models import Answer, Option, Question, Snarkel, SnarkelReward, User
from snarkels.services import rooms
from snarkels.services.scoring import (
    calculate_answer_points,
    calculate_linear_rewards,
    calculate_quadratic_rewards,
    validate_reward_settings,
    validate_snarkel_settings,
)
from snarkels.storage import quiz as store

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from snarkels.api.schemas import CreateSnarkelRequest

log = structlog.get_logger(__name__)

FAST_ANSWER_MS = 10_000
DEFAULT_QUESTION_TIME_LIMIT = 15
SETTINGS_FIELDS = {"title", "base_points_per_question", "max_speed_bonus", "max_questions"}


def get_or_create_user(conn: DuckDBPyConnection, address: str) -> User:
    user = store.get_user_by_address(conn, address)
    if user is not None:
        return user
    return store.create_user(conn, address, name=f"User {address[:8]}...")


def _check_questions(questions: list) -> None:
    if not questions:
        raise ValidationError("At least one question is required")
    for i, q in enumerate(questions, start=1):
        if not q.text.strip():
            raise ValidationError(f"Question {i} text is required")
        options = [o for o in q.options if o.text.strip()]
        if len(options) < 2:
            raise ValidationError(f"Question {i} needs at least 2 options")
        if not any(o.is_correct for o in options):
            raise ValidationError(f"Question {i} needs at least one correct answer")


def create_snarkel(conn: DuckDBPyConnection, req: CreateSnarkelRequest, now_ms: int | None = None) -> Snarkel:
    """Validate and store a snarkel with its questions, allowlist and reward settings."""
    if not req.title.strip():
        raise ValidationError("Title is required")
    if not req.description.strip():
        raise ValidationError("Description is required")
    if not req.creator_address:
        raise AuthenticationError("Wallet connection is required to create a snarkel")
    now_ms = store.now_ms() if now_ms is None else now_ms
    if req.start_time is not None and req.start_time <= now_ms:
        raise ValidationError("Start time must be in the future")
    if req.auto_start_enabled and req.start_time is None:
        raise ValidationError("Start time is required when auto-start is enabled")
    _check_questions(req.questions)

    settings = validate_snarkel_settings(req.model_dump(by_alias=True, include=SETTINGS_FIELDS))
    if not settings.is_valid:
        raise ValidationError(", ".join(settings.errors), details=settings.errors)
    rewards = req.rewards
    if rewards is not None and rewards.enabled:
        checked = validate_reward_settings(rewards.model_dump(by_alias=True))
        if not checked.is_valid:
            raise ValidationError(", ".join(checked.errors), details=checked.errors)

    code = req.red_code or rooms.generate_snarkel_code(conn)
    if req.red_code and store.snarkel_code_exists(conn, code):
        raise ConflictError("Snarkel code is already taken", details={"snarkelCode": code})

    conn.begin()
    try:
        creator = get_or_create_user(conn, req.creator_address)
        snarkel = store.create_snarkel(
            conn,
            Snarkel(
                id=store.new_id(),
                title=req.title.strip(),
                description=req.description.strip(),
                snarkel_code=code,
                creator_id=creator.id,
                is_public=req.is_public,
                is_featured=req.is_featured,
                max_questions=req.max_questions,
                base_points_per_question=req.base_points_per_question,
                speed_bonus_enabled=req.speed_bonus_enabled,
                max_speed_bonus=req.max_speed_bonus,
                rewards_enabled=bool(rewards and rewards.enabled),
                start_time=req.start_time,
                auto_start_enabled=req.auto_start_enabled,
                created_at=now_ms,
            ),
        )
        for order, q in enumerate(req.questions, start=1):
            qid = store.new_id()
            kept = [o for o in q.options if o.text.strip()]
            options = [
                Option(id=store.new_id(), question_id=qid, text=o.text.strip(), is_correct=o.is_correct, order=n)
                for n, o in enumerate(kept, start=1)
            ]
            store.add_question(
                conn,
                Question(
                    id=qid,
                    snarkel_id=snarkel.id,
                    text=q.text.strip(),
                    time_limit=q.time_limit or DEFAULT_QUESTION_TIME_LIMIT,
                    order=order,
                    options=options,
                ),
            )
        if not req.is_public:
            for address in req.allowlist:
                store.add_allowlist_address(conn, snarkel.id, address.strip())
        if rewards is not None and rewards.enabled:
            store.set_snarkel_reward(
                conn,
                SnarkelReward(
                    snarkel_id=snarkel.id,
                    reward_type=rewards.type,
                    token_address=rewards.token_address,
                    total_winners=rewards.total_winners,
                    reward_amounts=rewards.reward_amounts,
                    total_reward_pool=rewards.total_reward_pool,
                    min_participants=rewards.min_participants,
                    points_weight=rewards.points_weight,
                ),
            )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    log.info("snarkel_created", snarkel_id=snarkel.id, code=code, questions=len(req.questions))
    return snarkel


def join_snarkel(conn: DuckDBPyConnection, code: str | None, wallet_address: str | None) -> dict[str, Any]:
    """Join the current room of the snarkel with this code. Returns {snarkel, user, room, participant}."""
    if not code:
        raise ValidationError("Snarkel code is required")
    if not wallet_address:
        raise AuthenticationError("Wallet connection is required to join a snarkel")
    snarkel = store.get_snarkel_by_code(conn, code)
    if snarkel is None:
        raise NotFoundError("Snarkel not found", details={"snarkelCode": code})
    if not snarkel.is_active:
        raise ValidationError("This snarkel is not active")
    if not rooms.is_wallet_allowed(conn, snarkel.id, wallet_address):
        raise PermissionDeniedError("This wallet is not on the snarkel allowlist")

    user = get_or_create_user(conn, wallet_address)
    room = rooms.get_or_create_room(conn, snarkel.id, snarkel.creator_id)
    result = rooms.join_room(conn, room.id, user.id)
    log.info("snarkel_joined", snarkel_id=snarkel.id, room_id=room.id, user_id=user.id)
    return {"snarkel": snarkel, "user": user, **result}


def submit_answer(
    conn: DuckDBPyConnection,
    room_id: str,
    user_id: str,
    question_id: str,
    option_id: str | None,
    time_to_answer: int,
    now_ms: int | None = None,
) -> dict[str, Any]:
    """Score one answer and add it to the user's submission for the room.

    A question is answered at most once per user and room; a missing option_id
    is a timed-out (wrong) answer.
    """
    room = store.get_room(conn, room_id)
    if room is None:
        raise NotFoundError("Room not found", details={"roomId": room_id})
    if room.is_finished:
        raise ConflictError("Room is finished")
    now_ms = store.now_ms() if now_ms is None else now_ms
    if not room.is_started and not (room.actual_start_time and room.actual_start_time <= now_ms):
        raise ConflictError("Snarkel has not started")
    participant = store.get_room_participant(conn, room_id, user_id)
    if participant is None or not participant.is_active:
        raise PermissionDeniedError("Not a participant in this room")
    question = store.get_question(conn, question_id)
    if question is None or question.snarkel_id != room.snarkel_id:
        raise NotFoundError("Question not found", details={"questionId": question_id})
    option = None
    if option_id is not None:
        option = next((o for o in question.options if o.id == option_id), None)
        if option is None:
            raise ValidationError("Option does not belong to this question", details={"optionId": option_id})
    snarkel = store.get_snarkel(conn, room.snarkel_id)
    is_correct = bool(option and option.is_correct)
    points = calculate_answer_points(
        is_correct,
        snarkel.base_points_per_question,
        time_to_answer,
        question.time_limit * 1000,
        snarkel.speed_bonus_enabled,
        snarkel.max_speed_bonus,
    )

    conn.begin()
    try:
        submission = store.get_or_create_submission(conn, snarkel.id, user_id, room_id)
        if store.has_answer(conn, submission.id, question_id):
            raise ConflictError("Question already answered", details={"questionId": question_id})
        answer = Answer(
            id=store.new_id(),
            submission_id=submission.id,
            question_id=question_id,
            option_id=option_id,
            is_correct=is_correct,
            time_to_answer=time_to_answer,
            points_earned=points,
        )
        submission = store.record_answer(conn, submission, answer, now_ms)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    log.info("answer_submitted", room_id=room_id, user_id=user_id, question_id=question_id, points=points)
    return {
        "answer": answer,
        "submission": submission,
        "correctOptionIds": [o.id for o in question.options if o.is_correct],
    }


def finish_room(conn: DuckDBPyConnection, admin_id: str, room_id: str) -> dict[str, Any]:
    """End the session and mark its snarkel completed. Returns {room, leaderboard}."""
    room = rooms.finish_room(conn, admin_id, room_id)
    store.mark_snarkel_completed(conn, room.snarkel_id, store.now_ms())
    return {"room": room, "leaderboard": get_leaderboard(conn, room.snarkel_id)}


def _find_snarkel(conn: DuckDBPyConnection, id_or_code: str) -> Snarkel:
    snarkel = store.get_snarkel(conn, id_or_code) or store.get_snarkel_by_code(conn, id_or_code)
    if snarkel is None:
        raise NotFoundError("Quiz not found", details={"snarkelId": id_or_code})
    return snarkel


def _display_name(name: str, address: str) -> str:
    return name or f"{address[:6]}...{address[-4:]}"


def get_leaderboard(conn: DuckDBPyConnection, id_or_code: str) -> dict[str, Any]:
    """Ranked scoring submissions of a snarkel (looked up by id or join code) and quiz info."""
    snarkel = _find_snarkel(conn, id_or_code)
    leaderboard = []
    for position, row in enumerate(store.get_leaderboard_rows(conn, snarkel.id), start=1):
        avg = float(row["avgtime"]) if row["avgtime"] is not None else None
        time_bonus = 0
        if avg is not None and avg < FAST_ANSWER_MS:
            time_bonus = round(snarkel.base_points_per_question * 0.1)
        leaderboard.append(
            {
                "userId": row["userid"],
                "name": _display_name(row["name"] or "", row["address"]),
                "score": row["score"],
                "position": position,
                "walletAddress": row["address"],
                "timeBonus": time_bonus,
                "totalQuestions": row["totalquestions"],
                "correctAnswers": row["correctanswers"],
                "averageTimePerQuestion": avg,
                "completedAt": row["completedat"],
                "submissionId": row["id"],
            }
        )
    question_count = store.count_questions(conn, snarkel.id)
    return {
        "leaderboard": leaderboard,
        "quizInfo": {
            "id": snarkel.id,
            "title": snarkel.title,
            "description": snarkel.description,
            "snarkelCode": snarkel.snarkel_code,
            "maxPossibleScore": snarkel.base_points_per_question * question_count,
            "totalParticipants": len(leaderboard),
            "isCompleted": snarkel.is_completed,
            "completedAt": snarkel.completed_at,
        },
    }


def preview_rewards(conn: DuckDBPyConnection, id_or_code: str) -> dict[str, Any]:
    """Reward split for the current leaderboard. Nothing is transferred."""
    snarkel = _find_snarkel(conn, id_or_code)
    reward = store.get_snarkel_reward(conn, snarkel.id)
    if not snarkel.rewards_enabled or reward is None:
        raise NotFoundError("Rewards are not enabled for this snarkel", details={"snarkelId": snarkel.id})
    ranked = [
        {"id": e["submissionId"], "userId": e["userId"], "totalPoints": e["score"]}
        for e in get_leaderboard(conn, snarkel.id)["leaderboard"]
    ]
    eligible = reward.min_participants is None or len(ranked) >= reward.min_participants
    distributions: list[dict[str, Any]] = []
    if eligible:
        if reward.reward_type == "QUADRATIC":
            distributions = calculate_quadratic_rewards(ranked, reward.total_reward_pool or "0", reward.points_weight)
        else:
            distributions = calculate_linear_rewards(ranked, reward.reward_amounts, reward.total_winners or 0)
    return {
        "reward": reward,
        "participants": len(ranked),
        "eligible": eligible,
        "distributions": distributions,
    }
