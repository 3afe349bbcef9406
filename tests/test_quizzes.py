"""Snarkel authoring, join by code, answers and leaderboards."""

import pytest

from snarkels.api.schemas import CreateSnarkelRequest
from snarkels.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from snarkels.services import quizzes, rooms
from snarkels.storage import quiz as store

NOW = 1_700_000_000_000
CREATOR = "0xC0FFEE0000000000000000000000000000000001"
PLAYER = "0xBEEF000000000000000000000000000000000002"
ONLY_OPTION = {"text": "only", "isCorrect": True}
NO_CORRECT = [{"text": "a"}, {"text": "b"}]


def _request(**overrides) -> CreateSnarkelRequest:
    body = {
        "title": "Celo Basics",
        "description": "Warm-up quiz",
        "creatorAddress": CREATOR,
        "basePointsPerQuestion": 1000,
        "maxSpeedBonus": 500,
        "questions": [
            {
                "text": "What is CELO?",
                "timeLimit": 10,
                "options": [
                    {"text": "A token", "isCorrect": True},
                    {"text": "A fruit"},
                    {"text": "  "},
                ],
            },
            {"text": "Block time?", "options": [{"text": "5s", "isCorrect": True}, {"text": "1h"}]},
        ],
    }
    body.update(overrides)
    return CreateSnarkelRequest.model_validate(body)


@pytest.fixture
def snarkel(temp_db):
    return quizzes.create_snarkel(temp_db, _request(), now_ms=NOW)


def _started_room(conn, snarkel, players=(PLAYER,)):
    user_ids = [quizzes.join_snarkel(conn, snarkel.snarkel_code, p)["user"].id for p in players]
    room = store.get_rooms_for_snarkel(conn, snarkel.id)[0]
    rooms.start_snarkel_immediately(conn, snarkel.creator_id, room.id, now_ms=NOW)
    return room, user_ids


def test_create_snarkel_stores_questions_and_creator(temp_db, snarkel):
    assert len(snarkel.snarkel_code) == 6
    creator = store.get_user(temp_db, snarkel.creator_id)
    assert creator.address == CREATOR.lower()
    assert creator.name == f"User {CREATOR[:8]}..."

    questions = store.get_questions(temp_db, snarkel.id)
    assert [q.text for q in questions] == ["What is CELO?", "Block time?"]
    assert [o.text for o in questions[0].options] == ["A token", "A fruit"]
    assert questions[0].time_limit == 10
    assert questions[1].time_limit == 15


def test_create_snarkel_reuses_user_and_red_code(temp_db, snarkel):
    second = quizzes.create_snarkel(temp_db, _request(redCode="RED001"), now_ms=NOW)
    assert second.snarkel_code == "RED001"
    assert second.creator_id == snarkel.creator_id
    with pytest.raises(ConflictError):
        quizzes.create_snarkel(temp_db, _request(redCode="RED001"), now_ms=NOW)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"title": "  "}, "Title is required"),
        ({"description": ""}, "Description is required"),
        ({"startTime": NOW - 1}, "Start time must be in the future"),
        ({"autoStartEnabled": True}, "Start time is required when auto-start is enabled"),
        ({"questions": []}, "At least one question is required"),
        ({"questions": [{"text": "", "options": []}]}, "Question 1 text is required"),
        ({"questions": [{"text": "Q", "options": [ONLY_OPTION]}]}, "Question 1 needs at least 2 options"),
        ({"questions": [{"text": "Q", "options": NO_CORRECT}]}, "Question 1 needs at least one correct answer"),
        ({"basePointsPerQuestion": 10}, "Base points per question must be at least 100"),
    ],
)
def test_create_snarkel_validation(temp_db, overrides, message):
    with pytest.raises(ValidationError) as exc:
        quizzes.create_snarkel(temp_db, _request(**overrides), now_ms=NOW)
    assert exc.value.message == message


def test_create_snarkel_requires_wallet(temp_db):
    with pytest.raises(AuthenticationError):
        quizzes.create_snarkel(temp_db, _request(creatorAddress=None), now_ms=NOW)


def test_create_snarkel_reward_settings(temp_db):
    bad = {
        "enabled": True,
        "type": "QUADRATIC",
        "tokenAddress": "0xtoken",
        "totalRewardPool": "0",
        "minParticipants": 1,
    }
    with pytest.raises(ValidationError, match="Total reward pool must be greater than 0"):
        quizzes.create_snarkel(temp_db, _request(rewards=bad), now_ms=NOW)

    good = {**bad, "totalRewardPool": "100", "pointsWeight": 0.5}
    snarkel = quizzes.create_snarkel(temp_db, _request(rewards=good), now_ms=NOW)
    assert snarkel.rewards_enabled
    reward = store.get_snarkel_reward(temp_db, snarkel.id)
    assert reward.reward_type == "QUADRATIC"
    assert reward.points_weight == 0.5


def test_private_snarkel_stores_allowlist(temp_db):
    snarkel = quizzes.create_snarkel(temp_db, _request(isPublic=False, allowlist=[" 0xAbC "]), now_ms=NOW)
    assert rooms.is_wallet_allowed(temp_db, snarkel.id, "0xabc")
    with pytest.raises(PermissionDeniedError):
        quizzes.join_snarkel(temp_db, snarkel.snarkel_code, "0xdef")


def test_join_snarkel_creates_room_once(temp_db, snarkel):
    first = quizzes.join_snarkel(temp_db, snarkel.snarkel_code, PLAYER)
    assert first["room"].admin_id == snarkel.creator_id
    assert first["room"].current_participants == 2
    again = quizzes.join_snarkel(temp_db, snarkel.snarkel_code, PLAYER)
    assert again["room"].id == first["room"].id
    assert again["room"].current_participants == 2

    with pytest.raises(ValidationError, match="Snarkel code is required"):
        quizzes.join_snarkel(temp_db, "", PLAYER)
    with pytest.raises(NotFoundError):
        quizzes.join_snarkel(temp_db, "NOPE00", PLAYER)


def test_submit_answer_scores_and_rejects_repeats(temp_db, snarkel):
    room, (player,) = _started_room(temp_db, snarkel)
    q1, q2 = store.get_questions(temp_db, snarkel.id)

    result = quizzes.submit_answer(temp_db, room.id, player, q1.id, q1.options[0].id, 5_000, now_ms=NOW)
    assert result["answer"].is_correct
    assert result["answer"].points_earned == 1000 + 250
    assert result["submission"].score == 1250
    assert result["correctOptionIds"] == [q1.options[0].id]

    with pytest.raises(ConflictError, match="already answered"):
        quizzes.submit_answer(temp_db, room.id, player, q1.id, q1.options[1].id, 100, now_ms=NOW)

    timed_out = quizzes.submit_answer(temp_db, room.id, player, q2.id, None, 15_000, now_ms=NOW)
    assert timed_out["answer"].points_earned == 0
    assert timed_out["submission"].total_questions == 2
    assert timed_out["submission"].correct_answers == 1
    assert store.get_user(temp_db, player).total_points == 1250


def test_submit_answer_preconditions(temp_db, snarkel):
    joined = quizzes.join_snarkel(temp_db, snarkel.snarkel_code, PLAYER)
    room, player = joined["room"], joined["user"].id
    q1 = store.get_questions(temp_db, snarkel.id)[0]
    with pytest.raises(ConflictError, match="not started"):
        quizzes.submit_answer(temp_db, room.id, player, q1.id, q1.options[0].id, 1, now_ms=NOW)

    rooms.start_room_countdown(temp_db, snarkel.creator_id, room.id, now_ms=NOW)
    # countdown elapsed
    later = NOW + room.countdown_duration * 1000
    quizzes.submit_answer(temp_db, room.id, player, q1.id, q1.options[0].id, 1, now_ms=later)

    with pytest.raises(PermissionDeniedError):
        quizzes.submit_answer(temp_db, room.id, "stranger", q1.id, None, 1, now_ms=later)
    with pytest.raises(NotFoundError):
        quizzes.submit_answer(temp_db, room.id, player, "missing", None, 1, now_ms=later)
    with pytest.raises(ValidationError):
        quizzes.submit_answer(temp_db, room.id, player, q1.id, "other-option", 1, now_ms=later)


def test_leaderboard_ranks_scoring_players(temp_db, snarkel):
    other = "0xD00D000000000000000000000000000000000003"
    room, (fast, slow) = _started_room(temp_db, snarkel, players=(PLAYER, other))
    q1 = store.get_questions(temp_db, snarkel.id)[0]
    quizzes.submit_answer(temp_db, room.id, fast, q1.id, q1.options[0].id, 2_000, now_ms=NOW)
    quizzes.submit_answer(temp_db, room.id, slow, q1.id, q1.options[0].id, 9_000, now_ms=NOW)
    quizzes.submit_answer(temp_db, room.id, snarkel.creator_id, q1.id, q1.options[1].id, 1_000, now_ms=NOW)

    board = quizzes.get_leaderboard(temp_db, snarkel.snarkel_code)
    entries = board["leaderboard"]
    assert [e["userId"] for e in entries] == [fast, slow]
    assert [e["position"] for e in entries] == [1, 2]
    assert entries[0]["score"] == 1000 + 400
    assert entries[0]["timeBonus"] == 100
    assert entries[0]["averageTimePerQuestion"] == 2000.0
    assert entries[0]["name"] == f"User {PLAYER[:8]}..."
    assert board["quizInfo"]["maxPossibleScore"] == 2000
    assert board["quizInfo"]["totalParticipants"] == 2

    with pytest.raises(NotFoundError):
        quizzes.get_leaderboard(temp_db, "missing")


def test_finish_room_completes_snarkel(temp_db, snarkel):
    room, _ = _started_room(temp_db, snarkel)
    result = quizzes.finish_room(temp_db, snarkel.creator_id, room.id)
    assert result["room"].is_finished
    assert store.get_snarkel(temp_db, snarkel.id).is_completed
    assert result["leaderboard"]["quizInfo"]["isCompleted"] is True


def test_preview_rewards(temp_db):
    rewards = {
        "enabled": True,
        "type": "LINEAR",
        "tokenAddress": "0xtoken",
        "totalWinners": 1,
        "rewardAmounts": [10],
        "minParticipants": 2,
    }
    snarkel = quizzes.create_snarkel(temp_db, _request(rewards=rewards), now_ms=NOW)
    room, (player,) = _started_room(temp_db, snarkel)
    q1 = store.get_questions(temp_db, snarkel.id)[0]
    quizzes.submit_answer(temp_db, room.id, player, q1.id, q1.options[0].id, 1_000, now_ms=NOW)

    preview = quizzes.preview_rewards(temp_db, snarkel.id)
    assert preview["participants"] == 1
    assert preview["eligible"] is False
    assert preview["distributions"] == []

    quizzes.submit_answer(temp_db, room.id, snarkel.creator_id, q1.id, q1.options[0].id, 3_000, now_ms=NOW)
    preview = quizzes.preview_rewards(temp_db, snarkel.id)
    assert preview["eligible"] is True
    assert preview["distributions"] == [
        {"submissionId": preview["distributions"][0]["submissionId"], "userId": player, "position": 1, "amount": "10.0"}
    ]

    plain = quizzes.create_snarkel(temp_db, _request(), now_ms=NOW)
    with pytest.raises(NotFoundError):
        quizzes.preview_rewards(temp_db, plain.id)
