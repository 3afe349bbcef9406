"""User, Snarkel, Room, Question, Option - quiz hosting entities."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from snarkels.models.market import ApiModel


class RoomState(str, Enum):
    WAITING = "waiting"
    COUNTDOWN = "countdown"
    STARTED = "started"
    FINISHED = "finished"


class User(ApiModel):
    id: str
    address: str
    name: str = ""
    total_points: int = 0
    created_at: int | None = None  # ms epoch


class Snarkel(ApiModel):
    """A quiz. snarkel_code is the 6-character join code."""

    id: str
    title: str
    description: str = ""
    snarkel_code: str
    creator_id: str
    is_public: bool = True
    is_active: bool = True
    is_featured: bool = False
    max_questions: int = 60
    base_points_per_question: int = 1000
    speed_bonus_enabled: bool = True
    max_speed_bonus: int = 500
    rewards_enabled: bool = False
    is_completed: bool = False
    completed_at: int | None = None
    start_time: int | None = None
    auto_start_enabled: bool = False
    created_at: int | None = None


class Room(ApiModel):
    """Live session of a snarkel."""

    id: str
    name: str
    description: str = ""
    snarkel_id: str
    admin_id: str
    max_participants: int = 50
    min_participants: int = 1
    current_participants: int = 0
    is_active: bool = True
    is_waiting: bool = True
    is_started: bool = False
    is_finished: bool = False
    countdown_duration: int = 10  # seconds
    auto_start_enabled: bool = False
    actual_start_time: int | None = None  # ms epoch
    session_number: int = 1
    created_at: int | None = None

    @property
    def state(self) -> RoomState:
        if self.is_finished:
            return RoomState.FINISHED
        if self.is_started:
            return RoomState.STARTED
        if not self.is_waiting:
            return RoomState.COUNTDOWN
        return RoomState.WAITING


class RoomParticipant(ApiModel):
    id: str
    room_id: str
    user_id: str
    is_admin: bool = False
    is_ready: bool = False
    is_active: bool = True
    joined_at: int | None = None


class Option(ApiModel):
    id: str
    question_id: str
    text: str
    is_correct: bool = False
    order: int = 0


class Question(ApiModel):
    id: str
    snarkel_id: str
    text: str
    time_limit: int = 15  # seconds
    order: int = 0
    options: list[Option] = Field(default_factory=list)


class Submission(ApiModel):
    """One user's running result for a snarkel session."""

    id: str
    snarkel_id: str
    user_id: str
    room_id: str | None = None
    score: int = 0
    total_questions: int = 0
    correct_answers: int = 0
    completed_at: int | None = None  # ms epoch of the latest answer


class Answer(ApiModel):
    id: str
    submission_id: str
    question_id: str
    option_id: str | None = None
    is_correct: bool = False
    time_to_answer: int | None = None  # ms
    points_earned: int = 0


class SnarkelReward(ApiModel):
    """Reward configuration of a snarkel. Amounts are in token units."""

    snarkel_id: str
    reward_type: str  # LINEAR or QUADRATIC
    token_address: str
    total_winners: int | None = None
    reward_amounts: list[float] = Field(default_factory=list)
    total_reward_pool: str | None = None
    min_participants: int | None = None
    points_weight: float = 0.7
    is_distributed: bool = False

    @field_validator("reward_amounts", mode="before")
    @classmethod
    def _parse_amounts(cls, v: Any) -> Any:
        if isinstance(v, str):
            return json.loads(v) if v else []
        return v if v is not None else []
