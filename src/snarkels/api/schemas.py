"""Pydantic schemas for API request bodies and the shared response shapes."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, StrictBool, field_validator

from snarkels.models import ApiModel


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "ok"


# --- Error (consistent shape for 4xx/5xx) ---
class ErrorResponse(BaseModel):
    success: bool = False
    error: str = Field(..., description="Human-readable message")
    details: Any = Field(None, description="Field errors, ids or the underlying exception text")


# --- Markets ---
class UpdateMarketRequest(ApiModel):
    market_id: str
    type: Literal["create", "update_totals", "resolve"]
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("market_id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v


class MarketTotalsData(ApiModel):
    """data for update_totals: wei amounts as decimal strings."""

    total_pool: str
    total_yes: str
    total_no: str

    @field_validator("total_pool", "total_yes", "total_no", mode="before")
    @classmethod
    def _wei_amount(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if isinstance(v, str) and not v.isdigit():
            raise ValueError("must be a non-negative integer amount in wei")
        return v


class MarketResolveData(ApiModel):
    outcome: StrictBool


class UpdateParticipantRequest(ApiModel):
    market_id: str
    address: str
    outcome: bool
    amount: str = Field(..., description="Amount in CELO, e.g. '0.5'")
    transaction_hash: str

    @field_validator("market_id", "amount", mode="before")
    @classmethod
    def _number_to_str(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class ProcessTransactionRequest(ApiModel):
    transaction_hash: str


# --- Rooms ---
class RoomActionRequest(ApiModel):
    user_id: str
    action: str
    is_ready: bool = False


class RoomStartRequest(ApiModel):
    admin_id: str
    start_type: str


# --- Quizzes ---
class SnarkelInfoRequest(ApiModel):
    snarkel_code: str | None = None


class OptionInput(ApiModel):
    text: str = ""
    is_correct: bool = False


class QuestionInput(ApiModel):
    text: str = ""
    time_limit: int | None = None  # seconds
    options: list[OptionInput] = Field(default_factory=list)


class RewardsInput(ApiModel):
    enabled: bool = False
    type: Literal["LINEAR", "QUADRATIC"] = "LINEAR"
    token_address: str = ""
    total_winners: int | None = None
    reward_amounts: list[float] = Field(default_factory=list)
    total_reward_pool: str | None = None
    min_participants: int | None = None
    points_weight: float = 0.7


class CreateSnarkelRequest(ApiModel):
    """Body of /api/snarkel/create. Text fields default to empty so their checks report by name."""

    title: str = ""
    description: str = ""
    creator_address: str | None = None
    base_points_per_question: int = 1000
    max_speed_bonus: int = 500
    speed_bonus_enabled: bool = True
    max_questions: int = 60
    is_public: bool = True
    is_featured: bool = False
    allowlist: list[str] = Field(default_factory=list)
    start_time: int | None = Field(None, description="ms epoch")
    auto_start_enabled: bool = False
    red_code: str | None = None
    rewards: RewardsInput | None = None
    questions: list[QuestionInput] = Field(default_factory=list)


class JoinSnarkelRequest(ApiModel):
    snarkel_code: str | None = None
    wallet_address: str | None = None


class SubmitAnswerRequest(ApiModel):
    user_id: str
    question_id: str
    option_id: str | None = None
    time_to_answer: int = Field(..., ge=0, description="ms since the question was shown")


class RoomFinishRequest(ApiModel):
    admin_id: str
