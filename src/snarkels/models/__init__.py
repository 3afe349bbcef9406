"""Canonical schema (Pydantic) - markets, participants, quizzes, rooms."""

from snarkels.models.market import (
    ApiModel,
    ChainEvent,
    CreateMarketParams,
    Market,
    MarketEvent,
    MarketParticipant,
    MarketStatus,
    SyncResult,
    SyncStatus,
    ValidationResult,
)
from snarkels.models.quiz import (
    Answer,
    Option,
    Question,
    Room,
    RoomParticipant,
    RoomState,
    Snarkel,
    SnarkelReward,
    Submission,
    User,
)

__all__ = [
    "ApiModel",
    "ChainEvent",
    "CreateMarketParams",
    "Market",
    "MarketEvent",
    "MarketParticipant",
    "MarketStatus",
    "SyncResult",
    "SyncStatus",
    "ValidationResult",
    "Answer",
    "Option",
    "Question",
    "Room",
    "RoomParticipant",
    "RoomState",
    "Snarkel",
    "SnarkelReward",
    "Submission",
    "User",
]
