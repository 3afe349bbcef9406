"""Market, MarketParticipant, MarketEvent - prediction market entities.

Field names are the Python side, aliases (camelCase) are the API side, and the
storage column is the field name without underscores (see storage.fields).
"""

from __future__ import annotations

import json
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for models exposed over the API with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class MarketStatus(IntEnum):
    OPEN = 0
    RESOLVED = 1


class Market(ApiModel):
    """Binary prediction market mirrored from the core contract.

    Amounts are wei and timestamps unix seconds, kept as decimal strings so
    uint256 values survive storage and JSON untouched.
    """

    id: str
    question: str = ""
    end_time: str = "0"
    total_pool: str = "0"
    total_yes: str = "0"
    total_no: str = "0"
    status: int = int(MarketStatus.OPEN)
    outcome: bool = False
    created_at: str = "0"
    creator: str = ""
    description: str = ""
    category: str = ""
    image: str = ""
    source: str = ""
    updated_at: str | None = None

    @field_validator("id", "end_time", "total_pool", "total_yes", "total_no", "created_at", mode="before")
    @classmethod
    def _int_to_str(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return v
        if isinstance(v, int):
            return str(v)
        return v

    @property
    def is_resolved(self) -> bool:
        return self.status == MarketStatus.RESOLVED


class MarketParticipant(ApiModel):
    """Cumulative position of one address in one market."""

    market_id: str
    address: str
    total_yes_shares: str = "0"
    total_no_shares: str = "0"
    total_investment: str = "0"
    first_purchase_at: str | None = None
    last_purchase_at: str | None = None
    transaction_hashes: list[str] = Field(default_factory=list)

    @field_validator("transaction_hashes", mode="before")
    @classmethod
    def _parse_hashes(cls, v: Any) -> Any:
        if isinstance(v, str):
            return json.loads(v) if v else []
        return v if v is not None else []


class MarketEvent(ApiModel):
    """Contract event already applied to storage."""

    id: int | None = None
    market_id: str
    event_type: str
    block_number: int = 0
    transaction_hash: str = ""
    log_index: int = 0
    args: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None

    @field_validator("args", mode="before")
    @classmethod
    def _parse_args(cls, v: Any) -> Any:
        if isinstance(v, str):
            return json.loads(v) if v else {}
        return v if v is not None else {}


class ChainEvent(BaseModel):
    """Decoded contract log. uint256 args are kept as decimal strings."""

    event_name: str
    market_id: str
    block_number: int
    transaction_hash: str
    log_index: int
    args: dict[str, Any] = Field(default_factory=dict)

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


class SyncStatus(ApiModel):
    """Persisted listener cursor."""

    listener: str
    last_sync_block: int
    last_sync_time: str | None = None
    is_active: bool = False
    last_error: str | None = None


class SyncResult(ApiModel):
    """Outcome of one check_for_new_events call."""

    from_block: int | None = None
    to_block: int | None = None
    markets_created: int = 0
    shares_bought: int = 0
    markets_resolved: int = 0

    @property
    def events_processed(self) -> int:
        return self.markets_created + self.shares_bought + self.markets_resolved


class CreateMarketParams(ApiModel):
    """Market creation input. Every field is optional so validation can report all problems."""

    question: str = ""
    end_time: int | None = None
    description: str = ""
    category: str = ""
    image: str = ""
    source: str = ""

    @field_validator("question", "description", "category", "image", "source", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class ValidationResult(ApiModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
