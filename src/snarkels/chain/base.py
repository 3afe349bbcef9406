"""Reader protocol for the prediction market contract, so the listener can run against fakes."""

from __future__ import annotations

from typing import Protocol

from snarkels.models import ChainEvent, Market


class ChainReaderProtocol(Protocol):
    """Read-only view of the core contract."""

    def get_block_number(self) -> int: ...
    def get_market_created_events(self, from_block: int, to_block: int) -> list[ChainEvent]: ...
    def get_shares_bought_events(self, from_block: int, to_block: int) -> list[ChainEvent]: ...
    def get_market_resolved_events(self, from_block: int, to_block: int) -> list[ChainEvent]: ...
    def fetch_market(self, market_id: int | str) -> Market | None: ...
    def get_market_count(self) -> int: ...
    def get_transaction_events(self, tx_hash: str) -> list[ChainEvent]: ...
