"""Shared fixtures: temporary DuckDB files and in-memory chain fakes."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from snarkels.models import ChainEvent, Market
from snarkels.storage.db import get_connection, init_schema

BUYER = "0xAbCdEf0000000000000000000000000000000001"
CREATOR = "0x1111111111111111111111111111111111111111"


@pytest.fixture
def temp_db():
    tmp = tempfile.mkdtemp()
    path = Path(tmp) / "test.duckdb"
    conn = get_connection(path)
    init_schema(conn)
    yield conn
    conn.close()
    path.unlink(missing_ok=True)
    Path(tmp).rmdir()


@pytest.fixture
def db_path(tmp_path):
    """Path to an initialised database file, with no connection held open."""
    path = tmp_path / "test.duckdb"
    conn = get_connection(path)
    init_schema(conn)
    conn.close()
    return path


def make_market(market_id: int | str, **overrides) -> Market:
    data = {
        "id": str(market_id),
        "question": f"Will market {market_id} resolve yes?",
        "end_time": "1900000000",
        "total_pool": "0",
        "total_yes": "0",
        "total_no": "0",
        "status": 0,
        "outcome": False,
        "created_at": str(1700000000 + int(market_id)),
        "creator": CREATOR,
        "description": "Test market",
        "category": "Sports",
        "image": "",
        "source": "",
    }
    data.update(overrides)
    return Market(**data)


def created_event(market_id: int, block: int, log_index: int = 0, tx: str | None = None) -> ChainEvent:
    return ChainEvent(
        event_name="MarketCreated",
        market_id=str(market_id),
        block_number=block,
        transaction_hash=tx or f"0x{block:04x}{log_index:04x}c0",
        log_index=log_index,
        args={
            "marketId": str(market_id),
            "creator": CREATOR,
            "question": f"Will market {market_id} resolve yes?",
            "description": "Test market",
            "source": "",
            "endTime": "1900000000",
            "creationFee": "10000000000000000",
        },
    )


def bought_event(
    market_id: int,
    block: int,
    amount: int,
    is_yes: bool = True,
    log_index: int = 0,
    buyer: str = BUYER,
    tx: str | None = None,
) -> ChainEvent:
    return ChainEvent(
        event_name="SharesBought",
        market_id=str(market_id),
        block_number=block,
        transaction_hash=tx or f"0x{block:04x}{log_index:04x}b0",
        log_index=log_index,
        args={
            "marketId": str(market_id),
            "buyer": buyer,
            "shares": str(amount),
            "amount": str(amount),
            "isYes": is_yes,
        },
    )


def resolved_event(market_id: int, block: int, outcome: bool, log_index: int = 0) -> ChainEvent:
    return ChainEvent(
        event_name="MarketResolved",
        market_id=str(market_id),
        block_number=block,
        transaction_hash=f"0x{block:04x}{log_index:04x}r0",
        log_index=log_index,
        args={"marketId": str(market_id), "resolver": CREATOR, "outcome": outcome},
    )


class FakeChainReader:
    """In-memory stand-in for ChainReader. Set fail_from_block to make log queries raise."""

    def __init__(self, head: int = 0, events: list[ChainEvent] | None = None, markets: list[Market] | None = None):
        self.head = head
        self.events = list(events or [])
        self.markets = {m.id: m for m in (markets or [])}
        self.fail_from_block: int | None = None
        self.log_ranges: list[tuple[int, int]] = []
        self.fetched: list[str] = []

    def get_block_number(self) -> int:
        return self.head

    def _events(self, name: str, from_block: int, to_block: int) -> list[ChainEvent]:
        if self.fail_from_block is not None and to_block >= self.fail_from_block:
            raise RuntimeError(f"rpc unavailable for blocks {from_block}-{to_block}")
        return [e for e in self.events if e.event_name == name and from_block <= e.block_number <= to_block]

    def get_market_created_events(self, from_block: int, to_block: int) -> list[ChainEvent]:
        self.log_ranges.append((from_block, to_block))
        return self._events("MarketCreated", from_block, to_block)

    def get_shares_bought_events(self, from_block: int, to_block: int) -> list[ChainEvent]:
        return self._events("SharesBought", from_block, to_block)

    def get_market_resolved_events(self, from_block: int, to_block: int) -> list[ChainEvent]:
        return self._events("MarketResolved", from_block, to_block)

    def fetch_market(self, market_id) -> Market | None:
        self.fetched.append(str(market_id))
        return self.markets.get(str(market_id))

    def get_market_count(self) -> int:
        return len(self.markets)

    def get_transaction_events(self, tx_hash: str) -> list[ChainEvent]:
        return sorted(
            (e for e in self.events if e.transaction_hash == tx_hash.lower()),
            key=lambda e: e.sort_key,
        )


class _FakeEth:
    def __init__(self, gas: int):
        self.gas = gas
        self.estimates: list[dict] = []

    def estimate_gas(self, tx: dict) -> int:
        self.estimates.append(tx)
        return self.gas


class FakeW3:
    """Only what MarketCreationService touches: eth.estimate_gas."""

    def __init__(self, gas: int = 250_000):
        self.eth = _FakeEth(gas)


@pytest.fixture
def fake_reader():
    return FakeChainReader()


@pytest.fixture
def fake_w3():
    return FakeW3()
