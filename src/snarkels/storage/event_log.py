"""Applied contract events - append and query."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from snarkels.models import ChainEvent, MarketEvent
from snarkels.storage.db import fetch_dicts
from snarkels.storage.fields import MARKET_EVENTS

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


def has_market_event(conn: DuckDBPyConnection, transaction_hash: str, log_index: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM market_events WHERE transactionhash = ? AND logindex = ? LIMIT 1",
        [transaction_hash.lower(), log_index],
    ).fetchone()
    return row is not None


def has_transaction_event(conn: DuckDBPyConnection, transaction_hash: str, event_type: str) -> bool:
    """True if any event of this type from the transaction was recorded."""
    row = conn.execute(
        "SELECT 1 FROM market_events WHERE transactionhash = ? AND eventtype = ? LIMIT 1",
        [transaction_hash.lower(), event_type],
    ).fetchone()
    return row is not None


def add_market_event(conn: DuckDBPyConnection, event: ChainEvent) -> bool:
    """Record an applied event. Returns False if it was already recorded."""
    tx_hash = event.transaction_hash.lower()
    if has_market_event(conn, tx_hash, event.log_index):
        return False
    conn.execute(
        """
        INSERT INTO market_events (marketid, eventtype, blocknumber, transactionhash, logindex, args, createdat)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            event.market_id,
            event.event_name,
            event.block_number,
            tx_hash,
            event.log_index,
            json.dumps(event.args),
            datetime.now(timezone.utc).isoformat(),
        ],
    )
    return True


def get_market_events(conn: DuckDBPyConnection, market_id: str | int) -> list[MarketEvent]:
    """Events for a market, latest block first."""
    rows = fetch_dicts(
        conn,
        f"""
        SELECT {MARKET_EVENTS.select_list()} FROM market_events
        WHERE marketid = ?
        ORDER BY blocknumber DESC, logindex DESC
        """,
        [str(market_id)],
    )
    return [MARKET_EVENTS.row_to_model(r) for r in rows]


def event_stats(conn: DuckDBPyConnection) -> dict[str, int]:
    """Count of applied events by type."""
    rows = conn.execute(
        "SELECT eventtype, COUNT(*) FROM market_events GROUP BY eventtype ORDER BY eventtype"
    ).fetchall()
    return {r[0]: r[1] for r in rows}
