"""Market participant positions."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from snarkels.models import MarketParticipant
from snarkels.storage.db import fetch_dict, fetch_dicts
from snarkels.storage.fields import MARKET_PARTICIPANTS

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_participant(conn: DuckDBPyConnection, market_id: str | int, address: str) -> MarketParticipant | None:
    row = fetch_dict(
        conn,
        f"SELECT {MARKET_PARTICIPANTS.select_list()} FROM market_participants WHERE marketid = ? AND address = ?",
        [str(market_id), address.lower()],
    )
    return MARKET_PARTICIPANTS.row_to_model(row) if row else None


def get_market_participants(conn: DuckDBPyConnection, market_id: str | int) -> list[MarketParticipant]:
    """Participants of a market, largest investment first."""
    rows = fetch_dicts(
        conn,
        f"""
        SELECT {MARKET_PARTICIPANTS.select_list()} FROM market_participants
        WHERE marketid = ?
        ORDER BY TRY_CAST(totalinvestment AS DOUBLE) DESC NULLS LAST, address
        """,
        [str(market_id)],
    )
    return [MARKET_PARTICIPANTS.row_to_model(r) for r in rows]


def update_participant_shares(
    conn: DuckDBPyConnection,
    market_id: str | int,
    address: str,
    yes_shares: str | int,
    no_shares: str | int,
    total_investment: str | int,
    transaction_hash: str,
) -> MarketParticipant:
    """Set absolute share totals for an address and append the transaction hash."""
    address = address.lower()
    now = _now_iso()
    existing = get_participant(conn, market_id, address)
    if existing is None:
        participant = MarketParticipant(
            market_id=str(market_id),
            address=address,
            total_yes_shares=str(yes_shares),
            total_no_shares=str(no_shares),
            total_investment=str(total_investment),
            first_purchase_at=now,
            last_purchase_at=now,
            transaction_hashes=[transaction_hash] if transaction_hash else [],
        )
        row = MARKET_PARTICIPANTS.model_to_row(participant)
        columns = list(row)
        conn.execute(
            f"INSERT INTO market_participants ({MARKET_PARTICIPANTS.select_list()}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            [row[c] for c in columns],
        )
        return participant

    hashes = list(existing.transaction_hashes)
    if transaction_hash and transaction_hash not in hashes:
        hashes.append(transaction_hash)
    participant = existing.model_copy(
        update={
            "total_yes_shares": str(yes_shares),
            "total_no_shares": str(no_shares),
            "total_investment": str(total_investment),
            "last_purchase_at": now,
            "transaction_hashes": hashes,
        }
    )
    conn.execute(
        """
        UPDATE market_participants
        SET totalyesshares = ?, totalnoshares = ?, totalinvestment = ?, lastpurchaseat = ?, transactionhashes = ?
        WHERE marketid = ? AND address = ?
        """,
        [
            participant.total_yes_shares,
            participant.total_no_shares,
            participant.total_investment,
            now,
            json.dumps(hashes),
            str(market_id),
            address,
        ],
    )
    return participant


def record_purchase(
    conn: DuckDBPyConnection,
    market_id: str | int,
    address: str,
    is_yes: bool,
    amount: int,
    transaction_hash: str,
) -> MarketParticipant:
    """Add one share purchase (amount in wei) to the buyer's cumulative totals."""
    existing = get_participant(conn, market_id, address)
    yes = int(existing.total_yes_shares) if existing else 0
    no = int(existing.total_no_shares) if existing else 0
    invested = int(existing.total_investment) if existing else 0
    if is_yes:
        yes += amount
    else:
        no += amount
    return update_participant_shares(
        conn, market_id, address, yes, no, invested + amount, transaction_hash
    )
