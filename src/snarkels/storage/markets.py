"""Market persistence and API-shaped reads."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from snarkels.exceptions import ValidationError
from snarkels.models import Market, MarketStatus
from snarkels.storage.db import fetch_dict, fetch_dicts
from snarkels.storage.fields import MARKETS, quote

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

# Same ordering for list and paginated reads, so pages concatenate to the full list.
_SORTS = {
    "newest": "TRY_CAST(createdat AS DOUBLE) DESC NULLS LAST, id DESC",
    "oldest": "TRY_CAST(createdat AS DOUBLE) ASC NULLS LAST, id ASC",
    "volume": "TRY_CAST(totalpool AS DOUBLE) DESC NULLS LAST, id DESC",
    "ending": "TRY_CAST(endtime AS DOUBLE) ASC NULLS LAST, id ASC",
}

CATEGORY_COLORS = {
    "Politics": "#EF4444",
    "Sports": "#10B981",
    "Technology": "#3B82F6",
    "Entertainment": "#8B5CF6",
    "Finance": "#F59E0B",
    "Science": "#6366F1",
    "Weather": "#06B6D4",
    "Other": "#6B7280",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_market(data: Market | dict[str, Any]) -> Market:
    if isinstance(data, Market):
        return data
    return MARKETS.row_to_model(MARKETS.to_storage(data))


def get_all_markets(conn: DuckDBPyConnection) -> list[Market]:
    """All markets, newest first."""
    rows = fetch_dicts(conn, f"SELECT {MARKETS.select_list()} FROM markets ORDER BY {_SORTS['newest']}")
    return [MARKETS.row_to_model(r) for r in rows]


def get_market_by_id(conn: DuckDBPyConnection, market_id: str | int) -> Market | None:
    row = fetch_dict(
        conn,
        f"SELECT {MARKETS.select_list()} FROM markets WHERE id = ?",
        [str(market_id)],
    )
    return MARKETS.row_to_model(row) if row else None


def get_markets_paginated(
    conn: DuckDBPyConnection,
    page: int = 1,
    limit: int = 12,
    search: str | None = None,
    category: str | None = None,
    sort_by: str = "newest",
    status: int | None = None,
) -> dict[str, Any]:
    """One page of markets plus pagination metadata. page is 1-based."""
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive", details={"page": page, "limit": limit})
    where: list[str] = []
    params: list[Any] = []
    if search:
        where.append("(question ILIKE ? OR description ILIKE ? OR category ILIKE ?)")
        like = f"%{search}%"
        params.extend([like, like, like])
    if category and category != "all":
        where.append("category = ?")
        params.append(category)
    if status is not None:
        where.append("status = ?")
        params.append(int(status))
    where_sql = f"WHERE {' AND '.join(where)}" if where else ""
    order_sql = _SORTS.get(sort_by, _SORTS["newest"])

    total = conn.execute(f"SELECT COUNT(*) FROM markets {where_sql}", params).fetchone()[0]
    rows = fetch_dicts(
        conn,
        f"SELECT {MARKETS.select_list()} FROM markets {where_sql} ORDER BY {order_sql} LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit],
    )
    total_pages = (total + limit - 1) // limit
    return {
        "markets": [MARKETS.row_to_model(r) for r in rows],
        "pagination": {
            "currentPage": page,
            "totalPages": total_pages,
            "totalMarkets": total,
            "hasNextPage": page < total_pages,
            "hasPrevPage": page > 1,
            "limit": limit,
        },
    }


def upsert_market(conn: DuckDBPyConnection, data: Market | dict[str, Any]) -> Market:
    """Insert or replace a market by id. Accepts a Market, storage keys or API keys."""
    market = _to_market(data).model_copy(update={"updated_at": _now_iso()})
    row = MARKETS.model_to_row(market)
    columns = list(row)
    updates = ", ".join(f"{quote(c)} = excluded.{quote(c)}" for c in columns if c != "id")
    conn.execute(
        f"""
        INSERT INTO markets ({", ".join(quote(c) for c in columns)})
        VALUES ({", ".join("?" for _ in columns)})
        ON CONFLICT (id) DO UPDATE SET {updates}
        """,
        [row[c] for c in columns],
    )
    return market


def upsert_markets(conn: DuckDBPyConnection, markets: list[Market | dict[str, Any]]) -> list[Market]:
    """Upsert multiple markets."""
    return [upsert_market(conn, m) for m in markets]


def update_market_totals(
    conn: DuckDBPyConnection,
    market_id: str | int,
    total_pool: str | int,
    total_yes: str | int,
    total_no: str | int,
) -> Market | None:
    """Set pool totals after a share purchase. None if the market is unknown."""
    updated = conn.execute(
        """
        UPDATE markets SET totalpool = ?, totalyes = ?, totalno = ?, updatedat = ?
        WHERE id = ?
        RETURNING id
        """,
        [str(total_pool), str(total_yes), str(total_no), _now_iso(), str(market_id)],
    ).fetchall()
    if not updated:
        return None
    return get_market_by_id(conn, market_id)


def resolve_market(conn: DuckDBPyConnection, market_id: str | int, outcome: bool) -> Market | None:
    """Mark resolved with the given outcome. Re-resolving simply overwrites the outcome."""
    updated = conn.execute(
        "UPDATE markets SET status = ?, outcome = ?, updatedat = ? WHERE id = ? RETURNING id",
        [int(MarketStatus.RESOLVED), bool(outcome), _now_iso(), str(market_id)],
    ).fetchall()
    if not updated:
        return None
    return get_market_by_id(conn, market_id)


def get_categories(conn: DuckDBPyConnection) -> list[dict[str, str]]:
    """Distinct categories with display colours, prefixed by the 'all' pseudo-category."""
    rows = conn.execute(
        "SELECT DISTINCT category FROM markets WHERE category IS NOT NULL AND TRIM(category) != '' ORDER BY category"
    ).fetchall()
    categories = [{"id": "all", "name": "All Markets", "color": CATEGORY_COLORS["Other"]}]
    for (name,) in rows:
        categories.append(
            {"id": name.lower(), "name": name, "color": CATEGORY_COLORS.get(name, CATEGORY_COLORS["Other"])}
        )
    return categories


def get_market_stats(conn: DuckDBPyConnection) -> dict[str, Any]:
    """Market counts and total traded volume (wei, as string)."""
    statuses = [r[0] for r in conn.execute("SELECT status FROM markets").fetchall()]
    total_volume = 0
    for (args,) in conn.execute("SELECT args FROM market_events WHERE eventtype = 'SharesBought'").fetchall():
        try:
            parsed = json.loads(args) if isinstance(args, str) else (args or {})
            total_volume += int(parsed.get("amount", 0))
        except (TypeError, ValueError):
            continue
    if total_volume == 0:
        for (investment,) in conn.execute("SELECT totalinvestment FROM market_participants").fetchall():
            try:
                total_volume += int(investment)
            except (TypeError, ValueError):
                continue
    return {
        "totalMarkets": len(statuses),
        "activeMarkets": sum(1 for s in statuses if s == MarketStatus.OPEN),
        "resolvedMarkets": sum(1 for s in statuses if s == MarketStatus.RESOLVED),
        "totalVolume": str(total_volume),
    }
