"""Market persistence, pagination, categories and stats."""

import pytest
from conftest import created_event, make_market

from snarkels.exceptions import ValidationError
from snarkels.models import ChainEvent
from snarkels.storage.event_log import add_market_event
from snarkels.storage.markets import (
    get_all_markets,
    get_categories,
    get_market_by_id,
    get_market_stats,
    get_markets_paginated,
    resolve_market,
    update_market_totals,
    upsert_market,
    upsert_markets,
)


def test_upsert_same_id_keeps_one_row(temp_db):
    upsert_market(temp_db, make_market(1, question="First"))
    upsert_market(temp_db, make_market(1, question="Second"))
    assert temp_db.execute("SELECT COUNT(*) FROM markets").fetchone()[0] == 1
    market = get_market_by_id(temp_db, 1)
    assert market.question == "Second"
    assert market.updated_at is not None


def test_upsert_accepts_api_and_storage_keys(temp_db):
    upsert_market(temp_db, {"id": "7", "question": "Q", "endTime": "1900000000", "totalpool": "42"})
    market = get_market_by_id(temp_db, "7")
    assert market.end_time == "1900000000"
    assert market.total_pool == "42"
    assert market.to_api()["endTime"] == "1900000000"


def test_get_market_by_id_unknown(temp_db):
    assert get_market_by_id(temp_db, 999) is None


def test_pages_concatenate_to_full_list(temp_db):
    markets = [make_market(i) for i in range(1, 8)]
    # Equal createdAt on two rows exercises the id tiebreak.
    markets.append(make_market(8, created_at=markets[0].created_at))
    upsert_markets(temp_db, markets)

    all_ids = [m.id for m in get_all_markets(temp_db)]
    paged: list[str] = []
    page = 1
    while True:
        data = get_markets_paginated(temp_db, page=page, limit=3)
        assert len(data["markets"]) <= 3
        paged.extend(m.id for m in data["markets"])
        if not data["pagination"]["hasNextPage"]:
            break
        page += 1

    assert paged == all_ids
    assert data["pagination"]["totalPages"] == 3
    assert data["pagination"]["totalMarkets"] == 8


def test_pagination_total_respects_filters(temp_db):
    upsert_markets(
        temp_db,
        [
            make_market(1, category="Sports", question="Will the Lakers win?"),
            make_market(2, category="Politics", question="Will the bill pass?"),
            make_market(3, category="Sports", question="Will Arsenal win?"),
        ],
    )
    data = get_markets_paginated(temp_db, category="Sports")
    assert data["pagination"]["totalMarkets"] == 2
    data = get_markets_paginated(temp_db, search="lakers")
    assert [m.id for m in data["markets"]] == ["1"]
    assert data["pagination"]["totalMarkets"] == 1


def test_sort_by_volume_is_numeric(temp_db):
    upsert_markets(
        temp_db,
        [make_market(1, total_pool="900"), make_market(2, total_pool="10000"), make_market(3, total_pool="50")],
    )
    data = get_markets_paginated(temp_db, sort_by="volume")
    assert [m.id for m in data["markets"]] == ["2", "1", "3"]


def test_invalid_page_rejected(temp_db):
    with pytest.raises(ValidationError):
        get_markets_paginated(temp_db, page=0)
    with pytest.raises(ValidationError):
        get_markets_paginated(temp_db, limit=0)


def test_resolve_market(temp_db):
    upsert_market(temp_db, make_market(3))
    resolve_market(temp_db, 3, True)
    market = get_market_by_id(temp_db, 3)
    assert market.status == 1
    assert market.outcome is True
    assert market.is_resolved


def test_resolve_unknown_market_returns_none(temp_db):
    assert resolve_market(temp_db, 404, False) is None


def test_update_totals(temp_db):
    upsert_market(temp_db, make_market(5))
    market = update_market_totals(temp_db, 5, "300", "200", "100")
    assert (market.total_pool, market.total_yes, market.total_no) == ("300", "200", "100")
    assert update_market_totals(temp_db, 6, "1", "1", "0") is None


def test_categories(temp_db):
    upsert_markets(temp_db, [make_market(1, category="Sports"), make_market(2, category="Crypto")])
    categories = get_categories(temp_db)
    assert categories[0]["id"] == "all"
    names = [c["name"] for c in categories[1:]]
    assert names == ["Crypto", "Sports"]
    assert categories[2]["color"] == "#10B981"


def test_market_stats_sums_purchase_events(temp_db):
    upsert_markets(temp_db, [make_market(1), make_market(2, status=1, outcome=True)])
    add_market_event(temp_db, created_event(1, block=10))
    for i, amount in enumerate([1000, 2500]):
        add_market_event(
            temp_db,
            ChainEvent(
                event_name="SharesBought",
                market_id="1",
                block_number=11,
                transaction_hash=f"0xfeed{i}",
                log_index=i,
                args={"amount": str(amount), "isYes": True},
            ),
        )
    stats = get_market_stats(temp_db)
    assert stats == {"totalMarkets": 2, "activeMarkets": 1, "resolvedMarkets": 1, "totalVolume": "3500"}
