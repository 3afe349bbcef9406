"""Participant positions and the applied-event log."""

from conftest import BUYER, bought_event

from snarkels.storage.event_log import add_market_event, get_market_events, has_market_event
from snarkels.storage.participants import get_market_participants, record_purchase, update_participant_shares


def test_record_purchase_accumulates(temp_db):
    record_purchase(temp_db, "1", BUYER, True, 1000, "0xaa")
    record_purchase(temp_db, "1", BUYER, False, 400, "0xbb")
    participant = record_purchase(temp_db, "1", BUYER, True, 100, "0xcc")

    assert participant.address == BUYER.lower()
    assert participant.total_yes_shares == "1100"
    assert participant.total_no_shares == "400"
    assert participant.total_investment == "1500"
    assert participant.transaction_hashes == ["0xaa", "0xbb", "0xcc"]

    stored = get_market_participants(temp_db, "1")
    assert len(stored) == 1
    assert stored[0].total_investment == "1500"
    assert stored[0].first_purchase_at is not None


def test_uint256_amounts_survive(temp_db):
    big = 2**200
    participant = record_purchase(temp_db, "1", BUYER, True, big, "0xaa")
    assert int(participant.total_yes_shares) == big
    assert int(get_market_participants(temp_db, "1")[0].total_investment) == big


def test_update_participant_shares_sets_absolute_totals(temp_db):
    record_purchase(temp_db, "2", BUYER, True, 1000, "0xaa")
    participant = update_participant_shares(temp_db, "2", BUYER, "5", "6", "11", "0xaa")
    assert (participant.total_yes_shares, participant.total_no_shares, participant.total_investment) == ("5", "6", "11")
    # Same hash is not appended twice.
    assert participant.transaction_hashes == ["0xaa"]


def test_participants_ordered_by_investment(temp_db):
    record_purchase(temp_db, "3", "0x01", True, 900, "0x1")
    record_purchase(temp_db, "3", "0x02", True, 10000, "0x2")
    record_purchase(temp_db, "3", "0x03", False, 50, "0x3")
    record_purchase(temp_db, "4", "0x04", False, 99999, "0x4")
    assert [p.address for p in get_market_participants(temp_db, "3")] == ["0x02", "0x01", "0x03"]


def test_market_event_dedupe(temp_db):
    event = bought_event(1, block=50, amount=10, log_index=3)
    assert add_market_event(temp_db, event) is True
    assert add_market_event(temp_db, event) is False
    assert has_market_event(temp_db, event.transaction_hash.upper().replace("0X", "0x"), 3)
    assert not has_market_event(temp_db, event.transaction_hash, 4)

    events = get_market_events(temp_db, "1")
    assert len(events) == 1
    assert events[0].event_type == "SharesBought"
    assert events[0].args["amount"] == "10"
    assert events[0].to_api()["logIndex"] == 3
