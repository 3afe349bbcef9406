"""Storage <-> API field mapping and schema verification."""

import pytest

from snarkels.exceptions import SchemaMismatchError
from snarkels.storage.fields import MARKET_PARTICIPANTS, MARKETS, QUESTIONS, column_name, verify_schema


def test_column_name_drops_underscores():
    assert column_name("end_time") == "endtime"
    assert column_name("total_yes_shares") == "totalyesshares"


def test_market_field_round_trip():
    assert MARKETS.to_api({"endtime": "1757084760"}) == {"endTime": "1757084760"}
    assert MARKETS.to_storage({"endTime": "1757084760"}) == {"endtime": "1757084760"}


def test_to_storage_accepts_storage_and_field_names():
    out = MARKETS.to_storage({"totalpool": "5", "total_yes": "3", "totalNo": "2", "unknown": 1})
    assert out == {"totalpool": "5", "totalyes": "3", "totalno": "2"}


def test_to_api_drops_unmapped_keys():
    out = MARKET_PARTICIPANTS.to_api({"marketid": "1", "address": "0xabc", "junk": True})
    assert out == {"marketId": "1", "address": "0xabc"}


def test_excluded_fields_are_not_columns():
    assert "options" not in QUESTIONS.columns
    assert "order" in QUESTIONS.columns


def test_verify_schema_passes_after_init(temp_db):
    verify_schema(temp_db)


def test_verify_schema_reports_unmapped_column(temp_db):
    temp_db.execute("ALTER TABLE markets ADD COLUMN volume24h VARCHAR")
    with pytest.raises(SchemaMismatchError) as exc:
        verify_schema(temp_db)
    assert "markets.volume24h: column has no field mapping" in exc.value.details


def test_verify_schema_reports_missing_column(temp_db):
    temp_db.execute("ALTER TABLE markets DROP COLUMN image")
    with pytest.raises(SchemaMismatchError) as exc:
        verify_schema(temp_db)
    assert "markets.image: mapped field has no column" in exc.value.details
