"""Declarative storage <-> API field mapping.

Storage columns are lowercase without separators (``endtime``), API keys are
camelCase (``endTime``). Both are derived from the pydantic model fields, so a
model is the single mapping table for its storage table. ``verify_schema``
checks each mapping against the live tables at startup.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from snarkels.exceptions import SchemaMismatchError
from snarkels.models import (
    Answer,
    Market,
    MarketEvent,
    MarketParticipant,
    Option,
    Question,
    Room,
    RoomParticipant,
    Snarkel,
    SnarkelReward,
    Submission,
    SyncStatus,
    User,
)

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


def column_name(field_name: str) -> str:
    """end_time -> endtime"""
    return field_name.replace("_", "").lower()


def quote(column: str) -> str:
    return f'"{column}"'


@dataclass(frozen=True)
class FieldMap:
    """Mapping between one storage table and one API model."""

    table: str
    model: type[BaseModel]
    exclude: frozenset[str] = field(default_factory=frozenset)

    @property
    def fields(self) -> list[tuple[str, str, str]]:
        """(field name, storage column, API key) for each mapped field."""
        out = []
        for name, info in self.model.model_fields.items():
            if name in self.exclude:
                continue
            out.append((name, column_name(name), info.alias or name))
        return out

    @property
    def columns(self) -> list[str]:
        return [c for _, c, _ in self.fields]

    def select_list(self, prefix: str = "") -> str:
        return ", ".join(f"{prefix}{quote(c)}" for c in self.columns)

    def to_api(self, row: dict[str, Any]) -> dict[str, Any]:
        """Rename storage keys to API keys. Unmapped keys are dropped."""
        return {alias: row[col] for _, col, alias in self.fields if col in row}

    def to_storage(self, data: dict[str, Any]) -> dict[str, Any]:
        """Rename API (or field-name) keys to storage columns. Storage keys pass through."""
        out: dict[str, Any] = {}
        for name, col, alias in self.fields:
            for key in (col, alias, name):
                if key in data:
                    out[col] = data[key]
                    break
        return out

    def row_to_model(self, row: dict[str, Any]) -> BaseModel:
        kwargs = {name: row[col] for name, col, _ in self.fields if col in row}
        return self.model.model_validate(kwargs)

    def model_to_row(self, obj: BaseModel) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for name, col, _ in self.fields:
            value = getattr(obj, name)
            if isinstance(value, (list, dict)):
                value = json.dumps(value)
            row[col] = value
        return row


MARKETS = FieldMap("markets", Market)
MARKET_PARTICIPANTS = FieldMap("market_participants", MarketParticipant)
MARKET_EVENTS = FieldMap("market_events", MarketEvent)
SYNC_STATUS = FieldMap("sync_status", SyncStatus)
USERS = FieldMap("users", User)
SNARKELS = FieldMap("snarkels", Snarkel)
ROOMS = FieldMap("rooms", Room)
ROOM_PARTICIPANTS = FieldMap("room_participants", RoomParticipant)
QUESTIONS = FieldMap("questions", Question, exclude=frozenset({"options"}))
OPTIONS = FieldMap("options", Option)
SUBMISSIONS = FieldMap("submissions", Submission)
ANSWERS = FieldMap("answers", Answer)
SNARKEL_REWARDS = FieldMap("snarkel_rewards", SnarkelReward)

ALL_FIELD_MAPS: tuple[FieldMap, ...] = (
    MARKETS,
    MARKET_PARTICIPANTS,
    MARKET_EVENTS,
    SYNC_STATUS,
    USERS,
    SNARKELS,
    ROOMS,
    ROOM_PARTICIPANTS,
    QUESTIONS,
    OPTIONS,
    SUBMISSIONS,
    ANSWERS,
    SNARKEL_REWARDS,
)


def verify_schema(conn: DuckDBPyConnection, maps: tuple[FieldMap, ...] = ALL_FIELD_MAPS) -> None:
    """Raise SchemaMismatchError if any table has unmapped or missing columns."""
    problems: list[str] = []
    for fmap in maps:
        rows = conn.execute(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_name = ? AND table_schema = current_schema()",
            [fmap.table],
        ).fetchall()
        actual = {r[0].lower() for r in rows}
        expected = set(fmap.columns)
        if not actual:
            problems.append(f"{fmap.table}: table missing")
            continue
        for col in sorted(actual - expected):
            problems.append(f"{fmap.table}.{col}: column has no field mapping")
        for col in sorted(expected - actual):
            problems.append(f"{fmap.table}.{col}: mapped field has no column")
    if problems:
        raise SchemaMismatchError("Storage schema does not match field mappings", details=problems)
