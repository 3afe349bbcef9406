"""DuckDB connection and schema init."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import duckdb

from snarkels.storage.fields import verify_schema

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

SCHEMA_SQL = """
-- Sequences for auto-increment IDs
CREATE SEQUENCE IF NOT EXISTS market_event_seq START 1;

-- Markets mirrored from the core contract (amounts in wei, times in unix seconds)
CREATE TABLE IF NOT EXISTS markets (
    id              VARCHAR PRIMARY KEY,
    question        VARCHAR NOT NULL,
    endtime         VARCHAR NOT NULL,
    totalpool       VARCHAR NOT NULL,
    totalyes        VARCHAR NOT NULL,
    totalno         VARCHAR NOT NULL,
    status          INTEGER NOT NULL,
    outcome         BOOLEAN NOT NULL,
    createdat       VARCHAR NOT NULL,
    creator         VARCHAR,
    description     VARCHAR,
    category        VARCHAR,
    image           VARCHAR,
    source          VARCHAR,
    updatedat       VARCHAR
);

-- Cumulative position per (market, address)
CREATE TABLE IF NOT EXISTS market_participants (
    marketid            VARCHAR NOT NULL,
    address             VARCHAR NOT NULL,
    totalyesshares      VARCHAR NOT NULL,
    totalnoshares       VARCHAR NOT NULL,
    totalinvestment     VARCHAR NOT NULL,
    firstpurchaseat     VARCHAR,
    lastpurchaseat      VARCHAR,
    transactionhashes   JSON,
    PRIMARY KEY (marketid, address)
);

-- Contract events already applied (dedupe on tx hash + log index)
CREATE TABLE IF NOT EXISTS market_events (
    id              BIGINT PRIMARY KEY DEFAULT nextval('market_event_seq'),
    marketid        VARCHAR NOT NULL,
    eventtype       VARCHAR NOT NULL,
    blocknumber     BIGINT NOT NULL,
    transactionhash VARCHAR NOT NULL,
    logindex        INTEGER NOT NULL,
    args            JSON,
    createdat       VARCHAR,
    UNIQUE (transactionhash, logindex)
);

-- Listener watermark, one row per listener
CREATE TABLE IF NOT EXISTS sync_status (
    listener        VARCHAR PRIMARY KEY,
    lastsyncblock   BIGINT NOT NULL,
    lastsynctime    VARCHAR,
    isactive        BOOLEAN NOT NULL,
    lasterror       VARCHAR
);

CREATE TABLE IF NOT EXISTS users (
    id              VARCHAR PRIMARY KEY,
    address         VARCHAR NOT NULL UNIQUE,
    name            VARCHAR,
    totalpoints     INTEGER NOT NULL,
    createdat       BIGINT
);

-- Quizzes
CREATE TABLE IF NOT EXISTS snarkels (
    id                      VARCHAR PRIMARY KEY,
    title                   VARCHAR NOT NULL,
    description             VARCHAR,
    snarkelcode             VARCHAR NOT NULL UNIQUE,
    creatorid               VARCHAR NOT NULL,
    ispublic                BOOLEAN NOT NULL,
    isactive                BOOLEAN NOT NULL,
    isfeatured              BOOLEAN NOT NULL,
    maxquestions            INTEGER NOT NULL,
    basepointsperquestion   INTEGER NOT NULL,
    speedbonusenabled       BOOLEAN NOT NULL,
    maxspeedbonus           INTEGER NOT NULL,
    rewardsenabled          BOOLEAN NOT NULL,
    iscompleted             BOOLEAN NOT NULL,
    completedat             BIGINT,
    starttime               BIGINT,
    autostartenabled        BOOLEAN NOT NULL,
    createdat               BIGINT
);

CREATE TABLE IF NOT EXISTS snarkel_allowlists (
    snarkelid       VARCHAR NOT NULL,
    address         VARCHAR NOT NULL,
    PRIMARY KEY (snarkelid, address)
);

-- Live quiz sessions
CREATE TABLE IF NOT EXISTS rooms (
    id                      VARCHAR PRIMARY KEY,
    name                    VARCHAR NOT NULL,
    description             VARCHAR,
    snarkelid               VARCHAR NOT NULL,
    adminid                 VARCHAR NOT NULL,
    maxparticipants         INTEGER NOT NULL,
    minparticipants         INTEGER NOT NULL,
    currentparticipants     INTEGER NOT NULL,
    isactive                BOOLEAN NOT NULL,
    iswaiting               BOOLEAN NOT NULL,
    isstarted               BOOLEAN NOT NULL,
    isfinished              BOOLEAN NOT NULL,
    countdownduration       INTEGER NOT NULL,
    autostartenabled        BOOLEAN NOT NULL,
    actualstarttime         BIGINT,
    sessionnumber           INTEGER NOT NULL,
    createdat               BIGINT
);

CREATE TABLE IF NOT EXISTS room_participants (
    id              VARCHAR PRIMARY KEY,
    roomid          VARCHAR NOT NULL,
    userid          VARCHAR NOT NULL,
    isadmin         BOOLEAN NOT NULL,
    isready         BOOLEAN NOT NULL,
    isactive        BOOLEAN NOT NULL,
    joinedat        BIGINT,
    UNIQUE (roomid, userid)
);

CREATE TABLE IF NOT EXISTS questions (
    id              VARCHAR PRIMARY KEY,
    snarkelid       VARCHAR NOT NULL,
    text            VARCHAR NOT NULL,
    timelimit       INTEGER NOT NULL,
    "order"         INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS options (
    id              VARCHAR PRIMARY KEY,
    questionid      VARCHAR NOT NULL,
    text            VARCHAR NOT NULL,
    iscorrect       BOOLEAN NOT NULL,
    "order"         INTEGER NOT NULL
);

-- Quiz results
CREATE TABLE IF NOT EXISTS submissions (
    id              VARCHAR PRIMARY KEY,
    snarkelid       VARCHAR NOT NULL,
    userid          VARCHAR NOT NULL,
    roomid          VARCHAR,
    score           INTEGER NOT NULL,
    totalquestions  INTEGER NOT NULL,
    correctanswers  INTEGER NOT NULL,
    completedat     BIGINT,
    UNIQUE (snarkelid, userid, roomid)
);

CREATE TABLE IF NOT EXISTS answers (
    id              VARCHAR PRIMARY KEY,
    submissionid    VARCHAR NOT NULL,
    questionid      VARCHAR NOT NULL,
    optionid        VARCHAR,
    iscorrect       BOOLEAN NOT NULL,
    timetoanswer    INTEGER,
    pointsearned    INTEGER NOT NULL,
    UNIQUE (submissionid, questionid)
);

CREATE TABLE IF NOT EXISTS snarkel_rewards (
    snarkelid           VARCHAR PRIMARY KEY,
    rewardtype          VARCHAR NOT NULL,
    tokenaddress        VARCHAR NOT NULL,
    totalwinners        INTEGER,
    rewardamounts       VARCHAR,
    totalrewardpool     VARCHAR,
    minparticipants     INTEGER,
    pointsweight        DOUBLE NOT NULL,
    isdistributed       BOOLEAN NOT NULL
);
"""


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager.
    ``:memory:`` is passed through for throwaway databases."""
    if str(db_path) == ":memory:":
        return duckdb.connect(":memory:")
    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables and sequences if they do not exist, then check field mappings."""
    for stmt in SCHEMA_SQL.split(";"):
        stmt = stmt.strip()
        if stmt:
            try:
                conn.execute(stmt)
            except duckdb.Error as e:
                if "already exists" not in str(e).lower():
                    raise
    verify_schema(conn)


def fetch_dicts(conn: DuckDBPyConnection, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
    """Run a query and return rows as dicts keyed by column name."""
    cur = conn.execute(sql, params or [])
    columns = [d[0] for d in cur.description]
    return [dict(zip(columns, r)) for r in cur.fetchall()]


def fetch_dict(conn: DuckDBPyConnection, sql: str, params: list[Any] | None = None) -> dict[str, Any] | None:
    rows = fetch_dicts(conn, sql, params)
    return rows[0] if rows else None
