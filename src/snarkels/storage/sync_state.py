"""Persisted listener watermark (one row per listener)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from snarkels.models import SyncStatus
from snarkels.storage.db import fetch_dict
from snarkels.storage.fields import SYNC_STATUS

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_sync_status(conn: DuckDBPyConnection, listener: str) -> SyncStatus | None:
    row = fetch_dict(
        conn,
        f"SELECT {SYNC_STATUS.select_list()} FROM sync_status WHERE listener = ?",
        [listener],
    )
    return SYNC_STATUS.row_to_model(row) if row else None


def get_last_processed_block(conn: DuckDBPyConnection, listener: str, default: int) -> int:
    status = get_sync_status(conn, listener)
    return status.last_sync_block if status is not None else default


def update_sync_status(conn: DuckDBPyConnection, listener: str, block_number: int) -> None:
    """Advance the watermark and clear any recorded error."""
    conn.execute(
        """
        INSERT INTO sync_status (listener, lastsyncblock, lastsynctime, isactive, lasterror)
        VALUES (?, ?, ?, false, NULL)
        ON CONFLICT (listener) DO UPDATE SET
            lastsyncblock = excluded.lastsyncblock,
            lastsynctime = excluded.lastsynctime,
            lasterror = NULL
        """,
        [listener, block_number, _now_iso()],
    )


def set_sync_active(conn: DuckDBPyConnection, listener: str, active: bool, default_block: int) -> None:
    """Flag the listener active/inactive, creating its row at default_block if absent."""
    conn.execute(
        """
        INSERT INTO sync_status (listener, lastsyncblock, lastsynctime, isactive, lasterror)
        VALUES (?, ?, NULL, ?, NULL)
        ON CONFLICT (listener) DO UPDATE SET isactive = excluded.isactive
        """,
        [listener, default_block, active],
    )


def mark_sync_error(conn: DuckDBPyConnection, listener: str, error_message: str, default_block: int = 0) -> None:
    """Record the last failure without touching the watermark."""
    conn.execute(
        """
        INSERT INTO sync_status (listener, lastsyncblock, lastsynctime, isactive, lasterror)
        VALUES (?, ?, NULL, false, ?)
        ON CONFLICT (listener) DO UPDATE SET lasterror = excluded.lasterror
        """,
        [listener, default_block, error_message[:1000]],
    )
