"""Contract event listener - block-range scans into DuckDB with a persisted watermark."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import structlog

from snarkels.chain.base import ChainReaderProtocol
from snarkels.models import ChainEvent, Market, SyncResult
from snarkels.storage.db import get_connection, init_schema
from snarkels.storage.event_log import add_market_event, event_stats, has_market_event, has_transaction_event
from snarkels.storage.markets import get_market_by_id, resolve_market, upsert_market, upsert_markets
from snarkels.storage.participants import get_participant, record_purchase
from snarkels.storage.sync_state import (
    get_last_processed_block,
    get_sync_status,
    mark_sync_error,
    set_sync_active,
    update_sync_status,
)

log = structlog.get_logger(__name__)

SYNC_BATCH_SIZE = 10


class EventListener:
    """Scans MarketCreated, SharesBought and MarketResolved logs and mirrors them to storage.

    The listener does not schedule itself; callers trigger ``check_for_new_events``
    (HTTP sync routes or ``snarkels sync watch``). Each block chunk and its
    watermark commit together, so a failed chunk is retried on the next call.
    """

    def __init__(
        self,
        db_path: str | Path,
        reader: ChainReaderProtocol,
        start_block: int = 0,
        max_block_range: int = 5000,
        name: str = "prediction_market_core",
    ):
        if max_block_range < 1:
            raise ValueError("max_block_range must be positive")
        self.db_path = db_path
        self.reader = reader
        self.start_block = start_block
        self.max_block_range = max_block_range
        self.name = name
        self.is_listening = False
        self.last_processed_block: int | None = None
        self._lock = threading.RLock()
        self._conn = None

    def _get_conn(self):
        if self._conn is None:
            self._conn = get_connection(self.db_path)
            init_schema(self._conn)
        return self._conn

    def _load_watermark(self) -> int:
        self.last_processed_block = get_last_processed_block(self._get_conn(), self.name, self.start_block - 1)
        return self.last_processed_block

    def start_listening(self) -> SyncResult | None:
        """Mark active and run the initial scan. No-op when already listening."""
        with self._lock:
            if self.is_listening:
                log.info("listener_already_running", listener=self.name)
                return None
            conn = self._get_conn()
            set_sync_active(conn, self.name, True, self.start_block - 1)
            self.is_listening = True
            watermark = self._load_watermark()
            log.info("listener_started", listener=self.name, from_block=watermark + 1)
            return self.check_for_new_events()

    def stop_listening(self) -> None:
        with self._lock:
            if not self.is_listening:
                return
            set_sync_active(self._get_conn(), self.name, False, self.start_block - 1)
            self.is_listening = False
            log.info("listener_stopped", listener=self.name, last_block=self.last_processed_block)

    def check_for_new_events(self) -> SyncResult:
        """Scan from the watermark to the chain head in chunks of max_block_range."""
        with self._lock:
            conn = self._get_conn()
            watermark = self._load_watermark()
            head = self.reader.get_block_number()
            if watermark >= head:
                log.debug("listener_up_to_date", listener=self.name, block=watermark)
                return SyncResult(to_block=watermark)

            result = SyncResult(from_block=watermark + 1, to_block=watermark)
            lo = watermark + 1
            while lo <= head:
                hi = min(lo + self.max_block_range - 1, head)
                self._scan_chunk(conn, lo, hi, result)
                result.to_block = hi
                lo = hi + 1
            log.info(
                "listener_scan_done",
                listener=self.name,
                from_block=result.from_block,
                to_block=result.to_block,
                events=result.events_processed,
            )
            return result

    def _scan_chunk(self, conn: Any, from_block: int, to_block: int, result: SyncResult) -> None:
        try:
            events = (
                self.reader.get_market_created_events(from_block, to_block)
                + self.reader.get_shares_bought_events(from_block, to_block)
                + self.reader.get_market_resolved_events(from_block, to_block)
            )
            events.sort(key=lambda e: e.sort_key)
            conn.begin()
            try:
                for event in events:
                    self._apply(conn, event, result)
                update_sync_status(conn, self.name, to_block)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        except Exception as e:
            mark_sync_error(conn, self.name, str(e), self.start_block - 1)
            log.error("listener_chunk_failed", listener=self.name, from_block=from_block, to_block=to_block, error=str(e))
            raise
        self.last_processed_block = to_block
        if events:
            log.info("listener_chunk_applied", from_block=from_block, to_block=to_block, events=len(events))

    def _apply(self, conn: Any, event: ChainEvent, result: SyncResult) -> bool:
        if event.event_name == "MarketCreated":
            self._on_market_created(conn, event)
            result.markets_created += 1
        elif event.event_name == "SharesBought":
            if not self._on_shares_bought(conn, event):
                return False
            result.shares_bought += 1
        elif event.event_name == "MarketResolved":
            self._on_market_resolved(conn, event)
            result.markets_resolved += 1
        else:
            log.warning("unknown_event", event=event.event_name, tx=event.transaction_hash)
            return False
        return True

    def _market_from_event(self, event: ChainEvent) -> Market:
        args = event.args
        return Market(
            id=event.market_id,
            question=args.get("question", ""),
            description=args.get("description", ""),
            source=args.get("source", ""),
            end_time=str(args.get("endTime", "0")),
            creator=args.get("creator", ""),
        )

    def _on_market_created(self, conn: Any, event: ChainEvent) -> None:
        market = self.reader.fetch_market(event.market_id)
        if market is None:
            log.warning("market_not_readable", market_id=event.market_id, tx=event.transaction_hash)
            market = self._market_from_event(event)
        upsert_market(conn, market)
        add_market_event(conn, event)
        log.info("market_created", market_id=event.market_id, block=event.block_number)

    def _on_shares_bought(self, conn: Any, event: ChainEvent) -> bool:
        if has_market_event(conn, event.transaction_hash, event.log_index):
            log.debug("shares_bought_already_applied", tx=event.transaction_hash, log_index=event.log_index)
            return False
        market = self.reader.fetch_market(event.market_id)
        if market is not None:
            upsert_market(conn, market)
        args = event.args
        existing = get_participant(conn, event.market_id, args["buyer"])
        reported = (
            existing is not None
            and event.transaction_hash in existing.transaction_hashes
            and not has_transaction_event(conn, event.transaction_hash, "SharesBought")
        )
        if reported:
            # Hash came from update-participant, not from an earlier log of this tx.
            log.debug("purchase_already_recorded", tx=event.transaction_hash, buyer=args["buyer"])
        else:
            record_purchase(
                conn,
                event.market_id,
                args["buyer"],
                bool(args["isYes"]),
                int(args["amount"]),
                event.transaction_hash,
            )
        add_market_event(conn, event)
        log.info("shares_bought", market_id=event.market_id, buyer=args["buyer"], amount=args["amount"])
        return True

    def _on_market_resolved(self, conn: Any, event: ChainEvent) -> None:
        if get_market_by_id(conn, event.market_id) is None:
            market = self.reader.fetch_market(event.market_id)
            if market is None:
                market = self._market_from_event(event)
            upsert_market(conn, market)
        resolve_market(conn, event.market_id, bool(event.args.get("outcome")))
        add_market_event(conn, event)
        log.info("market_resolved", market_id=event.market_id, outcome=event.args.get("outcome"))

    def process_transaction(self, tx_hash: str) -> SyncResult:
        """Apply the market events of one transaction. Does not move the watermark."""
        with self._lock:
            conn = self._get_conn()
            events = self.reader.get_transaction_events(tx_hash)
            result = SyncResult()
            if events:
                result.from_block = result.to_block = events[0].block_number
            conn.begin()
            try:
                for event in events:
                    self._apply(conn, event, result)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            log.info("transaction_processed", tx=tx_hash, events=result.events_processed)
            return result

    def sync_all_markets(self) -> int:
        """Refetch every market 1..getMarketCount in batches and upsert. Returns markets synced."""
        with self._lock:
            conn = self._get_conn()
            count = self.reader.get_market_count()
            synced = 0
            for start in range(1, count + 1, SYNC_BATCH_SIZE):
                batch = range(start, min(start + SYNC_BATCH_SIZE, count + 1))
                markets = [m for m in (self.reader.fetch_market(i) for i in batch) if m is not None]
                conn.begin()
                try:
                    upsert_markets(conn, markets)
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
                synced += len(markets)
                log.info("markets_batch_synced", first=start, last=batch[-1], synced=len(markets))
            log.info("all_markets_synced", count=count, synced=synced)
            return synced

    def get_status(self) -> dict[str, Any]:
        """isListening, lastProcessedBlock, lastSyncTime, lastError, eventCounts."""
        with self._lock:
            conn = self._get_conn()
            status = get_sync_status(conn, self.name)
            return {
                "listener": self.name,
                "isListening": self.is_listening,
                "lastProcessedBlock": status.last_sync_block if status else self.last_processed_block,
                "lastSyncTime": status.last_sync_time if status else None,
                "lastError": status.last_error if status else None,
                "eventCounts": event_stats(conn),
            }

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
