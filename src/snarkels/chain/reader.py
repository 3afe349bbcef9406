"""Celo RPC reader for the prediction market core contract (web3.py)."""

from __future__ import annotations

from typing import Any

import structlog
from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.logs import DISCARD

from snarkels.chain.abi import MARKET_EVENT_NAMES, PREDICTION_MARKET_CORE_ABI
from snarkels.exceptions import NotFoundError
from snarkels.models import ChainEvent, Market

log = structlog.get_logger(__name__)


def make_web3(rpc_url: str, timeout: float = 30.0) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


def _plain(value: Any) -> Any:
    """Event arg -> JSON-safe value. uint256 becomes a decimal string."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return value


def decode_event(raw: Any) -> ChainEvent:
    """Convert a web3 event log (AttributeDict) to ChainEvent."""
    args = {k: _plain(v) for k, v in dict(raw["args"]).items()}
    return ChainEvent(
        event_name=raw["event"],
        market_id=str(raw["args"]["marketId"]),
        block_number=int(raw["blockNumber"]),
        transaction_hash=Web3.to_hex(raw["transactionHash"]).lower(),
        log_index=int(raw["logIndex"]),
        args=args,
    )


class ChainReader:
    """Reads events and market state from the core contract."""

    def __init__(self, w3: Web3, contract_address: str) -> None:
        self.w3 = w3
        self.address = Web3.to_checksum_address(contract_address)
        self.contract = w3.eth.contract(address=self.address, abi=PREDICTION_MARKET_CORE_ABI)

    @classmethod
    def from_settings(cls, settings: Any) -> ChainReader:
        w3 = make_web3(settings.rpc_url, settings.request_timeout_sec)
        return cls(w3, settings.core_contract_address)

    def get_block_number(self) -> int:
        return int(self.w3.eth.block_number)

    def _get_events(self, name: str, from_block: int, to_block: int) -> list[ChainEvent]:
        event = getattr(self.contract.events, name)
        raw = event.get_logs(from_block=from_block, to_block=to_block)
        events = [decode_event(r) for r in raw]
        log.debug("events_fetched", event=name, from_block=from_block, to_block=to_block, count=len(events))
        return events

    def get_market_created_events(self, from_block: int, to_block: int) -> list[ChainEvent]:
        return self._get_events("MarketCreated", from_block, to_block)

    def get_shares_bought_events(self, from_block: int, to_block: int) -> list[ChainEvent]:
        return self._get_events("SharesBought", from_block, to_block)

    def get_market_resolved_events(self, from_block: int, to_block: int) -> list[ChainEvent]:
        return self._get_events("MarketResolved", from_block, to_block)

    def fetch_market(self, market_id: int | str) -> Market | None:
        """Full market from getMarket + getMarketMetadata. None if the id does not exist."""
        mid = int(market_id)
        data = self.contract.functions.getMarket(mid).call()
        if int(data[0]) == 0:
            return None
        description, category, image, source = self.contract.functions.getMarketMetadata(mid).call()
        return Market(
            id=str(data[0]),
            question=data[1],
            end_time=str(data[2]),
            total_pool=str(data[3]),
            total_yes=str(data[4]),
            total_no=str(data[5]),
            status=int(data[6]),
            outcome=bool(data[7]),
            created_at=str(data[8]),
            creator=data[9],
            description=description,
            category=category,
            image=image,
            source=source,
        )

    def get_market_count(self) -> int:
        return int(self.contract.functions.getMarketCount().call())

    def get_transaction_events(self, tx_hash: str) -> list[ChainEvent]:
        """Market events emitted by the core contract in one transaction, in log order."""
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound as e:
            raise NotFoundError("Transaction not found", details=str(e)) from e
        events: list[ChainEvent] = []
        for name in MARKET_EVENT_NAMES:
            event = getattr(self.contract.events, name)
            for raw in event().process_receipt(receipt, errors=DISCARD):
                if raw["address"].lower() != self.address.lower():
                    continue
                events.append(decode_event(raw))
        events.sort(key=lambda e: e.sort_key)
        return events
