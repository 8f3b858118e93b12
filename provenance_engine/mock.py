"""
Provenance Engine - In-Memory Ledger Source.

============================================================
PURPOSE
============================================================
Ledger log source backed by process memory, for tests and the CLI demo.

FEATURES:
- Records shaped exactly like JSON-RPC logs (real topics and ABI data)
- Topic / block range filtering with "earliest" / "latest" tags
- Configurable latency
- Configurable error injection (rate limits, failed block lookups)
- Call counters for asserting fetch behaviour

============================================================
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from provenance_engine.abi import (
    MINT_DATA_TYPES,
    MINT_TOPIC,
    TRANSFER_DATA_TYPES,
    TRANSFER_TOPIC,
    ZERO_ADDRESS,
    encode_address_topic,
    encode_uint256_topic,
    encode_words,
)
from provenance_engine.exceptions import RateLimitError, TransientSourceError
from provenance_engine.models import BlockTag, RawLogRecord
from provenance_engine.source import LedgerLogSource


logger = logging.getLogger(__name__)


DEFAULT_CONTRACT = "0x4097236ed51c12a7b57af129190e0166248709d0"


@dataclass
class MockLedgerConfig:
    """Configuration for the in-memory ledger."""

    latency_seconds: float = 0.0
    """Simulated latency for every call."""

    rate_limited_calls: int = 0
    """Number of get_logs calls that fail with RateLimitError before succeeding."""

    unavailable: bool = False
    """When True every call fails with TransientSourceError."""

    failing_blocks: set[int] = field(default_factory=set)
    """Blocks whose timestamp lookup always fails."""


class InMemoryLogSource(LedgerLogSource):
    """
    In-memory ledger for testing the provenance engine.

    Usage:
        ledger = InMemoryLogSource()
        ledger.mint(asset_id=7, to=ALICE, block_number=10, timestamp=100)
        ledger.transfer(asset_id=7, sender=ALICE, to=BOB, block_number=15, timestamp=150)
    """

    def __init__(
        self,
        contract: str = DEFAULT_CONTRACT,
        config: Optional[MockLedgerConfig] = None,
        head: Optional[int] = None,
    ) -> None:
        self.contract = contract.lower()
        self.config = config or MockLedgerConfig()
        self._head = head
        self._blocks: dict[int, int] = {}
        self._logs: list[RawLogRecord] = []
        self._next_log_index: dict[int, int] = {}
        self._tx_counter = 0

        # Call tracking
        self.get_logs_calls: list[dict[str, Any]] = []
        self.block_lookups: list[int] = []
        self.head_calls = 0
        self.closed = False

    @property
    def name(self) -> str:
        return "memory"

    @property
    def head(self) -> int:
        if self._head is not None:
            return self._head
        return max(self._blocks, default=0)

    @head.setter
    def head(self, value: int) -> None:
        self._head = value

    # ─────────────────────────────────────────────────────────────
    # Ledger construction
    # ─────────────────────────────────────────────────────────────

    def _next_tx_hash(self) -> str:
        self._tx_counter += 1
        return "0x" + hashlib.sha256(f"tx-{self._tx_counter}".encode()).hexdigest()

    def _append(
        self,
        topics: tuple[str, ...],
        data: str,
        block_number: int,
        timestamp: int,
        tx_hash: Optional[str],
        log_index: Optional[int],
        removed: bool = False,
    ) -> RawLogRecord:
        known = self._blocks.get(block_number)
        if known is not None and known != timestamp:
            raise ValueError(f"Block {block_number} already has timestamp {known}")
        self._blocks[block_number] = timestamp

        if log_index is None:
            log_index = self._next_log_index.get(block_number, 0)
        self._next_log_index[block_number] = max(
            self._next_log_index.get(block_number, 0), log_index + 1
        )

        record = RawLogRecord(
            address=self.contract,
            topics=topics,
            data=data,
            block_number=block_number,
            log_index=log_index,
            transaction_hash=tx_hash or self._next_tx_hash(),
            removed=removed,
        )
        self._logs.append(record)
        return record

    def mint(
        self,
        asset_id: int,
        to: str,
        block_number: int,
        timestamp: int,
        crop_type: str = "Maize",
        quantity: int = 100,
        metadata_uri: str = "",
        tx_hash: Optional[str] = None,
        log_index: Optional[int] = None,
    ) -> RawLogRecord:
        """Append a mint log for ``asset_id``."""
        topics = (MINT_TOPIC, encode_uint256_topic(asset_id), encode_address_topic(to))
        data = encode_words([metadata_uri, crop_type, quantity], MINT_DATA_TYPES)
        return self._append(topics, data, block_number, timestamp, tx_hash, log_index)

    def transfer(
        self,
        asset_id: int,
        sender: str,
        to: str,
        block_number: int,
        timestamp: int,
        amount: int = 1,
        operator: Optional[str] = None,
        tx_hash: Optional[str] = None,
        log_index: Optional[int] = None,
        removed: bool = False,
    ) -> RawLogRecord:
        """Append a TransferSingle log for ``asset_id``."""
        topics = (
            TRANSFER_TOPIC,
            encode_address_topic(operator or sender),
            encode_address_topic(sender),
            encode_address_topic(to),
        )
        data = encode_words([asset_id, amount], TRANSFER_DATA_TYPES)
        return self._append(topics, data, block_number, timestamp, tx_hash, log_index, removed)

    def add_raw(self, record: RawLogRecord, timestamp: int) -> None:
        """Append an arbitrary record (for malformed-input tests)."""
        self._blocks.setdefault(record.block_number, timestamp)
        self._logs.append(record)

    # ─────────────────────────────────────────────────────────────
    # LedgerLogSource
    # ─────────────────────────────────────────────────────────────

    async def _simulate(self) -> None:
        if self.config.latency_seconds:
            await asyncio.sleep(self.config.latency_seconds)
        if self.config.unavailable:
            raise TransientSourceError("In-memory ledger marked unavailable")

    def _resolve(self, block: BlockTag) -> int:
        if block == "earliest":
            return 0
        if block == "latest":
            return self.head
        return int(block)

    @staticmethod
    def _topic_matches(expected: Any, actual: Optional[str]) -> bool:
        if expected is None:
            return True
        if actual is None:
            return False
        if isinstance(expected, (list, tuple)):
            return actual.lower() in {t.lower() for t in expected}
        return actual.lower() == expected.lower()

    async def get_logs(
        self,
        address: str,
        topics: Sequence[Optional[str]],
        from_block: BlockTag,
        to_block: BlockTag,
    ) -> list[RawLogRecord]:
        self.get_logs_calls.append({
            "address": address,
            "topics": list(topics),
            "from_block": from_block,
            "to_block": to_block,
        })
        await self._simulate()

        if self.config.rate_limited_calls > 0:
            self.config.rate_limited_calls -= 1
            raise RateLimitError("Simulated rate limit", retry_after_seconds=0)

        if address.lower() != self.contract:
            return []

        start, end = self._resolve(from_block), self._resolve(to_block)
        matched = []
        for record in self._logs:
            if not start <= record.block_number <= end:
                continue
            if all(
                self._topic_matches(expected, record.topics[i] if i < len(record.topics) else None)
                for i, expected in enumerate(topics)
            ):
                matched.append(record)
        return matched

    async def get_block_timestamp(self, block_number: int) -> int:
        self.block_lookups.append(block_number)
        await self._simulate()
        if block_number in self.config.failing_blocks:
            raise TransientSourceError(f"Simulated lookup failure for block {block_number}")
        if block_number not in self._blocks:
            raise TransientSourceError(f"Block {block_number} not found")
        return self._blocks[block_number]

    async def get_block_number(self) -> int:
        self.head_calls += 1
        await self._simulate()
        return self.head

    async def close(self) -> None:
        self.closed = True


def build_demo_ledger() -> InMemoryLogSource:
    """Small sample ledger: two assets, a few hand-offs along a supply chain."""
    farmer = "0x00000000000000000000000000000000000000f1"
    transporter = "0x00000000000000000000000000000000000000a2"
    buyer = "0x00000000000000000000000000000000000000b3"

    ledger = InMemoryLogSource(head=1_000)
    ledger.mint(1, farmer, 100, 1_700_000_000, crop_type="Maize", quantity=500,
                metadata_uri="ipfs://demo-maize")
    ledger.transfer(1, farmer, transporter, 140, 1_700_000_080)
    ledger.transfer(1, transporter, buyer, 220, 1_700_000_240)
    ledger.mint(2, farmer, 150, 1_700_000_100, crop_type="Cassava", quantity=250,
                metadata_uri="ipfs://demo-cassava")
    ledger.transfer(2, farmer, transporter, 300, 1_700_000_400)
    # mint observed through the transfer channel; normalizer drops it
    ledger.transfer(2, ZERO_ADDRESS, farmer, 150, 1_700_000_100, operator=farmer)
    return ledger
