"""
Provenance Data Models - Canonical events and derived ownership views.

Events are immutable records of one ledger occurrence. History and
ActivityFeed are derived snapshots; they are never mutated in place.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from provenance_engine.abi import ZERO_ADDRESS, parse_quantity
from provenance_engine.exceptions import MalformedRecordError


BlockTag = Union[int, str]

BLOCK_TAGS = ("earliest", "latest")


class EventKind(Enum):
    """Kinds of ledger occurrences tracked per asset."""
    MINTED = "minted"
    TRANSFERRED = "transferred"


@dataclass(frozen=True)
class RawLogRecord:
    """One log entry as returned by the ledger log source."""
    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    log_index: int
    transaction_hash: str
    removed: bool = False

    @property
    def record_id(self) -> str:
        """Collision-free id of the log within the chain."""
        return f"{self.transaction_hash}-{self.log_index}"

    @property
    def topic0(self) -> Optional[str]:
        return self.topics[0].lower() if self.topics else None

    @classmethod
    def from_rpc(cls, log: dict[str, Any]) -> "RawLogRecord":
        """
        Build from a JSON-RPC ``eth_getLogs`` entry.

        Raises:
            MalformedRecordError: If a required field is missing or invalid
        """
        if not isinstance(log, dict):
            raise MalformedRecordError(f"Log entry is not an object: {type(log).__name__}")

        tx_hash = log.get("transactionHash")
        for field_name in ("address", "topics", "blockNumber", "logIndex", "transactionHash"):
            if log.get(field_name) is None:
                raise MalformedRecordError(
                    f"Missing field '{field_name}'",
                    record_id=tx_hash,
                    field_name=field_name,
                )

        try:
            block_number = parse_quantity(log["blockNumber"])
            log_index = parse_quantity(log["logIndex"])
        except (TypeError, ValueError) as e:
            raise MalformedRecordError(
                "Invalid block number or log index",
                record_id=tx_hash,
                field_name="blockNumber",
                original_error=e,
            )

        topics = log["topics"]
        if not isinstance(topics, list) or not all(isinstance(t, str) for t in topics):
            raise MalformedRecordError(
                "Topics must be a list of hex strings",
                record_id=tx_hash,
                field_name="topics",
            )

        return cls(
            address=str(log["address"]).lower(),
            topics=tuple(topics),
            data=log.get("data") or "0x",
            block_number=block_number,
            log_index=log_index,
            transaction_hash=str(tx_hash).lower(),
            removed=bool(log.get("removed", False)),
        )

    def to_rpc(self) -> dict[str, Any]:
        """Convert back to the JSON-RPC log shape."""
        return {
            "address": self.address,
            "topics": list(self.topics),
            "data": self.data,
            "blockNumber": hex(self.block_number),
            "logIndex": hex(self.log_index),
            "transactionHash": self.transaction_hash,
            "removed": self.removed,
        }


@dataclass(frozen=True)
class LogFilter:
    """Range-bounded, filtered query against the ledger log source."""
    kinds: tuple[EventKind, ...] = (EventKind.MINTED, EventKind.TRANSFERRED)
    asset_id: Optional[int] = None
    from_block: Optional[BlockTag] = None  # None = current head - window
    to_block: BlockTag = "latest"

    def validate(self) -> None:
        """Validate filter parameters."""
        if not self.kinds:
            raise ValueError("At least one event kind is required")
        if self.asset_id is not None and self.asset_id < 0:
            raise ValueError("asset_id must be non-negative")
        for name, value in (("from_block", self.from_block), ("to_block", self.to_block)):
            if value is None and name == "from_block":
                continue
            if isinstance(value, str):
                if value not in BLOCK_TAGS:
                    raise ValueError(f"{name} must be a block number or one of {BLOCK_TAGS}")
            elif isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative block number")


@dataclass(frozen=True)
class Event:
    """
    Canonical ledger event.

    ``id`` is derived from the transaction hash and log index, so the same
    log observed through overlapping fetch windows always maps to one id.
    """
    id: str
    asset_id: int
    kind: EventKind
    from_address: str
    to_address: str
    timestamp: int  # block timestamp, seconds since epoch
    block_number: int
    log_index: int
    transaction_hash: str = ""
    metadata: Optional[dict[str, Any]] = field(default=None, compare=False, hash=False)

    @property
    def sort_key(self) -> tuple[int, int, int, str]:
        """Composite ordering key; id only breaks exact duplicates."""
        return (self.timestamp, self.block_number, self.log_index, self.id)

    @property
    def is_mint(self) -> bool:
        return self.kind == EventKind.MINTED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "asset_id": self.asset_id,
            "kind": self.kind.value,
            "from": self.from_address,
            "to": self.to_address,
            "timestamp": self.timestamp,
            "block_number": self.block_number,
            "log_index": self.log_index,
            "transaction_hash": self.transaction_hash,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class History:
    """Ownership history snapshot for one asset."""
    asset_id: int
    events: tuple[Event, ...]
    current_owner: str
    minter: str
    transfer_count: int
    dropped_events: int = 0  # lost to failed lookups or malformed records

    @property
    def has_mint(self) -> bool:
        """False when no mint was observed and minter is the zero-address default."""
        return self.minter != ZERO_ADDRESS

    @property
    def is_complete(self) -> bool:
        return self.has_mint and self.dropped_events == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "events": [e.to_dict() for e in self.events],
            "current_owner": self.current_owner,
            "minter": self.minter,
            "transfer_count": self.transfer_count,
            "dropped_events": self.dropped_events,
            "has_mint": self.has_mint,
        }


@dataclass(frozen=True)
class ActivityFeed:
    """Cross-asset recent activity, newest first."""
    events: tuple[Event, ...]
    limit: int
    excluded_assets: tuple[int, ...] = ()
    dropped_events: int = 0

    def __len__(self) -> int:
        return len(self.events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "limit": self.limit,
            "excluded_assets": list(self.excluded_assets),
            "dropped_events": self.dropped_events,
        }


@dataclass
class TimestampResolution:
    """Outcome of resolving block timestamps for a batch of records."""
    timestamps: dict[str, int] = field(default_factory=dict)  # record_id -> timestamp
    failures: dict[str, str] = field(default_factory=dict)  # record_id -> error

    @property
    def failed_count(self) -> int:
        return len(self.failures)
