"""
Provenance Engine Package - Ownership history from ledger events.

Reconstructs the chain of custody of crop batch tokens from the mint and
transfer events their contract emits. Read-only: nothing is ever written
to the ledger.

Features:
- Block-windowed log queries with a range safety bound
- Retries with exponential backoff on transient source failures
- Partial-failure tolerance: failed timestamp lookups drop single events
- Deterministic ordering by (timestamp, block, log index)
- Single-flight snapshot cache with TTL and explicit invalidation

Quick Start:
    from provenance_engine import (
        JsonRpcLogSource,
        ProvenanceConfig,
        ProvenanceService,
    )

    async def show_history():
        config = ProvenanceConfig.from_env()
        network = config.get_network()
        source = JsonRpcLogSource(network.rpc_url)

        async with ProvenanceService(source, config) as service:
            history = await service.get_history(7)
            print(f"Minter: {history.minter}")
            print(f"Current owner: {history.current_owner}")
            print(f"Transfers: {history.transfer_count}")

            feed = await service.get_recent_activity(limit=10)
            for event in feed.events:
                print(event.kind.value, event.asset_id, event.to_address)

Adding New Sources:
    class NewSource(LedgerLogSource):
        @property
        def name(self) -> str:
            return "new_source"

        async def get_logs(self, address, topics, from_block, to_block): ...
        async def get_block_timestamp(self, block_number): ...
        async def get_block_number(self): ...
"""

from provenance_engine.aggregator import ActivityAggregator
from provenance_engine.assembler import HistoryAssembler
from provenance_engine.cache import SnapshotCache
from provenance_engine.config import (
    NetworkConfig,
    ProvenanceConfig,
    get_config,
    set_config,
)
from provenance_engine.exceptions import (
    ConfigurationError,
    DuplicateMintError,
    MalformedRecordError,
    NotFoundError,
    ProvenanceError,
    RangeTooLargeError,
    RateLimitError,
    SourceUnavailableError,
    TransientSourceError,
)
from provenance_engine.fetcher import LogFetcher
from provenance_engine.mock import InMemoryLogSource, MockLedgerConfig
from provenance_engine.models import (
    ActivityFeed,
    Event,
    EventKind,
    History,
    LogFilter,
    RawLogRecord,
)
from provenance_engine.normalizer import EventNormalizer
from provenance_engine.service import ProvenanceService, create_service
from provenance_engine.source import JsonRpcLogSource, LedgerLogSource


__version__ = "1.0.0"

__all__ = [
    # Service
    "ProvenanceService",
    "create_service",

    # Pipeline
    "LogFetcher",
    "EventNormalizer",
    "HistoryAssembler",
    "ActivityAggregator",
    "SnapshotCache",

    # Sources
    "LedgerLogSource",
    "JsonRpcLogSource",
    "InMemoryLogSource",
    "MockLedgerConfig",

    # Models
    "RawLogRecord",
    "LogFilter",
    "Event",
    "EventKind",
    "History",
    "ActivityFeed",

    # Config
    "NetworkConfig",
    "ProvenanceConfig",
    "get_config",
    "set_config",

    # Exceptions
    "ProvenanceError",
    "SourceUnavailableError",
    "TransientSourceError",
    "RateLimitError",
    "RangeTooLargeError",
    "MalformedRecordError",
    "DuplicateMintError",
    "NotFoundError",
    "ConfigurationError",
]
