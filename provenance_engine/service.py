"""
Provenance Service - Public facade of the provenance engine.

Coordinates LogFetcher -> EventNormalizer -> HistoryAssembler /
ActivityAggregator behind the SnapshotCache. All operations are read-only.
"""

import asyncio
import logging
from typing import Any, Optional, Sequence

from provenance_engine.aggregator import ActivityAggregator
from provenance_engine.assembler import HistoryAssembler
from provenance_engine.cache import SnapshotCache
from provenance_engine.config import ProvenanceConfig, get_config
from provenance_engine.exceptions import (
    ConfigurationError,
    NotFoundError,
    SourceUnavailableError,
)
from provenance_engine.fetcher import LogFetcher
from provenance_engine.models import ActivityFeed, History, LogFilter
from provenance_engine.normalizer import EventNormalizer
from provenance_engine.source import JsonRpcLogSource, LedgerLogSource


logger = logging.getLogger(__name__)

HISTORY_PREFIX = "history:"
ACTIVITY_PREFIX = "activity:"


class ProvenanceService:
    """
    Ownership history and recent activity for the tracked token contract.

    Usage:
        async with ProvenanceService(source, config) as service:
            history = await service.get_history(7)
            feed = await service.get_recent_activity(limit=10)
            service.invalidate(7)  # after a locally initiated transfer
    """

    def __init__(
        self,
        source: LedgerLogSource,
        config: Optional[ProvenanceConfig] = None,
        contract_address: Optional[str] = None,
        cache: Optional[SnapshotCache] = None,
    ) -> None:
        self._config = config or get_config()
        errors = self._config.validate()
        if errors:
            raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}")

        self._contract = contract_address or self._config.get_network().token_contract
        if not self._contract:
            raise ConfigurationError("No token contract configured", config_key="token_contract")

        self._source = source
        self._fetcher = LogFetcher(source, self._contract, self._config)
        self._normalizer = EventNormalizer()
        self._assembler = HistoryAssembler()
        self._aggregator = ActivityAggregator()
        self._cache = cache or SnapshotCache(
            default_ttl=self._config.cache_ttl_seconds,
            max_entries=self._config.cache_max_entries,
        )

    @property
    def cache(self) -> SnapshotCache:
        return self._cache

    @property
    def fetcher(self) -> LogFetcher:
        return self._fetcher

    # ─────────────────────────────────────────────────────────────
    # History
    # ─────────────────────────────────────────────────────────────

    async def get_history(self, asset_id: int) -> History:
        """
        Ownership history of ``asset_id``.

        Raises:
            NotFoundError: No events exist for the asset
            SourceUnavailableError: Source unreachable, or every event of the
                asset was lost to failed timestamp lookups
            RangeTooLargeError: Configured span exceeds the safety bound
            DuplicateMintError: More than one mint observed
        """
        if isinstance(asset_id, bool) or not isinstance(asset_id, int) or asset_id < 0:
            raise ValueError(f"asset_id must be a non-negative integer, got {asset_id!r}")

        return await self._cache.get_or_compute(
            f"{HISTORY_PREFIX}{asset_id}",
            lambda: self._build_history(asset_id),
        )

    async def _build_history(self, asset_id: int) -> History:
        log_filter = LogFilter(
            asset_id=asset_id,
            from_block=self._config.history_from_block,
        )
        records = await self._fetcher.fetch_events(log_filter)

        # Transfers are not indexed by asset; skip other assets before lookups
        records = [
            r for r in records
            if self._normalizer.peek_asset_id(r) in (asset_id, None)
        ]
        resolution = await self._fetcher.resolve_timestamps(records)
        result = self._normalizer.normalize_batch(records, resolution)
        events = [e for e in result.events if e.asset_id == asset_id]

        if not events:
            if result.unresolved:
                raise SourceUnavailableError(
                    f"All {result.unresolved} events lost to failed timestamp lookups",
                    asset_id=asset_id,
                )
            raise NotFoundError("No ledger events for asset", asset_id=asset_id)

        history = self._assembler.assemble(asset_id, events, dropped_events=result.dropped)
        logger.info(
            f"[service] Assembled history for asset {asset_id}: "
            f"{len(history.events)} events, {history.transfer_count} transfers, "
            f"{history.dropped_events} dropped"
        )
        return history

    # ─────────────────────────────────────────────────────────────
    # Activity feed
    # ─────────────────────────────────────────────────────────────

    async def get_recent_activity(
        self,
        limit: Optional[int] = None,
        asset_ids: Optional[Sequence[int]] = None,
    ) -> ActivityFeed:
        """
        Most recent events across assets, newest first.

        Without ``asset_ids`` one shared recent-window fetch feeds the whole
        aggregation. With ``asset_ids`` each asset's history is loaded
        concurrently and assets that fail are left out of the feed.
        """
        if limit is None:
            limit = self._config.default_activity_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not (
            1 <= limit <= self._config.max_activity_limit
        ):
            raise ValueError(
                f"limit must be between 1 and {self._config.max_activity_limit}, got {limit!r}"
            )

        if asset_ids is None:
            key = f"{ACTIVITY_PREFIX}{limit}"
            return await self._cache.get_or_compute(key, lambda: self._build_activity(limit))

        ids = sorted(set(asset_ids))
        key = f"{ACTIVITY_PREFIX}{limit}:{','.join(str(i) for i in ids)}"
        return await self._cache.get_or_compute(
            key, lambda: self._build_asset_activity(limit, ids)
        )

    async def _build_activity(self, limit: int) -> ActivityFeed:
        records = await self._fetcher.fetch_events(LogFilter())
        resolution = await self._fetcher.resolve_timestamps(records)
        result = self._normalizer.normalize_batch(records, resolution)
        feed = self._aggregator.aggregate_events(
            result.events,
            limit,
            dropped_events=result.dropped,
        )
        logger.info(
            f"[service] Built activity feed: {len(feed)} of {len(result.events)} events "
            f"(limit={limit}, dropped={result.dropped})"
        )
        return feed

    async def _build_asset_activity(self, limit: int, asset_ids: list[int]) -> ActivityFeed:
        results = await asyncio.gather(
            *(self.get_history(asset_id) for asset_id in asset_ids),
            return_exceptions=True,
        )

        per_asset: dict[int, Any] = {}
        dropped = 0
        for asset_id, result in zip(asset_ids, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, History):
                per_asset[asset_id] = list(result.events)
                dropped += result.dropped_events
            else:
                per_asset[asset_id] = result

        return self._aggregator.aggregate(per_asset, limit, dropped_events=dropped)

    # ─────────────────────────────────────────────────────────────
    # Cache control
    # ─────────────────────────────────────────────────────────────

    def invalidate(self, asset_id: int) -> None:
        """
        Force the next read of ``asset_id`` (and every feed) to bypass the cache.

        Call after a locally initiated transfer so stale ownership is not served.
        """
        self._cache.invalidate(f"{HISTORY_PREFIX}{asset_id}")
        feeds = self._cache.invalidate_prefix(ACTIVITY_PREFIX)
        logger.info(f"[service] Invalidated asset {asset_id} and {feeds} feeds")

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "contract": self._contract,
            "cache": self._cache.get_stats(),
            "fetcher": self._fetcher.get_stats(),
        }
        source_stats = getattr(self._source, "get_stats", None)
        if callable(source_stats):
            stats["source"] = source_stats()
        return stats

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._source.close()

    async def __aenter__(self) -> "ProvenanceService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def create_service(
    config: Optional[ProvenanceConfig] = None,
    rpc_url: Optional[str] = None,
    source: Optional[LedgerLogSource] = None,
) -> ProvenanceService:
    """Build a service for the configured network over JSON-RPC."""
    config = config or get_config()
    if source is None:
        network = config.get_network()
        source = JsonRpcLogSource(
            rpc_url=rpc_url or network.rpc_url,
            timeout=config.request_timeout,
        )
    return ProvenanceService(source, config)
