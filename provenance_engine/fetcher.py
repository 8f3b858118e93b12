"""
Log Fetcher - Range-bounded, retried queries against the ledger log source.

Responsibilities:
- Resolve the block window (default: current head - window_blocks)
- Enforce the range safety bound and split the span into chunks
- Retry transient failures with exponential backoff
- Resolve block timestamps for a batch of records concurrently,
  tolerating individual lookup failures
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from provenance_engine.abi import MINT_TOPIC, TRANSFER_TOPIC, encode_uint256_topic
from provenance_engine.config import ProvenanceConfig
from provenance_engine.exceptions import (
    RangeTooLargeError,
    RateLimitError,
    SourceUnavailableError,
    TransientSourceError,
)
from provenance_engine.logging_utils import sanitize_log_value
from provenance_engine.models import (
    BlockTag,
    EventKind,
    LogFilter,
    RawLogRecord,
    TimestampResolution,
)
from provenance_engine.source import LedgerLogSource


logger = logging.getLogger(__name__)

T = TypeVar("T")

KIND_TOPICS = {
    EventKind.MINTED: MINT_TOPIC,
    EventKind.TRANSFERRED: TRANSFER_TOPIC,
}


class LogFetcher:
    """
    Fetches raw ledger logs for the tracked token contract.

    Usage:
        fetcher = LogFetcher(source, contract, config)
        records = await fetcher.fetch_events(LogFilter(asset_id=7))
        resolution = await fetcher.resolve_timestamps(records)
    """

    def __init__(
        self,
        source: LedgerLogSource,
        contract_address: str,
        config: Optional[ProvenanceConfig] = None,
    ) -> None:
        self._source = source
        self._contract = contract_address
        self._config = config or ProvenanceConfig()
        self._lookup_semaphore = asyncio.Semaphore(self._config.max_concurrent_lookups)

        self._stats = {
            "queries": 0,
            "retries": 0,
            "records_fetched": 0,
            "lookups": 0,
            "failed_lookups": 0,
            "unavailable": 0,
        }

    @property
    def name(self) -> str:
        return f"fetcher:{self._source.name}"

    @property
    def source(self) -> LedgerLogSource:
        return self._source

    # ─────────────────────────────────────────────────────────────
    # Retry
    # ─────────────────────────────────────────────────────────────

    async def _with_retry(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``call`` retrying transient failures with exponential backoff."""
        max_retries = self._config.max_retries
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                return await call()
            except TransientSourceError as e:
                last_error = e
                if attempt + 1 >= max_retries:
                    break

                wait_time = self._config.retry_backoff_initial * (
                    self._config.retry_backoff_base ** attempt
                )
                if isinstance(e, RateLimitError) and e.retry_after_seconds:
                    wait_time = max(wait_time, e.retry_after_seconds)

                self._stats["retries"] += 1
                logger.warning(
                    f"[{self.name}] {operation} retry {attempt + 1}/{max_retries} "
                    f"in {wait_time:.2f}s: {sanitize_log_value(e)}"
                )
                await asyncio.sleep(wait_time)

        self._stats["unavailable"] += 1
        raise SourceUnavailableError(
            message=f"{operation} failed after {max_retries} attempts",
            attempts=max_retries,
            original_error=last_error,
        )

    # ─────────────────────────────────────────────────────────────
    # Range resolution
    # ─────────────────────────────────────────────────────────────

    async def current_head(self) -> int:
        """Current head block number (retried)."""
        return await self._with_retry("eth_blockNumber", self._source.get_block_number)

    async def resolve_range(self, log_filter: LogFilter) -> tuple[int, int]:
        """
        Resolve filter bounds to concrete block numbers.

        Raises:
            RangeTooLargeError: If the span exceeds max_range_blocks
        """
        head: Optional[int] = None
        if "latest" in (log_filter.from_block, log_filter.to_block):
            head = await self.current_head()

        to_block = self._concrete(log_filter.to_block, head)
        if log_filter.from_block is None:
            from_block = max(0, to_block - self._config.window_blocks)
        else:
            from_block = self._concrete(log_filter.from_block, head)

        if from_block > to_block:
            raise RangeTooLargeError(
                f"Inverted block range {from_block}..{to_block}",
                from_block=from_block,
                to_block=to_block,
                max_range=self._config.max_range_blocks,
                asset_id=log_filter.asset_id,
            )

        span = to_block - from_block + 1
        if span > self._config.max_range_blocks:
            raise RangeTooLargeError(
                f"Block span {span} exceeds limit {self._config.max_range_blocks}",
                from_block=from_block,
                to_block=to_block,
                max_range=self._config.max_range_blocks,
                asset_id=log_filter.asset_id,
            )
        return from_block, to_block

    @staticmethod
    def _concrete(block: BlockTag, head: Optional[int]) -> int:
        if block == "earliest":
            return 0
        if block == "latest":
            if head is None:
                raise ValueError("'latest' block tag needs the current head")
            return head
        return int(block)

    def _chunks(self, from_block: int, to_block: int) -> list[tuple[int, int]]:
        size = self._config.chunk_size_blocks
        return [
            (start, min(start + size - 1, to_block))
            for start in range(from_block, to_block + 1, size)
        ]

    @staticmethod
    def _topics_for(kind: EventKind, asset_id: Optional[int]) -> list[Optional[str]]:
        topics: list[Optional[str]] = [KIND_TOPICS[kind]]
        # TransferSingle carries the id in its data section, only the mint indexes it
        if kind == EventKind.MINTED and asset_id is not None:
            topics.append(encode_uint256_topic(asset_id))
        return topics

    # ─────────────────────────────────────────────────────────────
    # Fetching
    # ─────────────────────────────────────────────────────────────

    async def fetch_events(self, log_filter: LogFilter) -> list[RawLogRecord]:
        """
        Fetch raw log records matching ``log_filter``.

        Transfer records are not filtered by asset id at the source; the
        caller filters normalized events.

        Raises:
            SourceUnavailableError: After retry exhaustion
            RangeTooLargeError: If the span exceeds the safety bound
        """
        log_filter.validate()
        from_block, to_block = await self.resolve_range(log_filter)
        chunks = self._chunks(from_block, to_block)

        logger.debug(
            f"[{self.name}] Fetching {[k.value for k in log_filter.kinds]} "
            f"asset={log_filter.asset_id} blocks {from_block}..{to_block} "
            f"({len(chunks)} chunks)"
        )

        seen: set[str] = set()
        records: list[RawLogRecord] = []
        for kind in log_filter.kinds:
            topics = self._topics_for(kind, log_filter.asset_id)
            for chunk_from, chunk_to in chunks:
                self._stats["queries"] += 1
                batch = await self._with_retry(
                    "eth_getLogs",
                    lambda: self._source.get_logs(self._contract, topics, chunk_from, chunk_to),
                )
                for record in batch:
                    if record.record_id in seen:
                        continue
                    seen.add(record.record_id)
                    records.append(record)

        records.sort(key=lambda r: (r.block_number, r.log_index))
        self._stats["records_fetched"] += len(records)
        return records

    async def _lookup(self, record: RawLogRecord) -> int:
        async with self._lookup_semaphore:
            return await self._with_retry(
                "eth_getBlockByNumber",
                lambda: self._source.get_block_timestamp(record.block_number),
            )

    async def resolve_timestamps(
        self,
        records: Sequence[RawLogRecord],
    ) -> TimestampResolution:
        """
        Resolve the block timestamp of every record concurrently.

        A failed lookup is recorded in ``failures`` and does not fail the
        batch; its record is expected to be dropped by the caller.
        """
        resolution = TimestampResolution()
        if not records:
            return resolution

        results = await asyncio.gather(
            *(self._lookup(record) for record in records),
            return_exceptions=True,
        )

        for record, result in zip(records, results):
            self._stats["lookups"] += 1
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                self._stats["failed_lookups"] += 1
                resolution.failures[record.record_id] = str(result)
                logger.warning(
                    f"[{self.name}] Timestamp lookup failed for block "
                    f"{record.block_number} ({record.record_id}): {sanitize_log_value(result)}"
                )
            else:
                resolution.timestamps[record.record_id] = result

        return resolution

    def get_stats(self) -> dict[str, Any]:
        return dict(self._stats)
