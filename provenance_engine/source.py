"""
Ledger Log Source - Interface to the external ledger and its JSON-RPC client.

The engine only needs three capabilities from the ledger:
- filtered, range-bounded log queries
- block -> timestamp resolution
- the current head block number

Errors are mapped onto the engine taxonomy so the fetcher can decide what to
retry: RateLimitError / TransientSourceError are retried, everything else is
surfaced as-is.
"""

import asyncio
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import aiohttp

from provenance_engine.abi import parse_quantity
from provenance_engine.exceptions import (
    MalformedRecordError,
    RangeTooLargeError,
    RateLimitError,
    SourceUnavailableError,
    TransientSourceError,
)
from provenance_engine.logging_utils import mask_url, sanitize_log_value
from provenance_engine.models import BlockTag, RawLogRecord


logger = logging.getLogger(__name__)


# JSON-RPC error codes / message fragments used by common providers
RATE_LIMIT_CODES = {-32005, -32029}
RATE_LIMIT_HINTS = ("rate limit", "too many requests", "limit exceeded", "capacity exceeded")
RANGE_HINTS = (
    "block range", "range too large", "more than", "query timeout", "response size",
)


class LedgerLogSource(ABC):
    """Abstract ledger log source consumed by the LogFetcher."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier used in log lines."""
        pass

    @abstractmethod
    async def get_logs(
        self,
        address: str,
        topics: Sequence[Optional[str]],
        from_block: BlockTag,
        to_block: BlockTag,
    ) -> list[RawLogRecord]:
        """
        Fetch logs emitted by ``address`` matching ``topics``.

        ``topics[0]`` is the event signature hash, later positions filter
        indexed arguments; ``None`` is a wildcard.
        """
        pass

    @abstractmethod
    async def get_block_timestamp(self, block_number: int) -> int:
        """Timestamp (seconds) of a block."""
        pass

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current head block number."""
        pass

    async def close(self) -> None:
        """Release resources."""

    async def __aenter__(self) -> "LedgerLogSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _block_param(block: BlockTag) -> str:
    if isinstance(block, str):
        return block
    return hex(block)


class JsonRpcLogSource(LedgerLogSource):
    """
    Ledger source speaking Ethereum JSON-RPC over HTTP.

    Uses ``eth_getLogs``, ``eth_getBlockByNumber`` and ``eth_blockNumber``.
    Does not retry; retry policy belongs to the fetcher.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._request_ids = itertools.count(1)

        self._requests = 0
        self._errors = 0
        self._last_latency_ms: Optional[float] = None

    @property
    def name(self) -> str:
        return "jsonrpc"

    # ─────────────────────────────────────────────────────────────
    # HTTP Helpers
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
            self._owns_session = True
        return self._session

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Issue one JSON-RPC call and return its ``result``."""
        session = await self._get_session()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }

        self._requests += 1
        start_time = time.time()
        try:
            async with session.post(self._rpc_url, json=payload) as response:
                self._last_latency_ms = (time.time() - start_time) * 1000

                if response.status == 429:
                    retry_after = response.headers.get("Retry-After", "")
                    raise RateLimitError(
                        message=f"{method} rate limited",
                        retry_after_seconds=float(retry_after) if retry_after.isdigit() else None,
                    )

                if response.status >= 500:
                    body = await response.text()
                    raise TransientSourceError(
                        message=f"{method} HTTP {response.status}",
                        status_code=response.status,
                        context={"body": sanitize_log_value(body)},
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise SourceUnavailableError(
                        message=f"{method} HTTP {response.status}",
                        attempts=1,
                        context={
                            "body": sanitize_log_value(body),
                            "rpc_url": mask_url(self._rpc_url),
                        },
                    )

                body = await response.json(content_type=None)

        except aiohttp.ClientError as e:
            self._errors += 1
            raise TransientSourceError(
                message=f"{method} connection error: {sanitize_log_value(e)}",
                original_error=e,
            )
        except asyncio.TimeoutError as e:
            self._errors += 1
            raise TransientSourceError(
                message=f"{method} timed out after {self._timeout}s",
                original_error=e,
            )
        except ValueError as e:
            self._errors += 1
            raise TransientSourceError(
                message=f"{method} returned invalid JSON",
                original_error=e,
            )

        if not isinstance(body, dict):
            raise TransientSourceError(f"{method} returned a non-object response")

        error = body.get("error")
        if error:
            self._errors += 1
            raise self._map_rpc_error(method, error)

        return body.get("result")

    def _map_rpc_error(self, method: str, error: Any) -> Exception:
        """Translate a JSON-RPC error object into the engine taxonomy."""
        if not isinstance(error, dict):
            return TransientSourceError(f"{method} failed: {sanitize_log_value(error)}")

        code = error.get("code")
        message = str(error.get("message", ""))
        lowered = message.lower()
        context = {"code": code, "rpc_message": sanitize_log_value(message)}

        # range rejections often share wording (and codes) with rate limits
        if method == "eth_getLogs" and any(h in lowered for h in RANGE_HINTS):
            return RangeTooLargeError(
                f"{method} rejected range: {sanitize_log_value(message)}",
                context=context,
            )
        if code in RATE_LIMIT_CODES or any(h in lowered for h in RATE_LIMIT_HINTS):
            return RateLimitError(f"{method} rate limited: {sanitize_log_value(message)}", context=context)
        return TransientSourceError(f"{method} failed: {sanitize_log_value(message)}", context=context)

    # ─────────────────────────────────────────────────────────────
    # LedgerLogSource
    # ─────────────────────────────────────────────────────────────

    async def get_logs(
        self,
        address: str,
        topics: Sequence[Optional[str]],
        from_block: BlockTag,
        to_block: BlockTag,
    ) -> list[RawLogRecord]:
        result = await self._call("eth_getLogs", [{
            "address": address,
            "topics": list(topics),
            "fromBlock": _block_param(from_block),
            "toBlock": _block_param(to_block),
        }])
        if not isinstance(result, list):
            raise TransientSourceError("eth_getLogs returned a non-list result")

        records = []
        for entry in result:
            try:
                records.append(RawLogRecord.from_rpc(entry))
            except MalformedRecordError as e:
                logger.warning(f"[{self.name}] Skipping malformed log: {e}")
        return records

    async def get_block_timestamp(self, block_number: int) -> int:
        block = await self._call("eth_getBlockByNumber", [hex(block_number), False])
        if not block:
            # Not yet visible on this node
            raise TransientSourceError(f"Block {block_number} not found")
        try:
            return parse_quantity(block["timestamp"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientSourceError(
                f"Block {block_number} has no valid timestamp",
                original_error=e,
            )

    async def get_block_number(self) -> int:
        result = await self._call("eth_blockNumber", [])
        try:
            return parse_quantity(result)
        except (TypeError, ValueError) as e:
            raise TransientSourceError("eth_blockNumber returned an invalid quantity", original_error=e)

    def get_stats(self) -> dict[str, Any]:
        return {
            "rpc_url": mask_url(self._rpc_url),
            "requests": self._requests,
            "errors": self._errors,
            "last_latency_ms": self._last_latency_ms,
        }

    async def close(self) -> None:
        """Close the HTTP session if we own it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(rpc_url={mask_url(self._rpc_url)})>"
