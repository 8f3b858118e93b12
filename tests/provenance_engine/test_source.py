"""
JSON-RPC Log Source Tests.

============================================================
PURPOSE
============================================================
Request shape and error mapping of the JSON-RPC ledger client.

TEST CATEGORIES:
- Request tests: Methods and parameters
- Parsing tests: Log entries and block timestamps
- Error mapping tests: HTTP status, JSON-RPC errors, connection errors

============================================================
"""

from typing import Any, Optional
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from provenance_engine.abi import encode_address_topic, encode_uint256_topic, MINT_TOPIC
from provenance_engine.exceptions import (
    RangeTooLargeError,
    RateLimitError,
    SourceUnavailableError,
    TransientSourceError,
)
from provenance_engine.source import JsonRpcLogSource


RPC_URL = "https://rpc.example.org/v2/abcdefghijklmnopqrstuvwxyz123456"


class FakeResponse:
    def __init__(self, status: int = 200, body: Any = None, headers: Optional[dict] = None):
        self.status = status
        self._body = body
        self.headers = headers or {}

    async def json(self, content_type=None):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    async def text(self):
        return str(self._body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Replays queued responses and records request payloads."""

    def __init__(self, *responses):
        self._responses = list(responses)
        self.payloads: list[dict] = []
        self.closed = False

    def post(self, url, json=None):
        self.payloads.append(json)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


def rpc_result(result: Any) -> FakeResponse:
    return FakeResponse(body={"jsonrpc": "2.0", "id": 1, "result": result})


def rpc_error(code: int, message: str) -> FakeResponse:
    return FakeResponse(body={"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}})


def rpc_log(block: int = 16, index: int = 1) -> dict:
    return {
        "address": "0x4097236ED51C12a7b57Af129190E0166248709D0",
        "topics": [
            MINT_TOPIC,
            encode_uint256_topic(7),
            encode_address_topic("0x" + "a1" * 20),
        ],
        "data": "0x",
        "blockNumber": hex(block),
        "logIndex": hex(index),
        "transactionHash": "0x" + "AB" * 32,
        "removed": False,
    }


# ============================================================
# REQUEST TESTS
# ============================================================

class TestRequests:
    """Tests for issued JSON-RPC requests."""

    @pytest.mark.asyncio
    async def test_get_logs_params(self):
        session = FakeSession(rpc_result([]))
        source = JsonRpcLogSource(RPC_URL, session=session)

        await source.get_logs("0xabc", [MINT_TOPIC, None], 16, "latest")

        payload = session.payloads[0]
        assert payload["method"] == "eth_getLogs"
        assert payload["params"] == [{
            "address": "0xabc",
            "topics": [MINT_TOPIC, None],
            "fromBlock": "0x10",
            "toBlock": "latest",
        }]

    @pytest.mark.asyncio
    async def test_request_ids_increase(self):
        session = FakeSession(rpc_result("0x1"), rpc_result("0x2"))
        source = JsonRpcLogSource(RPC_URL, session=session)

        await source.get_block_number()
        await source.get_block_number()

        assert [p["id"] for p in session.payloads] == [1, 2]

    @pytest.mark.asyncio
    async def test_block_timestamp_request(self):
        source = JsonRpcLogSource(RPC_URL)

        with patch.object(source, "_call", new=AsyncMock(return_value={"timestamp": "0x64"})) as call:
            assert await source.get_block_timestamp(255) == 100

        call.assert_awaited_once_with("eth_getBlockByNumber", ["0xff", False])


# ============================================================
# PARSING TESTS
# ============================================================

class TestParsing:
    """Tests for result parsing."""

    @pytest.mark.asyncio
    async def test_logs_parsed_and_lowercased(self):
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(rpc_result([rpc_log()])))

        records = await source.get_logs("0xabc", [MINT_TOPIC], 0, 100)

        assert len(records) == 1
        assert records[0].block_number == 16
        assert records[0].log_index == 1
        assert records[0].transaction_hash == "0x" + "ab" * 32
        assert records[0].address == "0x4097236ed51c12a7b57af129190e0166248709d0"

    @pytest.mark.asyncio
    async def test_malformed_log_skipped(self):
        broken = rpc_log()
        del broken["blockNumber"]
        session = FakeSession(rpc_result([broken, rpc_log(block=17)]))
        source = JsonRpcLogSource(RPC_URL, session=session)

        records = await source.get_logs("0xabc", [MINT_TOPIC], 0, 100)

        assert [r.block_number for r in records] == [17]

    @pytest.mark.asyncio
    async def test_missing_block_is_transient(self):
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(rpc_result(None)))

        with pytest.raises(TransientSourceError, match="not found"):
            await source.get_block_timestamp(10)

    @pytest.mark.asyncio
    async def test_non_list_logs_result(self):
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(rpc_result({"oops": 1})))

        with pytest.raises(TransientSourceError):
            await source.get_logs("0xabc", [MINT_TOPIC], 0, 100)


# ============================================================
# ERROR MAPPING TESTS
# ============================================================

class TestErrorMapping:
    """Tests for error translation."""

    @pytest.mark.asyncio
    async def test_http_429(self):
        response = FakeResponse(status=429, body="slow down", headers={"Retry-After": "3"})
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(response))

        with pytest.raises(RateLimitError) as exc_info:
            await source.get_block_number()

        assert exc_info.value.retry_after_seconds == 3.0

    @pytest.mark.asyncio
    async def test_http_503_is_transient(self):
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(FakeResponse(status=503, body="busy")))

        with pytest.raises(TransientSourceError) as exc_info:
            await source.get_block_number()

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_http_403_is_not_retried(self):
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(FakeResponse(status=403, body="no")))

        with pytest.raises(SourceUnavailableError):
            await source.get_block_number()

    @pytest.mark.asyncio
    async def test_rpc_rate_limit_code(self):
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(rpc_error(-32005, "limit")))

        with pytest.raises(RateLimitError):
            await source.get_block_number()

    @pytest.mark.asyncio
    async def test_rpc_range_error(self):
        response = rpc_error(-32600, "block range is too wide, max 10000")
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(response))

        with pytest.raises(RangeTooLargeError):
            await source.get_logs("0xabc", [MINT_TOPIC], 0, 50_000)

    @pytest.mark.asyncio
    async def test_response_size_rejection_is_range_error(self):
        """Wording that also reads like a rate limit still maps to a range rejection."""
        response = rpc_error(
            -32005,
            "Log response size exceeded. You can make eth_getLogs requests with "
            "up to a 2K block range and no limit on the response size",
        )
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(response))

        with pytest.raises(RangeTooLargeError):
            await source.get_logs("0xabc", [MINT_TOPIC], 0, 50_000)

    @pytest.mark.asyncio
    async def test_rate_limit_wording_on_get_logs(self):
        response = rpc_error(-32000, "Daily request limit exceeded")
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(response))

        with pytest.raises(RateLimitError):
            await source.get_logs("0xabc", [MINT_TOPIC], 0, 100)

    @pytest.mark.asyncio
    async def test_other_rpc_error_is_transient(self):
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(rpc_error(-32000, "header not found")))

        with pytest.raises(TransientSourceError):
            await source.get_block_number()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        session = FakeSession(aiohttp.ClientConnectionError("refused"))
        source = JsonRpcLogSource(RPC_URL, session=session)

        with pytest.raises(TransientSourceError, match="connection error"):
            await source.get_block_number()

        assert source.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        response = FakeResponse(body=ValueError("Expecting value"))
        source = JsonRpcLogSource(RPC_URL, session=FakeSession(response))

        with pytest.raises(TransientSourceError, match="invalid JSON"):
            await source.get_block_number()


# ============================================================
# LIFECYCLE TESTS
# ============================================================

class TestLifecycle:
    """Tests for session ownership and masking."""

    @pytest.mark.asyncio
    async def test_injected_session_left_open(self):
        session = FakeSession()
        source = JsonRpcLogSource(RPC_URL, session=session)

        await source.close()

        assert not session.closed

    def test_api_key_masked(self):
        source = JsonRpcLogSource(RPC_URL)

        assert "abcdefghijklmnopqrstuvwxyz123456" not in repr(source)
        assert "abcdefghijklmnopqrstuvwxyz123456" not in source.get_stats()["rpc_url"]
