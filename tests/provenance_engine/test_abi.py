"""
Ledger ABI Tests.

============================================================
PURPOSE
============================================================
Event topic hashes and log payload decoding.

TEST CATEGORIES:
- Topic tests: Event signature hashing
- Decoding tests: Words, addresses, strings
- Validation tests: Malformed input raises ValueError

============================================================
"""

import pytest

from provenance_engine.abi import (
    MINT_DATA_TYPES,
    TRANSFER_DATA_TYPES,
    TRANSFER_TOPIC,
    ZERO_ADDRESS,
    decode_address_topic,
    decode_uint256,
    decode_words,
    encode_address_topic,
    encode_uint256_topic,
    encode_words,
    event_topic,
    is_address,
    keccak256,
    normalize_address,
    parse_quantity,
)


# ============================================================
# TOPIC TESTS
# ============================================================

class TestTopics:
    """Tests for event signature hashing."""

    def test_keccak_of_empty_input(self):
        """Keccak-256 differs from NIST SHA3-256 on the empty string."""
        assert keccak256(b"").hex() == (
            "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )

    def test_erc20_transfer_topic(self):
        """Test a widely known event topic."""
        assert event_topic("Transfer(address,address,uint256)") == (
            "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
        )

    def test_transfer_single_topic(self):
        """TransferSingle topic matches the ERC-1155 standard value."""
        assert TRANSFER_TOPIC == (
            "0xc3d58168c5ae7397731d063d5bbf3d657854427343f4c083240f7aacaa2d0f62"
        )


# ============================================================
# DECODING TESTS
# ============================================================

class TestDecoding:
    """Tests for topic and data decoding."""

    def test_uint256_topic(self):
        """Test indexed uint256 encoding and decoding."""
        topic = encode_uint256_topic(7)

        assert len(topic) == 66
        assert decode_uint256(topic) == 7

    def test_address_topic_is_lowercased(self):
        """Test indexed address decoding normalizes case."""
        topic = "0x000000000000000000000000" + "AbCdEf0123456789aBcDeF0123456789AbCdEf01"

        assert decode_address_topic(topic) == "0xabcdef0123456789abcdef0123456789abcdef01"

    def test_zero_address_topic(self):
        """Test zero address decodes to the canonical constant."""
        assert decode_address_topic(encode_address_topic(ZERO_ADDRESS)) == ZERO_ADDRESS

    def test_mint_payload(self):
        """Test dynamic strings and a trailing uint256."""
        data = encode_words(["ipfs://batch-7", "Cassava", 250], MINT_DATA_TYPES)

        assert decode_words(data, MINT_DATA_TYPES) == ["ipfs://batch-7", "Cassava", 250]

    def test_mint_payload_with_long_string(self):
        """Strings longer than one word span several slots."""
        uri = "ipfs://" + "q" * 90
        data = encode_words([uri, "", 1], MINT_DATA_TYPES)

        assert decode_words(data, MINT_DATA_TYPES)[0] == uri

    def test_transfer_payload(self):
        """Test static uint256 payload."""
        data = encode_words([42, 3], TRANSFER_DATA_TYPES)

        assert decode_words(data, TRANSFER_DATA_TYPES) == [42, 3]

    def test_parse_quantity(self):
        """Test JSON-RPC quantities."""
        assert parse_quantity("0x1b4") == 436
        assert parse_quantity(12) == 12


# ============================================================
# VALIDATION TESTS
# ============================================================

class TestValidation:
    """Tests for malformed input."""

    def test_short_word_rejected(self):
        with pytest.raises(ValueError):
            decode_uint256("0x01")

    def test_dirty_address_padding_rejected(self):
        topic = "0x" + "ff" * 12 + "00" * 20

        with pytest.raises(ValueError, match="padding"):
            decode_address_topic(topic)

    def test_truncated_payload_rejected(self):
        with pytest.raises(ValueError, match="too short"):
            decode_words("0x" + "00" * 32, TRANSFER_DATA_TYPES)

    def test_string_offset_outside_payload_rejected(self):
        bad = "0x" + format(4096, "064x") + "00" * 64

        with pytest.raises(ValueError):
            decode_words(bad, MINT_DATA_TYPES)

    def test_non_hex_rejected(self):
        with pytest.raises(ValueError):
            parse_quantity("0xzz")

    def test_bool_is_not_a_quantity(self):
        with pytest.raises(ValueError):
            parse_quantity(True)

    def test_address_validation(self):
        assert is_address("0x" + "a" * 40)
        assert not is_address("0x" + "a" * 39)
        assert normalize_address("0x" + "A" * 40) == "0x" + "a" * 40

        with pytest.raises(ValueError):
            normalize_address("not-an-address")
