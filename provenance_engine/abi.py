"""
Ledger ABI helpers - event topics and log payload decoding.

Only the subset of the Solidity ABI that the tracked token contract emits is
supported: static ``uint256``/``address`` words and dynamic ``string`` values.
All decoders raise ``ValueError`` on malformed input.
"""

import re
from typing import Any

from Crypto.Hash import keccak


WORD_SIZE = 32
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Event signatures of the tracked token contract
MINT_EVENT_SIGNATURE = "CropBatchMinted(uint256,address,string,string,uint256)"
TRANSFER_EVENT_SIGNATURE = "TransferSingle(address,address,address,uint256,uint256)"

MINT_DATA_TYPES = ("string", "string", "uint256")  # metadataUri, cropType, quantity
TRANSFER_DATA_TYPES = ("uint256", "uint256")  # id, value

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HEX_RE = re.compile(r"^(0x)?[0-9a-fA-F]*$")


def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest (the pre-standard SHA-3 used by EVM chains)."""
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def event_topic(signature: str) -> str:
    """topic0 for a canonical event signature."""
    return "0x" + keccak256(signature.encode("ascii")).hex()


MINT_TOPIC = event_topic(MINT_EVENT_SIGNATURE)
TRANSFER_TOPIC = event_topic(TRANSFER_EVENT_SIGNATURE)


def is_address(value: Any) -> bool:
    """Check for a 0x-prefixed 20-byte hex address."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def normalize_address(value: str) -> str:
    """Lowercase an address after validating it."""
    if not is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


def _strip_hex(value: str) -> str:
    if not isinstance(value, str) or not _HEX_RE.match(value):
        raise ValueError(f"Invalid hex string: {value!r}")
    return value[2:] if value.startswith("0x") else value


def parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity (hex string) or a plain integer."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    raw = _strip_hex(value)
    if not raw:
        raise ValueError(f"Empty quantity: {value!r}")
    return int(raw, 16)


def encode_uint256_topic(value: int) -> str:
    """Encode an indexed uint256 argument as a topic filter."""
    if value < 0 or value >= 2 ** 256:
        raise ValueError(f"uint256 out of range: {value}")
    return "0x" + format(value, "064x")


def decode_uint256(word: str) -> int:
    """Decode a single 32-byte word (topic or data slot) as uint256."""
    raw = _strip_hex(word)
    if len(raw) != WORD_SIZE * 2:
        raise ValueError(f"Expected 32-byte word, got {len(raw) // 2} bytes")
    return int(raw, 16)


def decode_address_topic(topic: str) -> str:
    """Decode an indexed address argument (left-padded to 32 bytes)."""
    raw = _strip_hex(topic)
    if len(raw) != WORD_SIZE * 2:
        raise ValueError(f"Expected 32-byte topic, got {len(raw) // 2} bytes")
    if int(raw[:24], 16) != 0:
        raise ValueError(f"Address topic has non-zero padding: {topic}")
    return "0x" + raw[24:].lower()


def decode_words(data: str, types: tuple[str, ...]) -> list[Any]:
    """
    Decode the non-indexed payload of a log.

    Args:
        data: Hex-encoded log data
        types: ABI types in declaration order

    Returns:
        Decoded values in the same order
    """
    payload = bytes.fromhex(_strip_hex(data))
    head_size = WORD_SIZE * len(types)
    if len(payload) < head_size:
        raise ValueError(f"Log data too short: {len(payload)} < {head_size} bytes")

    values: list[Any] = []
    for index, abi_type in enumerate(types):
        word = payload[index * WORD_SIZE:(index + 1) * WORD_SIZE]
        if abi_type == "uint256":
            values.append(int.from_bytes(word, "big"))
        elif abi_type == "address":
            values.append("0x" + word[12:].hex())
        elif abi_type == "string":
            values.append(_decode_string(payload, int.from_bytes(word, "big")))
        else:
            raise ValueError(f"Unsupported ABI type: {abi_type}")
    return values


def _decode_string(payload: bytes, offset: int) -> str:
    if offset + WORD_SIZE > len(payload):
        raise ValueError(f"String offset {offset} outside log data")
    length = int.from_bytes(payload[offset:offset + WORD_SIZE], "big")
    start = offset + WORD_SIZE
    if start + length > len(payload):
        raise ValueError(f"String length {length} overruns log data")
    return payload[start:start + length].decode("utf-8")


def encode_words(values: list[Any], types: tuple[str, ...]) -> str:
    """
    Encode values as log data. Inverse of ``decode_words``.

    Used by the in-memory ledger to produce records shaped like real logs.
    """
    head = b""
    tail = b""
    head_size = WORD_SIZE * len(types)
    for value, abi_type in zip(values, types):
        if abi_type == "uint256":
            head += int(value).to_bytes(WORD_SIZE, "big")
        elif abi_type == "address":
            head += bytes.fromhex(_strip_hex(value)).rjust(WORD_SIZE, b"\x00")
        elif abi_type == "string":
            encoded = value.encode("utf-8")
            padded_length = -(-len(encoded) // WORD_SIZE) * WORD_SIZE
            head += (head_size + len(tail)).to_bytes(WORD_SIZE, "big")
            tail += len(encoded).to_bytes(WORD_SIZE, "big")
            tail += encoded.ljust(padded_length, b"\x00")
        else:
            raise ValueError(f"Unsupported ABI type: {abi_type}")
    return "0x" + (head + tail).hex()


def encode_address_topic(address: str) -> str:
    """Encode an address as an indexed topic."""
    return "0x" + normalize_address(address)[2:].rjust(WORD_SIZE * 2, "0")
