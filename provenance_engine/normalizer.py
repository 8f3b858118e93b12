"""
Event Normalizer - Maps raw mint / transfer logs onto the canonical Event.

Pure functions, no I/O. Structurally invalid records raise
MalformedRecordError; ``normalize_batch`` absorbs those per record.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from provenance_engine.abi import (
    MINT_DATA_TYPES,
    MINT_TOPIC,
    TRANSFER_DATA_TYPES,
    TRANSFER_TOPIC,
    ZERO_ADDRESS,
    decode_address_topic,
    decode_uint256,
    decode_words,
)
from provenance_engine.exceptions import MalformedRecordError
from provenance_engine.models import Event, EventKind, RawLogRecord, TimestampResolution


logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """Events produced from a batch plus what was left out."""
    events: list[Event] = field(default_factory=list)
    malformed: int = 0
    unresolved: int = 0  # timestamp lookup failed
    skipped: int = 0  # mint artifacts on the transfer channel, reorged logs

    @property
    def dropped(self) -> int:
        """Records lost to errors (skips are expected and not counted)."""
        return self.malformed + self.unresolved


class EventNormalizer:
    """Converts RawLogRecords into Events."""

    name = "normalizer"

    def normalize(self, record: RawLogRecord, timestamp: int) -> Optional[Event]:
        """
        Normalize one record.

        Returns:
            The Event, or None when the record is intentionally dropped
            (a transfer from the zero address, or a log removed by a reorg)

        Raises:
            MalformedRecordError: If the record cannot be decoded
        """
        if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 0:
            raise MalformedRecordError(
                f"Invalid timestamp {timestamp!r}",
                record_id=record.record_id,
                field_name="timestamp",
            )
        if record.removed:
            return None

        topic0 = record.topic0
        if topic0 == MINT_TOPIC:
            return self._normalize_mint(record, timestamp)
        if topic0 == TRANSFER_TOPIC:
            return self._normalize_transfer(record, timestamp)

        raise MalformedRecordError(
            f"Unknown event signature {topic0}",
            record_id=record.record_id,
            field_name="topics",
        )

    def _normalize_mint(self, record: RawLogRecord, timestamp: int) -> Event:
        self._require_topics(record, 3)
        try:
            asset_id = decode_uint256(record.topics[1])
            minter = decode_address_topic(record.topics[2])
        except ValueError as e:
            raise MalformedRecordError(
                "Invalid indexed mint arguments",
                record_id=record.record_id,
                field_name="topics",
                original_error=e,
            )
        try:
            metadata_uri, crop_type, quantity = decode_words(record.data, MINT_DATA_TYPES)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedRecordError(
                "Invalid mint payload",
                record_id=record.record_id,
                field_name="data",
                original_error=e,
            )

        return Event(
            id=f"mint-{record.transaction_hash}-{record.log_index}",
            asset_id=asset_id,
            kind=EventKind.MINTED,
            from_address=ZERO_ADDRESS,
            to_address=minter,
            timestamp=timestamp,
            block_number=record.block_number,
            log_index=record.log_index,
            transaction_hash=record.transaction_hash,
            metadata={
                "crop_type": crop_type,
                "quantity": quantity,
                "metadata_uri": metadata_uri,
            },
        )

    def _normalize_transfer(self, record: RawLogRecord, timestamp: int) -> Optional[Event]:
        self._require_topics(record, 4)
        try:
            sender = decode_address_topic(record.topics[2])
            recipient = decode_address_topic(record.topics[3])
        except ValueError as e:
            raise MalformedRecordError(
                "Invalid indexed transfer arguments",
                record_id=record.record_id,
                field_name="topics",
                original_error=e,
            )

        # Mint seen through the generic transfer channel: counted once, as Minted
        if sender == ZERO_ADDRESS:
            return None

        try:
            asset_id, _amount = decode_words(record.data, TRANSFER_DATA_TYPES)
        except ValueError as e:
            raise MalformedRecordError(
                "Invalid transfer payload",
                record_id=record.record_id,
                field_name="data",
                original_error=e,
            )

        return Event(
            id=f"transfer-{record.transaction_hash}-{record.log_index}",
            asset_id=asset_id,
            kind=EventKind.TRANSFERRED,
            from_address=sender,
            to_address=recipient,
            timestamp=timestamp,
            block_number=record.block_number,
            log_index=record.log_index,
            transaction_hash=record.transaction_hash,
        )

    def peek_asset_id(self, record: RawLogRecord) -> Optional[int]:
        """
        Asset a record refers to, decoded without a timestamp.

        Returns None when the record cannot be decoded.
        """
        try:
            if record.topic0 == MINT_TOPIC and len(record.topics) >= 2:
                return decode_uint256(record.topics[1])
            if record.topic0 == TRANSFER_TOPIC:
                return decode_words(record.data, TRANSFER_DATA_TYPES)[0]
        except ValueError:
            return None
        return None

    @staticmethod
    def _require_topics(record: RawLogRecord, count: int) -> None:
        if len(record.topics) < count:
            raise MalformedRecordError(
                f"Expected {count} topics, got {len(record.topics)}",
                record_id=record.record_id,
                field_name="topics",
            )

    def normalize_batch(
        self,
        records: Sequence[RawLogRecord],
        resolution: TimestampResolution,
    ) -> NormalizationResult:
        """
        Normalize every record whose timestamp was resolved.

        Records with a failed lookup or a malformed shape are counted and
        left out; they never fail the batch.
        """
        result = NormalizationResult()
        for record in records:
            timestamp = resolution.timestamps.get(record.record_id)
            if timestamp is None:
                result.unresolved += 1
                continue
            try:
                event = self.normalize(record, timestamp)
            except MalformedRecordError as e:
                result.malformed += 1
                logger.warning(f"[{self.name}] Skipping malformed record: {e}")
                continue
            if event is None:
                result.skipped += 1
                continue
            result.events.append(event)
        return result
