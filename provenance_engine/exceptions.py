"""
Provenance Engine Exceptions - Custom exception hierarchy.

Per-record errors (MalformedRecordError, failed timestamp lookups) are
absorbed where they happen and degrade the result set. Per-request errors
(SourceUnavailableError, RangeTooLargeError) propagate to the caller.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class ProvenanceError(Exception):
    """Base exception for all provenance engine errors."""

    def __init__(
        self,
        message: str,
        asset_id: Optional[int] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.asset_id = asset_id
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "asset_id": self.asset_id,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.asset_id is not None:
            parts.append(f"[asset={self.asset_id}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class SourceUnavailableError(ProvenanceError):
    """Ledger log source could not be reached after all retries."""

    def __init__(
        self,
        message: str,
        asset_id: Optional[int] = None,
        attempts: int = 0,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, asset_id, original_error, context)
        self.attempts = attempts

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = self.attempts
        return data


class TransientSourceError(ProvenanceError):
    """Network failure or server-side error worth retrying."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, original_error, context)
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class RateLimitError(TransientSourceError):
    """Source reported rate limiting."""

    def __init__(
        self,
        message: str,
        retry_after_seconds: Optional[float] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, 429, original_error, context)
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after_seconds"] = self.retry_after_seconds
        return data


class RangeTooLargeError(ProvenanceError):
    """Requested block span exceeds the configured safety bound."""

    def __init__(
        self,
        message: str,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        max_range: Optional[int] = None,
        asset_id: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, asset_id, None, context)
        self.from_block = from_block
        self.to_block = to_block
        self.max_range = max_range

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "from_block": self.from_block,
            "to_block": self.to_block,
            "max_range": self.max_range,
        })
        return data


class MalformedRecordError(ProvenanceError):
    """Raw log record is structurally invalid."""

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        field_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, original_error, context)
        self.record_id = record_id
        self.field_name = field_name

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "record_id": self.record_id,
            "field_name": self.field_name,
        })
        return data


class DuplicateMintError(ProvenanceError):
    """More than one mint event observed for the same asset."""

    def __init__(
        self,
        message: str,
        asset_id: Optional[int] = None,
        event_ids: Optional[list[str]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, asset_id, None, context)
        self.event_ids = event_ids or []

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["event_ids"] = self.event_ids
        return data


class NotFoundError(ProvenanceError):
    """No events exist for the requested asset."""


class ConfigurationError(ProvenanceError):
    """Invalid engine configuration."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, original_error, context)
        self.config_key = config_key

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data
