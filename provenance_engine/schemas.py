"""
Pydantic Schemas for the Provenance HTTP API.
"""

from typing import Any, Dict, List, Optional
from enum import Enum

from pydantic import BaseModel, Field

from provenance_engine.models import ActivityFeed, Event, History


# =============================================================
# ENUMS
# =============================================================

class EventKindEnum(str, Enum):
    MINTED = "minted"
    TRANSFERRED = "transferred"


# =============================================================
# EVENT SCHEMAS
# =============================================================

class EventSchema(BaseModel):
    """One mint or transfer of an asset."""
    id: str
    asset_id: int
    kind: EventKindEnum
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    timestamp: int
    block_number: int
    log_index: int
    transaction_hash: str = ""
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True

    @classmethod
    def from_event(cls, event: Event) -> "EventSchema":
        return cls.model_validate(event.to_dict())


# =============================================================
# RESPONSE SCHEMAS
# =============================================================

class HistoryResponse(BaseModel):
    """Ownership history of one asset, oldest event first."""
    asset_id: int
    events: List[EventSchema]
    current_owner: str
    minter: str
    transfer_count: int
    dropped_events: int = 0
    has_mint: bool = True

    @classmethod
    def from_history(cls, history: History) -> "HistoryResponse":
        return cls(
            asset_id=history.asset_id,
            events=[EventSchema.from_event(e) for e in history.events],
            current_owner=history.current_owner,
            minter=history.minter,
            transfer_count=history.transfer_count,
            dropped_events=history.dropped_events,
            has_mint=history.has_mint,
        )


class ActivityFeedResponse(BaseModel):
    """Recent events across assets, newest first."""
    events: List[EventSchema]
    limit: int
    excluded_assets: List[int] = Field(default_factory=list)
    dropped_events: int = 0

    @classmethod
    def from_feed(cls, feed: ActivityFeed) -> "ActivityFeedResponse":
        return cls(
            events=[EventSchema.from_event(e) for e in feed.events],
            limit=feed.limit,
            excluded_assets=list(feed.excluded_assets),
            dropped_events=feed.dropped_events,
        )


class InvalidateResponse(BaseModel):
    asset_id: int
    invalidated: bool = True


class StatsResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any]


class ErrorDetail(BaseModel):
    """Body of a failed request."""
    error_type: str
    message: str
    asset_id: Optional[int] = None
    context: Dict[str, Any] = Field(default_factory=dict)
