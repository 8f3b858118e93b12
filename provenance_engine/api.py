"""
FastAPI Router for Provenance Endpoints.

Provides a read-only REST API over the provenance engine:
- Ownership history of one asset
- Recent activity across assets
- Cache invalidation after a locally initiated transfer
- Engine statistics
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, status

from provenance_engine.exceptions import (
    DuplicateMintError,
    NotFoundError,
    ProvenanceError,
    RangeTooLargeError,
    SourceUnavailableError,
    TransientSourceError,
)
from provenance_engine.schemas import (
    ActivityFeedResponse,
    ErrorDetail,
    HistoryResponse,
    InvalidateResponse,
    StatsResponse,
)
from provenance_engine.service import ProvenanceService, create_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/provenance", tags=["Provenance"])


# =============================================================
# HELPER: Service dependency
# =============================================================

_service: Optional[ProvenanceService] = None


def get_provenance_service() -> ProvenanceService:
    global _service
    if _service is None:
        _service = create_service()
    return _service


def set_provenance_service(service: Optional[ProvenanceService]) -> None:
    global _service
    _service = service


# =============================================================
# HELPER: Error mapping
# =============================================================

def _http_error(error: ProvenanceError) -> HTTPException:
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, DuplicateMintError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, RangeTooLargeError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, (SourceUnavailableError, TransientSourceError)):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if code >= 500:
        logger.error(f"[api] {error}")
    else:
        logger.info(f"[api] {error}")

    detail = ErrorDetail(
        error_type=error.__class__.__name__,
        message=error.message,
        asset_id=error.asset_id,
        context=error.context,
    )
    return HTTPException(status_code=code, detail=detail.model_dump())


# =============================================================
# HISTORY ENDPOINTS
# =============================================================

@router.get("/assets/{asset_id}/history", response_model=HistoryResponse)
async def get_asset_history(
    asset_id: int = Path(..., ge=0, description="Token id of the asset"),
    service: ProvenanceService = Depends(get_provenance_service),
):
    """
    Get the ownership history of one asset.

    Events are ordered oldest first; ``current_owner`` is the recipient of
    the latest event.
    """
    try:
        history = await service.get_history(asset_id)
    except ProvenanceError as e:
        raise _http_error(e)
    return HistoryResponse.from_history(history)


@router.post("/assets/{asset_id}/invalidate", response_model=InvalidateResponse)
async def invalidate_asset(
    asset_id: int = Path(..., ge=0),
    service: ProvenanceService = Depends(get_provenance_service),
):
    """Drop cached snapshots of an asset and every activity feed."""
    service.invalidate(asset_id)
    return InvalidateResponse(asset_id=asset_id)


# =============================================================
# ACTIVITY ENDPOINTS
# =============================================================

@router.get("/activity", response_model=ActivityFeedResponse)
async def get_recent_activity(
    limit: int = Query(10, ge=1, le=100),
    service: ProvenanceService = Depends(get_provenance_service),
):
    """Get the most recent mints and transfers across all assets, newest first."""
    try:
        feed = await service.get_recent_activity(limit=limit)
    except ProvenanceError as e:
        raise _http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ActivityFeedResponse.from_feed(feed)


# =============================================================
# STATS ENDPOINTS
# =============================================================

@router.get("/stats", response_model=StatsResponse)
async def get_stats(service: ProvenanceService = Depends(get_provenance_service)):
    return StatsResponse(success=True, data=service.get_stats())


# =============================================================
# APPLICATION
# =============================================================

def create_app(service: Optional[ProvenanceService] = None) -> FastAPI:
    """Build a FastAPI app serving the provenance router."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if service is not None:
            set_provenance_service(service)
        yield
        if _service is not None:
            await _service.close()
        set_provenance_service(None)

    app = FastAPI(
        title="Provenance Reconstruction API",
        description="Read-only ownership history and activity for crop batch tokens.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.get("/")
    def root():
        return {"status": "ok", "message": "Provenance API is running"}

    return app
