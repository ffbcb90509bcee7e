"""
Cache Status API

Endpoints for operators:
- Status: warmup progress, cache statistics, store health
- Warmup: progress only, or trigger a pass
- Manual invalidation of one account's derived artifacts
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, Field

from account_intel.service import AccountIntelligence


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache", tags=["Cache Management"])


def get_intelligence(request: Request) -> AccountIntelligence:
    return request.app.state.intel


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class WarmupResponse(BaseModel):
    """Warmup progress."""
    status: str = Field(..., description="idle, warming, complete or error")
    phase: Optional[str] = Field(None, description="listing, accounts or analytics")
    processed_accounts: int
    total_accounts: int
    records_seen: int
    generated: int
    skipped: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None


class CacheStatusResponse(BaseModel):
    """Combined cache status."""
    status: str = Field(..., description="healthy, degraded or unhealthy")
    timestamp: datetime
    warmup: WarmupResponse
    cache: Dict[str, Any]
    store: Dict[str, Any]


class InvalidationResponse(BaseModel):
    """Cache invalidation response."""
    success: bool
    keys_invalidated: int
    duration_ms: float
    keys: List[str] = []
    errors: List[str] = []


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/status", response_model=CacheStatusResponse)
async def get_cache_status(intel: AccountIntelligence = Depends(get_intelligence)):
    """Everything an operator needs to judge cache health at a glance."""
    return await intel.status.get_status()


@router.get("/warmup", response_model=WarmupResponse)
async def get_warmup(intel: AccountIntelligence = Depends(get_intelligence)):
    return intel.status.warmup()


@router.post("/warmup", response_model=WarmupResponse, status_code=202)
async def trigger_warmup(
    background_tasks: BackgroundTasks,
    intel: AccountIntelligence = Depends(get_intelligence),
):
    """
    Start a warmup pass in the background.

    Returns the current progress; a pass already running is not restarted.
    """
    if not intel.orchestrator.is_warming:
        background_tasks.add_task(intel.orchestrator.run)
    return intel.status.warmup()


@router.post("/invalidate/{entity_id}", response_model=InvalidationResponse)
async def invalidate_entity(
    entity_id: str,
    intel: AccountIntelligence = Depends(get_intelligence),
):
    """
    Drop every derived artifact of one account.

    Artifacts regenerate lazily on next access. Call briefs are kept.
    """
    result = await intel.invalidate_entity(entity_id)
    return InvalidationResponse(
        success=result.success,
        keys_invalidated=result.keys_invalidated,
        duration_ms=result.duration_ms,
        keys=result.keys,
        errors=result.errors,
    )
