"""
FastAPI router for account baselines.

Key Endpoints:
- POST /api/baselines/compute - Build a segment baseline from daily records
  (optionally replacing the stored one)
- GET  /api/baselines/{user_id} - Stored baselines for an account
- GET  /api/baselines/{user_id}/segment - One stored segment baseline
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query

from adgate.core.dependencies import SettingsDep
from adgate.models.schemas import AccountBaseline, BaselineComputeRequest, BaselineSegment
from adgate.services.baseline import compute_baseline, get_baseline, list_baselines, save_baseline


logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/baselines", tags=["baselines"])


@router.post("/compute", response_model=AccountBaseline)
async def compute_endpoint(request: BaselineComputeRequest, settings: SettingsDep) -> AccountBaseline:
    baseline = compute_baseline(request.days, request.segment, user_id=request.userId, settings=settings)
    if request.persist:
        baseline = await save_baseline(request.userId, baseline)
    return baseline


@router.get("/{user_id}", response_model=List[AccountBaseline])
async def list_endpoint(user_id: str) -> List[AccountBaseline]:
    return await list_baselines(user_id)


@router.get("/{user_id}/segment", response_model=AccountBaseline)
async def segment_endpoint(
    user_id: str,
    conversionType: str = Query(..., min_length=1),
    placement: str = Query(default="all"),
    objective: str = Query(default="conversions"),
) -> AccountBaseline:
    segment = BaselineSegment(conversionType=conversionType, placement=placement, objective=objective)
    baseline = await get_baseline(user_id, segment)
    if baseline is None:
        raise HTTPException(
            status_code=404,
            detail=f"No baseline for {conversionType}/{placement}/{objective}",
        )
    return baseline
