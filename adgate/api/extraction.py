"""
FastAPI router for the per-creative extraction lifecycle.

Key Endpoints:
- GET  /api/extraction/{user_id}/{creative_id} - Current extraction record
- GET  /api/extraction/{user_id}/{creative_id}/scoring - Whether scoring may run
- POST /api/extraction/{user_id}/{creative_id} - Request extraction (idempotent)
- POST /api/extraction/{user_id}/{creative_id}/complete - Record extractor output
- POST /api/extraction/{user_id}/{creative_id}/retry - Retry a failed extraction

A retry after the limit is reached returns 409 with the terminal
"contact support" message.
"""

import logging

from fastapi import APIRouter, HTTPException

from adgate.api.errors import to_http_exception
from adgate.core.dependencies import SettingsDep
from adgate.core.exceptions import AdGateError
from adgate.models.schemas import ExtractionResult, ExtractionScoringResult, ExtractionState
from adgate.services.extraction import (
    can_score_with_extraction,
    get_extraction_state,
    record_extraction_result,
    request_extraction,
    request_retry,
)


logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/extraction", tags=["extraction"])


async def _require_state(user_id: str, creative_id: str) -> ExtractionState:
    state = await get_extraction_state(user_id, creative_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"No extraction record for creative {creative_id}")
    return state


@router.get("/{user_id}/{creative_id}", response_model=ExtractionState)
async def get_extraction(user_id: str, creative_id: str) -> ExtractionState:
    return await _require_state(user_id, creative_id)


@router.get("/{user_id}/{creative_id}/scoring", response_model=ExtractionScoringResult)
async def get_extraction_scoring(user_id: str, creative_id: str, settings: SettingsDep) -> ExtractionScoringResult:
    state = await _require_state(user_id, creative_id)
    return can_score_with_extraction(state, settings=settings)


@router.post("/{user_id}/{creative_id}", response_model=ExtractionState)
async def start_extraction_endpoint(user_id: str, creative_id: str, settings: SettingsDep) -> ExtractionState:
    return await request_extraction(user_id, creative_id, settings)


@router.post("/{user_id}/{creative_id}/complete", response_model=ExtractionState)
async def complete_extraction_endpoint(
    user_id: str,
    creative_id: str,
    result: ExtractionResult,
) -> ExtractionState:
    try:
        return await record_extraction_result(user_id, creative_id, result)
    except AdGateError as e:
        raise to_http_exception(e)


@router.post("/{user_id}/{creative_id}/retry", response_model=ExtractionState)
async def retry_extraction_endpoint(user_id: str, creative_id: str) -> ExtractionState:
    try:
        return await request_retry(user_id, creative_id)
    except AdGateError as e:
        raise to_http_exception(e)
