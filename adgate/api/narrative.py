"""
FastAPI router for the narrative checklist.

Key Endpoints:
- POST /api/narrative/prompt - Constrained LLM prompt for one creative
- POST /api/narrative/validate-llm-output - Validate raw text or a parsed record
  and return the unconfirmed prefill (422 lists every violation)
- POST /api/narrative/diagnose - Findings and suggestions for a checklist
- POST /api/narrative/confirm - Apply user edits and mark confirmed
- GET  /api/narrative/{user_id}/{creative_id} - Stored checklist
- PUT  /api/narrative/{user_id}/{creative_id} - Store a checklist

The LLM may only fill checklist facts. Its output is rejected, never
repaired, when it contains anything else.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException

from adgate.api.errors import to_http_exception
from adgate.core.exceptions import AdGateError, PolicyViolationError
from adgate.models.schemas import (
    ChecklistConfirmRequest,
    LlmOutputRequest,
    NarrativeChecklist,
    NarrativeDiagnostic,
)
from adgate.services.narrative import (
    build_narrative_prompt,
    checklist_from_llm_output,
    confirm_checklist,
    diagnose_narrative,
    get_checklist,
    get_checklist_completion,
    parse_llm_output,
    save_checklist,
)


logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/narrative", tags=["narrative"])


@router.post("/prompt")
async def prompt_endpoint(creativeContent: str = Body(..., embed=True)) -> Dict[str, str]:
    return build_narrative_prompt(creativeContent)


@router.post("/validate-llm-output")
async def validate_llm_output_endpoint(request: LlmOutputRequest) -> Dict[str, Any]:
    """
    Example Response:
        {
            "valid": true,
            "checklist": {..., "llmAssisted": true, "userConfirmed": false},
            "completion": 100
        }
    """
    try:
        if request.record is not None:
            checklist = checklist_from_llm_output(request.record)
        else:
            checklist = checklist_from_llm_output(parse_llm_output(request.rawText or ''))
    except PolicyViolationError as e:
        raise to_http_exception(e)

    return {
        "valid": True,
        "checklist": checklist.model_dump(mode="json"),
        "completion": get_checklist_completion(checklist),
    }


@router.post("/diagnose", response_model=NarrativeDiagnostic)
async def diagnose_endpoint(checklist: NarrativeChecklist) -> NarrativeDiagnostic:
    return diagnose_narrative(checklist)


@router.post("/confirm", response_model=NarrativeChecklist)
async def confirm_endpoint(request: ChecklistConfirmRequest) -> NarrativeChecklist:
    return confirm_checklist(request.checklist, request.edits)


@router.get("/{user_id}/{creative_id}", response_model=NarrativeChecklist)
async def get_checklist_endpoint(user_id: str, creative_id: str) -> NarrativeChecklist:
    checklist = await get_checklist(user_id, creative_id)
    if checklist is None:
        raise HTTPException(status_code=404, detail=f"No checklist for creative {creative_id}")
    return checklist


@router.put("/{user_id}/{creative_id}", response_model=NarrativeChecklist)
async def save_checklist_endpoint(
    user_id: str,
    creative_id: str,
    checklist: NarrativeChecklist,
) -> NarrativeChecklist:
    try:
        return await save_checklist(user_id, creative_id, checklist)
    except AdGateError as e:
        raise to_http_exception(e)
