"""
FastAPI router for replaying audit traces.

Key Endpoints:
- GET /api/audit/{trace_id} - Entries in step order
- GET /api/audit/{trace_id}?format=text - Human-readable replay
"""

import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse

from adgate.services.audit_trail import format_audit_trail, get_audit_trail


logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/{trace_id}")
async def get_trace(
    trace_id: str,
    format: str = Query(default="json", pattern="^(json|text)$"),
):
    entries = await get_audit_trail(trace_id)
    if not entries:
        raise HTTPException(status_code=404, detail=f"No audit entries for trace {trace_id}")

    if format == "text":
        return PlainTextResponse(format_audit_trail(entries))
    return {
        "traceId": trace_id,
        "entries": [entry.model_dump(mode="json") for entry in entries],
    }
