"""
AdGate API package initialization.

This package contains FastAPI router modules:
- evaluations: Gates, narrative eligibility, wrong-blame diagnosis, efficiency,
  end-to-end evaluation
- extraction: Per-creative extraction lifecycle
- recommendations: Validation, lifecycle, outcomes, learnings and ranking
- baselines: Segment baseline computation and lookup
- audit: Trace replay
- narrative: LLM output validation, checklist diagnosis and storage

Each router carries its own /api/... prefix.
"""

from fastapi import APIRouter

from adgate.api.evaluations import router as evaluations_router
from adgate.api.extraction import router as extraction_router
from adgate.api.recommendations import router as recommendations_router
from adgate.api.baselines import router as baselines_router
from adgate.api.audit import router as audit_router
from adgate.api.narrative import router as narrative_router

api_router = APIRouter()

api_router.include_router(evaluations_router)
api_router.include_router(extraction_router)
api_router.include_router(recommendations_router)
api_router.include_router(baselines_router)
api_router.include_router(audit_router)
api_router.include_router(narrative_router)

__all__ = [
    "api_router",
    "evaluations_router",
    "extraction_router",
    "recommendations_router",
    "baselines_router",
    "audit_router",
    "narrative_router",
]
