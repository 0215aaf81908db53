"""
FastAPI router for recommendations, their outcomes and account learnings.

Key Endpoints:
- GET  /api/recommendations/templates - Template catalogue for all types
- POST /api/recommendations/validate - Specificity check without storing
- POST /api/recommendations - Validate and store (422 lists every violation)
- GET  /api/recommendations/user/{user_id} - A user's recommendations
- GET  /api/recommendations/learnings/{user_id} - Per-type account patterns
- GET  /api/recommendations/summary/{user_id}?month=YYYY-MM - Monthly summary
- POST /api/recommendations/rank - Adjust and order candidate recommendations
- GET  /api/recommendations/{id}
- POST /api/recommendations/{id}/follow | /ignore | /outcome

Lifecycle: pending -> followed | ignored; outcomes are recorded once, only
for followed recommendations. A second transition returns 409.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Query

from adgate.api.errors import to_http_exception
from adgate.core.dependencies import SettingsDep
from adgate.core.exceptions import AdGateError, PolicyViolationError
from adgate.models.schemas import (
    AccountLearnings,
    FollowRequest,
    MonthlySummary,
    OutcomeRequest,
    RankedRecommendation,
    RankRequest,
    Recommendation,
    RecommendationCreateRequest,
    RecommendationDraft,
    RecommendationValidation,
)
from adgate.services.audit_trail import generate_trace_id, log_recommendation_generation
from adgate.services.meta_learning import (
    compute_account_learnings,
    generate_monthly_summary,
    rank_recommendations,
)
from adgate.services.recommendations import (
    create_recommendation,
    follow_recommendation,
    get_recommendation,
    ignore_recommendation,
    list_templates,
    list_user_recommendations,
    record_recommendation_outcome,
    validate_recommendation,
)


logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/recommendations", tags=["recommendations"])


# =============================================================================
# Catalogue and Validation
# =============================================================================

@router.get("/templates")
async def get_templates() -> Dict[str, List[Dict[str, Any]]]:
    return {"templates": list_templates()}


@router.post("/validate", response_model=RecommendationValidation)
async def validate_endpoint(draft: RecommendationDraft) -> RecommendationValidation:
    return validate_recommendation(draft)


@router.post("", response_model=Recommendation, status_code=201)
async def create_endpoint(request: RecommendationCreateRequest) -> Recommendation:
    """
    Store a recommendation in pending status and append a
    recommendation_gen step to the trace, blocked or not.

    Example Response (422):
        {
            "detail": {
                "message": "Recommendation is not specific enough",
                "violations": ["targetRange must include a number or range ..."]
            }
        }
    """
    draft = RecommendationDraft.model_validate(request.model_dump(exclude={'userId', 'traceId'}))
    trace_id = request.traceId or generate_trace_id()
    try:
        recommendation = await create_recommendation(request.userId, draft)
    except PolicyViolationError as e:
        await log_recommendation_generation(
            trace_id,
            request.userId,
            draft.sourceCreativeId,
            {'recommendationType': draft.recommendationType, 'violations': e.violations},
            blocked=True,
            blocked_reason=e.message,
        )
        raise to_http_exception(e)
    except AdGateError as e:
        raise to_http_exception(e)

    await log_recommendation_generation(
        trace_id,
        request.userId,
        recommendation.sourceCreativeId,
        {
            'recommendationId': recommendation.id,
            'recommendationType': recommendation.recommendationType.value,
            'confidence': recommendation.confidence.value,
        },
    )
    return recommendation


# =============================================================================
# Account Learnings
# =============================================================================

@router.get("/user/{user_id}", response_model=List[Recommendation])
async def list_endpoint(user_id: str) -> List[Recommendation]:
    return await list_user_recommendations(user_id)


@router.get("/learnings/{user_id}", response_model=AccountLearnings)
async def learnings_endpoint(user_id: str, settings: SettingsDep) -> AccountLearnings:
    recommendations = await list_user_recommendations(user_id)
    return compute_account_learnings(recommendations, user_id=user_id, settings=settings)


@router.get("/summary/{user_id}", response_model=MonthlySummary)
async def summary_endpoint(
    user_id: str,
    settings: SettingsDep,
    month: str = Query(..., pattern=r"^\d{4}-\d{2}$", description="Calendar month, YYYY-MM"),
) -> MonthlySummary:
    recommendations = await list_user_recommendations(user_id)
    return generate_monthly_summary(recommendations, month, settings)


@router.post("/rank", response_model=List[RankedRecommendation])
async def rank_endpoint(request: RankRequest, settings: SettingsDep) -> List[RankedRecommendation]:
    """
    Rank candidates with the supplied learnings, or with the stored history
    of request.userId when no learnings are supplied.
    """
    learnings = request.learnings
    if learnings is None and request.userId:
        history = await list_user_recommendations(request.userId)
        learnings = compute_account_learnings(history, user_id=request.userId, settings=settings)
    return rank_recommendations(request.recommendations, learnings, settings)


# =============================================================================
# Lifecycle
# =============================================================================

@router.get("/{recommendation_id}", response_model=Recommendation)
async def get_endpoint(recommendation_id: str) -> Recommendation:
    try:
        return await get_recommendation(recommendation_id)
    except AdGateError as e:
        raise to_http_exception(e)


@router.post("/{recommendation_id}/follow", response_model=Recommendation)
async def follow_endpoint(recommendation_id: str, request: FollowRequest) -> Recommendation:
    try:
        return await follow_recommendation(recommendation_id, request.linkedCreativeId)
    except AdGateError as e:
        raise to_http_exception(e)


@router.post("/{recommendation_id}/ignore", response_model=Recommendation)
async def ignore_endpoint(recommendation_id: str) -> Recommendation:
    try:
        return await ignore_recommendation(recommendation_id)
    except AdGateError as e:
        raise to_http_exception(e)


@router.post("/{recommendation_id}/outcome", response_model=Recommendation)
async def outcome_endpoint(
    recommendation_id: str,
    request: OutcomeRequest,
    settings: SettingsDep,
) -> Recommendation:
    try:
        return await record_recommendation_outcome(
            recommendation_id,
            request.before,
            request.after,
            settings=settings,
        )
    except AdGateError as e:
        raise to_http_exception(e)
