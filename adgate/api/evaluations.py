"""
FastAPI router for gate and orchestration evaluations.

Key Endpoints:
- POST /api/evaluations/gates - Evaluate scoring gates for one creative
- POST /api/evaluations/narrative-eligibility - 4-quadrant narrative check
- POST /api/evaluations/diagnosis - Wrong-blame priority chain
- POST /api/evaluations/efficiency - Score current CPA against a baseline
- POST /api/evaluations/placement - Aspect-ratio fit and benchmarks for a placement
- POST /api/evaluations - End-to-end evaluation with an audited trace

Everything except the end-to-end route is a pure rule evaluation and runs
without a database.
"""

import logging

from fastapi import APIRouter

from adgate.core.dependencies import SettingsDep
from adgate.models.schemas import (
    ConversionDiagnosis,
    DiagnosisRequest,
    EfficiencyRequest,
    EfficiencyResult,
    EvaluationRequest,
    EvaluationResponse,
    GateInput,
    GateStatus,
    NarrativeEligibilityRequest,
    NarrativeEligibilityResponse,
    PlacementCheckRequest,
    PlacementCheckResponse,
)
from adgate.services.baseline import compute_efficiency_score
from adgate.services.orchestration import (
    check_narrative_eligibility,
    diagnose_from_observations,
    get_eligibility_message,
)
from adgate.services.pipeline import evaluate_creative
from adgate.services.placement import (
    detect_aspect_ratio_mismatch,
    get_placement_benchmarks,
    parse_aspect_ratio,
    validate_scoring_context,
)
from adgate.services.recommendations import build_aspect_ratio_recommendation
from adgate.services.scoring_gates import evaluate_gates


logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/evaluations", tags=["evaluations"])


@router.post("/gates", response_model=GateStatus)
async def evaluate_gates_endpoint(gate_input: GateInput, settings: SettingsDep) -> GateStatus:
    return evaluate_gates(gate_input, settings=settings)


@router.post("/narrative-eligibility", response_model=NarrativeEligibilityResponse)
async def narrative_eligibility_endpoint(
    request: NarrativeEligibilityRequest,
    settings: SettingsDep,
) -> NarrativeEligibilityResponse:
    """
    Example Response:
        {
            "eligible": false,
            "reason": "delivery_unhealthy",
            "message": "Fix structure first. ..."
        }
    """
    eligibility = check_narrative_eligibility(
        request.deliveryHealth,
        request.conversionHealth,
        request.totalConversions,
        settings,
    )
    return NarrativeEligibilityResponse(
        eligible=eligibility.eligible,
        reason=eligibility.reason,
        message=get_eligibility_message(eligibility, settings),
    )


@router.post("/diagnosis", response_model=ConversionDiagnosis)
async def diagnosis_endpoint(request: DiagnosisRequest, settings: SettingsDep) -> ConversionDiagnosis:
    return diagnose_from_observations(
        current_metrics=request.currentMetrics,
        previous_metrics=request.previousMetrics,
        current_context=request.currentContext,
        previous_context=request.previousContext,
        has_attribution_gap=request.hasAttributionGap,
        settings=settings,
    )


@router.post("/efficiency", response_model=EfficiencyResult)
async def efficiency_endpoint(request: EfficiencyRequest, settings: SettingsDep) -> EfficiencyResult:
    return compute_efficiency_score(
        request.currentCpa,
        request.currentRoas,
        request.currentConversions,
        request.baseline,
        settings,
    )


@router.post("", response_model=EvaluationResponse)
async def evaluate_creative_endpoint(request: EvaluationRequest, settings: SettingsDep) -> EvaluationResponse:
    """
    Run gates, extraction, eligibility, diagnosis and activation for one
    creative. Each decision is appended to the audit trail under the
    returned traceId.
    """
    return await evaluate_creative(request, settings=settings)


@router.post("/placement", response_model=PlacementCheckResponse)
async def placement_endpoint(request: PlacementCheckRequest, settings: SettingsDep) -> PlacementCheckResponse:
    """
    Check a creative's aspect ratio against its placement and attach an
    aspect_ratio recommendation draft when it is not the optimal ratio.

    Without a concrete placement only the context errors and the unknown
    benchmarks are returned.
    """
    aspect_ratio = request.aspectRatio or parse_aspect_ratio(request.width, request.height, settings)
    context = validate_scoring_context(request.placement)
    benchmarks = get_placement_benchmarks(request.placement)
    if not context.valid:
        return PlacementCheckResponse(context=context, benchmarks=benchmarks)

    fit = detect_aspect_ratio_mismatch(aspect_ratio, request.placement)
    return PlacementCheckResponse(
        context=context,
        mismatch=fit,
        benchmarks=benchmarks,
        recommendation=build_aspect_ratio_recommendation(fit, request.confidence, request.creativeId),
    )
