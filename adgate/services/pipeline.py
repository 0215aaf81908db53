"""
End-to-end evaluation of one creative.

Runs, in order:
1. scoring gates
2. extraction ceiling (when an extraction record is supplied)
3. narrative eligibility (4-quadrant rule)
4. wrong-blame diagnosis
5. system activation

and writes one audit entry per decision under a fresh trace id. Delivery
confidence is the gate ceiling further clamped by the extraction ceiling;
conversion confidence is the gate ceiling. An attribution-window mismatch
found by the gates also counts as an attribution gap in the diagnosis.
"""

import logging
from datetime import datetime
from typing import List, Optional

from adgate.core.config import Settings, get_settings
from adgate.models.enums import ConfidenceLevel
from adgate.models.schemas import EvaluationRequest, EvaluationResponse
from adgate.services.audit_trail import (
    generate_trace_id,
    log_eligibility_check,
    log_score_attempt,
    log_system_activation,
)
from adgate.services.confidence import clamp
from adgate.services.extraction import can_score_with_extraction
from adgate.services.orchestration import (
    check_narrative_eligibility,
    determine_system_activation,
    diagnose_from_observations,
    get_eligibility_message,
)
from adgate.services.scoring_gates import evaluate_gates


logger = logging.getLogger(__name__)


async def evaluate_creative(
    request: EvaluationRequest,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> EvaluationResponse:
    settings = settings or get_settings()
    trace_id = generate_trace_id()

    gate_status = evaluate_gates(request.gateInput, now=now, settings=settings)

    extraction = None
    delivery_confidence = gate_status.deliveryConfidenceMax
    if request.extraction is not None:
        extraction = can_score_with_extraction(request.extraction, gate_status.deliveryConfidenceMax, settings)
        delivery_confidence = clamp(delivery_confidence, extraction.maxConfidence)
    if not gate_status.canScoreDelivery:
        delivery_confidence = ConfidenceLevel.INSUFFICIENT

    conversion_confidence = gate_status.conversionConfidenceMax
    if not gate_status.canScoreConversion:
        conversion_confidence = ConfidenceLevel.INSUFFICIENT

    eligibility = check_narrative_eligibility(
        request.deliveryHealth,
        request.conversionHealth,
        request.gateInput.totalConversions,
        settings,
    )
    eligibility_message = get_eligibility_message(eligibility, settings)

    observed = request.diagnosis
    diagnosis = diagnose_from_observations(
        current_metrics=observed.currentMetrics,
        previous_metrics=observed.previousMetrics,
        current_context=observed.currentContext,
        previous_context=observed.previousContext,
        has_attribution_gap=observed.hasAttributionGap or gate_status.gates.attributionMismatch.blocked,
        settings=settings,
    )

    activation = determine_system_activation(gate_status, eligibility, diagnosis, extraction, settings)

    await log_score_attempt(trace_id, request.userId, request.creativeId, gate_status)
    await log_eligibility_check(trace_id, request.userId, request.creativeId, eligibility, eligibility_message)
    await log_system_activation(trace_id, request.userId, request.creativeId, activation, gate_status)

    messages: List[str] = list(gate_status.gateMessages)
    if extraction is not None and extraction.message:
        messages.append(extraction.message)
    messages.append(eligibility_message)
    if not diagnosis.canBlameCreative:
        messages.append(diagnosis.message)

    logger.info(
        "Evaluated creative %s (trace %s): systems=%s",
        request.creativeId,
        trace_id,
        [system.value for system in activation.systemsActivated],
    )
    return EvaluationResponse(
        traceId=trace_id,
        gateStatus=gate_status,
        extraction=extraction,
        deliveryConfidence=delivery_confidence,
        conversionConfidence=conversion_confidence,
        narrativeEligibility=eligibility,
        diagnosis=diagnosis,
        activation=activation,
        messages=messages,
    )
