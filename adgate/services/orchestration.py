"""
System activation orchestrator.

Decides which of the three analysis subsystems (structure, narrative,
conversion) may speak about a creative, and whether a conversion problem may
be blamed on the creative at all.

Narrative activation (4-quadrant rule):

    delivery \\ conversion |  good               | bad                       | insufficient
    -----------------------+---------------------+---------------------------+-------------------
    healthy                | conversion_healthy  | eligible if >= 30 conv.   | insufficient_data
    risky / poor           | delivery_unhealthy  | delivery_unhealthy        | delivery_unhealthy

Delivery health is checked first, so "fix structure first" wins over every
conversion-based reason.

Wrong-blame priority chain, first match wins and later steps are not
inspected:

    1. tracking anomaly       -> tracking
    2. context change         -> external_change
    3. audience fatigue       -> audience_fatigue
    4. attribution gap        -> attribution_gap
    5. nothing found          -> none (creative may be evaluated)
"""

import logging
from typing import Callable, List, Optional

from adgate.core.config import Settings, get_settings
from adgate.models.enums import (
    AnomalySeverity,
    ConfidenceLevel,
    ConversionHealth,
    DeliveryHealth,
    IneligibilityReason,
    PrimaryIssue,
    SystemName,
)
from adgate.models.schemas import (
    ContextChange,
    ConversionDiagnosis,
    CreativeContext,
    ExtractionScoringResult,
    FatigueDiagnosis,
    GateStatus,
    NarrativeEligibility,
    PeriodMetrics,
    SystemActivation,
    TrackingAnomaly,
)
from adgate.services.wrong_blame import (
    detect_audience_fatigue,
    detect_context_changes,
    detect_tracking_anomaly,
)


logger = logging.getLogger(__name__)


ELIGIBILITY_MESSAGES = {
    IneligibilityReason.ELIGIBLE: (
        'Delivery is healthy but conversion is underperforming. '
        'Help us understand the message structure.'
    ),
    IneligibilityReason.DELIVERY_UNHEALTHY: (
        'Fix structure first. Message analysis is only useful when delivery is healthy.'
    ),
    IneligibilityReason.CONVERSION_HEALTHY: (
        'No message issues detected. Conversion is performing well.'
    ),
    IneligibilityReason.INSUFFICIENT_DATA: (
        'Insufficient data. Gather more conversions before analyzing message structure.'
    ),
}

ATTRIBUTION_GAP_MESSAGE = (
    'Attribution data may be incomplete due to iOS privacy or modeling. '
    'Confidence in conversion metrics is reduced.'
)
NO_EXTERNAL_FACTORS_MESSAGE = 'No external factors detected. Proceed with creative/funnel analysis.'


# =============================================================================
# Narrative Eligibility
# =============================================================================

def check_narrative_eligibility(
    delivery_health: DeliveryHealth,
    conversion_health: ConversionHealth,
    total_conversions: int,
    settings: Optional[Settings] = None,
) -> NarrativeEligibility:
    """
    Decide whether the narrative subsystem may run for a creative.

    Eligible only when delivery is healthy, conversion is bad and the
    creative has at least narrative_min_conversions conversions (boundary
    inclusive).
    """
    settings = settings or get_settings()
    delivery_health = DeliveryHealth(delivery_health)
    conversion_health = ConversionHealth(conversion_health)

    if delivery_health != DeliveryHealth.HEALTHY:
        return NarrativeEligibility(eligible=False, reason=IneligibilityReason.DELIVERY_UNHEALTHY)

    if conversion_health == ConversionHealth.GOOD:
        return NarrativeEligibility(eligible=False, reason=IneligibilityReason.CONVERSION_HEALTHY)

    if conversion_health == ConversionHealth.INSUFFICIENT:
        return NarrativeEligibility(eligible=False, reason=IneligibilityReason.INSUFFICIENT_DATA)

    if total_conversions < settings.narrative_min_conversions:
        return NarrativeEligibility(
            eligible=False,
            reason=IneligibilityReason.INSUFFICIENT_CONVERSIONS,
        )

    return NarrativeEligibility(eligible=True, reason=IneligibilityReason.ELIGIBLE)


def get_eligibility_message(
    eligibility: NarrativeEligibility,
    settings: Optional[Settings] = None,
) -> str:
    if eligibility.reason == IneligibilityReason.INSUFFICIENT_CONVERSIONS:
        settings = settings or get_settings()
        return (
            f"Need {settings.narrative_min_conversions}+ conversions for reliable "
            "message analysis. Keep running."
        )
    return ELIGIBILITY_MESSAGES[eligibility.reason]


# =============================================================================
# Wrong-Blame Priority Chain
# =============================================================================

def diagnose_conversion_issue(
    context_changes: List[ContextChange],
    tracking_anomaly: Optional[TrackingAnomaly],
    fatigue: Optional[FatigueDiagnosis],
    has_attribution_gap: bool = False,
) -> ConversionDiagnosis:
    """
    Pick the single dominant explanation for a conversion shift.

    Args:
        context_changes: Output of detect_context_changes.
        tracking_anomaly: Output of detect_tracking_anomaly (None if clean).
        fatigue: Output of detect_audience_fatigue (None if not checked).
        has_attribution_gap: Whether attribution data is known to be incomplete.

    Returns:
        ConversionDiagnosis; canBlameCreative is True only for PrimaryIssue.NONE.
    """
    if tracking_anomaly is not None:
        return ConversionDiagnosis(
            primaryIssue=PrimaryIssue.TRACKING,
            canBlameCreative=False,
            confidence=(
                ConfidenceLevel.HIGH
                if tracking_anomaly.severity == AnomalySeverity.CRITICAL
                else ConfidenceLevel.MEDIUM
            ),
            message=f"Potential tracking issue detected. {tracking_anomaly.message}",
            contextChanges=context_changes,
            trackingAnomaly=tracking_anomaly,
            fatigue=fatigue,
        )

    if context_changes:
        change_types = ', '.join(change.changeType.value for change in context_changes)
        return ConversionDiagnosis(
            primaryIssue=PrimaryIssue.EXTERNAL_CHANGE,
            canBlameCreative=False,
            confidence=ConfidenceLevel.HIGH,
            message=(
                f"External factors changed: {change_types}. "
                "Performance shift may not be due to the creative."
            ),
            contextChanges=context_changes,
            fatigue=fatigue,
        )

    if fatigue is not None and fatigue.detected:
        return ConversionDiagnosis(
            primaryIssue=PrimaryIssue.AUDIENCE_FATIGUE,
            canBlameCreative=False,
            confidence=fatigue.confidence,
            message=fatigue.message or 'Audience fatigue detected.',
            fatigue=fatigue,
        )

    if has_attribution_gap:
        return ConversionDiagnosis(
            primaryIssue=PrimaryIssue.ATTRIBUTION_GAP,
            canBlameCreative=False,
            confidence=ConfidenceLevel.MEDIUM,
            message=ATTRIBUTION_GAP_MESSAGE,
            fatigue=fatigue,
        )

    return ConversionDiagnosis(
        primaryIssue=PrimaryIssue.NONE,
        canBlameCreative=True,
        confidence=ConfidenceLevel.HIGH,
        message=NO_EXTERNAL_FACTORS_MESSAGE,
        fatigue=fatigue,
    )


def diagnose_from_observations(
    current_metrics: Optional[PeriodMetrics] = None,
    previous_metrics: Optional[PeriodMetrics] = None,
    current_context: Optional[CreativeContext] = None,
    previous_context: Optional[CreativeContext] = None,
    has_attribution_gap: bool = False,
    settings: Optional[Settings] = None,
) -> ConversionDiagnosis:
    """
    Run the detectors lazily in priority order and stop at the first hit.

    Unlike diagnose_conversion_issue, which receives results that were
    already computed, this variant never runs a lower-priority detector once
    a higher one has matched.
    """
    settings = settings or get_settings()

    def tracking_step() -> Optional[ConversionDiagnosis]:
        if current_metrics is None:
            return None
        anomaly = detect_tracking_anomaly(current_metrics, previous_metrics, settings)
        if anomaly is None:
            return None
        return diagnose_conversion_issue([], anomaly, None)

    def context_step() -> Optional[ConversionDiagnosis]:
        if current_context is None:
            return None
        changes = detect_context_changes(previous_context, current_context)
        if not changes:
            return None
        return diagnose_conversion_issue(changes, None, None)

    def fatigue_step() -> Optional[ConversionDiagnosis]:
        if current_metrics is None:
            return None
        fatigue = detect_audience_fatigue(current_metrics, previous_metrics, settings)
        if not fatigue.detected:
            return None
        return diagnose_conversion_issue([], None, fatigue)

    steps: List[Callable[[], Optional[ConversionDiagnosis]]] = [tracking_step, context_step, fatigue_step]
    for step in steps:
        diagnosis = step()
        if diagnosis is not None:
            logger.info("Conversion issue attributed to %s", diagnosis.primaryIssue.value)
            return diagnosis

    return diagnose_conversion_issue([], None, None, has_attribution_gap)


# =============================================================================
# System Activation
# =============================================================================

def determine_system_activation(
    gate_status: GateStatus,
    eligibility: NarrativeEligibility,
    diagnosis: ConversionDiagnosis,
    extraction: Optional[ExtractionScoringResult] = None,
    settings: Optional[Settings] = None,
) -> SystemActivation:
    """
    Combine gates, extraction, eligibility and diagnosis into the set of
    subsystems allowed to produce output for this creative.

    - structure: delivery can be scored and extraction allows scoring
    - conversion: conversion can be scored
    - narrative: eligible and the creative may be blamed
    """
    activated: List[SystemName] = []
    blocked = {}

    if not gate_status.canScoreDelivery:
        messages = gate_status.gateMessages
        blocked[SystemName.STRUCTURE.value] = messages[0] if messages else "Delivery scoring blocked."
    elif extraction is not None and not extraction.allowed:
        blocked[SystemName.STRUCTURE.value] = extraction.message or 'Extraction incomplete.'
    else:
        activated.append(SystemName.STRUCTURE)

    if gate_status.canScoreConversion:
        activated.append(SystemName.CONVERSION)
    else:
        reason = gate_status.gates.attributionMismatch.message
        if reason is None:
            reason = (
                f"Only {gate_status.gates.conversions.current} conversions. "
                f"Need {(settings or get_settings()).conversions_low}+ for any signal."
            )
        blocked[SystemName.CONVERSION.value] = reason

    if not eligibility.eligible:
        blocked[SystemName.NARRATIVE.value] = get_eligibility_message(eligibility, settings)
    elif not diagnosis.canBlameCreative:
        blocked[SystemName.NARRATIVE.value] = diagnosis.message
    else:
        activated.append(SystemName.NARRATIVE)

    return SystemActivation(systemsActivated=activated, blockedReasons=blocked)
