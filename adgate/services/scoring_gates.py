"""
Scoring gate evaluator.

Converts the raw facts about a creative (age, spend, impressions, conversions,
iOS share, modeled-conversion share, attribution-window agreement) into
per-dimension pass/fail flags and two confidence ceilings: one for delivery
scoring and one for conversion scoring.

Evaluation order, which is also the order of gateMessages:
    1. Age           -> canScoreDelivery
    2. Spend         -> canShowRecommendations (together with age)
    3. Impressions   -> deliveryConfidenceMax
    4. Conversions   -> starting conversion ceiling
    5. iOS share     -> clamp (unknown is treated as the worst case)
    6. Modeled share -> clamp
    7. Attribution   -> full conversion block on mismatch

The evaluator is pure and total: it never raises for a valid GateInput and
never reads the clock unless `now` is omitted. Insufficient evidence is
reported as flags and messages, not as errors.

Usage:
    from adgate.services.scoring_gates import evaluate_gates

    status = evaluate_gates(GateInput(firstSeenAt=..., totalSpend=1500, ...))
    if status.canScoreConversion:
        ...
"""

import logging
import math
from datetime import datetime, timezone
from typing import List, Optional

from adgate.core.config import Settings, get_settings
from adgate.models.enums import ConfidenceLevel
from adgate.models.schemas import (
    AgeGate,
    AttributionGate,
    GateDetails,
    GateInput,
    GateStatus,
    SpendGate,
    TrafficPenalty,
    VolumeGate,
)
from adgate.services.confidence import (
    clamp,
    from_conversion_count,
    from_impression_count,
    get_confidence_label,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================

def _as_utc(moment: datetime) -> datetime:
    """Treat naive timestamps as UTC so age arithmetic never mixes kinds."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _percent(fraction: float) -> str:
    return f"{fraction * 100:.0f}%"


def _next_conversion_threshold(conversions: int, settings: Settings) -> Optional[int]:
    for threshold in (settings.conversions_low, settings.conversions_medium, settings.conversions_high):
        if conversions < threshold:
            return threshold
    return None


# =============================================================================
# Gate Evaluation
# =============================================================================

def evaluate_gates(
    gate_input: GateInput,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> GateStatus:
    """
    Evaluate every scoring gate for one creative.

    Args:
        gate_input: Immutable snapshot of creative facts.
        now: Evaluation time. Defaults to the current UTC time.
        settings: Threshold configuration. Defaults to get_settings().

    Returns:
        GateStatus with capability flags, the two confidence ceilings, per-gate
        details and ordered human-readable messages.
    """
    settings = settings or get_settings()
    now = _as_utc(now or datetime.now(timezone.utc))
    messages: List[str] = []

    # 1. Age gate
    age_hours = (now - _as_utc(gate_input.firstSeenAt)).total_seconds() / 3600
    age_passed = age_hours >= settings.age_gate_hours
    hours_remaining = 0 if age_passed else math.ceil(settings.age_gate_hours - age_hours)
    if not age_passed:
        messages.append(
            f"Gathering data. Delivery scoring available in ~{hours_remaining}h."
        )

    # 2. Spend gate
    spend_passed = gate_input.totalSpend >= settings.spend_gate_amount
    amount_remaining = 0.0 if spend_passed else settings.spend_gate_amount - gate_input.totalSpend
    if not spend_passed:
        messages.append(
            f"Need {settings.currency_symbol}{amount_remaining:.0f} more spend before recommendations."
        )

    # 3. Impressions -> delivery ceiling
    delivery_max = from_impression_count(gate_input.totalImpressions, settings)
    if delivery_max == ConfidenceLevel.HIGH:
        next_impressions = None
    elif delivery_max == ConfidenceLevel.MEDIUM:
        next_impressions = settings.impressions_high
        messages.append(
            f"{settings.impressions_high - gate_input.totalImpressions:,} more impressions for high confidence."
        )
    else:
        next_impressions = settings.impressions_medium
        messages.append(
            f"Early signal only. Need {settings.impressions_medium:,} impressions for medium confidence."
        )

    # 4. Conversions -> starting conversion ceiling
    conversion_level = from_conversion_count(gate_input.totalConversions, settings)
    conversion_max = conversion_level
    if conversion_level == ConfidenceLevel.INSUFFICIENT:
        messages.append(
            f"Only {gate_input.totalConversions} conversions. "
            f"Need {settings.conversions_low}+ for any signal."
        )

    # 5. iOS share; unknown is the worst case, not the average case
    ios = gate_input.iosTrafficPercent
    if ios is None:
        ios_penalty = TrafficPenalty(penalized=True, dataMissing=True)
        conversion_max = clamp(conversion_max, ConfidenceLevel.LOW)
        messages.append(
            "iOS traffic data unavailable. Using conservative estimate (confidence capped)."
        )
    elif ios > settings.ios_high_threshold:
        ios_penalty = TrafficPenalty(penalized=True, percent=ios)
        conversion_max = clamp(conversion_max, ConfidenceLevel.LOW)
        messages.append(
            f"High iOS traffic ({_percent(ios)}). Conversion data may be incomplete."
        )
    elif ios > settings.ios_moderate_threshold:
        ios_penalty = TrafficPenalty(penalized=True, percent=ios)
        conversion_max = clamp(conversion_max, ConfidenceLevel.MEDIUM)
        messages.append(
            f"Moderate iOS traffic ({_percent(ios)}). Conversion confidence capped at medium."
        )
    else:
        ios_penalty = TrafficPenalty(penalized=False, percent=ios)

    # 6. Modeled conversions
    modeled = gate_input.modeledConversionPercent
    if modeled is None:
        modeled_penalty = TrafficPenalty(penalized=True, dataMissing=True)
        conversion_max = clamp(conversion_max, ConfidenceLevel.MEDIUM)
        messages.append(
            "Modeled conversion data unavailable. Using conservative estimate."
        )
    elif modeled > settings.modeled_conversion_threshold:
        modeled_penalty = TrafficPenalty(penalized=True, percent=modeled)
        conversion_max = clamp(conversion_max, ConfidenceLevel.MEDIUM)
        messages.append(
            f"{_percent(modeled)} of conversions are modeled. Confidence reduced."
        )
    else:
        modeled_penalty = TrafficPenalty(penalized=False, percent=modeled)

    # 7. Attribution mismatch blocks conversion scoring outright
    user_window = gate_input.userAttributionWindow
    platform_window = gate_input.platformAttributionWindow
    attribution_blocked = (
        user_window is not None
        and platform_window is not None
        and user_window != platform_window
    )
    attribution_message = None
    if attribution_blocked:
        conversion_max = ConfidenceLevel.INSUFFICIENT
        attribution_message = (
            f'Attribution window mismatch: You use "{user_window}" but the platform '
            f'reports "{platform_window}". Baseline comparisons blocked.'
        )
        messages.append(attribution_message)

    can_score_conversion = (
        gate_input.totalConversions >= settings.conversions_low
        and not attribution_blocked
    )

    status = GateStatus(
        canScoreDelivery=age_passed,
        deliveryConfidenceMax=delivery_max,
        canScoreConversion=can_score_conversion,
        conversionConfidenceMax=conversion_max,
        canShowRecommendations=age_passed and spend_passed,
        gateMessages=messages,
        gates=GateDetails(
            age=AgeGate(passed=age_passed, hoursRemaining=hours_remaining),
            spend=SpendGate(passed=spend_passed, amountRemaining=amount_remaining),
            impressions=VolumeGate(
                level=delivery_max,
                current=gate_input.totalImpressions,
                nextThreshold=next_impressions,
            ),
            conversions=VolumeGate(
                level=conversion_level,
                current=gate_input.totalConversions,
                nextThreshold=_next_conversion_threshold(gate_input.totalConversions, settings),
            ),
            iosTraffic=ios_penalty,
            modeledConversions=modeled_penalty,
            attributionMismatch=AttributionGate(
                blocked=attribution_blocked,
                message=attribution_message,
            ),
        ),
    )

    logger.debug(
        "Gates evaluated: delivery=%s conversion=%s recommendations=%s",
        status.deliveryConfidenceMax.value,
        status.conversionConfidenceMax.value,
        status.canShowRecommendations,
    )
    return status


# =============================================================================
# Display Helpers
# =============================================================================

def get_gate_status_summary(status: GateStatus) -> str:
    """One-line summary of what the gates currently allow."""
    if not status.canScoreDelivery:
        return 'Gathering initial data...'

    if status.conversionConfidenceMax == ConfidenceLevel.INSUFFICIENT:
        return 'Delivery data available. Waiting for conversions.'

    if not status.canShowRecommendations:
        return 'Data available. Recommendations after more spend.'

    return f"{get_confidence_label(status.conversionConfidenceMax)} data available."
