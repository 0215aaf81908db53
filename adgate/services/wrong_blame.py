"""
Wrong-blame detectors.

Each detector compares two observation periods and reports one kind of
non-creative cause for a conversion shift:

- detect_context_changes: landing page URL, discount, price or guarantee text
  changed between the periods.
- detect_tracking_anomaly: conversions collapsed while spend held steady,
  the page-view to conversion ratio collapsed, or spend accrued with zero
  conversions.
- detect_audience_fatigue: at least two of frequency up, CTR down, CPM up.

The detectors are independent and pure. Ordering between them is the
orchestrator's job (adgate.services.orchestration).
"""

import hashlib
import logging
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

from adgate.core.config import Settings, get_settings
from adgate.models.enums import (
    AnomalySeverity,
    ConfidenceLevel,
    ContextChangeType,
    TrackingAnomalyType,
)
from adgate.models.schemas import (
    ContextChange,
    CreativeContext,
    FatigueDiagnosis,
    PeriodMetrics,
    TrackingAnomaly,
)


logger = logging.getLogger(__name__)


TRACKING_PARAMS = frozenset({
    'utm_source',
    'utm_medium',
    'utm_campaign',
    'utm_content',
    'utm_term',
    'fbclid',
    'gclid',
})

FATIGUE_ADVICE = (
    'Audience may be fatigued. Consider: (1) expanding audience, '
    '(2) refreshing creative, or (3) pausing for 3-5 days.'
)


# =============================================================================
# Landing Page URLs
# =============================================================================

def normalize_url(url: str) -> str:
    """
    Canonical form of a landing page URL for change detection.

    Drops scheme, tracking parameters (utm_*, fbclid, gclid), fragment and a
    trailing slash, then lowercases host, path and query.
    """
    raw = url.strip()
    parts = urlsplit(raw if '://' in raw else f'//{raw}')
    if not parts.netloc:
        return raw.lower().rstrip('/')

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in TRACKING_PARAMS
    ]
    path = parts.path.rstrip('/')
    normalized = f"{parts.hostname or ''}{path}"
    if query:
        normalized = f"{normalized}?{urlencode(query)}"
    return normalized.lower()


def hash_url(url: str) -> str:
    """SHA-256 hex digest of the normalized URL."""
    return hashlib.sha256(normalize_url(url).encode('utf-8')).hexdigest()


# =============================================================================
# Context Changes
# =============================================================================

def detect_context_changes(
    previous: Optional[CreativeContext],
    current: CreativeContext,
) -> List[ContextChange]:
    """
    List every observable context change between two periods.

    Without a previous snapshot there is nothing to compare, so no change is
    reported. URLs are only compared when both periods have one.
    """
    if previous is None:
        return []

    changes: List[ContextChange] = []

    if previous.lpUrl and current.lpUrl and hash_url(previous.lpUrl) != hash_url(current.lpUrl):
        changes.append(ContextChange(
            changeType=ContextChangeType.LP_URL,
            previousValue=previous.lpUrl,
            currentValue=current.lpUrl,
            message='Landing page URL changed.',
        ))

    text_fields = (
        (ContextChangeType.DISCOUNT, previous.discountText, current.discountText, 'Discount'),
        (ContextChangeType.PRICE, previous.priceText, current.priceText, 'Price'),
        (ContextChangeType.GUARANTEE, previous.guaranteeText, current.guaranteeText, 'Guarantee'),
    )
    for change_type, before, after, label in text_fields:
        if (before or None) != (after or None):
            changes.append(ContextChange(
                changeType=change_type,
                previousValue=before or None,
                currentValue=after or None,
                message=f'{label} text changed.',
            ))

    if changes:
        logger.info(
            "Context changes detected: %s",
            ', '.join(c.changeType.value for c in changes),
        )
    return changes


# =============================================================================
# Tracking Anomalies
# =============================================================================

def detect_tracking_anomaly(
    current: PeriodMetrics,
    previous: Optional[PeriodMetrics],
    settings: Optional[Settings] = None,
) -> Optional[TrackingAnomaly]:
    """
    Return the first tracking anomaly found, or None.

    Checked in order: conversion drop (critical), page-view/conversion
    mismatch (warning), zero conversions despite spend (warning). Requires a
    previous period with spend to compare against.
    """
    settings = settings or get_settings()
    if previous is None or previous.spend <= 0:
        return None

    spend_change = (current.spend - previous.spend) / previous.spend
    conversion_change = (
        (current.conversions - previous.conversions) / previous.conversions
        if previous.conversions > 0 else 0.0
    )

    if (
        abs(spend_change) < settings.tracking_spend_stable_ratio
        and conversion_change < -settings.tracking_conversion_drop_ratio
        and previous.conversions >= settings.tracking_min_previous_conversions
    ):
        return TrackingAnomaly(
            anomalyType=TrackingAnomalyType.CONVERSION_DROP,
            severity=AnomalySeverity.CRITICAL,
            message=(
                f"Conversions dropped {abs(conversion_change) * 100:.0f}% while spend remained "
                "stable. This may indicate a tracking issue rather than creative performance."
            ),
            previousValue=float(previous.conversions),
            currentValue=float(current.conversions),
        )

    if current.pageViews and previous.pageViews:
        previous_ratio = previous.conversions / previous.pageViews
        current_ratio = current.conversions / current.pageViews
        if (
            previous_ratio > settings.tracking_pageview_min_ratio
            and current_ratio / previous_ratio < settings.tracking_pageview_collapse_ratio
        ):
            return TrackingAnomaly(
                anomalyType=TrackingAnomalyType.PAGEVIEW_CONVERSION_MISMATCH,
                severity=AnomalySeverity.WARNING,
                message=(
                    "Post-click conversion rate dropped significantly. "
                    "Check if conversion tracking is working correctly."
                ),
                previousValue=previous_ratio,
                currentValue=current_ratio,
            )

    if current.conversions == 0 and current.spend >= settings.spend_gate_amount:
        return TrackingAnomaly(
            anomalyType=TrackingAnomalyType.ZERO_CONVERSIONS,
            severity=AnomalySeverity.WARNING,
            message=(
                f"No conversions recorded despite {settings.currency_symbol}{current.spend:.0f} "
                "spend. Verify tracking is active."
            ),
            previousValue=float(previous.conversions),
            currentValue=0.0,
        )

    return None


# =============================================================================
# Audience Fatigue
# =============================================================================

def _relative_change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None or previous <= 0:
        return None
    return (current - previous) / previous


def detect_audience_fatigue(
    current: PeriodMetrics,
    previous: Optional[PeriodMetrics],
    settings: Optional[Settings] = None,
) -> FatigueDiagnosis:
    """
    Check frequency, CTR and CPM drift; two or more indicators mean fatigue.

    Indicators whose inputs are missing are simply not counted.
    """
    settings = settings or get_settings()
    if previous is None:
        return FatigueDiagnosis(detected=False)

    indicators: List[str] = []

    frequency_change = _relative_change(current.frequency, previous.frequency)
    if (
        frequency_change is not None
        and frequency_change > settings.fatigue_frequency_increase
        and current.frequency > settings.fatigue_frequency_floor
    ):
        indicators.append(
            f"Frequency increased {frequency_change * 100:.0f}% to {current.frequency:.1f}"
        )

    ctr_change = _relative_change(current.effective_ctr(), previous.effective_ctr())
    if ctr_change is not None and -ctr_change > settings.fatigue_ctr_decline:
        indicators.append(f"CTR declined {-ctr_change * 100:.0f}%")

    cpm_change = _relative_change(current.effective_cpm(), previous.effective_cpm())
    if cpm_change is not None and cpm_change > settings.fatigue_cpm_increase:
        indicators.append(f"CPM increased {cpm_change * 100:.0f}%")

    if len(indicators) >= 2:
        return FatigueDiagnosis(
            detected=True,
            confidence=ConfidenceLevel.HIGH if len(indicators) >= 3 else ConfidenceLevel.MEDIUM,
            indicators=indicators,
            frequencyChange=frequency_change,
            ctrChange=ctr_change,
            cpmChange=cpm_change,
            message=FATIGUE_ADVICE,
        )

    return FatigueDiagnosis(
        detected=False,
        confidence=ConfidenceLevel.LOW,
        frequencyChange=frequency_change,
        ctrChange=ctr_change,
        cpmChange=cpm_change,
    )
