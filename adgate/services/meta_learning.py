"""
Outcome measurement and per-account meta-learning.

Outcome measurement compares a followed recommendation's before and after
metrics:
- after-period conversions below outcome_min_conversions -> insufficient_data,
  whatever the observed delta
- CPA improvement above +10% -> improved, below -10% -> declined, else neutral
- confidence follows the shared 10/30/100 conversion ladder

Meta-learning groups measured recommendations by type. A type becomes a
trusted pattern with at least pattern_min_samples conclusive outcomes and a
most recent outcome within pattern_recency_days. Trusted patterns move the
confidence of *future* recommendations of that type one step:
    success rate >= 60%  -> boosted
    success rate <  30%  -> demoted
Untrusted patterns have no effect at all, including on tie-breaks. Stored
recommendations are never modified.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import numpy as np

from adgate.core.config import Settings, get_settings
from adgate.models.enums import (
    ConfidenceLevel,
    OutcomeVerdict,
    RecommendationStatus,
    RecommendationType,
)
from adgate.models.schemas import (
    AccountLearnings,
    AccountPattern,
    ComparisonPeriod,
    MetricsSnapshot,
    MonthlySummary,
    OutcomeMeasurement,
    RankedRecommendation,
    Recommendation,
    RecommendationSpec,
    TypePerformance,
)
from adgate.services.confidence import from_conversion_count, step_down, step_up


logger = logging.getLogger(__name__)


ADJUSTMENT_BOOSTED = 'boosted'
ADJUSTMENT_DEMOTED = 'demoted'
ADJUSTMENT_UNCHANGED = 'unchanged'

TOP_TYPE_MIN_SUCCESS = 50.0
TOP_TYPE_LIMIT = 3
LOW_FOLLOW_RATE = 30.0
NOTABLE_IMPROVEMENTS = 5


# =============================================================================
# Outcome Measurement
# =============================================================================

def _percent_change(before: Optional[float], after: Optional[float]) -> Optional[float]:
    if not before or after is None:
        return None
    return (after - before) / before * 100


def measure_outcome(
    before: MetricsSnapshot,
    after: MetricsSnapshot,
    run_duration_days: int,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> OutcomeMeasurement:
    """
    Compare before/after metrics and produce a verdict.

    cpaChange is the percent by which CPA fell (positive is better);
    roasChange is the percent by which ROAS rose.
    """
    settings = settings or get_settings()
    measured_at = now or datetime.now(timezone.utc)
    run = timedelta(days=run_duration_days)
    period = ComparisonPeriod(
        beforeStart=measured_at - 2 * run,
        beforeEnd=measured_at - run,
        afterStart=measured_at - run,
        afterEnd=measured_at,
    )

    if after.conversions < settings.outcome_min_conversions:
        return OutcomeMeasurement(
            verdict=OutcomeVerdict.INSUFFICIENT_DATA,
            confidence=ConfidenceLevel.INSUFFICIENT,
            conversions=after.conversions,
            runDurationDays=run_duration_days,
            comparisonPeriod=period,
            measuredAt=measured_at,
        )

    cpa_change = _percent_change(before.cpa, after.cpa)
    if cpa_change is not None:
        cpa_change = -cpa_change
    roas_change = _percent_change(before.roas, after.roas)

    band = settings.outcome_significance_percent
    if cpa_change is not None and cpa_change > band:
        verdict = OutcomeVerdict.IMPROVED
    elif cpa_change is not None and cpa_change < -band:
        verdict = OutcomeVerdict.DECLINED
    else:
        verdict = OutcomeVerdict.NEUTRAL

    return OutcomeMeasurement(
        verdict=verdict,
        confidence=from_conversion_count(after.conversions, settings),
        conversions=after.conversions,
        cpaChange=cpa_change,
        roasChange=roas_change,
        runDurationDays=run_duration_days,
        comparisonPeriod=period,
        measuredAt=measured_at,
    )


# =============================================================================
# Account Learnings
# =============================================================================

def _is_conclusive(rec: Recommendation) -> bool:
    return (
        rec.status == RecommendationStatus.FOLLOWED
        and rec.outcomeVerdict is not None
        and rec.outcomeVerdict != OutcomeVerdict.INSUFFICIENT_DATA
    )


def _mean(values: List[float]) -> float:
    return float(np.mean(values)) if values else 0.0


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def compute_account_learnings(
    recommendations: Sequence[Recommendation],
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> AccountLearnings:
    """
    Aggregate measured recommendations into per-type patterns.

    Only followed recommendations with a conclusive verdict count as
    samples; insufficient_data outcomes say nothing about the type. Types
    with fewer than pattern_min_samples samples produce no pattern.

    Returns:
        AccountLearnings with patterns sorted by success rate, highest first.
    """
    settings = settings or get_settings()
    computed_at = now or datetime.now(timezone.utc)

    by_type: Dict[RecommendationType, List[Recommendation]] = defaultdict(list)
    measured = [rec for rec in recommendations if _is_conclusive(rec)]
    for rec in measured:
        by_type[rec.recommendationType].append(rec)

    patterns: List[AccountPattern] = []
    for rec_type, samples in by_type.items():
        if len(samples) < settings.pattern_min_samples:
            continue

        improved = sum(1 for rec in samples if rec.outcomeVerdict == OutcomeVerdict.IMPROVED)
        most_recent = max(_as_utc(rec.outcomeMeasuredAt or rec.createdAt) for rec in samples)
        patterns.append(AccountPattern(
            recommendationType=rec_type,
            sampleSize=len(samples),
            successRate=improved / len(samples) * 100,
            avgCpaImprovement=_mean([r.outcomeCpaChange for r in samples if r.outcomeCpaChange is not None]),
            avgRoasImprovement=_mean([r.outcomeRoasChange for r in samples if r.outcomeRoasChange is not None]),
            recencyDays=max(0, (_as_utc(computed_at) - most_recent).days),
            lastUpdated=most_recent,
        ))

    patterns.sort(key=lambda p: p.successRate, reverse=True)
    return AccountLearnings(
        userId=user_id,
        patterns=patterns,
        totalMeasured=len(measured),
        computedAt=computed_at,
    )


def is_trusted_pattern(pattern: AccountPattern, settings: Optional[Settings] = None) -> bool:
    settings = settings or get_settings()
    return (
        pattern.sampleSize >= settings.pattern_min_samples
        and pattern.recencyDays <= settings.pattern_recency_days
    )


# =============================================================================
# Ranking
# =============================================================================

def rank_recommendations(
    recommendations: Sequence[RecommendationSpec],
    learnings: Optional[AccountLearnings],
    settings: Optional[Settings] = None,
) -> List[RankedRecommendation]:
    """
    Adjust confidence of candidate recommendations from account history and
    order them.

    Order: adjusted confidence descending, then trusted success rate
    descending; otherwise input order is preserved.
    """
    settings = settings or get_settings()
    trusted = {
        pattern.recommendationType: pattern
        for pattern in (learnings.patterns if learnings else [])
        if is_trusted_pattern(pattern, settings)
    }

    ranked: List[RankedRecommendation] = []
    for rec in recommendations:
        pattern = trusted.get(rec.recommendationType)
        adjusted = rec.confidence
        adjustment = ADJUSTMENT_UNCHANGED
        reason = None

        if pattern is not None:
            rate = pattern.successRate
            if rate >= settings.pattern_boost_success_rate:
                adjusted = step_up(rec.confidence)
                adjustment = ADJUSTMENT_BOOSTED
                reason = f"This type has {rate:.0f}% success rate in your account"
            elif rate < settings.pattern_demote_success_rate:
                adjusted = step_down(rec.confidence)
                adjustment = ADJUSTMENT_DEMOTED
                reason = f"This type has only {rate:.0f}% success rate in your account"

        ranked.append(RankedRecommendation(
            recommendation=rec,
            originalConfidence=rec.confidence,
            adjustedConfidence=adjusted,
            accountSuccessRate=pattern.successRate if pattern else None,
            adjustment=adjustment,
            reason=reason,
        ))

    ranked.sort(
        key=lambda r: (
            r.adjustedConfidence.rank,
            r.accountSuccessRate if r.accountSuccessRate is not None else -1.0,
        ),
        reverse=True,
    )
    return ranked


# =============================================================================
# Monthly Summary
# =============================================================================

def _month_of(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def _type_label(rec_type: RecommendationType) -> str:
    return rec_type.value.replace('_', ' ')


def generate_monthly_summary(
    recommendations: Sequence[Recommendation],
    month: str,
    settings: Optional[Settings] = None,
) -> MonthlySummary:
    """
    Summarize one calendar month ("YYYY-MM") of recommendations by creation date.

    successRate and per-type rates only count conclusive outcomes.
    """
    settings = settings or get_settings()
    month_recs = [rec for rec in recommendations if _month_of(rec.createdAt) == month]
    followed = [rec for rec in month_recs if rec.status == RecommendationStatus.FOLLOWED]
    ignored = [rec for rec in month_recs if rec.status == RecommendationStatus.IGNORED]
    measured = [rec for rec in followed if rec.outcomeVerdict is not None]
    conclusive = [rec for rec in measured if _is_conclusive(rec)]
    improved = [rec for rec in conclusive if rec.outcomeVerdict == OutcomeVerdict.IMPROVED]

    type_results: Dict[RecommendationType, List[bool]] = defaultdict(list)
    for rec in conclusive:
        type_results[rec.recommendationType].append(rec.outcomeVerdict == OutcomeVerdict.IMPROVED)

    type_rates = [
        TypePerformance(recommendationType=rec_type, successRate=sum(results) / len(results) * 100)
        for rec_type, results in type_results.items()
    ]
    top_types = sorted(
        (t for t in type_rates if t.successRate >= TOP_TYPE_MIN_SUCCESS),
        key=lambda t: t.successRate,
        reverse=True,
    )[:TOP_TYPE_LIMIT]
    weak_types = sorted(
        (t for t in type_rates if t.successRate < settings.pattern_demote_success_rate),
        key=lambda t: t.successRate,
    )

    insights: List[str] = []
    follow_rate = len(followed) / len(month_recs) * 100 if month_recs else 0.0
    if follow_rate < LOW_FOLLOW_RATE:
        insights.append('Low follow rate. Consider testing more recommendations.')
    if top_types:
        insights.append(f'"{_type_label(top_types[0].recommendationType)}" recommendations work best.')
    if weak_types:
        insights.append(
            f'"{_type_label(weak_types[0].recommendationType)}" recommendations '
            'have rarely moved CPA in this account.'
        )
    if len(improved) >= NOTABLE_IMPROVEMENTS:
        insights.append(f'{len(improved)} recommendations improved performance this month.')

    return MonthlySummary(
        month=month,
        recommendationsGenerated=len(month_recs),
        recommendationsFollowed=len(followed),
        recommendationsIgnored=len(ignored),
        outcomesMeasured=len(measured),
        successRate=len(improved) / len(conclusive) * 100 if conclusive else 0.0,
        avgCpaImprovement=_mean([r.outcomeCpaChange for r in conclusive if r.outcomeCpaChange is not None]),
        topPerformingTypes=top_types,
        insights=insights,
    )
