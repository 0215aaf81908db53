"""
Account baselines and efficiency scoring.

A baseline is the segmented (conversion type x placement x objective)
historical average an account's current performance is compared against.

Computation:
1. Filter daily records to the segment.
2. Mark promo days: the explicit isPromoDay flag OR spend above
   promo_spend_multiplier x the segment's mean daily spend. Both signals are
   unioned; neither replaces the other.
3. Aggregate the remaining days into CPA, ROAS, CTR, CVR and CPM.
4. Grade quality on total conversions: high >= 200, medium >= 50,
   low >= 10, else none.

Efficiency scoring:
- quality none: blocked (canScore=False, insufficient).
- quality low: scored, confidence pinned to low.
- otherwise: confidence from current-period conversions on the 10/30/100
  ladder.
- score = clamp(0, 100, 50 x baseline_cpa / current_cpa); 50 is parity.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import pandas as pd

from adgate.core.config import Settings, get_settings
from adgate.core.database import get_db_pool
from adgate.models.enums import BaselineQuality, ConfidenceLevel
from adgate.models.schemas import (
    AccountBaseline,
    BaselineSegment,
    DailyMetrics,
    EfficiencyResult,
)
from adgate.services.confidence import from_conversion_count
from adgate.sql.baseline_queries import (
    get_active_accounts_query,
    get_baseline_query,
    get_baseline_upsert_query,
    get_daily_metrics_query,
    get_user_baselines_query,
)


logger = logging.getLogger(__name__)


NEW_ACCOUNT_REASON = 'Building baseline. Need more conversion data.'
LOW_QUALITY_REASON = 'Baseline quality is low. Results may be unreliable.'
LOW_VOLUME_REASON = 'Current period has too few conversions for a reliable comparison.'

NEUTRAL_SCORE = 50.0

METRIC_COLUMNS = ['spend', 'conversions', 'revenue', 'impressions', 'clicks']


# =============================================================================
# Quality and Promo Detection
# =============================================================================

def get_baseline_quality(total_conversions: int, settings: Optional[Settings] = None) -> BaselineQuality:
    settings = settings or get_settings()
    if total_conversions >= settings.baseline_quality_high:
        return BaselineQuality.HIGH
    if total_conversions >= settings.baseline_quality_medium:
        return BaselineQuality.MEDIUM
    if total_conversions >= settings.baseline_quality_low:
        return BaselineQuality.LOW
    return BaselineQuality.NONE


def is_promo_day(
    daily_spend: float,
    avg_daily_spend: float,
    multiplier: Optional[float] = None,
) -> bool:
    """Spend-anomaly promo check; never true when the mean is zero."""
    if multiplier is None:
        multiplier = get_settings().promo_spend_multiplier
    if avg_daily_spend <= 0:
        return False
    return daily_spend > avg_daily_spend * multiplier


def is_new_account(baseline: Optional[AccountBaseline]) -> bool:
    return baseline is None or baseline.quality == BaselineQuality.NONE


# =============================================================================
# Baseline Computation
# =============================================================================

def _segment_frame(inputs: Sequence[DailyMetrics], segment: BaselineSegment) -> pd.DataFrame:
    columns = ['date', *METRIC_COLUMNS, 'conversionType', 'placement', 'objective', 'isPromoDay']
    df = pd.DataFrame([day.model_dump() for day in inputs], columns=columns)
    if df.empty:
        return df

    mask = df['conversionType'] == segment.conversionType
    mask &= df['placement'] == segment.placement
    mask &= df['objective'] == segment.objective
    return df.loc[mask].reset_index(drop=True)


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> Optional[float]:
    if denominator <= 0:
        return None
    return float(numerator) / float(denominator) * scale


def compute_baseline(
    inputs: Sequence[DailyMetrics],
    segment: BaselineSegment,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> AccountBaseline:
    """
    Build the baseline for one segment from daily records.

    Args:
        inputs: Daily records, possibly spanning several segments.
        segment: The (conversionType, placement, objective) to build.
        user_id: Account the baseline belongs to.
        now: Timestamp recorded as computedAt.
        settings: Thresholds; defaults to get_settings().

    Returns:
        AccountBaseline. Ratios whose denominator is zero are None.
    """
    settings = settings or get_settings()
    computed_at = now or datetime.now(timezone.utc)
    df = _segment_frame(inputs, segment)

    if df.empty:
        return AccountBaseline(
            userId=user_id,
            conversionType=segment.conversionType,
            placement=segment.placement,
            objective=segment.objective,
            quality=BaselineQuality.NONE,
            computedAt=computed_at,
        )

    mean_spend = float(df['spend'].mean())
    flagged = df['isPromoDay'].eq(True)
    if mean_spend > 0:
        spiked = df['spend'] > mean_spend * settings.promo_spend_multiplier
    else:
        spiked = pd.Series(False, index=df.index)
    promo = flagged | spiked

    kept = df.loc[~promo]
    totals = kept[METRIC_COLUMNS].sum()
    spend = float(totals['spend'])
    conversions = int(totals['conversions'])
    revenue = float(totals['revenue'])
    impressions = int(totals['impressions'])
    clicks = int(totals['clicks'])

    baseline = AccountBaseline(
        userId=user_id,
        conversionType=segment.conversionType,
        placement=segment.placement,
        objective=segment.objective,
        avgCpa=_ratio(spend, conversions),
        avgRoas=_ratio(revenue, spend),
        avgCtr=_ratio(clicks, impressions, 100.0),
        avgCvr=_ratio(conversions, clicks, 100.0),
        avgCpm=_ratio(spend, impressions, 1000.0),
        sampleSize=conversions,
        daysIncluded=len(kept),
        promoDaysExcluded=int(promo.sum()),
        periodStart=kept['date'].min() if not kept.empty else None,
        periodEnd=kept['date'].max() if not kept.empty else None,
        quality=get_baseline_quality(conversions, settings),
        computedAt=computed_at,
    )

    logger.info(
        "Baseline %s/%s/%s: %d days, %d promo excluded, %d conversions (%s)",
        segment.conversionType,
        segment.placement,
        segment.objective,
        baseline.daysIncluded,
        baseline.promoDaysExcluded,
        conversions,
        baseline.quality.value,
    )
    return baseline


def list_segments(inputs: Sequence[DailyMetrics]) -> List[BaselineSegment]:
    """Distinct segments present in the daily records, in first-seen order."""
    seen = {}
    for day in inputs:
        key = (day.conversionType, day.placement, day.objective)
        if key not in seen:
            seen[key] = BaselineSegment(
                conversionType=day.conversionType,
                placement=day.placement,
                objective=day.objective,
            )
    return list(seen.values())


# =============================================================================
# Efficiency Scoring
# =============================================================================

def calculate_efficiency_score(current_cpa: float, baseline_cpa: Optional[float]) -> float:
    """50 x baseline/current, clamped to [0, 100]."""
    if not baseline_cpa:
        return NEUTRAL_SCORE
    if current_cpa <= 0:
        return 100.0
    return min(100.0, max(0.0, NEUTRAL_SCORE * baseline_cpa / current_cpa))


def calculate_percent_improvement(baseline_value: Optional[float], current_value: float) -> Optional[float]:
    """Percent by which current sits below baseline (CPA: positive is better)."""
    if not baseline_value:
        return None
    return (baseline_value - current_value) / baseline_value * 100


def calculate_percent_change(baseline_value: Optional[float], current_value: float) -> Optional[float]:
    """Percent by which current sits above baseline (ROAS: positive is better)."""
    if not baseline_value:
        return None
    return (current_value - baseline_value) / baseline_value * 100


def compute_efficiency_score(
    current_cpa: float,
    current_roas: float,
    current_conversions: int,
    baseline: Optional[AccountBaseline],
    settings: Optional[Settings] = None,
) -> EfficiencyResult:
    """
    Score current performance against the account baseline.

    Returns:
        EfficiencyResult with canScore=False when there is no usable
        baseline; otherwise the score, percent deltas and confidence.
    """
    settings = settings or get_settings()

    if is_new_account(baseline):
        return EfficiencyResult(
            canScore=False,
            confidence=ConfidenceLevel.INSUFFICIENT,
            reason=NEW_ACCOUNT_REASON,
        )

    score = calculate_efficiency_score(current_cpa, baseline.avgCpa)
    cpa_delta = calculate_percent_improvement(baseline.avgCpa, current_cpa)
    roas_delta = calculate_percent_change(baseline.avgRoas, current_roas)

    if baseline.quality == BaselineQuality.LOW:
        return EfficiencyResult(
            canScore=True,
            efficiencyScore=score,
            cpaVsBaseline=cpa_delta,
            roasVsBaseline=roas_delta,
            confidence=ConfidenceLevel.LOW,
            reason=LOW_QUALITY_REASON,
        )

    confidence = from_conversion_count(current_conversions, settings)
    return EfficiencyResult(
        canScore=True,
        efficiencyScore=score,
        cpaVsBaseline=cpa_delta,
        roasVsBaseline=roas_delta,
        confidence=confidence,
        reason=LOW_VOLUME_REASON if confidence == ConfidenceLevel.INSUFFICIENT else None,
    )


# =============================================================================
# Persistence
# =============================================================================

def _record_to_baseline(record) -> AccountBaseline:
    return AccountBaseline(
        userId=record['user_id'],
        conversionType=record['conversion_type'],
        placement=record['placement'],
        objective=record['objective'],
        avgCpa=record['avg_cpa'],
        avgRoas=record['avg_roas'],
        avgCtr=record['avg_ctr'],
        avgCvr=record['avg_cvr'],
        avgCpm=record['avg_cpm'],
        sampleSize=record['sample_size'],
        daysIncluded=record['days_included'],
        promoDaysExcluded=record['promo_days_excluded'],
        periodStart=record['period_start'],
        periodEnd=record['period_end'],
        quality=BaselineQuality(record['quality']),
        computedAt=record['computed_at'],
    )


def _record_to_daily(record) -> DailyMetrics:
    return DailyMetrics(
        date=record['date'],
        spend=float(record['spend'] or 0),
        conversions=record['conversions'] or 0,
        revenue=float(record['revenue'] or 0),
        impressions=record['impressions'] or 0,
        clicks=record['clicks'] or 0,
        conversionType=record['conversion_type'],
        placement=record['placement'],
        objective=record['objective'],
        isPromoDay=record['is_promo_day'],
    )


async def save_baseline(user_id: str, baseline: AccountBaseline) -> AccountBaseline:
    """Replace the stored baseline for the segment with this one."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            get_baseline_upsert_query(),
            user_id,
            baseline.conversionType,
            baseline.placement,
            baseline.objective,
            baseline.avgCpa,
            baseline.avgRoas,
            baseline.avgCtr,
            baseline.avgCvr,
            baseline.avgCpm,
            baseline.sampleSize,
            baseline.daysIncluded,
            baseline.promoDaysExcluded,
            baseline.periodStart,
            baseline.periodEnd,
            baseline.quality.value,
            baseline.computedAt or datetime.now(timezone.utc),
        )
    return _record_to_baseline(row) if row else baseline.model_copy(update={'userId': user_id})


async def get_baseline(user_id: str, segment: BaselineSegment) -> Optional[AccountBaseline]:
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            get_baseline_query(),
            user_id,
            segment.conversionType,
            segment.placement,
            segment.objective,
        )
    return _record_to_baseline(row) if row else None


async def list_baselines(user_id: str) -> List[AccountBaseline]:
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(get_user_baselines_query(), user_id)
    return [_record_to_baseline(row) for row in rows]


async def load_daily_metrics(user_id: str, lookback_days: int) -> List[DailyMetrics]:
    """Account-level daily metrics per segment for the trailing window (today excluded)."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(get_daily_metrics_query(), user_id, lookback_days)
    return [_record_to_daily(row) for row in rows]


async def list_active_accounts(lookback_days: int) -> List[str]:
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(get_active_accounts_query(), lookback_days)
    return [row['user_id'] for row in rows]
