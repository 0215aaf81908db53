"""
Tests for account baselines and efficiency scoring.

Test Classes:
- TestQualityAndPromo: quality ladder and spend-spike promo detection
- TestComputeBaseline: segment filtering, promo exclusion, ratios
- TestEfficiencyScore: score formula, blocking and confidence rules
- TestBaselinePersistence: upsert and lookup through a mocked pool
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from adgate.models.enums import BaselineQuality, ConfidenceLevel
from adgate.models.schemas import AccountBaseline, BaselineSegment, DailyMetrics
from adgate.services.baseline import (
    LOW_QUALITY_REASON,
    LOW_VOLUME_REASON,
    NEW_ACCOUNT_REASON,
    calculate_efficiency_score,
    compute_baseline,
    compute_efficiency_score,
    get_baseline,
    get_baseline_quality,
    is_promo_day,
    list_segments,
    save_baseline,
)


SEGMENT = BaselineSegment(conversionType='purchase', placement='feed', objective='conversions')
DAY0 = date(2026, 2, 1)
T0 = datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)


def _day(offset: int, **overrides) -> DailyMetrics:
    fields = {
        'date': DAY0 + timedelta(days=offset),
        'spend': 100.0,
        'conversions': 10,
        'revenue': 300.0,
        'impressions': 10000,
        'clicks': 200,
        'conversionType': 'purchase',
        'placement': 'feed',
        'objective': 'conversions',
    }
    fields.update(overrides)
    return DailyMetrics(**fields)


def _baseline(**overrides) -> AccountBaseline:
    fields = {
        'userId': 'user-1',
        'conversionType': 'purchase',
        'placement': 'feed',
        'objective': 'conversions',
        'avgCpa': 20.0,
        'avgRoas': 2.0,
        'sampleSize': 250,
        'quality': BaselineQuality.HIGH,
    }
    fields.update(overrides)
    return AccountBaseline(**fields)


class TestQualityAndPromo:

    @pytest.mark.parametrize("conversions,expected", [
        (0, BaselineQuality.NONE),
        (9, BaselineQuality.NONE),
        (10, BaselineQuality.LOW),
        (49, BaselineQuality.LOW),
        (50, BaselineQuality.MEDIUM),
        (199, BaselineQuality.MEDIUM),
        (200, BaselineQuality.HIGH),
    ])
    def test_quality_ladder(self, conversions, expected, gate_settings) -> None:
        assert get_baseline_quality(conversions, gate_settings) == expected

    def test_spend_spike_is_promo(self) -> None:
        assert is_promo_day(250, 100, multiplier=2.0) is True
        assert is_promo_day(200, 100, multiplier=2.0) is False

    def test_zero_mean_is_never_promo(self) -> None:
        assert is_promo_day(500, 0, multiplier=2.0) is False


class TestComputeBaseline:
    """Flagged and spend-spike promo days are both excluded."""

    def test_promo_days_excluded_and_ratios_computed(self, gate_settings) -> None:
        inputs = [_day(i) for i in range(10)]
        inputs.append(_day(10, spend=1000.0, conversions=80, revenue=5000.0))
        inputs.append(_day(11, isPromoDay=True, conversions=40))
        inputs.append(_day(3, conversionType='lead', conversions=500))

        baseline = compute_baseline(inputs, SEGMENT, user_id='user-1', now=T0, settings=gate_settings)

        assert baseline.promoDaysExcluded == 2
        assert baseline.daysIncluded == 10
        assert baseline.sampleSize == 100
        assert baseline.quality == BaselineQuality.MEDIUM
        assert baseline.avgCpa == pytest.approx(10.0)
        assert baseline.avgRoas == pytest.approx(3.0)
        assert baseline.avgCtr == pytest.approx(2.0)
        assert baseline.avgCvr == pytest.approx(5.0)
        assert baseline.avgCpm == pytest.approx(10.0)
        assert baseline.periodStart == DAY0
        assert baseline.periodEnd == DAY0 + timedelta(days=9)
        assert baseline.computedAt == T0

    def test_empty_segment(self, gate_settings) -> None:
        baseline = compute_baseline(
            [_day(0, placement='stories')], SEGMENT, now=T0, settings=gate_settings,
        )
        assert baseline.quality == BaselineQuality.NONE
        assert baseline.daysIncluded == 0
        assert baseline.avgCpa is None

    def test_zero_denominators_give_none(self, gate_settings) -> None:
        inputs = [_day(i, spend=0.0, conversions=0, revenue=0.0, impressions=0, clicks=0) for i in range(3)]
        baseline = compute_baseline(inputs, SEGMENT, now=T0, settings=gate_settings)

        assert baseline.promoDaysExcluded == 0
        assert baseline.avgCpa is None
        assert baseline.avgRoas is None
        assert baseline.avgCtr is None
        assert baseline.quality == BaselineQuality.NONE

    def test_list_segments_in_first_seen_order(self) -> None:
        inputs = [_day(0), _day(0, placement='reels'), _day(1), _day(1, conversionType='lead')]
        assert [(s.conversionType, s.placement) for s in list_segments(inputs)] == [
            ('purchase', 'feed'), ('purchase', 'reels'), ('lead', 'feed'),
        ]


class TestEfficiencyScore:

    @pytest.mark.parametrize("current_cpa,expected", [
        (20.0, 50.0),
        (10.0, 100.0),
        (5.0, 100.0),
        (40.0, 25.0),
        (0.0, 100.0),
    ])
    def test_score_formula(self, current_cpa, expected) -> None:
        assert calculate_efficiency_score(current_cpa, 20.0) == pytest.approx(expected)

    def test_missing_baseline_cpa_is_neutral(self) -> None:
        assert calculate_efficiency_score(15.0, None) == 50.0

    def test_new_account_is_blocked(self, gate_settings) -> None:
        result = compute_efficiency_score(10.0, 3.0, 120, None, gate_settings)
        assert result.canScore is False
        assert result.confidence == ConfidenceLevel.INSUFFICIENT
        assert result.reason == NEW_ACCOUNT_REASON

    def test_quality_none_is_blocked(self, gate_settings) -> None:
        result = compute_efficiency_score(10.0, 3.0, 120, _baseline(quality=BaselineQuality.NONE), gate_settings)
        assert result.canScore is False

    def test_scored_against_good_baseline(self, gate_settings) -> None:
        result = compute_efficiency_score(15.0, 3.0, 120, _baseline(), gate_settings)
        assert result.canScore is True
        assert result.efficiencyScore == pytest.approx(66.67, abs=0.01)
        assert result.cpaVsBaseline == pytest.approx(25.0)
        assert result.roasVsBaseline == pytest.approx(50.0)
        assert result.confidence == ConfidenceLevel.HIGH
        assert result.reason is None

    def test_low_quality_pins_low(self, gate_settings) -> None:
        result = compute_efficiency_score(
            15.0, 3.0, 500, _baseline(quality=BaselineQuality.LOW), gate_settings,
        )
        assert result.confidence == ConfidenceLevel.LOW
        assert result.reason == LOW_QUALITY_REASON

    def test_low_volume_still_reports_score(self, gate_settings) -> None:
        result = compute_efficiency_score(15.0, 3.0, 4, _baseline(), gate_settings)
        assert result.canScore is True
        assert result.efficiencyScore is not None
        assert result.confidence == ConfidenceLevel.INSUFFICIENT
        assert result.reason == LOW_VOLUME_REASON


class TestBaselinePersistence:

    def _row(self) -> dict:
        return {
            'user_id': 'user-1',
            'conversion_type': 'purchase',
            'placement': 'feed',
            'objective': 'conversions',
            'avg_cpa': 20.0,
            'avg_roas': 2.0,
            'avg_ctr': 1.5,
            'avg_cvr': 4.0,
            'avg_cpm': 12.0,
            'sample_size': 250,
            'days_included': 60,
            'promo_days_excluded': 3,
            'period_start': DAY0,
            'period_end': DAY0 + timedelta(days=59),
            'quality': 'high',
            'computed_at': T0,
        }

    async def test_save_sends_whole_baseline(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.return_value = self._row()

        with patch('adgate.services.baseline.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            saved = await save_baseline('user-1', _baseline(userId=None, computedAt=T0))

        args = mock_conn.fetchrow.call_args.args
        assert args[1:5] == ('user-1', 'purchase', 'feed', 'conversions')
        assert args[15] == 'high'
        assert saved.userId == 'user-1'
        assert saved.daysIncluded == 60

    async def test_save_without_returned_row(self, mock_db_pool, mock_conn) -> None:
        with patch('adgate.services.baseline.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            saved = await save_baseline('user-2', _baseline(userId=None))
        assert saved.userId == 'user-2'

    async def test_get_baseline(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.return_value = self._row()

        with patch('adgate.services.baseline.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            baseline = await get_baseline('user-1', SEGMENT)

        assert baseline.quality == BaselineQuality.HIGH
        assert baseline.avgCpm == 12.0
