"""
Parameterized SQL for account baselines and the daily metrics they are built from.

Baselines are replaced wholesale on recompute: the upsert overwrites every
column of the (user_id, conversion_type, placement, objective) row.
"""


def get_baseline_upsert_query() -> str:
    """
    Insert or replace one segment baseline.

    Parameters:
        $1: user_id
        $2: conversion_type
        $3: placement
        $4: objective
        $5-$9: avg_cpa, avg_roas, avg_ctr, avg_cvr, avg_cpm
        $10: sample_size
        $11: days_included
        $12: promo_days_excluded
        $13: period_start
        $14: period_end
        $15: quality
        $16: computed_at
    """
    return """
    INSERT INTO account_baselines (
        user_id, conversion_type, placement, objective,
        avg_cpa, avg_roas, avg_ctr, avg_cvr, avg_cpm,
        sample_size, days_included, promo_days_excluded,
        period_start, period_end, quality, computed_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
    ON CONFLICT (user_id, conversion_type, placement, objective)
    DO UPDATE SET
        avg_cpa = EXCLUDED.avg_cpa,
        avg_roas = EXCLUDED.avg_roas,
        avg_ctr = EXCLUDED.avg_ctr,
        avg_cvr = EXCLUDED.avg_cvr,
        avg_cpm = EXCLUDED.avg_cpm,
        sample_size = EXCLUDED.sample_size,
        days_included = EXCLUDED.days_included,
        promo_days_excluded = EXCLUDED.promo_days_excluded,
        period_start = EXCLUDED.period_start,
        period_end = EXCLUDED.period_end,
        quality = EXCLUDED.quality,
        computed_at = EXCLUDED.computed_at
    RETURNING *
    """


def get_baseline_query() -> str:
    """
    Fetch one segment baseline.

    Parameters:
        $1: user_id
        $2: conversion_type
        $3: placement
        $4: objective
    """
    return """
    SELECT *
    FROM account_baselines
    WHERE user_id = $1
      AND conversion_type = $2
      AND placement = $3
      AND objective = $4
    """


def get_user_baselines_query() -> str:
    """
    List every baseline for an account.

    Parameters:
        $1: user_id
    """
    return """
    SELECT *
    FROM account_baselines
    WHERE user_id = $1
    ORDER BY conversion_type, placement, objective
    """


def get_daily_metrics_query() -> str:
    """
    Aggregate creative-level daily metrics to account-level days per segment.

    A day counts as an explicit promo day when any creative flagged it.

    Parameters:
        $1: user_id
        $2: lookback days
    """
    return """
    SELECT
        date,
        conversion_type,
        placement,
        objective,
        SUM(spend) AS spend,
        SUM(conversions)::int AS conversions,
        SUM(revenue) AS revenue,
        SUM(impressions)::int AS impressions,
        SUM(clicks)::int AS clicks,
        BOOL_OR(is_promo_day) AS is_promo_day
    FROM creative_daily_metrics
    WHERE user_id = $1
      AND date >= CURRENT_DATE - $2::int
      AND date < CURRENT_DATE
    GROUP BY date, conversion_type, placement, objective
    ORDER BY date
    """


def get_active_accounts_query() -> str:
    """
    Accounts with any daily metrics in the lookback window.

    Parameters:
        $1: lookback days
    """
    return """
    SELECT DISTINCT user_id
    FROM creative_daily_metrics
    WHERE date >= CURRENT_DATE - $1::int
    ORDER BY user_id
    """
