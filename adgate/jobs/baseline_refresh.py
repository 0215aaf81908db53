"""
Nightly baseline refresh job.

Recomputes every segment baseline of an account from creative_daily_metrics
over the trailing baseline_lookback_days window and replaces the stored
baselines. Recomputing is idempotent: the upsert keys on
(user_id, conversion_type, placement, objective).

Usage:
    # One account
    result = await refresh_account_baselines("user-123")

    # Every account with recent metrics
    result = await refresh_all_baselines()

    # From cron
    python -m adgate.jobs.baseline_refresh
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from adgate.core.config import Settings, get_settings
from adgate.core.database import close_db
from adgate.services.baseline import (
    compute_baseline,
    list_active_accounts,
    list_segments,
    load_daily_metrics,
    save_baseline,
)


logger = logging.getLogger(__name__)


async def refresh_account_baselines(
    user_id: str,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Recompute and store every segment baseline for one account.

    Returns:
        Dict with:
        - success: True when every segment was stored
        - user_id
        - segments: list of {segment, quality, sampleSize, promoDaysExcluded}
        - error: Error message (if failed)
    """
    settings = settings or get_settings()
    computed_at = now or datetime.now(timezone.utc)

    try:
        days = await load_daily_metrics(user_id, settings.baseline_lookback_days)
    except Exception as e:
        logger.exception("Failed to load daily metrics for %s", user_id)
        return {'success': False, 'user_id': user_id, 'error': f'Failed to load daily metrics: {e}'}

    if not days:
        return {
            'success': True,
            'skipped': True,
            'user_id': user_id,
            'reason': f'No daily metrics in the last {settings.baseline_lookback_days} days',
            'segments': [],
        }

    segments = []
    for segment in list_segments(days):
        baseline = compute_baseline(days, segment, user_id=user_id, now=computed_at, settings=settings)
        try:
            stored = await save_baseline(user_id, baseline)
        except Exception as e:
            logger.exception("Failed to store baseline for %s", user_id)
            return {
                'success': False,
                'user_id': user_id,
                'segments': segments,
                'error': f'Failed to store baseline: {e}',
            }
        segments.append({
            'segment': f"{segment.conversionType}/{segment.placement}/{segment.objective}",
            'quality': stored.quality.value,
            'sampleSize': stored.sampleSize,
            'promoDaysExcluded': stored.promoDaysExcluded,
        })

    logger.info("Refreshed %d baseline segment(s) for %s", len(segments), user_id)
    return {'success': True, 'user_id': user_id, 'segments': segments}


async def refresh_all_baselines(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Refresh every account that has metrics inside the lookback window."""
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)

    user_ids = await list_active_accounts(settings.baseline_lookback_days)
    results = [await refresh_account_baselines(user_id, now=now, settings=settings) for user_id in user_ids]
    failed = [result['user_id'] for result in results if not result['success']]

    return {
        'success': not failed,
        'accounts': len(user_ids),
        'failed': failed,
        'results': results,
    }


async def _main() -> None:
    try:
        result = await refresh_all_baselines()
        logger.info(
            "Baseline refresh finished: %d account(s), %d failed",
            result['accounts'],
            len(result['failed']),
        )
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(_main())
