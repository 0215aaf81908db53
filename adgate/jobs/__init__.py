"""
Scheduled jobs for AdGate.

- baseline_refresh: Nightly recompute of every account's segment baselines
- alert_sweep: Periodic evaluation of the operational alert rules

Both return result dicts ({'success': ..., 'error': ...}) rather than
raising, so a scheduler can log and move on.

Environment Requirements:
- DATABASE_URL: PostgreSQL connection string
- SLACK_WEBHOOK_URL: Optional; alerts are only logged without it

Usage:
    from adgate.jobs import refresh_all_baselines, run_alert_sweep

    result = await refresh_all_baselines()
    result = await run_alert_sweep()
"""

from adgate.jobs.baseline_refresh import (
    refresh_account_baselines,
    refresh_all_baselines,
)
from adgate.jobs.alert_sweep import run_alert_sweep


__all__ = [
    'refresh_account_baselines',
    'refresh_all_baselines',
    'run_alert_sweep',
]
