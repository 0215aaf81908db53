"""
Alert sweep cron entry point.

Runs the default alert rules once. The debouncer lives for the life of the
process, so a long-running scheduler that calls run_alert_sweep() repeatedly
gets per-rule debouncing; a one-shot cron invocation starts fresh each time.

Usage:
    result = await run_alert_sweep()

    python -m adgate.jobs.alert_sweep
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from adgate.core.config import Settings, get_settings
from adgate.core.database import close_db
from adgate.services.alerting import (
    AlertDebouncer,
    build_default_rules,
    get_user_degradation_message,
    run_alert_checks,
)


logger = logging.getLogger(__name__)


_debouncer = AlertDebouncer()


async def run_alert_sweep(
    settings: Optional[Settings] = None,
    debouncer: Optional[AlertDebouncer] = None,
) -> Dict[str, Any]:
    """
    Returns:
        Dict with:
        - success: False only when the sweep itself could not run
        - fired: rule ids that fired on this run
        - notified: rule ids that reached Slack
        - degradation_message: user-facing notice, or None
        - error: Error message (if failed)
    """
    settings = settings or get_settings()
    try:
        alerts = await run_alert_checks(
            rules=build_default_rules(settings),
            debouncer=debouncer or _debouncer,
            settings=settings,
        )
    except Exception as e:
        logger.exception("Alert sweep failed")
        return {'success': False, 'error': f'Alert sweep failed: {e}'}

    return {
        'success': True,
        'fired': [alert.ruleId for alert in alerts],
        'notified': [alert.ruleId for alert in alerts if alert.notified],
        'degradation_message': get_user_degradation_message(alerts),
    }


async def _main() -> None:
    try:
        result = await run_alert_sweep()
        logger.info("Alert sweep finished: %s", result)
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(_main())
