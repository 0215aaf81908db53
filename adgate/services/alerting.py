"""
Operational alerting.

Rules fire only on abnormal conditions (a stalled extraction queue, a gate
block rate far above normal). Missing evidence for a young creative is the
expected steady state and never alerts.

Each rule check returns True when healthy. An unhealthy rule fires at most
once per debounce window; the debouncer's clock and last-fired store are
injected so the window can be tested without sleeping. Fired alerts are
persisted to system_alerts and posted to Slack when SLACK_WEBHOOK_URL is set.
A rule whose check raises is logged and skipped; the other rules still run.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from slack_sdk.webhook import WebhookClient

from adgate.core.config import Settings, get_settings
from adgate.core.database import get_db_pool
from adgate.models.enums import AlertSeverity
from adgate.models.schemas import SystemAlert
from adgate.sql.audit_queries import get_alert_insert_query, get_recent_block_rate_query
from adgate.sql.extraction_queries import get_stalled_extractions_query


logger = logging.getLogger(__name__)


CRITICAL_DEGRADATION_MESSAGE = 'Data sync may be delayed. Results could be outdated.'
WARNING_DEGRADATION_MESSAGE = 'Some features may be slower than usual.'


# =============================================================================
# Rules
# =============================================================================

HealthCheck = Callable[[object], Awaitable[bool]]


@dataclass(frozen=True)
class AlertRule:
    id: str
    name: str
    description: str
    severity: AlertSeverity
    debounce_minutes: int
    check: HealthCheck


def build_default_rules(settings: Optional[Settings] = None) -> List[AlertRule]:
    """Extraction queue stall and abnormal gate block rate."""
    settings = settings or get_settings()

    async def extraction_queue_healthy(conn) -> bool:
        stalled = await conn.fetchval(
            get_stalled_extractions_query(),
            settings.alert_extraction_stall_minutes,
        )
        return (stalled or 0) <= settings.alert_extraction_stall_max_pending

    async def gate_block_rate_healthy(conn) -> bool:
        row = await conn.fetchrow(get_recent_block_rate_query(), 60)
        total = row['total'] if row else 0
        if total < settings.alert_gate_block_min_decisions:
            return True
        return row['blocked'] / total <= settings.alert_gate_block_rate

    return [
        AlertRule(
            id='extraction_queue_stall',
            name='Extraction queue not processing',
            description=(
                f"More than {settings.alert_extraction_stall_max_pending} extractions pending for over "
                f"{settings.alert_extraction_stall_minutes} minutes"
            ),
            severity=AlertSeverity.WARNING,
            debounce_minutes=settings.alert_debounce_minutes,
            check=extraction_queue_healthy,
        ),
        AlertRule(
            id='gate_decision_failure_rate',
            name='Abnormal gate block rate',
            description=(
                f"More than {settings.alert_gate_block_rate:.0%} of gate decisions blocked in the "
                f"last hour with {settings.alert_gate_block_min_decisions}+ decisions"
            ),
            severity=AlertSeverity.CRITICAL,
            debounce_minutes=settings.alert_debounce_minutes,
            check=gate_block_rate_healthy,
        ),
    ]


# =============================================================================
# Debouncing
# =============================================================================

class DebounceStore(Protocol):
    def get_last_fired(self, rule_id: str) -> Optional[datetime]:
        ...

    def set_last_fired(self, rule_id: str, fired_at: datetime) -> None:
        ...


class InMemoryDebounceStore:
    """Process-local store; resets on restart."""

    def __init__(self) -> None:
        self._last_fired: Dict[str, datetime] = {}

    def get_last_fired(self, rule_id: str) -> Optional[datetime]:
        return self._last_fired.get(rule_id)

    def set_last_fired(self, rule_id: str, fired_at: datetime) -> None:
        self._last_fired[rule_id] = fired_at


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AlertDebouncer:
    """Suppresses repeat firings of a rule inside its debounce window."""

    def __init__(
        self,
        clock: Callable[[], datetime] = _utc_now,
        store: Optional[DebounceStore] = None,
    ) -> None:
        self.clock = clock
        self.store = store if store is not None else InMemoryDebounceStore()

    def should_fire(self, rule: AlertRule) -> bool:
        last = self.store.get_last_fired(rule.id)
        if last is None:
            return True
        return self.clock() - last >= timedelta(minutes=rule.debounce_minutes)

    def mark_fired(self, rule: AlertRule) -> datetime:
        fired_at = self.clock()
        self.store.set_last_fired(rule.id, fired_at)
        return fired_at


# =============================================================================
# Notification
# =============================================================================

def format_alert_blocks(alert: SystemAlert) -> List[dict]:
    """Slack Block Kit payload for one alert."""
    icon = ':rotating_light:' if alert.severity == AlertSeverity.CRITICAL else ':warning:'
    return [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"AdGate alert: {alert.name}"},
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"{icon} *{alert.severity.value.upper()}* `{alert.ruleId}`\n{alert.message}",
            },
        },
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"Triggered {alert.triggeredAt.isoformat()}"}],
        },
    ]


def send_slack_alert(alert: SystemAlert, settings: Optional[Settings] = None) -> bool:
    """
    Post an alert to the configured Slack webhook.

    Returns:
        True when Slack accepted the message. False when no webhook is
        configured or the post failed; failures are logged.
    """
    settings = settings or get_settings()
    if not settings.slack_webhook_url:
        logger.warning("Alert %s not posted: SLACK_WEBHOOK_URL not configured", alert.ruleId)
        return False

    try:
        client = WebhookClient(settings.slack_webhook_url)
        response = client.send(text=f"AdGate alert: {alert.name}", blocks=format_alert_blocks(alert))
    except Exception:
        logger.exception("Failed to post alert %s to Slack", alert.ruleId)
        return False

    if response.status_code != 200:
        logger.error(
            "Slack rejected alert %s: status %s %s",
            alert.ruleId,
            response.status_code,
            response.body,
        )
        return False
    return True


# =============================================================================
# Execution
# =============================================================================

async def persist_alert(conn, alert: SystemAlert) -> None:
    await conn.execute(
        get_alert_insert_query(),
        alert.ruleId,
        alert.name,
        alert.severity.value,
        alert.message,
        alert.triggeredAt,
        alert.notified,
    )


async def run_alert_checks(
    rules: Optional[Sequence[AlertRule]] = None,
    debouncer: Optional[AlertDebouncer] = None,
    settings: Optional[Settings] = None,
    notify: Callable[[SystemAlert], bool] = None,
) -> List[SystemAlert]:
    """
    Evaluate every rule and fire the unhealthy ones outside their window.

    Args:
        rules: Rules to evaluate (default: build_default_rules()).
        debouncer: Debounce state (default: a fresh in-memory one).
        settings: Thresholds and webhook.
        notify: Notification sink (default: send_slack_alert).

    Returns:
        The alerts fired on this run.
    """
    settings = settings or get_settings()
    rules = list(rules) if rules is not None else build_default_rules(settings)
    debouncer = debouncer or AlertDebouncer()
    if notify is None:
        def notify(alert: SystemAlert) -> bool:
            return send_slack_alert(alert, settings)

    fired: List[SystemAlert] = []
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        for rule in rules:
            try:
                healthy = await rule.check(conn)
            except Exception:
                logger.exception("Alert rule %s failed; skipping", rule.id)
                continue

            if healthy:
                continue
            if not debouncer.should_fire(rule):
                logger.info("Alert %s suppressed by debounce window", rule.id)
                continue

            alert = SystemAlert(
                ruleId=rule.id,
                name=rule.name,
                severity=rule.severity,
                message=rule.description,
                triggeredAt=debouncer.mark_fired(rule),
            )
            alert.notified = notify(alert)
            await persist_alert(conn, alert)
            logger.warning("Alert fired: %s (%s)", rule.id, rule.severity.value)
            fired.append(alert)

    return fired


def get_user_degradation_message(alerts: Sequence[SystemAlert]) -> Optional[str]:
    """User-facing notice for active alerts; None when there are none."""
    if not alerts:
        return None
    if any(alert.severity == AlertSeverity.CRITICAL for alert in alerts):
        return CRITICAL_DEGRADATION_MESSAGE
    return WARNING_DEGRADATION_MESSAGE
