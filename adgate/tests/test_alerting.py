"""
Tests for operational alerting.

Test Classes:
- TestDebouncer: window enforcement with an injected clock
- TestDefaultRules: queue stall and gate block-rate checks
- TestRunAlertChecks: firing, skipping failed rules, persistence
- TestSlackNotification: webhook handling
- TestDegradationMessage: user-facing notices
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest

from adgate.core.config import Settings
from adgate.models.enums import AlertSeverity
from adgate.models.schemas import SystemAlert
from adgate.services.alerting import (
    CRITICAL_DEGRADATION_MESSAGE,
    WARNING_DEGRADATION_MESSAGE,
    AlertDebouncer,
    AlertRule,
    build_default_rules,
    format_alert_blocks,
    get_user_degradation_message,
    run_alert_checks,
    send_slack_alert,
)


T0 = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
WEBHOOK = 'https://hooks.slack.com/services/T000/B000/XXXX'


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


def _rule(rule_id: str, healthy=False, severity=AlertSeverity.WARNING, error=None) -> AlertRule:
    async def check(conn) -> bool:
        if error is not None:
            raise error
        return healthy

    return AlertRule(
        id=rule_id,
        name=f'{rule_id} name',
        description=f'{rule_id} description',
        severity=severity,
        debounce_minutes=30,
        check=check,
    )


def _alert(severity=AlertSeverity.WARNING) -> SystemAlert:
    return SystemAlert(
        ruleId='extraction_queue_stall',
        name='Extraction queue not processing',
        severity=severity,
        message='More than 10 extractions pending for over 60 minutes',
        triggeredAt=T0,
    )


class TestDebouncer:

    def test_fires_once_per_window(self) -> None:
        clock = FakeClock(T0)
        debouncer = AlertDebouncer(clock=clock)
        rule = _rule('stall')

        assert debouncer.should_fire(rule) is True
        assert debouncer.mark_fired(rule) == T0

        clock.advance(29)
        assert debouncer.should_fire(rule) is False

        clock.advance(1)
        assert debouncer.should_fire(rule) is True

    def test_rules_are_tracked_separately(self) -> None:
        debouncer = AlertDebouncer(clock=FakeClock(T0))
        debouncer.mark_fired(_rule('a'))
        assert debouncer.should_fire(_rule('b')) is True


class TestDefaultRules:

    def _rules(self, gate_settings):
        return {rule.id: rule for rule in build_default_rules(gate_settings)}

    async def test_queue_stall_threshold(self, mock_conn, gate_settings) -> None:
        rule = self._rules(gate_settings)['extraction_queue_stall']

        mock_conn.fetchval.return_value = 10
        assert await rule.check(mock_conn) is True

        mock_conn.fetchval.return_value = 11
        assert await rule.check(mock_conn) is False

        mock_conn.fetchval.return_value = None
        assert await rule.check(mock_conn) is True

        assert mock_conn.fetchval.call_args.args[1] == 60

    async def test_block_rate(self, mock_conn, gate_settings) -> None:
        rule = self._rules(gate_settings)['gate_decision_failure_rate']
        assert rule.severity == AlertSeverity.CRITICAL

        mock_conn.fetchrow.return_value = {'total': 25, 'blocked': 24}
        assert await rule.check(mock_conn) is False

        mock_conn.fetchrow.return_value = {'total': 25, 'blocked': 10}
        assert await rule.check(mock_conn) is True

        mock_conn.fetchrow.return_value = {'total': 5, 'blocked': 5}
        assert await rule.check(mock_conn) is True

        mock_conn.fetchrow.return_value = None
        assert await rule.check(mock_conn) is True


class TestRunAlertChecks:

    async def test_fires_unhealthy_and_skips_failing_rules(self, mock_db_pool, mock_conn, gate_settings) -> None:
        notify = Mock(return_value=True)
        debouncer = AlertDebouncer(clock=FakeClock(T0))
        rules = [
            _rule('broken', error=RuntimeError('query failed')),
            _rule('stall', severity=AlertSeverity.CRITICAL),
            _rule('fine', healthy=True),
        ]

        with patch('adgate.services.alerting.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            fired = await run_alert_checks(rules, debouncer, gate_settings, notify)

        assert [alert.ruleId for alert in fired] == ['stall']
        assert fired[0].notified is True
        assert fired[0].triggeredAt == T0
        notify.assert_called_once()

        args = mock_conn.execute.call_args.args
        assert args[1:5] == ('stall', 'stall name', 'critical', 'stall description')
        assert args[6] is True

    async def test_debounced_rule_is_not_refired(self, mock_db_pool, mock_conn, gate_settings) -> None:
        notify = Mock(return_value=False)
        clock = FakeClock(T0)
        debouncer = AlertDebouncer(clock=clock)
        rules = [_rule('stall')]

        with patch('adgate.services.alerting.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            first = await run_alert_checks(rules, debouncer, gate_settings, notify)
            clock.advance(5)
            second = await run_alert_checks(rules, debouncer, gate_settings, notify)
            clock.advance(30)
            third = await run_alert_checks(rules, debouncer, gate_settings, notify)

        assert len(first) == 1
        assert first[0].notified is False
        assert second == []
        assert len(third) == 1
        assert mock_conn.execute.call_count == 2


class TestSlackNotification:

    def test_no_webhook_configured(self, gate_settings) -> None:
        with patch('adgate.services.alerting.WebhookClient') as client_cls:
            assert send_slack_alert(_alert(), gate_settings) is False
        client_cls.assert_not_called()

    def test_accepted(self) -> None:
        settings = Settings(_env_file=None, slack_webhook_url=WEBHOOK)
        with patch('adgate.services.alerting.WebhookClient') as client_cls:
            client_cls.return_value.send.return_value = Mock(status_code=200, body='ok')
            assert send_slack_alert(_alert(), settings) is True

        client_cls.assert_called_once_with(WEBHOOK)
        kwargs = client_cls.return_value.send.call_args.kwargs
        assert kwargs['text'] == 'AdGate alert: Extraction queue not processing'
        assert kwargs['blocks'][0]['type'] == 'header'

    def test_rejected(self) -> None:
        settings = Settings(_env_file=None, slack_webhook_url=WEBHOOK)
        with patch('adgate.services.alerting.WebhookClient') as client_cls:
            client_cls.return_value.send.return_value = Mock(status_code=403, body='invalid_token')
            assert send_slack_alert(_alert(), settings) is False

    def test_transport_error(self) -> None:
        settings = Settings(_env_file=None, slack_webhook_url=WEBHOOK)
        with patch('adgate.services.alerting.WebhookClient') as client_cls:
            client_cls.return_value.send.side_effect = ConnectionError('unreachable')
            assert send_slack_alert(_alert(), settings) is False

    def test_blocks_show_severity(self) -> None:
        blocks = format_alert_blocks(_alert(AlertSeverity.CRITICAL))
        assert blocks[1]['text']['text'].startswith(':rotating_light: *CRITICAL*')
        assert blocks[2]['elements'][0]['text'] == 'Triggered 2026-03-15T12:00:00+00:00'


class TestDegradationMessage:

    @pytest.mark.parametrize("severities,expected", [
        ([], None),
        ([AlertSeverity.WARNING], WARNING_DEGRADATION_MESSAGE),
        ([AlertSeverity.WARNING, AlertSeverity.CRITICAL], CRITICAL_DEGRADATION_MESSAGE),
    ])
    def test_message(self, severities, expected) -> None:
        assert get_user_degradation_message([_alert(s) for s in severities]) == expected
