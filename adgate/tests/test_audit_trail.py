"""
Tests for the append-only audit trail.
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from adgate.core.config import SCORING_VERSIONS
from adgate.models.enums import GateType, IneligibilityReason, SystemName
from adgate.models.schemas import AuditLogEntry, NarrativeEligibility, SystemActivation
from adgate.services.audit_trail import (
    APPEND_ATTEMPTS,
    format_audit_trail,
    generate_trace_id,
    get_audit_trail,
    log_eligibility_check,
    log_recommendation_generation,
    log_score_attempt,
    log_system_activation,
)
from adgate.services.scoring_gates import evaluate_gates


pytestmark = pytest.mark.asyncio


T0 = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
STORED = {'id': 'entry-1', 'step_order': 1, 'created_at': T0}


class TestAppending:

    async def test_blocked_score_attempt(self, mock_db_pool, mock_conn, make_gate_input, now, gate_settings):
        mock_conn.fetchrow.return_value = STORED
        gates = evaluate_gates(make_gate_input(age_hours=10), now=now, settings=gate_settings)

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            entry = await log_score_attempt('trace-1', 'user-1', 'creative-1', gates)

        args = mock_conn.fetchrow.call_args.args
        assert args[1:5] == ('trace-1', 'user-1', 'creative-1', 'score_attempt')
        assert json.loads(args[5])['canScoreDelivery'] is False
        assert args[7] is True
        assert args[8] == gates.gateMessages[0]

        assert entry.stepOrder == 1
        assert entry.id == 'entry-1'
        assert entry.createdAt == T0
        assert set(SCORING_VERSIONS) <= set(entry.versions)

    async def test_activation_with_partial_blocks(self, mock_db_pool, mock_conn):
        mock_conn.fetchrow.return_value = STORED
        activation = SystemActivation(
            systemsActivated=[SystemName.STRUCTURE, SystemName.CONVERSION],
            blockedReasons={'narrative': 'Fix structure first.'},
        )

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            entry = await log_system_activation('trace-1', 'user-1', 'creative-1', activation)

        args = mock_conn.fetchrow.call_args.args
        assert args[5] is None
        assert args[6] == ['structure', 'conversion']
        assert args[7] is False
        assert entry.blockedReason == 'narrative: Fix structure first.'

    async def test_ineligible_uses_message_then_reason(self, mock_db_pool, mock_conn):
        mock_conn.fetchrow.return_value = STORED
        eligibility = NarrativeEligibility(eligible=False, reason=IneligibilityReason.CONVERSION_HEALTHY)

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with_message = await log_eligibility_check('t', 'u', None, eligibility, 'Conversion is fine.')
            without_message = await log_eligibility_check('t', 'u', None, eligibility)

        assert with_message.blockedReason == 'Conversion is fine.'
        assert without_message.blockedReason == 'conversion_healthy'
        assert without_message.gateType == GateType.ELIGIBILITY_CHECK

    async def test_blocked_recommendation_generation(self, mock_db_pool, mock_conn):
        mock_conn.fetchrow.return_value = STORED
        details = {'recommendationType': 'motion_timing', 'violations': ['targetRange']}

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            entry = await log_recommendation_generation(
                'trace-1', 'user-1', 'creative-1', details,
                blocked=True, blocked_reason='Recommendation is not specific enough',
            )

        args = mock_conn.fetchrow.call_args.args
        assert args[4] == 'recommendation_gen'
        assert json.loads(args[5]) == details
        assert args[7] is True
        assert entry.blockedReason == 'Recommendation is not specific enough'

    async def test_step_order_collision_is_retried(self, mock_db_pool, mock_conn):
        mock_conn.fetchrow.side_effect = [
            asyncpg.UniqueViolationError('duplicate key value violates unique constraint'),
            {'id': 'entry-2', 'step_order': 2, 'created_at': T0},
        ]
        activation = SystemActivation(systemsActivated=[SystemName.STRUCTURE])

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            entry = await log_system_activation('trace-1', 'user-1', 'creative-1', activation)

        assert mock_conn.fetchrow.call_count == 2
        first, second = mock_conn.fetchrow.call_args_list
        assert first.args == second.args
        assert entry.stepOrder == 2

    async def test_repeated_collision_propagates(self, mock_db_pool, mock_conn):
        mock_conn.fetchrow.side_effect = asyncpg.UniqueViolationError('duplicate key value')
        activation = SystemActivation(systemsActivated=[SystemName.STRUCTURE])

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(asyncpg.UniqueViolationError):
                await log_system_activation('trace-1', 'user-1', 'creative-1', activation)

        assert mock_conn.fetchrow.call_count == APPEND_ATTEMPTS

    async def test_trace_ids_are_unique(self):
        assert generate_trace_id() != generate_trace_id()


class TestReading:

    async def test_entries_are_decoded(self, mock_db_pool, mock_conn):
        mock_conn.fetch.return_value = [
            {
                'id': 'entry-1',
                'trace_id': 'trace-1',
                'step_order': 1,
                'user_id': 'user-1',
                'creative_id': 'creative-1',
                'gate_type': 'score_attempt',
                'gate_status': json.dumps({'canScoreDelivery': True}),
                'systems_activated': None,
                'blocked': False,
                'blocked_reason': None,
                'versions': json.dumps({'scoring_gates': '1.0'}),
                'created_at': T0,
            },
            {
                'id': 'entry-2',
                'trace_id': 'trace-1',
                'step_order': 2,
                'user_id': 'user-1',
                'creative_id': 'creative-1',
                'gate_type': 'system_activation',
                'gate_status': None,
                'systems_activated': ['structure'],
                'blocked': False,
                'blocked_reason': 'narrative: Keep running.',
                'versions': {'scoring_gates': '1.0'},
                'created_at': T0,
            },
        ]

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            entries = await get_audit_trail('trace-1')

        assert [e.stepOrder for e in entries] == [1, 2]
        assert entries[0].gateStatus == {'canScoreDelivery': True}
        assert entries[0].systemsActivated == []
        assert entries[1].systemsActivated == [SystemName.STRUCTURE]
        assert entries[1].versions == {'scoring_gates': '1.0'}


class TestFormatting:

    async def test_format_replay(self):
        entries = [
            AuditLogEntry(traceId='trace-1', userId='u', gateType=GateType.SCORE_ATTEMPT, stepOrder=1),
            AuditLogEntry(
                traceId='trace-1', userId='u', gateType=GateType.ELIGIBILITY_CHECK, stepOrder=2,
                blocked=True, blockedReason='Fix structure first.',
            ),
            AuditLogEntry(
                traceId='trace-1', userId='u', gateType=GateType.SYSTEM_ACTIVATION, stepOrder=3,
                systemsActivated=[SystemName.STRUCTURE, SystemName.CONVERSION], createdAt=T0,
            ),
        ]

        assert format_audit_trail(entries).splitlines() == [
            'Trace trace-1: 3 step(s)',
            '  1. score_attempt - passed',
            '  2. eligibility_check - BLOCKED: Fix structure first.',
            '  3. system_activation - passed [structure, conversion] @ 2026-03-15T12:00:00+00:00',
        ]

    async def test_empty_trace(self):
        assert format_audit_trail([]) == 'No audit entries found.'
