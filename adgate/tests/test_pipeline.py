"""
Tests for end-to-end creative evaluation.

The audit trail is written through the mocked pool, so each evaluation is
expected to append exactly three entries under one trace id.
"""

from unittest.mock import AsyncMock, patch

import pytest

from adgate.models.enums import (
    ConfidenceLevel,
    ExtractionStatus,
    IneligibilityReason,
    PrimaryIssue,
    SystemName,
)
from adgate.models.schemas import (
    DiagnosisRequest,
    EvaluationRequest,
    ExtractionState,
    PeriodMetrics,
)
from adgate.services.orchestration import ELIGIBILITY_MESSAGES
from adgate.services.pipeline import evaluate_creative


pytestmark = pytest.mark.asyncio


STORED = {'id': 'entry-1', 'step_order': 1, 'created_at': None}


def _request(gate_input, **overrides) -> EvaluationRequest:
    fields = {
        'userId': 'user-1',
        'creativeId': 'creative-1',
        'gateInput': gate_input,
        'deliveryHealth': 'healthy',
        'conversionHealth': 'bad',
    }
    fields.update(overrides)
    return EvaluationRequest(**fields)


class TestEvaluateCreative:

    async def test_all_systems_active(self, mock_db_pool, mock_conn, make_gate_input, now, gate_settings):
        mock_conn.fetchrow.return_value = STORED

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            response = await evaluate_creative(_request(make_gate_input()), now=now, settings=gate_settings)

        assert response.activation.systemsActivated == [
            SystemName.STRUCTURE, SystemName.CONVERSION, SystemName.NARRATIVE,
        ]
        assert response.deliveryConfidence == ConfidenceLevel.HIGH
        assert response.conversionConfidence == ConfidenceLevel.HIGH
        assert response.diagnosis.primaryIssue == PrimaryIssue.NONE
        assert response.messages == [ELIGIBILITY_MESSAGES[IneligibilityReason.ELIGIBLE]]

        calls = mock_conn.fetchrow.call_args_list
        assert len(calls) == 3
        assert {call.args[1] for call in calls} == {response.traceId}
        assert [call.args[4] for call in calls] == ['score_attempt', 'eligibility_check', 'system_activation']

    async def test_partial_extraction_lowers_delivery(
        self, mock_db_pool, mock_conn, make_gate_input, now, gate_settings
    ):
        mock_conn.fetchrow.return_value = STORED
        extraction = ExtractionState(
            userId='user-1',
            creativeId='creative-1',
            status=ExtractionStatus.PARTIAL,
            missingSignals=['motionStartMs', 'cutCount'],
            startedAt=now,
            updatedAt=now,
        )

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            response = await evaluate_creative(
                _request(make_gate_input(), extraction=extraction), now=now, settings=gate_settings,
            )

        assert response.extraction.allowed is True
        assert response.deliveryConfidence == ConfidenceLevel.LOW
        assert response.conversionConfidence == ConfidenceLevel.HIGH

    async def test_pending_extraction_blocks_structure(
        self, mock_db_pool, mock_conn, make_gate_input, now, gate_settings
    ):
        mock_conn.fetchrow.return_value = STORED
        extraction = ExtractionState(userId='user-1', creativeId='creative-1', startedAt=now, updatedAt=now)

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            response = await evaluate_creative(
                _request(make_gate_input(), extraction=extraction), now=now, settings=gate_settings,
            )

        assert SystemName.STRUCTURE not in response.activation.systemsActivated
        assert response.deliveryConfidence == ConfidenceLevel.INSUFFICIENT
        assert response.extraction.message in response.messages

    async def test_tracking_issue_blocks_narrative(
        self, mock_db_pool, mock_conn, make_gate_input, now, gate_settings
    ):
        mock_conn.fetchrow.return_value = STORED
        diagnosis = DiagnosisRequest(
            currentMetrics=PeriodMetrics(spend=1050, conversions=10),
            previousMetrics=PeriodMetrics(spend=1000, conversions=40),
        )

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            response = await evaluate_creative(
                _request(make_gate_input(), diagnosis=diagnosis), now=now, settings=gate_settings,
            )

        assert response.diagnosis.primaryIssue == PrimaryIssue.TRACKING
        assert SystemName.NARRATIVE not in response.activation.systemsActivated
        assert response.activation.blockedReasons['narrative'] == response.diagnosis.message
        assert response.messages[-1] == response.diagnosis.message

    async def test_young_creative(self, mock_db_pool, mock_conn, make_gate_input, now, gate_settings):
        mock_conn.fetchrow.return_value = STORED

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            response = await evaluate_creative(
                _request(make_gate_input(age_hours=12), deliveryHealth='risky'),
                now=now,
                settings=gate_settings,
            )

        assert response.deliveryConfidence == ConfidenceLevel.INSUFFICIENT
        assert response.narrativeEligibility.reason == IneligibilityReason.DELIVERY_UNHEALTHY
        assert response.messages[0].startswith('Gathering data.')
        first_entry_args = mock_conn.fetchrow.call_args_list[0].args
        assert first_entry_args[7] is True

    async def test_attribution_mismatch_blocks_blame(
        self, mock_db_pool, mock_conn, make_gate_input, now, gate_settings
    ):
        mock_conn.fetchrow.return_value = STORED
        gate_input = make_gate_input(userAttributionWindow='7d_click', platformAttributionWindow='1d_click')

        with patch('adgate.services.audit_trail.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            response = await evaluate_creative(_request(gate_input), now=now, settings=gate_settings)

        assert response.gateStatus.gates.attributionMismatch.blocked is True
        assert response.diagnosis.primaryIssue == PrimaryIssue.ATTRIBUTION_GAP
        assert response.diagnosis.canBlameCreative is False
        assert response.activation.systemsActivated == [SystemName.STRUCTURE]
        assert response.activation.blockedReasons['narrative'] == response.diagnosis.message
