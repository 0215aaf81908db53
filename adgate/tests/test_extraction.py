"""
Tests for the extraction state machine.

Test Classes:
- TestStatusDerivation: required/optional signals -> status
- TestMissingSignalConfidence: penalty-weighted ceilings
- TestCanScore: scoring permission per status
- TestTransitions: pure start/complete/retry transitions
- TestPersistedTransitions: versioned writes through a mocked pool
"""

import gc
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from adgate.core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    RetryLimitExceededError,
)
from adgate.models.enums import ConfidenceLevel, ExtractionStatus
from adgate.models.schemas import ExtractionResult, ExtractionState
from adgate.services.extraction import (
    _creative_locks,
    _lock_for,
    MESSAGE_FAILED,
    MESSAGE_PENDING,
    MESSAGE_REQUIRED_MISSING,
    MESSAGE_RETRY_LIMIT,
    OPTIONAL_SIGNALS,
    REQUIRED_SIGNALS,
    calculate_confidence_with_missing_signals,
    can_score_with_extraction,
    complete_extraction,
    determine_extraction_status,
    get_missing_signals,
    record_extraction_result,
    request_extraction,
    request_retry,
    retry_extraction,
    start_extraction,
)


ALL_SIGNALS = REQUIRED_SIGNALS + OPTIONAL_SIGNALS
T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _state(**overrides) -> ExtractionState:
    fields = {'userId': 'user-1', 'creativeId': 'creative-1', 'startedAt': T0, 'updatedAt': T0}
    fields.update(overrides)
    return ExtractionState(**fields)


def _row(**overrides) -> dict:
    row = {
        'user_id': 'user-1',
        'creative_id': 'creative-1',
        'status': 'pending',
        'extracted_signals': [],
        'missing_signals': [],
        'failed_signals': [],
        'error_message': None,
        'retry_count': 0,
        'max_retries': 3,
        'version': 1,
        'started_at': T0,
        'completed_at': None,
        'updated_at': T0,
    }
    row.update(overrides)
    return row


class TestStatusDerivation:

    def test_all_signals_complete(self) -> None:
        assert determine_extraction_status(ALL_SIGNALS, []) == ExtractionStatus.COMPLETE

    def test_missing_optional_is_partial(self) -> None:
        assert determine_extraction_status(REQUIRED_SIGNALS + ['cutCount'], []) == ExtractionStatus.PARTIAL

    def test_missing_required_with_error_fails(self) -> None:
        status = determine_extraction_status(['duration'], ['hasAudio'])
        assert status == ExtractionStatus.FAILED

    def test_missing_required_without_error_stays_pending(self) -> None:
        assert determine_extraction_status(['duration'], []) == ExtractionStatus.PENDING

    def test_explicit_error_flag_fails(self) -> None:
        assert determine_extraction_status([], [], error_occurred=True) == ExtractionStatus.FAILED

    def test_missing_signals_in_catalog_order(self) -> None:
        assert get_missing_signals(['frameRate', 'duration']) == [
            'hasAudio', 'aspectRatio', 'motionStartMs', 'cutCount', 'textAppearanceMs', 'audioLevelLufs',
        ]


class TestMissingSignalConfidence:
    """Summed weight >= 30 pins low; >= 15 drops high to medium."""

    def test_no_missing_keeps_base(self, gate_settings) -> None:
        result = calculate_confidence_with_missing_signals(ConfidenceLevel.HIGH, [], gate_settings)
        assert result.confidence == ConfidenceLevel.HIGH
        assert result.penaltyTotal == 0

    def test_small_penalty_keeps_base(self, gate_settings) -> None:
        result = calculate_confidence_with_missing_signals(
            ConfidenceLevel.HIGH, ['frameRate', 'audioLevelLufs'], gate_settings,
        )
        assert result.penaltyTotal == 10
        assert result.confidence == ConfidenceLevel.HIGH

    def test_medium_penalty_drops_high(self, gate_settings) -> None:
        result = calculate_confidence_with_missing_signals(ConfidenceLevel.HIGH, ['cutCount'], gate_settings)
        assert result.confidence == ConfidenceLevel.MEDIUM
        assert result.reasons == ['cutCount unavailable (-15%)']

    def test_medium_penalty_leaves_medium(self, gate_settings) -> None:
        result = calculate_confidence_with_missing_signals(ConfidenceLevel.MEDIUM, ['cutCount'], gate_settings)
        assert result.confidence == ConfidenceLevel.MEDIUM

    def test_large_penalty_pins_low(self, gate_settings) -> None:
        result = calculate_confidence_with_missing_signals(
            ConfidenceLevel.HIGH, ['motionStartMs', 'textAppearanceMs'], gate_settings,
        )
        assert result.penaltyTotal == 30
        assert result.confidence == ConfidenceLevel.LOW

    def test_unknown_names_carry_no_weight(self, gate_settings) -> None:
        result = calculate_confidence_with_missing_signals(
            ConfidenceLevel.HIGH, ['somethingElse'], gate_settings,
        )
        assert result.penaltyTotal == 0
        assert result.confidence == ConfidenceLevel.HIGH

    def test_missing_required_signal_is_insufficient(self, gate_settings) -> None:
        result = calculate_confidence_with_missing_signals(
            ConfidenceLevel.HIGH, ['duration', 'cutCount'], gate_settings,
        )
        assert result.confidence == ConfidenceLevel.INSUFFICIENT
        assert result.reasons == ['Required signal missing: duration']


class TestCanScore:

    def test_pending_blocks(self) -> None:
        result = can_score_with_extraction(_state(status=ExtractionStatus.PENDING))
        assert result.allowed is False
        assert result.maxConfidence == ConfidenceLevel.INSUFFICIENT
        assert result.message == MESSAGE_PENDING

    def test_failed_blocks_with_retry_prompt(self) -> None:
        result = can_score_with_extraction(_state(status=ExtractionStatus.FAILED, retryCount=1))
        assert result.allowed is False
        assert result.message == MESSAGE_FAILED

    def test_exhausted_failure_says_contact_support(self) -> None:
        result = can_score_with_extraction(_state(status=ExtractionStatus.FAILED, retryCount=3, maxRetries=3))
        assert result.message == MESSAGE_RETRY_LIMIT

    def test_partial_lowers_ceiling(self, gate_settings) -> None:
        state = _state(status=ExtractionStatus.PARTIAL, missingSignals=['motionStartMs', 'cutCount'])
        result = can_score_with_extraction(state, ConfidenceLevel.HIGH, gate_settings)
        assert result.allowed is True
        assert result.maxConfidence == ConfidenceLevel.LOW

    def test_partial_with_required_missing_blocks(self, gate_settings) -> None:
        state = _state(status=ExtractionStatus.PARTIAL, missingSignals=['duration', 'hasAudio'])
        result = can_score_with_extraction(state, ConfidenceLevel.HIGH, gate_settings)
        assert result.allowed is False
        assert result.maxConfidence == ConfidenceLevel.INSUFFICIENT
        assert result.message == MESSAGE_REQUIRED_MISSING
        assert result.reasons == [
            'Required signal missing: duration',
            'Required signal missing: hasAudio',
        ]

    def test_complete_keeps_base(self) -> None:
        result = can_score_with_extraction(_state(status=ExtractionStatus.COMPLETE), ConfidenceLevel.MEDIUM)
        assert result.allowed is True
        assert result.maxConfidence == ConfidenceLevel.MEDIUM


class TestTransitions:

    def test_start_is_pending(self, gate_settings) -> None:
        state = start_extraction('user-1', 'creative-1', now=T0, settings=gate_settings)
        assert state.status == ExtractionStatus.PENDING
        assert state.maxRetries == 3
        assert state.startedAt == T0

    def test_complete_sets_partial_and_missing(self) -> None:
        result = ExtractionResult(extractedSignals=REQUIRED_SIGNALS + ['cutCount'])
        state = complete_extraction(_state(), result, now=T0)
        assert state.status == ExtractionStatus.PARTIAL
        assert 'motionStartMs' in state.missingSignals
        assert state.completedAt == T0

    def test_complete_requires_pending(self) -> None:
        with pytest.raises(InvalidTransitionError):
            complete_extraction(_state(status=ExtractionStatus.COMPLETE), ExtractionResult())

    def test_retry_consumes_one_retry(self) -> None:
        state = retry_extraction(_state(status=ExtractionStatus.FAILED, retryCount=1, errorMessage='x'), now=T0)
        assert state.status == ExtractionStatus.PENDING
        assert state.retryCount == 2
        assert state.errorMessage is None

    def test_retry_only_from_failed(self) -> None:
        with pytest.raises(InvalidTransitionError):
            retry_extraction(_state(status=ExtractionStatus.PARTIAL))

    def test_retry_limit(self) -> None:
        with pytest.raises(RetryLimitExceededError) as exc_info:
            retry_extraction(_state(status=ExtractionStatus.FAILED, retryCount=3, maxRetries=3))
        assert exc_info.value.message == MESSAGE_RETRY_LIMIT


class TestPersistedTransitions:
    """Versioned writes: a zero-row update means another writer won."""

    async def test_request_extraction_inserts(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.return_value = _row()

        with patch('adgate.services.extraction.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            state = await request_extraction('user-1', 'creative-1')

        assert state.status == ExtractionStatus.PENDING
        mock_conn.fetchrow.assert_called_once()

    async def test_request_extraction_returns_existing(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.side_effect = [None, _row(status='partial', version=4)]

        with patch('adgate.services.extraction.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            state = await request_extraction('user-1', 'creative-1')

        assert state.status == ExtractionStatus.PARTIAL
        assert state.version == 4

    async def test_record_result_unknown_creative(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.return_value = None

        with patch('adgate.services.extraction.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(NotFoundError):
                await record_extraction_result('user-1', 'creative-1', ExtractionResult())

    async def test_record_result_writes_with_expected_version(self, mock_db_pool, mock_conn) -> None:
        saved = _row(status='complete', extracted_signals=ALL_SIGNALS, version=2)
        mock_conn.fetchrow.side_effect = [_row(version=1), saved]

        with patch('adgate.services.extraction.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            state = await record_extraction_result(
                'user-1', 'creative-1', ExtractionResult(extractedSignals=ALL_SIGNALS),
            )

        assert state.status == ExtractionStatus.COMPLETE
        update_args = mock_conn.fetchrow.call_args_list[1].args
        assert update_args[3] == 'complete'
        assert update_args[-1] == 1

    async def test_retry_increments_once(self, mock_db_pool, mock_conn) -> None:
        failed = _row(status='failed', retry_count=1, error_message='decoder crashed')
        retried = _row(status='pending', retry_count=2, version=3)
        mock_conn.fetchrow.side_effect = [failed, retried]

        with patch('adgate.services.extraction.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            state = await request_retry('user-1', 'creative-1')

        assert state.retryCount == 2
        update_args = mock_conn.fetchrow.call_args_list[1].args
        assert update_args[8] == 2

    async def test_retry_at_limit_never_writes(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.return_value = _row(status='failed', retry_count=3, max_retries=3)

        with patch('adgate.services.extraction.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(RetryLimitExceededError):
                await request_retry('user-1', 'creative-1')

        mock_conn.fetchrow.assert_called_once()

    async def test_lost_race_is_reported(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.side_effect = [_row(status='failed', retry_count=0), None]

        with patch('adgate.services.extraction.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            with pytest.raises(ConcurrentModificationError):
                await request_retry('user-1', 'creative-1')

    async def test_lock_is_released_from_registry(self, mock_db_pool, mock_conn) -> None:
        mock_conn.fetchrow.side_effect = [_row(status='failed', retry_count=0), _row(retry_count=1, version=2)]

        with patch('adgate.services.extraction.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            await request_retry('user-1', 'creative-1')

        gc.collect()
        assert ('user-1', 'creative-1') not in _creative_locks

    def test_lock_is_shared_while_held(self) -> None:
        held = _lock_for('user-1', 'creative-2')

        assert _lock_for('user-1', 'creative-2') is held
        assert _lock_for('user-1', 'creative-3') is not held
