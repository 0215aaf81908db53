"""
Extraction status integrator.

Reconciles what the upstream media-signal extractor produced for a creative
with the scoring gates: required signals missing means no scoring at all,
missing optional signals lower the confidence ceiling by their summed weight.

State machine (per creative):

    pending --complete_extraction--> complete | partial | failed
    failed  --retry_extraction-----> pending   (retryCount + 1, bounded)

A retry once retryCount has reached maxRetries raises RetryLimitExceededError,
which the caller surfaces as a terminal "contact support" condition.

The transition functions are pure and return new ExtractionState objects.
The async helpers at the bottom persist them through a versioned UPDATE and
serialize same-creative requests inside this process with an asyncio.Lock,
so two concurrent retries can never push retryCount past its maximum.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from adgate.core.config import Settings, get_settings
from adgate.core.database import get_db_pool
from adgate.core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    RetryLimitExceededError,
)
from adgate.models.enums import ConfidenceLevel, ExtractionStatus, SignalCategory
from adgate.models.schemas import (
    ExtractionConfidence,
    ExtractionResult,
    ExtractionScoringResult,
    ExtractionState,
    SignalRequirement,
)
from adgate.services.confidence import clamp
from adgate.sql.extraction_queries import (
    get_extraction_insert_query,
    get_extraction_state_query,
    get_versioned_update_query,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Signal Catalog
# =============================================================================

SIGNAL_REQUIREMENTS: List[SignalRequirement] = [
    # Required: scoring is impossible without these
    SignalRequirement(name='duration', required=True, category=SignalCategory.METADATA,
                      description='Creative length'),
    SignalRequirement(name='hasAudio', required=True, category=SignalCategory.AUDIO,
                      description='Whether an audio track is present'),
    SignalRequirement(name='aspectRatio', required=True, category=SignalCategory.VISUAL,
                      description='Frame aspect ratio'),

    # Optional: each missing one lowers confidence by its weight
    SignalRequirement(name='motionStartMs', required=False, confidenceImpact=20,
                      category=SignalCategory.TIMING, description='Time of first motion'),
    SignalRequirement(name='cutCount', required=False, confidenceImpact=15,
                      category=SignalCategory.VISUAL, description='Number of scene cuts'),
    SignalRequirement(name='textAppearanceMs', required=False, confidenceImpact=10,
                      category=SignalCategory.TIMING, description='Time of first on-screen text'),
    SignalRequirement(name='audioLevelLufs', required=False, confidenceImpact=5,
                      category=SignalCategory.AUDIO, description='Integrated loudness'),
    SignalRequirement(name='frameRate', required=False, confidenceImpact=5,
                      category=SignalCategory.METADATA, description='Frames per second'),
]

_SIGNALS_BY_NAME: Dict[str, SignalRequirement] = {s.name: s for s in SIGNAL_REQUIREMENTS}

REQUIRED_SIGNALS: List[str] = [s.name for s in SIGNAL_REQUIREMENTS if s.required]
OPTIONAL_SIGNALS: List[str] = [s.name for s in SIGNAL_REQUIREMENTS if not s.required]

MESSAGE_PENDING = 'Extraction in progress. Please wait.'
MESSAGE_FAILED = 'Extraction failed. Click to retry.'
MESSAGE_RETRY_LIMIT = 'Maximum retries exceeded. Contact support.'
MESSAGE_PARTIAL = 'Some signals unavailable. Confidence reduced.'
MESSAGE_REQUIRED_MISSING = 'Required signals unavailable. Scoring blocked until extraction completes.'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Status Derivation
# =============================================================================

def get_missing_signals(extracted: Iterable[str]) -> List[str]:
    """Catalog signals absent from the extracted list, in catalog order."""
    present = set(extracted)
    return [s.name for s in SIGNAL_REQUIREMENTS if s.name not in present]


def determine_extraction_status(
    extracted: Iterable[str],
    failed: Iterable[str],
    error_occurred: bool = False,
) -> ExtractionStatus:
    """
    Derive the extraction status from the extractor's report.

    Missing required signals always block: the status is FAILED when an
    extraction error occurred (a failed signal or an explicit error), else
    PENDING because the extractor is still working. With every required
    signal present, any missing optional signal makes it PARTIAL.
    """
    extracted = list(extracted)
    failed = list(failed)
    missing = get_missing_signals(extracted)

    if any(name in REQUIRED_SIGNALS for name in missing):
        if failed or error_occurred:
            return ExtractionStatus.FAILED
        return ExtractionStatus.PENDING

    if missing:
        return ExtractionStatus.PARTIAL

    return ExtractionStatus.COMPLETE


def calculate_confidence_with_missing_signals(
    base: ConfidenceLevel,
    missing: Iterable[str],
    settings: Optional[Settings] = None,
) -> ExtractionConfidence:
    """
    Lower a base confidence by the summed weight of missing optional signals.

    Mapping of the summed weight:
        >= extraction_low_penalty (30)               -> low
        >= extraction_medium_penalty (15), base high -> medium
        otherwise                                    -> base unchanged

    Any missing required signal pins the ceiling to insufficient regardless
    of the optional weights. Unknown signal names carry no weight.
    """
    settings = settings or get_settings()
    missing = list(missing)

    required_missing = [name for name in missing if name in REQUIRED_SIGNALS]
    if required_missing:
        return ExtractionConfidence(
            confidence=ConfidenceLevel.INSUFFICIENT,
            penaltyTotal=0,
            reasons=[f"Required signal missing: {name}" for name in required_missing],
        )

    penalty = 0
    reasons: List[str] = []

    for name in missing:
        requirement = _SIGNALS_BY_NAME.get(name)
        if requirement is None:
            continue
        penalty += requirement.confidenceImpact
        reasons.append(f"{name} unavailable (-{requirement.confidenceImpact}%)")

    confidence = base
    if penalty >= settings.extraction_low_penalty:
        confidence = clamp(base, ConfidenceLevel.LOW)
    elif penalty >= settings.extraction_medium_penalty and base == ConfidenceLevel.HIGH:
        confidence = ConfidenceLevel.MEDIUM

    return ExtractionConfidence(confidence=confidence, penaltyTotal=penalty, reasons=reasons)


def can_score_with_extraction(
    state: ExtractionState,
    base: ConfidenceLevel = ConfidenceLevel.HIGH,
    settings: Optional[Settings] = None,
) -> ExtractionScoringResult:
    """
    Decide whether the extraction state allows scoring and at what ceiling.

    pending / failed -> not allowed (insufficient)
    partial          -> allowed, ceiling lowered by missing optional signals;
                        not allowed if a required signal is listed missing
    complete         -> allowed at base
    """
    if state.status == ExtractionStatus.PENDING:
        return ExtractionScoringResult(
            allowed=False,
            maxConfidence=ConfidenceLevel.INSUFFICIENT,
            message=MESSAGE_PENDING,
        )

    if state.status == ExtractionStatus.FAILED:
        exhausted = state.retryCount >= state.maxRetries
        return ExtractionScoringResult(
            allowed=False,
            maxConfidence=ConfidenceLevel.INSUFFICIENT,
            message=MESSAGE_RETRY_LIMIT if exhausted else MESSAGE_FAILED,
        )

    if state.status == ExtractionStatus.PARTIAL:
        result = calculate_confidence_with_missing_signals(base, state.missingSignals, settings)
        if any(name in REQUIRED_SIGNALS for name in state.missingSignals):
            return ExtractionScoringResult(
                allowed=False,
                maxConfidence=ConfidenceLevel.INSUFFICIENT,
                message=MESSAGE_REQUIRED_MISSING,
                reasons=result.reasons,
            )
        return ExtractionScoringResult(
            allowed=True,
            maxConfidence=result.confidence,
            message=MESSAGE_PARTIAL,
            reasons=result.reasons,
        )

    return ExtractionScoringResult(allowed=True, maxConfidence=base)


# =============================================================================
# Transitions (pure)
# =============================================================================

def start_extraction(
    user_id: str,
    creative_id: str,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> ExtractionState:
    """New pending record for a creative."""
    settings = settings or get_settings()
    now = now or _utcnow()
    return ExtractionState(
        userId=user_id,
        creativeId=creative_id,
        status=ExtractionStatus.PENDING,
        maxRetries=settings.extraction_max_retries,
        startedAt=now,
        updatedAt=now,
    )


def complete_extraction(
    state: ExtractionState,
    result: ExtractionResult,
    now: Optional[datetime] = None,
) -> ExtractionState:
    """
    Apply the extractor's report to a pending record.

    The derived status may still be PENDING when required signals are
    missing without any error (the extractor reported progress, not an end
    state); completedAt is only stamped on terminal outcomes.

    Raises:
        InvalidTransitionError: If the record is not pending.
    """
    if state.status != ExtractionStatus.PENDING:
        raise InvalidTransitionError(
            f"Cannot complete extraction in status '{state.status.value}'"
        )

    now = now or _utcnow()
    status = determine_extraction_status(
        result.extractedSignals,
        result.failedSignals,
        error_occurred=bool(result.errorMessage),
    )
    terminal = status != ExtractionStatus.PENDING

    return state.model_copy(update={
        'status': status,
        'extractedSignals': list(result.extractedSignals),
        'missingSignals': get_missing_signals(result.extractedSignals),
        'failedSignals': list(result.failedSignals),
        'errorMessage': result.errorMessage,
        'completedAt': now if terminal else None,
        'updatedAt': now,
    })


def retry_extraction(
    state: ExtractionState,
    now: Optional[datetime] = None,
) -> ExtractionState:
    """
    failed -> pending, consuming one retry.

    Raises:
        InvalidTransitionError: If the record is not failed.
        RetryLimitExceededError: If retryCount has reached maxRetries.
    """
    if state.status != ExtractionStatus.FAILED:
        raise InvalidTransitionError(
            f"Can only retry failed extractions (status is '{state.status.value}')"
        )
    if state.retryCount >= state.maxRetries:
        raise RetryLimitExceededError(MESSAGE_RETRY_LIMIT)

    now = now or _utcnow()
    return state.model_copy(update={
        'status': ExtractionStatus.PENDING,
        'retryCount': state.retryCount + 1,
        'extractedSignals': [],
        'missingSignals': [],
        'failedSignals': [],
        'errorMessage': None,
        'startedAt': now,
        'completedAt': None,
        'updatedAt': now,
    })


# =============================================================================
# Persistence
# =============================================================================

# Entries disappear once no caller holds or waits on the lock.
_creative_locks: 'weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]' = weakref.WeakValueDictionary()


def _lock_for(user_id: str, creative_id: str) -> asyncio.Lock:
    key = (user_id, creative_id)
    lock = _creative_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _creative_locks[key] = lock
    return lock


def _record_to_state(record) -> ExtractionState:
    return ExtractionState(
        userId=record['user_id'],
        creativeId=record['creative_id'],
        status=ExtractionStatus(record['status']),
        extractedSignals=list(record['extracted_signals'] or []),
        missingSignals=list(record['missing_signals'] or []),
        failedSignals=list(record['failed_signals'] or []),
        errorMessage=record['error_message'],
        retryCount=record['retry_count'],
        maxRetries=record['max_retries'],
        version=record['version'],
        startedAt=record['started_at'],
        completedAt=record['completed_at'],
        updatedAt=record['updated_at'],
    )


async def get_extraction_state(user_id: str, creative_id: str) -> Optional[ExtractionState]:
    """Load a creative's extraction record, or None if none was requested."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(get_extraction_state_query(), user_id, creative_id)
    return _record_to_state(row) if row else None


async def request_extraction(
    user_id: str,
    creative_id: str,
    settings: Optional[Settings] = None,
) -> ExtractionState:
    """
    Create the pending record for a creative, or return the existing one.

    Records are never deleted; requesting twice is idempotent.
    """
    fresh = start_extraction(user_id, creative_id, settings=settings)
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            get_extraction_insert_query(),
            user_id,
            creative_id,
            fresh.maxRetries,
            fresh.startedAt,
        )
        if row is None:
            row = await conn.fetchrow(get_extraction_state_query(), user_id, creative_id)

    logger.info("Extraction requested for creative %s", creative_id)
    return _record_to_state(row)


async def _write_versioned(conn, new_state: ExtractionState, expected_version: int) -> ExtractionState:
    row = await conn.fetchrow(
        get_versioned_update_query(),
        new_state.userId,
        new_state.creativeId,
        new_state.status.value,
        new_state.extractedSignals,
        new_state.missingSignals,
        new_state.failedSignals,
        new_state.errorMessage,
        new_state.retryCount,
        new_state.startedAt,
        new_state.completedAt,
        new_state.updatedAt,
        expected_version,
    )
    if row is None:
        raise ConcurrentModificationError(
            f"Extraction record for creative {new_state.creativeId} changed concurrently"
        )
    return _record_to_state(row)


async def record_extraction_result(
    user_id: str,
    creative_id: str,
    result: ExtractionResult,
) -> ExtractionState:
    """
    Persist the extractor's report for a pending creative.

    Raises:
        NotFoundError: If extraction was never requested.
        InvalidTransitionError: If the record is not pending.
        ConcurrentModificationError: If the record changed while applying.
    """
    async with _lock_for(user_id, creative_id):
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(get_extraction_state_query(), user_id, creative_id)
            if row is None:
                raise NotFoundError(f"No extraction record for creative {creative_id}")

            current = _record_to_state(row)
            updated = complete_extraction(current, result)
            saved = await _write_versioned(conn, updated, current.version)

    logger.info(
        "Extraction for creative %s is %s (missing: %s)",
        creative_id,
        saved.status.value,
        ', '.join(saved.missingSignals) or 'none',
    )
    return saved


async def request_retry(user_id: str, creative_id: str) -> ExtractionState:
    """
    Retry a failed extraction.

    Same-creative calls are serialized in-process and the write only lands
    if the stored version is the one that was read, so the retry counter can
    never be incremented twice from one observed value.

    Raises:
        NotFoundError: If extraction was never requested.
        InvalidTransitionError: If the record is not failed.
        RetryLimitExceededError: If no retries remain.
        ConcurrentModificationError: If another writer got there first.
    """
    async with _lock_for(user_id, creative_id):
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(get_extraction_state_query(), user_id, creative_id)
            if row is None:
                raise NotFoundError(f"No extraction record for creative {creative_id}")

            current = _record_to_state(row)
            try:
                updated = retry_extraction(current)
            except RetryLimitExceededError:
                logger.warning(
                    "Extraction retry limit reached for creative %s (%d/%d)",
                    creative_id,
                    current.retryCount,
                    current.maxRetries,
                )
                raise
            saved = await _write_versioned(conn, updated, current.version)

    logger.info(
        "Extraction retry %d/%d queued for creative %s",
        saved.retryCount,
        saved.maxRetries,
        creative_id,
    )
    return saved
