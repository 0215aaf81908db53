"""
Recommendation lifecycle.

Specificity contract (all checked in one pass, every failure reported):
- whatToChange: 10+ characters, no vague phrase ("stronger", "better", ...)
- targetRange: contains at least one digit
- observableGap: 10+ characters
- metricToWatch: names one of CTR, CPA, ROAS, CVR, CPM, thumbstop,
  hook_rate, view_rate
- runDurationDays: integer in [3, 30]
- confidence: high, medium or low
- sourceSystem / recommendationType: present, known, and the type belongs
  to the source system

Status machine:
    pending --follow--> followed --record outcome (once)--> followed + verdict
    pending --ignore--> ignored

Invalid drafts are never persisted. Persisted transitions are conditional
UPDATEs, so a transition that is not allowed from the stored status (or
that lost a race) changes nothing and raises.
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from adgate.core.config import Settings
from adgate.core.database import get_db_pool
from adgate.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    OutcomeAlreadyMeasuredError,
    PolicyViolationError,
)
from adgate.models.enums import (
    ConfidenceLevel,
    MismatchSeverity,
    OutcomeVerdict,
    RecommendationStatus,
    RecommendationType,
    SourceSystem,
)
from adgate.models.schemas import (
    AspectRatioMismatch,
    MetricsSnapshot,
    OutcomeMeasurement,
    Recommendation,
    RecommendationDraft,
    RecommendationSpec,
    RecommendationValidation,
)
from adgate.services.confidence import clamp
from adgate.services.meta_learning import measure_outcome
from adgate.sql.recommendation_queries import (
    get_mark_followed_query,
    get_mark_ignored_query,
    get_recommendation_insert_query,
    get_recommendation_query,
    get_record_outcome_query,
    get_user_recommendations_query,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Vocabulary
# =============================================================================

TYPES_BY_SYSTEM = {
    SourceSystem.STRUCTURE: (
        RecommendationType.MOTION_TIMING,
        RecommendationType.CUT_DENSITY,
        RecommendationType.TEXT_APPEARANCE,
        RecommendationType.ASPECT_RATIO,
        RecommendationType.OPENING_HOOK,
        RecommendationType.AUDIO_LEVELS,
    ),
    SourceSystem.NARRATIVE: (
        RecommendationType.VALUE_TIMING,
        RecommendationType.OFFER_TIMING,
        RecommendationType.CTA_CLARITY,
        RecommendationType.PROOF_ADDITION,
        RecommendationType.PRICING_VISIBILITY,
        RecommendationType.GUARANTEE_ADDITION,
        RecommendationType.AD_LP_ALIGNMENT,
    ),
    SourceSystem.CONVERSION: (
        RecommendationType.LANDING_PAGE,
        RecommendationType.CHECKOUT_FLOW,
        RecommendationType.OFFER_STRENGTH,
        RecommendationType.TRACKING_FIX,
        RecommendationType.AUDIENCE_REFRESH,
        RecommendationType.BUDGET_ADJUSTMENT,
    ),
}

SYSTEM_BY_TYPE = {
    rec_type: system
    for system, rec_types in TYPES_BY_SYSTEM.items()
    for rec_type in rec_types
}

VAGUE_PHRASES = {
    'stronger': 'specify what change makes it stronger',
    'better': 'specify what aspect to change',
    'improve': 'specify what metric and by how much',
    'optimize': 'specify what to optimize and target',
    'enhance': 'specify what enhancement',
    'more engaging': 'specify what engagement metric',
    'more compelling': 'specify what makes it compelling',
}

METRIC_VOCABULARY = ('CTR', 'CPA', 'ROAS', 'CVR', 'CPM', 'thumbstop', 'hook_rate', 'view_rate')

VALID_CONFIDENCE = (ConfidenceLevel.HIGH, ConfidenceLevel.MEDIUM, ConfidenceLevel.LOW)

MIN_TEXT_LENGTH = 10
MIN_RUN_DAYS = 3
MAX_RUN_DAYS = 30

_DIGIT = re.compile(r'\d')


# =============================================================================
# Validation
# =============================================================================

def _vague_phrase_errors(text: str) -> List[str]:
    lowered = text.lower()
    return [
        f'"{phrase}" is too vague - {advice}'
        for phrase, advice in VAGUE_PHRASES.items()
        if phrase in lowered
    ]


def _run_duration(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def validate_recommendation(
    draft: Union[RecommendationDraft, Mapping[str, Any]],
) -> RecommendationValidation:
    """
    Check a draft against the specificity contract.

    Args:
        draft: A RecommendationDraft or a plain dict with the same keys.

    Returns:
        RecommendationValidation listing every violated constraint.
    """
    if not isinstance(draft, RecommendationDraft):
        draft = RecommendationDraft.model_validate(dict(draft))

    errors: List[str] = []

    what = (draft.whatToChange or '').strip()
    if len(what) < MIN_TEXT_LENGTH:
        errors.append(f'whatToChange must be specific ({MIN_TEXT_LENGTH}+ characters)')
    else:
        errors.extend(_vague_phrase_errors(what))

    if not draft.targetRange or not _DIGIT.search(draft.targetRange):
        errors.append('targetRange must include a number or range (e.g., "0-3s", "20%")')

    if len((draft.observableGap or '').strip()) < MIN_TEXT_LENGTH:
        errors.append('observableGap must cite a specific measurement')

    metric = (draft.metricToWatch or '').upper()
    if not any(name.upper() in metric for name in METRIC_VOCABULARY):
        errors.append(f"metricToWatch must include one of: {', '.join(METRIC_VOCABULARY)}")

    days = _run_duration(draft.runDurationDays)
    if days is None or days < MIN_RUN_DAYS or days > MAX_RUN_DAYS:
        errors.append(f'runDurationDays must be between {MIN_RUN_DAYS} and {MAX_RUN_DAYS}')

    if draft.confidence not in {level.value for level in VALID_CONFIDENCE}:
        errors.append('confidence must be high, medium, or low')

    system = None
    if not draft.sourceSystem:
        errors.append('sourceSystem is required')
    elif draft.sourceSystem not in {s.value for s in SourceSystem}:
        errors.append(f"sourceSystem must be one of: {', '.join(s.value for s in SourceSystem)}")
    else:
        system = SourceSystem(draft.sourceSystem)

    if not draft.recommendationType:
        errors.append('recommendationType is required')
    elif draft.recommendationType not in {t.value for t in RecommendationType}:
        errors.append(f'recommendationType "{draft.recommendationType}" is not a known type')
    elif system is not None and SYSTEM_BY_TYPE[RecommendationType(draft.recommendationType)] != system:
        errors.append(
            f'recommendationType "{draft.recommendationType}" does not belong to '
            f'sourceSystem "{system.value}"'
        )

    return RecommendationValidation(valid=not errors, errors=errors)


def require_valid(draft: Union[RecommendationDraft, Mapping[str, Any]]) -> RecommendationSpec:
    """
    Validate and convert a draft into a typed RecommendationSpec.

    Raises:
        PolicyViolationError: With every violated constraint.
    """
    if not isinstance(draft, RecommendationDraft):
        draft = RecommendationDraft.model_validate(dict(draft))

    validation = validate_recommendation(draft)
    if not validation.valid:
        logger.warning(
            "Rejected %s recommendation: %s",
            draft.recommendationType or 'untyped',
            '; '.join(validation.errors),
        )
        raise PolicyViolationError('Recommendation is not specific enough', validation.errors)

    return RecommendationSpec(
        sourceSystem=draft.sourceSystem,
        recommendationType=draft.recommendationType,
        recommendationText=draft.recommendationText,
        whatToChange=draft.whatToChange.strip(),
        targetRange=draft.targetRange.strip(),
        observableGap=draft.observableGap.strip(),
        metricToWatch=draft.metricToWatch.strip(),
        runDurationDays=_run_duration(draft.runDurationDays),
        confidence=draft.confidence,
    )


# =============================================================================
# Templates
# =============================================================================

RECOMMENDATION_TEMPLATES: Dict[RecommendationType, Dict[str, Any]] = {
    # Structure
    RecommendationType.MOTION_TIMING: {
        'whatToChange': 'Add motion in the first 0.5 seconds',
        'targetRange': '0-0.5s (currently {current}s)',
        'observableGap': 'Motion currently starts at {current}s',
        'metricToWatch': 'thumbstop, hook_rate',
        'runDurationDays': 7,
    },
    RecommendationType.CUT_DENSITY: {
        'whatToChange': 'Add 2-3 scene cuts in the first 3 seconds',
        'targetRange': '{target} cuts in first 3s (currently {current})',
        'observableGap': 'First 3 seconds have {current} cuts',
        'metricToWatch': 'thumbstop, view_rate',
        'runDurationDays': 7,
    },
    RecommendationType.TEXT_APPEARANCE: {
        'whatToChange': 'Show key text within first 1 second',
        'targetRange': '0-1s (currently {current}s)',
        'observableGap': 'Text first appears at {current}s',
        'metricToWatch': 'CTR, thumbstop',
        'runDurationDays': 7,
    },
    RecommendationType.ASPECT_RATIO: {
        'whatToChange': 'Create a {target} version for {placement} placement',
        'targetRange': '{target} aspect ratio for {placement}',
        'observableGap': 'Using {current} aspect ratio in {placement}',
        'metricToWatch': 'CTR, CPM',
        'runDurationDays': 7,
    },
    RecommendationType.OPENING_HOOK: {
        'whatToChange': 'Open with motion and on-screen text in the first frame',
        'targetRange': 'Motion and text within 0-0.5s',
        'observableGap': 'Opening holds a static frame for {current}s',
        'metricToWatch': 'thumbstop, hook_rate',
        'runDurationDays': 7,
    },
    RecommendationType.AUDIO_LEVELS: {
        'whatToChange': 'Normalize audio to broadcast loudness',
        'targetRange': '-14 to -10 LUFS (currently {current})',
        'observableGap': 'Audio levels are {current} LUFS',
        'metricToWatch': 'view_rate, thumbstop',
        'runDurationDays': 7,
    },
    # Narrative
    RecommendationType.VALUE_TIMING: {
        'whatToChange': 'Move value proposition to the opening 0-3s',
        'targetRange': '0-3s (currently in {current} segment)',
        'observableGap': 'Value proposition appears in {current} segment',
        'metricToWatch': 'CTR, CVR',
        'runDurationDays': 7,
    },
    RecommendationType.OFFER_TIMING: {
        'whatToChange': 'Introduce the offer within the first 5 seconds',
        'targetRange': 'Before 5s (currently at {current}s)',
        'observableGap': 'Offer appears at {current}s',
        'metricToWatch': 'CVR, CPA',
        'runDurationDays': 7,
    },
    RecommendationType.CTA_CLARITY: {
        'whatToChange': 'Change CTA to an action verb plus the outcome, e.g. "Get your free guide now"',
        'targetRange': '1 action verb + 1 stated outcome in the CTA',
        'observableGap': 'Current CTA "{current}" lacks a stated outcome',
        'metricToWatch': 'CTR, CVR',
        'runDurationDays': 7,
    },
    RecommendationType.PROOF_ADDITION: {
        'whatToChange': 'Add a customer testimonial or review on screen',
        'targetRange': '1-2 {type} proof points before 10s',
        'observableGap': 'No social proof present in creative',
        'metricToWatch': 'CVR, CPA',
        'runDurationDays': 10,
    },
    RecommendationType.PRICING_VISIBILITY: {
        'whatToChange': 'Display pricing on screen to qualify leads earlier',
        'targetRange': 'Show price before 10s',
        'observableGap': 'Price not visible in creative',
        'metricToWatch': 'CVR, CPA',
        'runDurationDays': 10,
    },
    RecommendationType.GUARANTEE_ADDITION: {
        'whatToChange': 'Add a money-back guarantee to reduce purchase friction',
        'targetRange': 'Add {type} guarantee (e.g., 30-day)',
        'observableGap': 'No risk-reversal or guarantee mentioned',
        'metricToWatch': 'CVR, CPA',
        'runDurationDays': 10,
    },
    RecommendationType.AD_LP_ALIGNMENT: {
        'whatToChange': 'Update the landing page headline to match the ad promise',
        'targetRange': '100% headline match between ad and landing page',
        'observableGap': 'Ad says "{ad}" but landing page says "{lp}"',
        'metricToWatch': 'CVR, bounce rate',
        'runDurationDays': 14,
    },
    # Conversion
    RecommendationType.LANDING_PAGE: {
        'whatToChange': 'Reduce landing page load time to under 3 seconds',
        'targetRange': 'Load time <3s (currently {current}s)',
        'observableGap': 'Current load time is {current}s',
        'metricToWatch': 'CVR (page view to conversion)',
        'runDurationDays': 14,
    },
    RecommendationType.CHECKOUT_FLOW: {
        'whatToChange': 'Cut checkout down to {target} steps',
        'targetRange': 'Reduce to {target} steps (currently {current})',
        'observableGap': 'Current checkout has {current} steps',
        'metricToWatch': 'CVR (checkout to purchase), CPA',
        'runDurationDays': 14,
    },
    RecommendationType.OFFER_STRENGTH: {
        'whatToChange': 'Test adding a 20% discount for first purchase',
        'targetRange': '15-20% first-purchase discount',
        'observableGap': 'No discount or limited-time offer present',
        'metricToWatch': 'CVR, CPA, ROAS',
        'runDurationDays': 14,
    },
    RecommendationType.TRACKING_FIX: {
        'whatToChange': 'Check that the {event} event fires on the confirmation page',
        'targetRange': '100% of {event} events received (currently {percent}% decline)',
        'observableGap': 'Conversion drop detected ({percent}% decline)',
        'metricToWatch': 'CPA, conversion count',
        'runDurationDays': 7,
    },
    RecommendationType.AUDIENCE_REFRESH: {
        'whatToChange': 'Refresh the 1% lookalike audience from recent purchasers',
        'targetRange': 'Frequency below 2.5 (currently {current})',
        'observableGap': 'Frequency at {current} while CTR declines',
        'metricToWatch': 'CTR, CPM, frequency',
        'runDurationDays': 10,
    },
    RecommendationType.BUDGET_ADJUSTMENT: {
        'whatToChange': '{action} daily budget by {percent}% to stabilize CPA',
        'targetRange': '{action} budget by {percent}%',
        'observableGap': 'CPA sits {percent}% above baseline',
        'metricToWatch': 'CPA, ROAS',
        'runDurationDays': 7,
    },
}

_PLACEHOLDER = re.compile(r'\{(\w+)\}')


def _fill(text: str, values: Mapping[str, Any]) -> str:
    return _PLACEHOLDER.sub(
        lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0),
        text,
    )


def build_recommendation(
    rec_type: RecommendationType,
    values: Mapping[str, Any],
    confidence: ConfidenceLevel,
    source_creative_id: Optional[str] = None,
) -> RecommendationDraft:
    """
    Fill a template's placeholders and return an unvalidated draft.

    The source system is implied by the type. Placeholders without a value
    are left as-is, which the validator will usually reject.
    """
    rec_type = RecommendationType(rec_type)
    template = RECOMMENDATION_TEMPLATES[rec_type]
    what = _fill(template['whatToChange'], values)
    return RecommendationDraft(
        sourceSystem=SYSTEM_BY_TYPE[rec_type].value,
        recommendationType=rec_type.value,
        recommendationText=what,
        whatToChange=what,
        targetRange=_fill(template['targetRange'], values),
        observableGap=_fill(template['observableGap'], values),
        metricToWatch=template['metricToWatch'],
        runDurationDays=template['runDurationDays'],
        confidence=ConfidenceLevel(confidence).value,
        sourceCreativeId=source_creative_id,
    )


def build_aspect_ratio_recommendation(
    fit: AspectRatioMismatch,
    confidence: ConfidenceLevel,
    source_creative_id: Optional[str] = None,
) -> Optional[RecommendationDraft]:
    """
    Turn a placement fit into an aspect_ratio draft.

    Returns None when the ratio is already optimal. An accepted but
    non-optimal ratio is capped at low confidence.
    """
    if fit.severity == MismatchSeverity.NONE:
        return None
    confidence = ConfidenceLevel(confidence)
    if fit.severity == MismatchSeverity.WARNING:
        confidence = clamp(confidence, ConfidenceLevel.LOW)
    return build_recommendation(
        RecommendationType.ASPECT_RATIO,
        {
            'placement': fit.placement.value,
            'target': fit.optimal.value,
            'current': fit.aspectRatio.value,
        },
        confidence,
        source_creative_id,
    )


def list_templates() -> List[Dict[str, Any]]:
    return [
        {'recommendationType': rec_type.value, 'sourceSystem': SYSTEM_BY_TYPE[rec_type].value, **template}
        for rec_type, template in RECOMMENDATION_TEMPLATES.items()
    ]


# =============================================================================
# Lifecycle Transitions
# =============================================================================

def mark_followed(
    recommendation: Recommendation,
    linked_creative_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Recommendation:
    if recommendation.status != RecommendationStatus.PENDING:
        raise InvalidTransitionError(
            f"Cannot follow recommendation {recommendation.id}: status is {recommendation.status.value}"
        )
    at = now or datetime.now(timezone.utc)
    return recommendation.model_copy(update={
        'status': RecommendationStatus.FOLLOWED,
        'followedAt': at,
        'linkedCreativeId': linked_creative_id,
        'updatedAt': at,
    })


def mark_ignored(recommendation: Recommendation, now: Optional[datetime] = None) -> Recommendation:
    if recommendation.status != RecommendationStatus.PENDING:
        raise InvalidTransitionError(
            f"Cannot ignore recommendation {recommendation.id}: status is {recommendation.status.value}"
        )
    at = now or datetime.now(timezone.utc)
    return recommendation.model_copy(update={
        'status': RecommendationStatus.IGNORED,
        'ignoredAt': at,
        'updatedAt': at,
    })


def _check_measurable(recommendation: Recommendation) -> None:
    if recommendation.status != RecommendationStatus.FOLLOWED:
        raise InvalidTransitionError(
            f"Cannot measure recommendation {recommendation.id}: status is "
            f"{recommendation.status.value}, outcomes are only recorded for followed recommendations"
        )
    if recommendation.outcomeVerdict is not None:
        raise OutcomeAlreadyMeasuredError(
            f"Outcome for recommendation {recommendation.id} was already measured "
            f"({recommendation.outcomeVerdict.value})"
        )


def record_outcome(recommendation: Recommendation, measurement: OutcomeMeasurement) -> Recommendation:
    """
    Attach a measured outcome to a followed recommendation.

    Raises:
        InvalidTransitionError: If the recommendation was not followed.
        OutcomeAlreadyMeasuredError: If an outcome is already recorded.
    """
    _check_measurable(recommendation)
    return recommendation.model_copy(update={
        'outcomeVerdict': measurement.verdict,
        'outcomeCpaChange': measurement.cpaChange,
        'outcomeRoasChange': measurement.roasChange,
        'outcomeConversions': measurement.conversions,
        'outcomeConfidence': measurement.confidence,
        'outcomeMeasuredAt': measurement.measuredAt,
        'updatedAt': measurement.measuredAt,
    })


# =============================================================================
# Persistence
# =============================================================================

def _record_to_recommendation(record) -> Recommendation:
    verdict = record['outcome_verdict']
    outcome_confidence = record['outcome_confidence']
    return Recommendation(
        id=str(record['id']),
        userId=record['user_id'],
        sourceSystem=SourceSystem(record['source_system']),
        sourceCreativeId=record['source_creative_id'],
        recommendationType=RecommendationType(record['recommendation_type']),
        recommendationText=record['recommendation_text'],
        whatToChange=record['what_to_change'],
        targetRange=record['target_range'],
        observableGap=record['observable_gap'],
        metricToWatch=record['metric_to_watch'],
        runDurationDays=record['run_duration_days'],
        confidence=ConfidenceLevel(record['confidence']),
        status=RecommendationStatus(record['status']),
        followedAt=record['followed_at'],
        ignoredAt=record['ignored_at'],
        linkedCreativeId=record['linked_creative_id'],
        outcomeVerdict=OutcomeVerdict(verdict) if verdict else None,
        outcomeCpaChange=record['outcome_cpa_change'],
        outcomeRoasChange=record['outcome_roas_change'],
        outcomeConversions=record['outcome_conversions'],
        outcomeConfidence=ConfidenceLevel(outcome_confidence) if outcome_confidence else None,
        outcomeMeasuredAt=record['outcome_measured_at'],
        createdAt=record['created_at'],
        updatedAt=record['updated_at'],
    )


async def get_recommendation(recommendation_id: str) -> Recommendation:
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(get_recommendation_query(), recommendation_id)
    if row is None:
        raise NotFoundError(f"Recommendation {recommendation_id} not found")
    return _record_to_recommendation(row)


async def list_user_recommendations(user_id: str) -> List[Recommendation]:
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(get_user_recommendations_query(), user_id)
    return [_record_to_recommendation(row) for row in rows]


async def create_recommendation(
    user_id: str,
    draft: Union[RecommendationDraft, Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> Recommendation:
    """
    Validate and store a recommendation in pending status.

    Raises:
        PolicyViolationError: If the draft fails validation. Nothing is
            written in that case.
    """
    if not isinstance(draft, RecommendationDraft):
        draft = RecommendationDraft.model_validate(dict(draft))
    spec = require_valid(draft)
    created_at = now or datetime.now(timezone.utc)
    recommendation_id = str(uuid.uuid4())

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            get_recommendation_insert_query(),
            recommendation_id,
            user_id,
            spec.sourceSystem.value,
            draft.sourceCreativeId,
            spec.recommendationType.value,
            spec.recommendationText,
            spec.whatToChange,
            spec.targetRange,
            spec.observableGap,
            spec.metricToWatch,
            spec.runDurationDays,
            spec.confidence.value,
            created_at,
        )

    logger.info(
        "Created %s recommendation %s for user %s",
        spec.recommendationType.value,
        recommendation_id,
        user_id,
    )
    if row is not None:
        return _record_to_recommendation(row)
    return Recommendation(
        **spec.model_dump(),
        id=recommendation_id,
        userId=user_id,
        sourceCreativeId=draft.sourceCreativeId,
        createdAt=created_at,
        updatedAt=created_at,
    )


async def _explain_failed_transition(conn, recommendation_id: str, action: str) -> None:
    row = await conn.fetchrow(get_recommendation_query(), recommendation_id)
    if row is None:
        raise NotFoundError(f"Recommendation {recommendation_id} not found")
    current = _record_to_recommendation(row)
    if action == 'measure':
        _check_measurable(current)
    raise InvalidTransitionError(
        f"Cannot {action} recommendation {recommendation_id}: status is {current.status.value}"
    )


async def follow_recommendation(
    recommendation_id: str,
    linked_creative_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Recommendation:
    """
    pending -> followed.

    Raises:
        NotFoundError: Unknown id.
        InvalidTransitionError: Not pending.
    """
    at = now or datetime.now(timezone.utc)
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(get_mark_followed_query(), recommendation_id, linked_creative_id, at)
        if row is None:
            await _explain_failed_transition(conn, recommendation_id, 'follow')

    logger.info("Recommendation %s followed (linked creative: %s)", recommendation_id, linked_creative_id)
    return _record_to_recommendation(row)


async def ignore_recommendation(recommendation_id: str, now: Optional[datetime] = None) -> Recommendation:
    """
    pending -> ignored.

    Raises:
        NotFoundError: Unknown id.
        InvalidTransitionError: Not pending.
    """
    at = now or datetime.now(timezone.utc)
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(get_mark_ignored_query(), recommendation_id, at)
        if row is None:
            await _explain_failed_transition(conn, recommendation_id, 'ignore')

    logger.info("Recommendation %s ignored", recommendation_id)
    return _record_to_recommendation(row)


async def record_recommendation_outcome(
    recommendation_id: str,
    before: MetricsSnapshot,
    after: MetricsSnapshot,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Recommendation:
    """
    Measure and store the outcome of a followed recommendation, once.

    Raises:
        NotFoundError: Unknown id.
        InvalidTransitionError: Not followed.
        OutcomeAlreadyMeasuredError: Outcome already recorded, including
            when a concurrent measurement landed first.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(get_recommendation_query(), recommendation_id)
        if row is None:
            raise NotFoundError(f"Recommendation {recommendation_id} not found")

        current = _record_to_recommendation(row)
        _check_measurable(current)
        measurement = measure_outcome(before, after, current.runDurationDays, now=now, settings=settings)

        updated = await conn.fetchrow(
            get_record_outcome_query(),
            recommendation_id,
            measurement.verdict.value,
            measurement.cpaChange,
            measurement.roasChange,
            measurement.conversions,
            measurement.confidence.value,
            measurement.measuredAt,
        )
        if updated is None:
            await _explain_failed_transition(conn, recommendation_id, 'measure')

    logger.info(
        "Recommendation %s outcome: %s (CPA change %s, %d conversions)",
        recommendation_id,
        measurement.verdict.value,
        f"{measurement.cpaChange:.1f}%" if measurement.cpaChange is not None else 'n/a',
        measurement.conversions,
    )
    return _record_to_recommendation(updated)
