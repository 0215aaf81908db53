"""
Narrative subsystem: structured checklist, LLM prefill and diagnosis.

Users (or an LLM prefill they then review) describe what exists in a
creative and where. The system decides what to test next. Only observable
facts are recorded; nothing here judges quality or appeal.

The LLM output record is the one place where data crosses into this
subsystem from an untrusted producer. It is validated against an explicit
allow-list: any extra key, forbidden term, missing field or out-of-range
value is a hard failure listing every violation. Nothing is stripped or
repaired.

Confidence rules:
- Not user-confirmed: low.
- User-confirmed: high with more than three findings, else medium.
- LLM-assisted and not confirmed: always low, with a warning finding.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from adgate.core.database import get_db_pool
from adgate.core.exceptions import PolicyViolationError
from adgate.models.enums import (
    AdLpMatch,
    ConfidenceLevel,
    NarrativeGap,
    OfferTiming,
    ValueTiming,
)
from adgate.models.schemas import NarrativeChecklist, NarrativeDiagnostic
from adgate.services.policy import check_forbidden_terms, has_forbidden_terms
from adgate.sql.narrative_queries import get_checklist_query, get_checklist_upsert_query


logger = logging.getLogger(__name__)


# =============================================================================
# LLM Output Contract
# =============================================================================

ALLOWED_LLM_OUTPUT_KEYS = (
    'ctaPresent',
    'ctaHasActionVerb',
    'ctaHasOutcome',
    'ctaHasUrgency',
    'benefitStated',
    'benefitQuantified',
    'timeToBenefitStated',
    'valueTiming',
    'offerPresent',
    'offerTiming',
    'proofPresent',
    'pricingVisible',
    'guaranteeMentioned',
    'adLpMatch',
)

OPTIONAL_LLM_OUTPUT_KEYS = frozenset({'ctaHasUrgency'})

REQUIRED_LLM_OUTPUT_KEYS = tuple(
    key for key in ALLOWED_LLM_OUTPUT_KEYS if key not in OPTIONAL_LLM_OUTPUT_KEYS
)

ENUM_LLM_OUTPUT_KEYS = {
    'valueTiming': ValueTiming,
    'offerTiming': OfferTiming,
    'adLpMatch': AdLpMatch,
}

CHECKLIST_FACT_KEYS = ALLOWED_LLM_OUTPUT_KEYS

NARRATIVE_LLM_SYSTEM_PROMPT = """You are a factual extraction assistant for advertising creatives.

YOUR ONLY JOB: Extract OBSERVABLE FACTS about what exists and where it appears.

RULES:
1. Answer ONLY in JSON format matching the exact schema provided
2. Answer based on what you can OBSERVE, not what you infer
3. Do NOT judge quality, strength, or effectiveness
4. Do NOT interpret emotional appeal or persuasiveness
5. Return ONLY the fields in the schema - extra fields cause hard failure

FORBIDDEN TERMS (never use in output):
- "strong", "weak", "effective", "persuasive", "compelling"
- "hook_strength", "engagement_score", "emotion", "sentiment"
- Any quality judgment or prediction

IF UNCERTAIN: Use null or the default value, never guess."""

NARRATIVE_LLM_USER_PROMPT = """Extract the following OBSERVABLE FACTS from this creative:

SCHEMA (JSON only, no extra fields):
{{
  "ctaPresent": boolean,           // Is there a call-to-action?
  "ctaHasActionVerb": boolean,     // Does CTA contain Buy/Get/Start/Try/Learn/etc?
  "ctaHasOutcome": boolean,        // Does CTA state what user gets after clicking?
  "ctaHasUrgency": boolean,        // Does CTA contain "Now/Today/Limited/etc"?
  "benefitStated": boolean,        // Is any specific benefit mentioned?
  "benefitQuantified": boolean,    // Does benefit have numbers ("Save 50", "2x faster")?
  "timeToBenefitStated": boolean,  // Is time to achieve benefit stated ("In 30 days")?
  "valueTiming": "opening"|"middle"|"end"|"not_present",
  "offerPresent": boolean,         // Is there a specific offer?
  "offerTiming": "early"|"mid"|"late"|"not_shown",
  "proofPresent": boolean,         // Is there social proof or testimonial?
  "pricingVisible": boolean,       // Is pricing shown?
  "guaranteeMentioned": boolean,   // Is a guarantee or risk-reversal mentioned?
  "adLpMatch": "yes"|"no"|"unsure" // Does ad headline match LP headline? (if LP visible)
}}

CREATIVE CONTENT:
---
{creative_content}
---

Return ONLY the JSON object. No explanation, no extra text."""

AI_PREFILL_WARNING = 'AI-prefilled data not yet confirmed by user.'

_JSON_OBJECT = re.compile(r'\{.*\}', re.DOTALL)


def build_narrative_prompt(creative_content: str) -> Dict[str, str]:
    """Return the constrained system prompt and the user prompt for one creative."""
    return {
        'systemPrompt': NARRATIVE_LLM_SYSTEM_PROMPT,
        'userPrompt': NARRATIVE_LLM_USER_PROMPT.format(creative_content=creative_content),
    }


def _type_errors(key: str, value: Any) -> List[str]:
    enum_type = ENUM_LLM_OUTPUT_KEYS.get(key)
    if enum_type is not None:
        allowed = [member.value for member in enum_type]
        if value not in allowed:
            return [f'"{key}" must be one of {", ".join(allowed)} (got {value!r})']
        return []

    if key == 'ctaHasUrgency' and value is None:
        return []
    if not isinstance(value, bool):
        return [f'"{key}" must be a boolean (got {value!r})']
    return []


def validate_llm_output(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate an LLM-filled checklist record against the allow-list.

    Every violation is collected before raising so the producer can be
    fixed in one pass.

    Raises:
        PolicyViolationError: With one entry per extra key, forbidden term,
            missing required key or invalid value.

    Returns:
        The record, unchanged.
    """
    if not isinstance(record, dict):
        raise PolicyViolationError(
            'LLM output must be a JSON object',
            ['LLM output must be a JSON object'],
        )

    violations: List[str] = []
    allowed = set(ALLOWED_LLM_OUTPUT_KEYS)

    for key in record:
        if key not in allowed:
            violations.append(
                f'LLM output contains forbidden key: "{key}". '
                f'Only allowed keys: {", ".join(ALLOWED_LLM_OUTPUT_KEYS)}'
            )
        if has_forbidden_terms(str(key)):
            terms = sorted({v.term for v in check_forbidden_terms(str(key))})
            violations.append(f'Key "{key}" contains forbidden semantic terms: {", ".join(terms)}')

    for key, value in record.items():
        if isinstance(value, str) and has_forbidden_terms(value):
            violations.append(f'LLM output value for "{key}" contains forbidden semantic terms.')

    for key in REQUIRED_LLM_OUTPUT_KEYS:
        if key not in record or record[key] is None:
            violations.append(f'LLM output missing required field: {key}')

    for key, value in record.items():
        if key in allowed and not (key in REQUIRED_LLM_OUTPUT_KEYS and value is None):
            violations.extend(_type_errors(key, value))

    if violations:
        logger.warning("Rejected LLM output with %d violation(s)", len(violations))
        raise PolicyViolationError('LLM output failed validation', violations)

    return record


def parse_llm_output(raw_text: str) -> Dict[str, Any]:
    """
    Extract the JSON object from an LLM response and validate it.

    Surrounding prose and markdown code fences are tolerated; the first
    brace through the last brace is parsed.

    Raises:
        PolicyViolationError: If no JSON object is present, it does not
            parse, or validate_llm_output rejects it.
    """
    match = _JSON_OBJECT.search(raw_text or '')
    if match is None:
        raise PolicyViolationError(
            'LLM output does not contain valid JSON',
            ['LLM output does not contain valid JSON'],
        )

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise PolicyViolationError(
            'Failed to parse LLM JSON',
            [f'Failed to parse LLM JSON: {e}'],
        ) from e

    return validate_llm_output(parsed)


# =============================================================================
# Checklist Lifecycle
# =============================================================================

def checklist_from_llm_output(record: Dict[str, Any], now: Optional[datetime] = None) -> NarrativeChecklist:
    """Build an unconfirmed, LLM-assisted checklist from a validated record."""
    validated = validate_llm_output(record)
    facts = {key: value for key, value in validated.items() if value is not None}
    return NarrativeChecklist(
        **facts,
        userConfirmed=False,
        llmAssisted=True,
        lastUpdated=now or datetime.now(timezone.utc),
    )


def confirm_checklist(
    checklist: NarrativeChecklist,
    edits: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> NarrativeChecklist:
    """
    Apply user edits to the fact fields and mark the checklist confirmed.

    Only the fourteen fact fields are editable; llmAssisted is preserved so
    the record keeps showing that it started as a prefill.
    """
    updates = {
        key: value
        for key, value in (edits or {}).items()
        if key in CHECKLIST_FACT_KEYS
    }
    merged = checklist.model_dump(exclude={'confidenceCap'})
    merged.update(updates)
    merged['userConfirmed'] = True
    merged['lastUpdated'] = now or datetime.now(timezone.utc)
    return NarrativeChecklist.model_validate(merged)


def get_checklist_completion(checklist: Any) -> int:
    """
    Percent of the thirteen required fact fields that have a value.

    Accepts a NarrativeChecklist or a partial dict from the UI form.
    """
    values = checklist.model_dump() if isinstance(checklist, NarrativeChecklist) else dict(checklist or {})
    filled = sum(1 for key in REQUIRED_LLM_OUTPUT_KEYS if values.get(key) is not None)
    return round(filled / len(REQUIRED_LLM_OUTPUT_KEYS) * 100)


# =============================================================================
# Diagnosis
# =============================================================================

def diagnose_narrative(checklist: NarrativeChecklist) -> NarrativeDiagnostic:
    """
    Turn checklist facts into findings and test suggestions.

    Findings are factual ("Offer appears late in the creative."), never
    interpretive. primaryGap is the first gap found in the order value,
    offer, proof, CTA, pricing, guarantee, ad/LP alignment.
    """
    findings: List[str] = []
    suggestions: List[str] = []
    primary_gap = NarrativeGap.NONE

    def flag(gap: NarrativeGap) -> None:
        nonlocal primary_gap
        if primary_gap == NarrativeGap.NONE:
            primary_gap = gap

    # Value proposition
    if not checklist.benefitStated:
        findings.append('No specific benefit is stated.')
        suggestions.append('Add a clear benefit statement early in the creative.')
        flag(NarrativeGap.VALUE_TIMING)
    else:
        if not checklist.benefitQuantified:
            findings.append('Benefit is stated but not quantified.')
            suggestions.append(
                'Test adding specific numbers to the benefit (e.g., "Save 50%", "2x faster").'
            )
        if not checklist.timeToBenefitStated:
            findings.append('Time to achieve benefit is not stated.')
            suggestions.append(
                'Test adding timeframe (e.g., "Results in 30 days", "Instant access").'
            )
        if checklist.valueTiming != ValueTiming.OPENING:
            findings.append(f'Value proposition appears in {checklist.valueTiming.value} section.')
            suggestions.append('Test moving value proposition to opening (0-3s).')
            flag(NarrativeGap.VALUE_TIMING)

    # Offer
    if not checklist.offerPresent:
        findings.append('No specific offer is present.')
        suggestions.append('Add a clear offer with specific benefit.')
        flag(NarrativeGap.OFFER_TIMING)
    elif checklist.offerTiming in (OfferTiming.LATE, OfferTiming.NOT_SHOWN):
        where = 'not shown' if checklist.offerTiming == OfferTiming.NOT_SHOWN else 'late'
        findings.append(f'Offer appears {where} in the creative.')
        suggestions.append('Test introducing offer earlier.')
        flag(NarrativeGap.OFFER_TIMING)

    # Proof
    if not checklist.proofPresent:
        findings.append('No social proof or testimonial present.')
        suggestions.append('Add social proof (reviews, testimonials, results).')
        flag(NarrativeGap.MISSING_PROOF)

    # CTA
    if not checklist.ctaPresent:
        findings.append('No call-to-action present.')
        suggestions.append('Add explicit CTA with action verb + expected outcome.')
        flag(NarrativeGap.UNCLEAR_CTA)
    else:
        cta_issues = []
        if not checklist.ctaHasActionVerb:
            cta_issues.append('missing action verb')
        if not checklist.ctaHasOutcome:
            cta_issues.append('missing outcome')
        if cta_issues:
            findings.append(f"CTA is present but {' and '.join(cta_issues)}.")
            if not checklist.ctaHasActionVerb:
                suggestions.append('Add action verb to CTA (Buy, Get, Start, Try, etc.).')
            if not checklist.ctaHasOutcome:
                suggestions.append('Add outcome to CTA (what user gets after clicking).')
            flag(NarrativeGap.UNCLEAR_CTA)

    # Pricing
    if not checklist.pricingVisible:
        findings.append('Pricing is not visible in the creative.')
        suggestions.append('Test showing pricing to qualify leads earlier.')
        flag(NarrativeGap.NO_PRICING)

    # Guarantee
    if not checklist.guaranteeMentioned:
        findings.append('No guarantee or risk-reversal mentioned.')
        suggestions.append('Add guarantee to reduce purchase friction.')
        flag(NarrativeGap.MISSING_GUARANTEE)

    # Ad / landing page alignment
    if checklist.adLpMatch == AdLpMatch.NO:
        findings.append('Ad promise does NOT match landing page headline.')
        suggestions.append('Align ad copy with landing page headline.')
        flag(NarrativeGap.AD_LP_MISMATCH)
    elif checklist.adLpMatch == AdLpMatch.UNSURE:
        findings.append('Ad/landing page alignment is uncertain.')
        suggestions.append('Review landing page to ensure message continuity.')

    confidence = ConfidenceLevel.LOW
    if checklist.userConfirmed:
        confidence = ConfidenceLevel.HIGH if len(findings) > 3 else ConfidenceLevel.MEDIUM

    if checklist.llmAssisted and not checklist.userConfirmed:
        confidence = ConfidenceLevel.LOW
        findings.insert(0, AI_PREFILL_WARNING)

    return NarrativeDiagnostic(
        findings=findings,
        suggestions=suggestions,
        primaryGap=primary_gap,
        confidence=confidence,
    )


# =============================================================================
# Persistence
# =============================================================================

def _record_to_checklist(record) -> NarrativeChecklist:
    payload = record['checklist']
    if isinstance(payload, str):
        payload = json.loads(payload)
    payload.pop('confidenceCap', None)
    return NarrativeChecklist.model_validate(payload)


async def save_checklist(
    user_id: str,
    creative_id: str,
    checklist: NarrativeChecklist,
) -> NarrativeChecklist:
    """Upsert the checklist for a creative (one per user + creative)."""
    updated_at = checklist.lastUpdated or datetime.now(timezone.utc)
    payload = checklist.model_dump(mode='json', exclude={'confidenceCap'})

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            get_checklist_upsert_query(),
            user_id,
            creative_id,
            json.dumps(payload),
            updated_at,
        )

    logger.info(
        "Saved narrative checklist for creative %s (confirmed=%s, llm=%s)",
        creative_id,
        checklist.userConfirmed,
        checklist.llmAssisted,
    )
    return _record_to_checklist(row) if row else checklist


async def get_checklist(user_id: str, creative_id: str) -> Optional[NarrativeChecklist]:
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(get_checklist_query(), user_id, creative_id)
    return _record_to_checklist(row) if row else None
