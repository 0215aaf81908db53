"""
Tests for the narrative subsystem.

Test Classes:
- TestLlmOutputValidation: allow-list, required fields, value checks
- TestLlmOutputParsing: JSON extraction from raw responses
- TestChecklistLifecycle: prefill, confirmation, completion
- TestDiagnosis: findings, primary gap, confidence rules
- TestChecklistPersistence: upsert and lookup through a mocked pool
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from adgate.core.exceptions import PolicyViolationError
from adgate.models.enums import (
    AdLpMatch,
    ConfidenceLevel,
    NarrativeGap,
    OfferTiming,
    ValueTiming,
)
from adgate.models.schemas import NarrativeChecklist
from adgate.services.narrative import (
    AI_PREFILL_WARNING,
    build_narrative_prompt,
    checklist_from_llm_output,
    confirm_checklist,
    diagnose_narrative,
    get_checklist,
    get_checklist_completion,
    parse_llm_output,
    save_checklist,
    validate_llm_output,
)


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _llm_record(**overrides) -> dict:
    record = {
        'ctaPresent': True,
        'ctaHasActionVerb': True,
        'ctaHasOutcome': False,
        'ctaHasUrgency': False,
        'benefitStated': True,
        'benefitQuantified': False,
        'timeToBenefitStated': False,
        'valueTiming': 'middle',
        'offerPresent': True,
        'offerTiming': 'late',
        'proofPresent': False,
        'pricingVisible': False,
        'guaranteeMentioned': False,
        'adLpMatch': 'unsure',
    }
    record.update(overrides)
    return record


def _complete_checklist(**overrides) -> NarrativeChecklist:
    fields = {
        'ctaPresent': True,
        'ctaHasActionVerb': True,
        'ctaHasOutcome': True,
        'benefitStated': True,
        'benefitQuantified': True,
        'timeToBenefitStated': True,
        'valueTiming': ValueTiming.OPENING,
        'offerPresent': True,
        'offerTiming': OfferTiming.EARLY,
        'proofPresent': True,
        'pricingVisible': True,
        'guaranteeMentioned': True,
        'adLpMatch': AdLpMatch.YES,
        'userConfirmed': True,
    }
    fields.update(overrides)
    return NarrativeChecklist(**fields)


class TestLlmOutputValidation:
    """Every violation is reported and nothing is repaired."""

    def test_valid_record_is_returned_unchanged(self) -> None:
        record = _llm_record()
        assert validate_llm_output(record) is record

    def test_urgency_may_be_null(self) -> None:
        validate_llm_output(_llm_record(ctaHasUrgency=None))

    def test_extra_key_is_rejected(self) -> None:
        with pytest.raises(PolicyViolationError) as exc_info:
            validate_llm_output(_llm_record(hook_strength=0.9))

        violations = exc_info.value.violations
        assert violations[0].startswith('LLM output contains forbidden key: "hook_strength".')
        assert violations[1] == 'Key "hook_strength" contains forbidden semantic terms: hook_strength'

    def test_all_violations_are_collected(self) -> None:
        record = _llm_record(valueTiming='start', pricingVisible='yes')
        del record['proofPresent']

        with pytest.raises(PolicyViolationError) as exc_info:
            validate_llm_output(record)

        violations = exc_info.value.violations
        assert 'LLM output missing required field: proofPresent' in violations
        assert '"valueTiming" must be one of opening, middle, end, not_present (got \'start\')' in violations
        assert '"pricingVisible" must be a boolean (got \'yes\')' in violations
        assert len(violations) == 3

    def test_forbidden_value_text(self) -> None:
        with pytest.raises(PolicyViolationError) as exc_info:
            validate_llm_output(_llm_record(adLpMatch='yes, strong emotion'))
        assert any('contains forbidden semantic terms' in v for v in exc_info.value.violations)

    def test_non_object_is_rejected(self) -> None:
        with pytest.raises(PolicyViolationError) as exc_info:
            validate_llm_output(['ctaPresent'])
        assert exc_info.value.violations == ['LLM output must be a JSON object']


class TestLlmOutputParsing:

    def test_prose_and_fences_are_tolerated(self) -> None:
        raw = "Here is the extraction:\n```json\n" + json.dumps(_llm_record()) + "\n```\nDone."
        assert parse_llm_output(raw)['offerTiming'] == 'late'

    def test_no_json_object(self) -> None:
        with pytest.raises(PolicyViolationError) as exc_info:
            parse_llm_output('I could not see the creative.')
        assert exc_info.value.violations == ['LLM output does not contain valid JSON']

    def test_malformed_json(self) -> None:
        with pytest.raises(PolicyViolationError) as exc_info:
            parse_llm_output('{ctaPresent: true}')
        assert exc_info.value.violations[0].startswith('Failed to parse LLM JSON')

    def test_prompt_embeds_creative_content(self) -> None:
        prompt = build_narrative_prompt('Headline: Save 50% today')
        assert 'Headline: Save 50% today' in prompt['userPrompt']
        assert 'FORBIDDEN TERMS' in prompt['systemPrompt']


class TestChecklistLifecycle:

    def test_prefill_is_capped_low(self) -> None:
        checklist = checklist_from_llm_output(_llm_record(), now=T0)
        assert checklist.llmAssisted is True
        assert checklist.userConfirmed is False
        assert checklist.confidenceCap == ConfidenceLevel.LOW
        assert checklist.offerTiming == OfferTiming.LATE

    def test_confirmation_applies_fact_edits_only(self) -> None:
        prefill = checklist_from_llm_output(_llm_record(), now=T0)
        confirmed = confirm_checklist(
            prefill,
            edits={'proofPresent': True, 'llmAssisted': False, 'hook_strength': 1},
            now=T0,
        )
        assert confirmed.proofPresent is True
        assert confirmed.userConfirmed is True
        assert confirmed.llmAssisted is True
        assert confirmed.confidenceCap == ConfidenceLevel.HIGH

    def test_completion_counts_required_fields(self) -> None:
        assert get_checklist_completion({}) == 0
        assert get_checklist_completion({'ctaPresent': True}) == 8
        assert get_checklist_completion({'ctaHasUrgency': True}) == 0
        assert get_checklist_completion(_complete_checklist()) == 100


class TestDiagnosis:

    def test_clean_confirmed_checklist(self) -> None:
        diagnostic = diagnose_narrative(_complete_checklist())
        assert diagnostic.findings == []
        assert diagnostic.primaryGap == NarrativeGap.NONE
        assert diagnostic.confidence == ConfidenceLevel.MEDIUM

    def test_late_offer_is_primary_gap(self) -> None:
        diagnostic = diagnose_narrative(_complete_checklist(offerTiming=OfferTiming.LATE))
        assert diagnostic.primaryGap == NarrativeGap.OFFER_TIMING
        assert diagnostic.findings == ['Offer appears late in the creative.']

    def test_cta_issues_are_combined(self) -> None:
        diagnostic = diagnose_narrative(
            _complete_checklist(ctaHasActionVerb=False, ctaHasOutcome=False)
        )
        assert diagnostic.findings == ['CTA is present but missing action verb and missing outcome.']
        assert diagnostic.primaryGap == NarrativeGap.UNCLEAR_CTA
        assert len(diagnostic.suggestions) == 2

    def test_ad_lp_mismatch(self) -> None:
        diagnostic = diagnose_narrative(_complete_checklist(adLpMatch=AdLpMatch.NO))
        assert diagnostic.primaryGap == NarrativeGap.AD_LP_MISMATCH

    def test_confirmed_with_many_findings_is_high(self) -> None:
        diagnostic = diagnose_narrative(NarrativeChecklist(userConfirmed=True))
        assert diagnostic.primaryGap == NarrativeGap.VALUE_TIMING
        assert len(diagnostic.findings) > 3
        assert diagnostic.confidence == ConfidenceLevel.HIGH

    def test_unconfirmed_is_low(self) -> None:
        assert diagnose_narrative(_complete_checklist(userConfirmed=False)).confidence == ConfidenceLevel.LOW

    def test_unconfirmed_prefill_carries_warning(self) -> None:
        diagnostic = diagnose_narrative(checklist_from_llm_output(_llm_record(), now=T0))
        assert diagnostic.findings[0] == AI_PREFILL_WARNING
        assert diagnostic.confidence == ConfidenceLevel.LOW


class TestChecklistPersistence:

    async def test_save_returns_stored_checklist(self, mock_db_pool, mock_conn) -> None:
        checklist = _complete_checklist(lastUpdated=T0)
        stored = checklist.model_dump(mode='json')
        mock_conn.fetchrow.return_value = {'checklist': json.dumps(stored)}

        with patch('adgate.services.narrative.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            saved = await save_checklist('user-1', 'creative-1', checklist)

        assert saved.userConfirmed is True
        args = mock_conn.fetchrow.call_args.args
        assert args[1:3] == ('user-1', 'creative-1')
        assert 'confidenceCap' not in json.loads(args[3])
        assert args[4] == T0

    async def test_missing_checklist_is_none(self, mock_db_pool, mock_conn) -> None:
        with patch('adgate.services.narrative.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            assert await get_checklist('user-1', 'creative-1') is None
