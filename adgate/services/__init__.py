"""
AdGate Services Module

Business rules for deciding what the system may say about an ad creative.

Services:
- confidence: Ordered confidence lattice (clamp, step up/down, count ladders)
- scoring_gates: Age/spend/volume/traffic/attribution gates
- extraction: Signal extraction state machine and confidence ceilings
- placement: Aspect-ratio fit and benchmark bands per placement
- wrong_blame: Context change, tracking anomaly and fatigue detectors
- orchestration: Narrative eligibility, wrong-blame chain, system activation
- narrative: Checklist diagnostics and LLM output validation
- baseline: Segmented account baselines and efficiency scoring
- recommendations: Specificity validator, templates and lifecycle
- meta_learning: Outcome measurement, account patterns, ranking
- audit_trail: Append-only trace of gate decisions
- alerting: Debounced operational alerts
- pipeline: End-to-end evaluation of one creative
- policy: Forbidden judgmental vocabulary and module boundary checks

Rule evaluators are pure and take an optional Settings; the async helpers
beside them are the only code that touches the database.
"""

# =============================================================================
# Gates, Extraction and Placement
# =============================================================================

from adgate.services.scoring_gates import (
    evaluate_gates,
    get_gate_status_summary,
)
from adgate.services.extraction import (
    can_score_with_extraction,
    calculate_confidence_with_missing_signals,
    determine_extraction_status,
    start_extraction,
    complete_extraction,
    retry_extraction,
    request_extraction,
    record_extraction_result,
    request_retry,
)
from adgate.services.placement import (
    parse_aspect_ratio,
    detect_aspect_ratio_mismatch,
    validate_scoring_context,
    get_placement_benchmarks,
)

# =============================================================================
# Orchestration
# =============================================================================

from adgate.services.orchestration import (
    check_narrative_eligibility,
    get_eligibility_message,
    diagnose_conversion_issue,
    diagnose_from_observations,
    determine_system_activation,
)
from adgate.services.pipeline import evaluate_creative

# =============================================================================
# Narrative
# =============================================================================

from adgate.services.narrative import (
    diagnose_narrative,
    validate_llm_output,
    parse_llm_output,
    confirm_checklist,
)

# =============================================================================
# Baseline, Recommendations and Meta-Learning
# =============================================================================

from adgate.services.baseline import (
    compute_baseline,
    compute_efficiency_score,
)
from adgate.services.recommendations import (
    validate_recommendation,
    build_recommendation,
    build_aspect_ratio_recommendation,
)
from adgate.services.meta_learning import (
    measure_outcome,
    compute_account_learnings,
    rank_recommendations,
    generate_monthly_summary,
)

# =============================================================================
# Audit and Alerting
# =============================================================================

from adgate.services.audit_trail import (
    generate_trace_id,
    get_audit_trail,
    format_audit_trail,
)
from adgate.services.alerting import (
    run_alert_checks,
    get_user_degradation_message,
)


__all__ = [
    'evaluate_gates',
    'get_gate_status_summary',
    'can_score_with_extraction',
    'calculate_confidence_with_missing_signals',
    'determine_extraction_status',
    'start_extraction',
    'complete_extraction',
    'retry_extraction',
    'request_extraction',
    'record_extraction_result',
    'request_retry',
    'parse_aspect_ratio',
    'detect_aspect_ratio_mismatch',
    'validate_scoring_context',
    'get_placement_benchmarks',
    'check_narrative_eligibility',
    'get_eligibility_message',
    'diagnose_conversion_issue',
    'diagnose_from_observations',
    'determine_system_activation',
    'evaluate_creative',
    'diagnose_narrative',
    'validate_llm_output',
    'parse_llm_output',
    'confirm_checklist',
    'compute_baseline',
    'compute_efficiency_score',
    'validate_recommendation',
    'build_recommendation',
    'build_aspect_ratio_recommendation',
    'measure_outcome',
    'compute_account_learnings',
    'rank_recommendations',
    'generate_monthly_summary',
    'generate_trace_id',
    'get_audit_trail',
    'format_audit_trail',
    'run_alert_checks',
    'get_user_degradation_message',
]
