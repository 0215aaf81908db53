'''
AdGate Test Suite

Test Modules:
-------------
- test_confidence.py: Confidence lattice ordering, clamping, count ladders
- test_scoring_gates.py: Age/spend/volume gates, traffic penalties, attribution
- test_extraction.py: Extraction state machine, retries, confidence ceilings
- test_placement.py: Aspect-ratio fit, placement benchmarks, aspect_ratio drafts
- test_wrong_blame.py: Context change, tracking anomaly and fatigue detectors
- test_orchestration.py: Narrative eligibility, wrong-blame priority, activation
- test_narrative.py: LLM output validation, checklist lifecycle, diagnosis
- test_baseline.py: Segment baselines, promo exclusion, efficiency scoring
- test_recommendations.py: Specificity validator, templates, lifecycle
- test_meta_learning.py: Outcome measurement, account patterns, ranking
- test_audit_trail.py: Append-only trace entries and replay formatting
- test_alerting.py: Rule checks, debouncing, Slack delivery
- test_pipeline.py: End-to-end creative evaluation
- test_jobs.py: Baseline refresh and alert sweep jobs
- test_api.py: Routers and domain error mapping
- test_policy.py: Forbidden vocabulary and import boundaries

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v
    pytest -m policy

Configuration:
--------------
See conftest.py for shared fixtures. No database is needed; the asyncpg
pool is replaced with mocks.
'''

__all__ = []
