"""
SQL Query Module for the AdGate backend.

Provides parameterized PostgreSQL (asyncpg $n placeholder) queries for:
- Extraction state with optimistic versioning (extraction_queries)
- Account baselines and daily metrics (baseline_queries)
- Recommendation lifecycle transitions (recommendation_queries)
- Append-only audit log and system alerts (audit_queries)
- Narrative checklists (narrative_queries)

The table definitions live in schema.sql next to this module.

Example usage:
    from adgate.sql import get_versioned_update_query

    row = await conn.fetchrow(get_versioned_update_query(), *params)
"""

# =============================================================================
# EXTRACTION QUERIES
# =============================================================================

from adgate.sql.extraction_queries import (
    get_extraction_state_query,
    get_extraction_insert_query,
    get_versioned_update_query,
    get_stalled_extractions_query,
)

# =============================================================================
# BASELINE QUERIES
# =============================================================================

from adgate.sql.baseline_queries import (
    get_baseline_upsert_query,
    get_baseline_query,
    get_user_baselines_query,
    get_daily_metrics_query,
    get_active_accounts_query,
)

# =============================================================================
# RECOMMENDATION QUERIES
# =============================================================================

from adgate.sql.recommendation_queries import (
    get_recommendation_insert_query,
    get_recommendation_query,
    get_user_recommendations_query,
    get_mark_followed_query,
    get_mark_ignored_query,
    get_record_outcome_query,
)

# =============================================================================
# AUDIT AND ALERT QUERIES
# =============================================================================

from adgate.sql.audit_queries import (
    get_audit_insert_query,
    get_audit_trail_query,
    get_recent_block_rate_query,
    get_alert_insert_query,
)

# =============================================================================
# NARRATIVE QUERIES
# =============================================================================

from adgate.sql.narrative_queries import (
    get_checklist_upsert_query,
    get_checklist_query,
)


__all__ = [
    'get_extraction_state_query',
    'get_extraction_insert_query',
    'get_versioned_update_query',
    'get_stalled_extractions_query',
    'get_baseline_upsert_query',
    'get_baseline_query',
    'get_user_baselines_query',
    'get_daily_metrics_query',
    'get_active_accounts_query',
    'get_recommendation_insert_query',
    'get_recommendation_query',
    'get_user_recommendations_query',
    'get_mark_followed_query',
    'get_mark_ignored_query',
    'get_record_outcome_query',
    'get_audit_insert_query',
    'get_audit_trail_query',
    'get_recent_block_rate_query',
    'get_alert_insert_query',
    'get_checklist_upsert_query',
    'get_checklist_query',
]
