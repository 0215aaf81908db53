"""
Parameterized SQL for the recommendations table.

Lifecycle transitions are conditional updates: each one names the status it
expects to move from, so a transition that lost a race (or was never allowed)
returns no row instead of overwriting.
"""


def get_recommendation_insert_query() -> str:
    """
    Insert a validated recommendation in pending status.

    Parameters:
        $1: id
        $2: user_id
        $3: source_system
        $4: source_creative_id
        $5: recommendation_type
        $6: recommendation_text
        $7: what_to_change
        $8: target_range
        $9: observable_gap
        $10: metric_to_watch
        $11: run_duration_days
        $12: confidence
        $13: created_at
    """
    return """
    INSERT INTO recommendations (
        id, user_id, source_system, source_creative_id,
        recommendation_type, recommendation_text,
        what_to_change, target_range, observable_gap, metric_to_watch,
        run_duration_days, confidence, status, created_at, updated_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, 'pending', $13, $13)
    RETURNING *
    """


def get_recommendation_query() -> str:
    """
    Parameters:
        $1: id
    """
    return """
    SELECT *
    FROM recommendations
    WHERE id = $1
    """


def get_user_recommendations_query() -> str:
    """
    Parameters:
        $1: user_id
    """
    return """
    SELECT *
    FROM recommendations
    WHERE user_id = $1
    ORDER BY created_at DESC
    """


def get_mark_followed_query() -> str:
    """
    pending -> followed.

    Parameters:
        $1: id
        $2: linked_creative_id
        $3: followed_at
    """
    return """
    UPDATE recommendations
    SET status = 'followed',
        linked_creative_id = $2,
        followed_at = $3,
        updated_at = $3
    WHERE id = $1 AND status = 'pending'
    RETURNING *
    """


def get_mark_ignored_query() -> str:
    """
    pending -> ignored.

    Parameters:
        $1: id
        $2: ignored_at
    """
    return """
    UPDATE recommendations
    SET status = 'ignored',
        ignored_at = $2,
        updated_at = $2
    WHERE id = $1 AND status = 'pending'
    RETURNING *
    """


def get_record_outcome_query() -> str:
    """
    Record the outcome of a followed recommendation exactly once.

    Parameters:
        $1: id
        $2: outcome_verdict
        $3: outcome_cpa_change
        $4: outcome_roas_change
        $5: outcome_conversions
        $6: outcome_confidence
        $7: outcome_measured_at
    """
    return """
    UPDATE recommendations
    SET outcome_verdict = $2,
        outcome_cpa_change = $3,
        outcome_roas_change = $4,
        outcome_conversions = $5,
        outcome_confidence = $6,
        outcome_measured_at = $7,
        updated_at = $7
    WHERE id = $1
      AND status = 'followed'
      AND outcome_verdict IS NULL
    RETURNING *
    """
