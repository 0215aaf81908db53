"""
Parameterized SQL for the extraction_jobs table.

Writes after the initial insert go through get_versioned_update_query(), which
only matches the row when its version is unchanged since it was read. A zero-row
result means another request won the race.
"""


def get_extraction_state_query() -> str:
    """
    Fetch one creative's extraction record.

    Parameters:
        $1: user_id
        $2: creative_id
    """
    return """
    SELECT *
    FROM extraction_jobs
    WHERE user_id = $1 AND creative_id = $2
    """


def get_extraction_insert_query() -> str:
    """
    Create a pending extraction record unless one already exists.

    Returns the new row, or no row when the creative already has a record.

    Parameters:
        $1: user_id
        $2: creative_id
        $3: max_retries
        $4: started_at
    """
    return """
    INSERT INTO extraction_jobs (
        user_id, creative_id, status,
        extracted_signals, missing_signals, failed_signals,
        retry_count, max_retries, version, started_at, updated_at
    )
    VALUES ($1, $2, 'pending', '{}', '{}', '{}', 0, $3, 1, $4, $4)
    ON CONFLICT (user_id, creative_id) DO NOTHING
    RETURNING *
    """


def get_versioned_update_query() -> str:
    """
    Write a new extraction state if the stored version still matches.

    Parameters:
        $1: user_id
        $2: creative_id
        $3: status
        $4: extracted_signals
        $5: missing_signals
        $6: failed_signals
        $7: error_message
        $8: retry_count
        $9: started_at
        $10: completed_at
        $11: updated_at
        $12: expected version
    """
    return """
    UPDATE extraction_jobs
    SET status = $3,
        extracted_signals = $4,
        missing_signals = $5,
        failed_signals = $6,
        error_message = $7,
        retry_count = $8,
        started_at = $9,
        completed_at = $10,
        updated_at = $11,
        version = version + 1
    WHERE user_id = $1
      AND creative_id = $2
      AND version = $12
    RETURNING *
    """


def get_stalled_extractions_query() -> str:
    """
    Count extractions stuck in pending longer than the given number of minutes.

    Parameters:
        $1: minutes
    """
    return """
    SELECT COUNT(*) AS stalled
    FROM extraction_jobs
    WHERE status = 'pending'
      AND started_at < now() - make_interval(mins => $1)
    """
