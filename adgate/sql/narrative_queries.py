"""
Parameterized SQL for persisted narrative checklists.
"""


def get_checklist_upsert_query() -> str:
    """
    Parameters:
        $1: user_id
        $2: creative_id
        $3: checklist (JSON text)
        $4: updated_at
    """
    return """
    INSERT INTO narrative_checklists (user_id, creative_id, checklist, updated_at)
    VALUES ($1, $2, $3::jsonb, $4)
    ON CONFLICT (user_id, creative_id)
    DO UPDATE SET checklist = EXCLUDED.checklist, updated_at = EXCLUDED.updated_at
    RETURNING *
    """


def get_checklist_query() -> str:
    """
    Parameters:
        $1: user_id
        $2: creative_id
    """
    return """
    SELECT *
    FROM narrative_checklists
    WHERE user_id = $1 AND creative_id = $2
    """
