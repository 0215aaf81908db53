"""
Parameterized SQL for the append-only gate_audit_log table.

The log is append-only: no UPDATE or DELETE query exists. step_order is assigned inside
the INSERT from the current maximum for the trace id; the (trace_id,
step_order) unique constraint rejects a concurrent duplicate rather than
silently reordering; log_gate_decision retries a rejected append once.
"""


def get_audit_insert_query() -> str:
    """
    Append one decision to a trace.

    Parameters:
        $1: trace_id
        $2: user_id
        $3: creative_id
        $4: gate_type
        $5: gate_status (JSON text)
        $6: systems_activated
        $7: blocked
        $8: blocked_reason
        $9: versions (JSON text)
    """
    return """
    INSERT INTO gate_audit_log (
        trace_id, step_order, user_id, creative_id, gate_type,
        gate_status, systems_activated, blocked, blocked_reason, versions
    )
    SELECT
        $1,
        COALESCE(MAX(step_order), 0) + 1,
        $2, $3, $4, $5::jsonb, $6, $7, $8, $9::jsonb
    FROM gate_audit_log
    WHERE trace_id = $1
    RETURNING id, step_order, created_at
    """


def get_audit_trail_query() -> str:
    """
    Parameters:
        $1: trace_id
    """
    return """
    SELECT *
    FROM gate_audit_log
    WHERE trace_id = $1
    ORDER BY step_order ASC
    """


def get_recent_block_rate_query() -> str:
    """
    Decisions and blocked decisions over the last N minutes.

    Parameters:
        $1: minutes
    """
    return """
    SELECT
        COUNT(*) AS total,
        COUNT(*) FILTER (WHERE blocked) AS blocked
    FROM gate_audit_log
    WHERE created_at >= now() - make_interval(mins => $1)
    """


def get_alert_insert_query() -> str:
    """
    Record a fired system alert.

    Parameters:
        $1: rule_id
        $2: name
        $3: severity
        $4: message
        $5: triggered_at
        $6: notified
    """
    return """
    INSERT INTO system_alerts (rule_id, name, severity, message, triggered_at, notified)
    VALUES ($1, $2, $3, $4, $5, $6)
    """
