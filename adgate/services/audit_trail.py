"""
Append-only audit trail of gate, activation and eligibility decisions.

Every end-to-end evaluation gets a fresh trace id. Each decision made under
it is appended as one AuditLogEntry; the store assigns the step order, id
and timestamp. There is no update or delete path: replaying a trace means
reading its entries back in step order.

Every entry is stamped with the scoring-rule versions in effect so a
decision can be replayed against the rules that produced it.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import asyncpg

from adgate.core.config import SCORING_VERSIONS
from adgate.core.database import get_db_pool
from adgate.models.enums import GateType, SystemName
from adgate.models.schemas import (
    AuditLogEntry,
    GateStatus,
    NarrativeEligibility,
    SystemActivation,
)
from adgate.sql.audit_queries import get_audit_insert_query, get_audit_trail_query


logger = logging.getLogger(__name__)

# One retry after a step-order collision between concurrent appends
APPEND_ATTEMPTS = 2


def generate_trace_id() -> str:
    return str(uuid.uuid4())


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _record_to_entry(record) -> AuditLogEntry:
    return AuditLogEntry(
        id=str(record['id']),
        traceId=record['trace_id'],
        stepOrder=record['step_order'],
        userId=record['user_id'],
        creativeId=record['creative_id'],
        gateType=GateType(record['gate_type']),
        gateStatus=_load_json(record['gate_status']),
        systemsActivated=[SystemName(name) for name in record['systems_activated'] or []],
        blocked=record['blocked'],
        blockedReason=record['blocked_reason'],
        versions=_load_json(record['versions']) or {},
        createdAt=record['created_at'],
    )


# =============================================================================
# Appending
# =============================================================================

async def log_gate_decision(entry: AuditLogEntry) -> AuditLogEntry:
    """
    Append one decision to its trace.

    Two appends racing for the same step order collide on the
    (trace_id, step_order) constraint; the loser re-reads the maximum once.

    Returns:
        The entry with id, stepOrder and createdAt filled in by the store.

    Raises:
        asyncpg.UniqueViolationError: The step order collided on every attempt.
    """
    versions = {**SCORING_VERSIONS, **entry.versions}
    params = (
        entry.traceId,
        entry.userId,
        entry.creativeId,
        entry.gateType.value,
        json.dumps(entry.gateStatus) if entry.gateStatus is not None else None,
        [system.value for system in entry.systemsActivated],
        entry.blocked,
        entry.blockedReason,
        json.dumps(versions),
    )
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        for attempt in range(1, APPEND_ATTEMPTS + 1):
            try:
                row = await conn.fetchrow(get_audit_insert_query(), *params)
                break
            except asyncpg.UniqueViolationError:
                if attempt == APPEND_ATTEMPTS:
                    raise
                logger.warning("Audit %s step order collided, retrying append", entry.traceId)

    logger.debug(
        "Audit %s step %s: %s (blocked=%s)",
        entry.traceId,
        row['step_order'],
        entry.gateType.value,
        entry.blocked,
    )
    return entry.model_copy(update={
        'id': str(row['id']),
        'stepOrder': row['step_order'],
        'createdAt': row['created_at'],
        'versions': versions,
    })


async def log_score_attempt(
    trace_id: str,
    user_id: str,
    creative_id: Optional[str],
    gate_status: GateStatus,
) -> AuditLogEntry:
    """Record a gate evaluation; blocked when delivery cannot be scored."""
    blocked = not gate_status.canScoreDelivery
    return await log_gate_decision(AuditLogEntry(
        traceId=trace_id,
        userId=user_id,
        creativeId=creative_id,
        gateType=GateType.SCORE_ATTEMPT,
        gateStatus=gate_status.model_dump(mode='json'),
        blocked=blocked,
        blockedReason=gate_status.gateMessages[0] if blocked and gate_status.gateMessages else None,
    ))


async def log_system_activation(
    trace_id: str,
    user_id: str,
    creative_id: Optional[str],
    activation: SystemActivation,
    gate_status: Optional[GateStatus] = None,
) -> AuditLogEntry:
    """Record which subsystems were activated; blocked when none were."""
    blocked = not activation.systemsActivated
    reasons = '; '.join(f"{system}: {reason}" for system, reason in activation.blockedReasons.items())
    return await log_gate_decision(AuditLogEntry(
        traceId=trace_id,
        userId=user_id,
        creativeId=creative_id,
        gateType=GateType.SYSTEM_ACTIVATION,
        gateStatus=gate_status.model_dump(mode='json') if gate_status else None,
        systemsActivated=list(activation.systemsActivated),
        blocked=blocked,
        blockedReason=reasons or None,
    ))


async def log_eligibility_check(
    trace_id: str,
    user_id: str,
    creative_id: Optional[str],
    eligibility: NarrativeEligibility,
    message: Optional[str] = None,
) -> AuditLogEntry:
    return await log_gate_decision(AuditLogEntry(
        traceId=trace_id,
        userId=user_id,
        creativeId=creative_id,
        gateType=GateType.ELIGIBILITY_CHECK,
        gateStatus={'narrativeEligibility': eligibility.model_dump(mode='json')},
        systemsActivated=[SystemName.NARRATIVE] if eligibility.eligible else [],
        blocked=not eligibility.eligible,
        blockedReason=None if eligibility.eligible else (message or eligibility.reason.value),
    ))


async def log_recommendation_generation(
    trace_id: str,
    user_id: str,
    creative_id: Optional[str],
    details: Dict[str, Any],
    blocked: bool = False,
    blocked_reason: Optional[str] = None,
) -> AuditLogEntry:
    return await log_gate_decision(AuditLogEntry(
        traceId=trace_id,
        userId=user_id,
        creativeId=creative_id,
        gateType=GateType.RECOMMENDATION_GEN,
        gateStatus=details,
        blocked=blocked,
        blockedReason=blocked_reason,
    ))


# =============================================================================
# Reading
# =============================================================================

async def get_audit_trail(trace_id: str) -> List[AuditLogEntry]:
    """All entries for a trace, in step order."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(get_audit_trail_query(), trace_id)
    return [_record_to_entry(row) for row in rows]


def format_audit_trail(entries: List[AuditLogEntry]) -> str:
    """
    Human-readable replay of a trace, one line per step.

    Example:
        Trace 6f1c...: 3 step(s)
          1. score_attempt - passed
          2. eligibility_check - BLOCKED: Fix structure first. ...
          3. system_activation - passed [structure, conversion]
    """
    if not entries:
        return 'No audit entries found.'

    lines = [f"Trace {entries[0].traceId}: {len(entries)} step(s)"]
    for position, entry in enumerate(entries, start=1):
        step = entry.stepOrder or position
        outcome = f"BLOCKED: {entry.blockedReason or 'no reason recorded'}" if entry.blocked else 'passed'
        line = f"  {step}. {entry.gateType.value} - {outcome}"
        if entry.systemsActivated:
            line += f" [{', '.join(system.value for system in entry.systemsActivated)}]"
        if entry.createdAt:
            line += f" @ {entry.createdAt.isoformat()}"
        lines.append(line)
    return '\n'.join(lines)
