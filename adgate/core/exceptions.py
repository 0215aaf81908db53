"""
Domain exceptions for AdGate.

Only contract breaches and invalid state transitions are raised. Missing
evidence (young creative, low spend, thin baseline) and degraded data quality
(unknown iOS share, partial extraction) are never exceptions; they surface as
values on GateStatus, ExtractionScoringResult and EfficiencyResult.

Hierarchy:
    AdGateError
    ├── NotFoundError
    ├── PolicyViolationError          (LLM output or recommendation contract breach)
    ├── InvalidTransitionError        (state machine misuse)
    │   └── OutcomeAlreadyMeasuredError
    ├── RetryLimitExceededError       (terminal, user must contact support)
    └── ConcurrentModificationError   (optimistic version check lost)
"""

from typing import List, Optional


class AdGateError(Exception):
    """Base class for all AdGate domain errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AdGateError):
    """Raised when a persisted record does not exist."""


class PolicyViolationError(AdGateError):
    """
    Raised when an upstream record breaches its contract.

    Carries the complete list of violations so the producer can fix every
    issue in one pass. The offending record is never repaired or stripped.
    """

    def __init__(self, message: str, violations: Optional[List[str]] = None):
        super().__init__(message)
        self.violations: List[str] = list(violations or [])

    def __str__(self) -> str:
        if not self.violations:
            return self.message
        return f"{self.message}: {'; '.join(self.violations)}"


class InvalidTransitionError(AdGateError):
    """Raised when a state machine transition is not allowed from the current state."""


class OutcomeAlreadyMeasuredError(InvalidTransitionError):
    """Raised when an outcome is recorded for a recommendation that already has one."""


class RetryLimitExceededError(AdGateError):
    """Raised when extraction retries are exhausted. Terminal for the user."""


class ConcurrentModificationError(AdGateError):
    """Raised when a record changed between read and conditional write."""
