"""
Translation of AdGate domain errors into HTTP responses.

    NotFoundError                -> 404
    InvalidTransitionError       -> 409 (includes OutcomeAlreadyMeasuredError)
    ConcurrentModificationError  -> 409
    RetryLimitExceededError      -> 409 with the "contact support" message
    PolicyViolationError         -> 422 with every violation listed

Routers catch AdGateError and re-raise through to_http_exception(). Anything
else propagates to FastAPI's default 500 handling.
"""

import logging

from fastapi import HTTPException

from adgate.core.exceptions import (
    AdGateError,
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    PolicyViolationError,
    RetryLimitExceededError,
)


logger = logging.getLogger(__name__)


def to_http_exception(error: AdGateError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=error.message)

    if isinstance(error, PolicyViolationError):
        logger.warning("Policy violation: %s", error)
        return HTTPException(
            status_code=422,
            detail={"message": error.message, "violations": error.violations},
        )

    if isinstance(error, (InvalidTransitionError, ConcurrentModificationError, RetryLimitExceededError)):
        return HTTPException(status_code=409, detail=error.message)

    logger.error("Unmapped domain error: %s", error)
    return HTTPException(status_code=500, detail=error.message)
