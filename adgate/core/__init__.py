"""
Core infrastructure package for the AdGate backend.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL database connectivity via asyncpg
- FastAPI dependency injection utilities
- Domain exception hierarchy

Re-exports key components so callers can write:

    from adgate.core import get_settings, get_db_pool, SettingsDep
"""

from adgate.core.config import Settings, get_settings, SCORING_VERSIONS
from adgate.core.database import (
    init_db,
    close_db,
    get_db_pool,
)
from adgate.core.dependencies import (
    get_settings_dependency,
    SettingsDep,
)
from adgate.core.exceptions import (
    AdGateError,
    NotFoundError,
    PolicyViolationError,
    InvalidTransitionError,
    OutcomeAlreadyMeasuredError,
    RetryLimitExceededError,
    ConcurrentModificationError,
)


__all__ = [
    # Configuration
    'Settings',
    'get_settings',
    'SCORING_VERSIONS',
    # Database
    'init_db',
    'close_db',
    'get_db_pool',
    # Dependencies
    'get_settings_dependency',
    'SettingsDep',
    # Exceptions
    'AdGateError',
    'NotFoundError',
    'PolicyViolationError',
    'InvalidTransitionError',
    'OutcomeAlreadyMeasuredError',
    'RetryLimitExceededError',
    'ConcurrentModificationError',
]
