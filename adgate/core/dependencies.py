"""
FastAPI dependency injection module for the AdGate backend.

Key Dependencies Provided:
- get_settings_dependency: Returns the cached Settings singleton
- SettingsDep: Type alias for injecting Settings into endpoints

Rule evaluation endpoints depend on SettingsDep alone, so they work without a
database. In tests, override with:

    app.dependency_overrides[get_settings_dependency] = lambda: custom_settings
"""

from typing import Annotated

from fastapi import Depends

from adgate.core.config import Settings, get_settings


def get_settings_dependency() -> Settings:
    """Return the Settings singleton (overridable via dependency_overrides)."""
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]
