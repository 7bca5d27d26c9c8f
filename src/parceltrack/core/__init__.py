"""parceltrack core module.

Shared components used across all services:
- Configuration management
- Logging setup
"""

from parceltrack.core.config import (
    AlertingSettings,
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    Settings,
    TrackingSettings,
)
from parceltrack.core.log import configure_logging
from parceltrack.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "AlertingSettings",
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "Settings",
    "TrackingSettings",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
    "get_settings_safe",
]
