"""Unified configuration module.

Single source of truth for all configuration and settings.
"""

from .settings import (
    Settings,
    RetryPolicy,
    get_settings,
    STEP_POLICIES,
    SECTION_WEIGHTS,
    MIN_QUALITY,
    DEFAULT_QUALITY,
)

__all__ = [
    "Settings",
    "RetryPolicy",
    "get_settings",
    "STEP_POLICIES",
    "SECTION_WEIGHTS",
    "MIN_QUALITY",
    "DEFAULT_QUALITY",
]
