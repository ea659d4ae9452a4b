"""
Configuration module for the XSCard events backend.

Provides centralized configuration for:
- Recurrence materialization window and defaults
- Registration and payment timeouts
- Background job schedules and toggles
"""

from backend.src.config.settings import AppSettings, get_settings

__all__ = [
    "AppSettings",
    "get_settings",
]
