"""Utility modules for the account intelligence cache."""

from .config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
