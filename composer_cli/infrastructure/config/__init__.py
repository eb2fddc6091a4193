"""Configuration package."""

from .settings import ComposerSettings, get_settings, parse_duration, reload_settings

__all__ = [
    'ComposerSettings',
    'get_settings',
    'parse_duration',
    'reload_settings',
]
