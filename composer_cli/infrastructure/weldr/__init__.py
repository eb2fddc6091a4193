"""weldr infrastructure package."""

from .client import WeldrClient, coerce_total, top_level_total
from .api import WeldrAPI, changes_total

__all__ = [
    'WeldrAPI',
    'WeldrClient',
    'changes_total',
    'coerce_total',
    'top_level_total',
]
