"""cloudapi infrastructure package."""

from .client import CLOUD_API_PREFIX, CloudClient, cloud_route
from .api import CloudAPI

__all__ = [
    'CLOUD_API_PREFIX',
    'CloudAPI',
    'CloudClient',
    'cloud_route',
]
