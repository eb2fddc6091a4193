"""Application layer - Services combining the two backends."""

from .router import DualBackendRouter
from .wait import ComposeWaiter

__all__ = [
    "ComposeWaiter",
    "DualBackendRouter",
]
