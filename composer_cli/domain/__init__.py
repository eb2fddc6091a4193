"""Domain layer - Pure data models and ports with no I/O."""

from .models import (
    APIErrorMsg,
    APIResponse,
    Backend,
    ComposeStatus,
    WaitOutcome,
    WaitState,
)

__all__ = [
    "APIErrorMsg",
    "APIResponse",
    "Backend",
    "ComposeStatus",
    "WaitOutcome",
    "WaitState",
]
