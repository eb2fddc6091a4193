"""
Backend protocol interfaces.
Defines the contracts the router and the wait state machine depend on.
"""

from __future__ import annotations
from typing import Protocol, Optional, Tuple

from ..models.api import APIResponse
from ..models.compose import Backend, ComposeStatus


class RawCallback(Protocol):
    """Observer invoked with every classified response."""

    def __call__(self, method: str, path: str, status: int, body: bytes) -> None:
        ...


class ComposeStatusSource(Protocol):
    """Anything that can report the status of a compose by UUID."""

    backend: Backend

    def compose_status(self, compose_id: str) -> Tuple[Optional[ComposeStatus], Optional[APIResponse]]:
        """Fetch the current status; structured errors come back in the APIResponse."""
        ...


class Clock(Protocol):
    """Monotonic time source in seconds."""

    def __call__(self) -> float:
        ...


class Sleeper(Protocol):
    """Blocking sleep in seconds."""

    def __call__(self, seconds: float) -> None:
        ...
