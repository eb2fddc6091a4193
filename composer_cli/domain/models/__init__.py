"""Domain models package."""

from .api import APIErrorMsg, APIResponse, CallResult, FileDownload, Page, RawResponse
from .compose import (
    Backend,
    ComposeHandle,
    ComposeStatus,
    ComposeDeleteStatus,
    WaitState,
    WaitOutcome,
    PackageNEVRA,
    ServerStatus,
    sort_compose_status,
)

__all__ = [
    "APIErrorMsg",
    "APIResponse",
    "CallResult",
    "FileDownload",
    "Page",
    "RawResponse",
    "Backend",
    "ComposeHandle",
    "ComposeStatus",
    "ComposeDeleteStatus",
    "WaitState",
    "WaitOutcome",
    "PackageNEVRA",
    "ServerStatus",
    "sort_compose_status",
]
