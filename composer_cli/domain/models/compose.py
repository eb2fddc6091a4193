"""
Compose domain models - Compose handles, statuses and wait outcomes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .api import APIResponse


class Backend(Enum):
    """The two image-build services the client talks to."""
    WELDR = "weldr"
    CLOUD = "cloud"


# Legacy queue statuses
WAITING = "WAITING"
RUNNING = "RUNNING"
FINISHED = "FINISHED"
FAILED = "FAILED"

TERMINAL_STATUSES = frozenset({FINISHED, FAILED})

# Newer backend job statuses mapped onto the legacy names
CLOUD_STATUS_MAP = {
    "pending": RUNNING,
    "success": FINISHED,
    "failure": FAILED,
}

_STATUS_ORDER = {RUNNING: 0, WAITING: 1, FINISHED: 2, FAILED: 3}


@dataclass(frozen=True)
class ComposeHandle:
    """A compose UUID plus the backend it lives on."""
    id: str
    backend: Backend


@dataclass
class ComposeStatus:
    """Status of a compose as reported by either backend.

    ``status`` is normalized to the legacy names; ``raw_status`` keeps whatever the
    server sent.
    """
    id: str
    status: str
    backend: Backend = Backend.WELDR
    raw_status: str = ""
    blueprint: str = ""
    version: str = ""
    compose_type: str = ""
    image_size: int = 0
    job_created: float = 0.0
    job_started: float = 0.0
    job_finished: float = 0.0

    @property
    def terminal(self) -> bool:
        # cloudapi composes only ever move on from pending
        if self.backend is Backend.CLOUD:
            return self.raw_status != "pending"
        return self.status in TERMINAL_STATUSES

    @property
    def handle(self) -> ComposeHandle:
        return ComposeHandle(self.id, self.backend)

    @property
    def timestamp(self) -> float:
        """Most recent job timestamp."""
        for ts in (self.job_finished, self.job_started, self.job_created):
            if ts and ts > 0:
                return ts
        return 0.0

    @classmethod
    def from_weldr(cls, data: Dict[str, Any]) -> ComposeStatus:
        status = str(data.get("queue_status", ""))
        blueprint = data.get("blueprint", "")
        version = data.get("version", "")
        # compose/info nests the blueprint, the queue listings only name it
        if isinstance(blueprint, dict):
            version = blueprint.get("version", version)
            blueprint = blueprint.get("name", "")
        return cls(
            id=str(data.get("id", "")),
            status=status,
            backend=Backend.WELDR,
            raw_status=status,
            blueprint=str(blueprint or ""),
            version=str(version or ""),
            compose_type=str(data.get("compose_type", "")),
            image_size=int(data.get("image_size") or 0),
            job_created=float(data.get("job_created") or 0),
            job_started=float(data.get("job_started") or 0),
            job_finished=float(data.get("job_finished") or 0),
        )

    @classmethod
    def from_cloud(cls, data: Dict[str, Any]) -> ComposeStatus:
        raw = str(data.get("status", ""))
        return cls(
            id=str(data.get("id", "")),
            status=CLOUD_STATUS_MAP.get(raw, "Unknown"),
            backend=Backend.CLOUD,
            raw_status=raw,
        )


def sort_compose_status(composes: List[ComposeStatus]) -> List[ComposeStatus]:
    """Sort by status (running, waiting, finished, failed), blueprint, version, type."""
    return sorted(
        composes,
        key=lambda c: (_STATUS_ORDER.get(c.status, 4), c.blueprint, c.version, c.compose_type),
    )


@dataclass
class ComposeDeleteStatus:
    """One successfully deleted (or canceled) compose."""
    id: str
    status: bool
    backend: Backend = Backend.WELDR


class WaitState(Enum):
    """Final states of the compose-wait state machine."""
    TERMINAL = "terminal"
    ABORTED = "aborted"
    ERROR = "error"


@dataclass
class WaitOutcome:
    """Result of waiting on a compose.

    ``status`` holds the last status seen, also for ABORTED. ERROR carries either a
    structured ``api_response`` or the transport ``error`` that stopped the wait.
    """
    state: WaitState
    status: Optional[ComposeStatus] = None
    api_response: Optional[APIResponse] = None
    error: Optional[Exception] = None
    fetches: int = 0

    @property
    def aborted(self) -> bool:
        return self.state is WaitState.ABORTED

    @property
    def terminal(self) -> bool:
        return self.state is WaitState.TERMINAL


@dataclass
class PackageNEVRA:
    """Basic details about a package."""
    name: str
    epoch: int = 0
    version: str = ""
    release: str = ""
    arch: str = ""

    def __str__(self) -> str:
        if self.epoch == 0:
            return f"{self.name}-{self.version}-{self.release}.{self.arch}"
        return f"{self.name}-{self.epoch}:{self.version}-{self.release}.{self.arch}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PackageNEVRA:
        return cls(
            name=str(data.get("name", "")),
            epoch=int(data.get("epoch") or 0),
            version=str(data.get("version", "")),
            release=str(data.get("release", "")),
            arch=str(data.get("arch", "")),
        )


@dataclass
class ServerStatus:
    """Server details from ``/api/status`` or the newer backend's openapi info."""
    api: str = ""
    backend: str = ""
    build: str = ""
    schema_version: str = ""
    db_version: str = ""
    db_supported: bool = False
    messages: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ServerStatus:
        return cls(
            api=str(data.get("api", "")),
            backend=str(data.get("backend", "")),
            build=str(data.get("build", "")),
            schema_version=str(data.get("schema_version", "")),
            db_version=str(data.get("db_version", "")),
            db_supported=bool(data.get("db_supported", False)),
            messages=[str(m) for m in (data.get("messages") or [])],
        )
