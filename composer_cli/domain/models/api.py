"""
API domain models - Error envelopes, call results and paginated pages shared by both backends.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class APIErrorMsg:
    """A single server-reported problem."""
    id: str
    msg: str

    def __str__(self) -> str:
        return f"{self.id}: {self.msg}"

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "msg": self.msg}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> APIErrorMsg:
        return cls(id=str(data.get("id", "")), msg=str(data.get("msg", "")))


@dataclass
class APIResponse:
    """Status and error list returned by a request.

    It is always produced for a 400/404/500 response. When ``status`` is True the
    error list is empty; when it is False there is at least one error describing
    what went wrong.
    """
    status: bool
    errors: List[APIErrorMsg] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    status_code: int = 0

    def __str__(self) -> str:
        if not self.errors:
            return ""
        return str(self.errors[0])

    @property
    def is_error(self) -> bool:
        """Presence of the errors field alone is not a failure."""
        return (not self.status) or bool(self.errors)

    @property
    def is_warning(self) -> bool:
        return self.status and bool(self.warnings)

    def all_errors(self) -> List[str]:
        return [str(e) for e in self.errors]

    def has_error_id(self, error_id: str) -> bool:
        return any(e.id == error_id for e in self.errors)

    def contains(self, text: str) -> bool:
        """True if any error message contains ``text``."""
        return any(text in e.msg for e in self.errors)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], status_code: int = 0) -> APIResponse:
        errors = [APIErrorMsg.from_dict(e) for e in (data.get("errors") or []) if isinstance(e, dict)]
        warnings = [str(w) for w in (data.get("warnings") or [])]
        return cls(
            status=bool(data.get("status", False)),
            errors=errors,
            warnings=warnings,
            status_code=status_code,
        )

    @classmethod
    def from_body(cls, body: bytes, status_code: int = 0) -> Optional[APIResponse]:
        """Decode a body that may carry a status envelope, None if it does not."""
        try:
            data = json.loads(body)
        except ValueError:
            return None
        if not isinstance(data, dict) or ("status" not in data and "errors" not in data):
            return None
        if "status" not in data:
            data = dict(data, status=not data.get("errors"))
        return cls.from_dict(data, status_code=status_code)

    @classmethod
    def from_errors(cls, errors: List[APIErrorMsg], status_code: int = 0) -> APIResponse:
        return cls(status=False, errors=list(errors), status_code=status_code)


@dataclass
class CallResult:
    """Outcome of one request that reached the server.

    Exactly one of ``body`` and ``api_response`` is set. Transport failures never
    produce a CallResult, they raise ``TransportError`` instead.
    """
    body: Optional[bytes] = None
    api_response: Optional[APIResponse] = None
    status_code: int = 200

    @property
    def ok(self) -> bool:
        return self.api_response is None

    def json(self) -> Any:
        return json.loads(self.body or b"null")


@dataclass
class Page:
    """One page of an offset/limit listing."""
    total: int
    offset: int
    limit: int
    items: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], items_key: str) -> Page:
        return cls(
            total=int(data.get("total", 0)),
            offset=int(data.get("offset", 0)),
            limit=int(data.get("limit", 0)),
            items=list(data.get(items_key) or []),
        )


@dataclass
class RawResponse:
    """A raw response as echoed by ``--json``."""
    method: str
    path: str
    status: int
    body: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.method, "path": self.path, "status": self.status, "body": self.body}


@dataclass
class FileDownload:
    """A response body saved to a temporary file, the caller owns the file."""
    path: str
    content_disposition: str = ""
    content_type: str = ""
