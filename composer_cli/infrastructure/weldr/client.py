"""
weldr client - Request plumbing for the legacy /api/v{N} image-build API.
Handles socket transport, error classification and offset/limit pagination.
"""

from __future__ import annotations
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from ...domain.models.api import APIResponse, CallResult, FileDownload
from ...domain.models.compose import Backend
from ...domain.interfaces.backend import RawCallback
from ..transport.classify import classify_response, download_response
from ..transport.errors import DecodeError, ProtocolError
from ..transport.transport import Endpoint, Transport, append_query

TotalFunc = Callable[[bytes], int]


def top_level_total(body: bytes) -> int:
    """Most paginated responses have total at the top level."""
    try:
        data = json.loads(body)
    except ValueError as e:
        raise DecodeError(f"Error parsing paginated response ({e}): {body.decode('utf-8', errors='replace')}", body) from e
    if not isinstance(data, dict) or "total" not in data:
        raise ProtocolError("Response is missing the total value")
    return coerce_total(data["total"])


def coerce_total(value: Any) -> int:
    """Validate a JSON total, it must be a non-negative whole number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"Response 'total' is not a number: {value!r}")
    if value < 0 or int(value) != value:
        raise ProtocolError(f"Response 'total' is not a valid count: {value!r}")
    return int(value)


class WeldrClient:
    """Client for the legacy weldr API server."""

    backend = Backend.WELDR

    def __init__(
        self,
        socket_path: str,
        api_version: int = 1,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
        raw_callback: Optional[RawCallback] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._logger = logger or logging.getLogger(__name__)
        self.endpoint = Endpoint(socket_path=socket_path, api_version=api_version)
        self._transport = Transport(self.endpoint, timeout=timeout, transport=transport, logger=self._logger)
        self._raw_callback = raw_callback

    @property
    def socket_path(self) -> str:
        return self.endpoint.socket_path

    def set_raw_callback(self, callback: Optional[RawCallback]) -> None:
        """Set the function called with every response's method, path, status and body."""
        self._raw_callback = callback

    def api_url(self, route: str) -> str:
        return self.endpoint.api_url(route)

    def raw_url(self, route: str) -> str:
        return self.endpoint.raw_url(route)

    def request(self, method: str, route: str, body: str = "", headers: Optional[Dict[str, str]] = None):
        """Open a request under /api/v{N}; use it as a context manager."""
        return self._transport.open(method, route, body, headers)

    def request_raw_url(self, method: str, route: str, body: str = "", headers: Optional[Dict[str, str]] = None):
        """Open a request without adding the API path and version."""
        return self._transport.open(method, route, body, headers, raw=True)

    def _call(
        self,
        method: str,
        route: str,
        body: str = "",
        headers: Optional[Dict[str, str]] = None,
        raw: bool = False,
    ) -> CallResult:
        opener = self.request_raw_url if raw else self.request
        with opener(method, route, body, headers) as resp:
            return classify_response(method, route, resp, self._raw_callback)

    def get_raw(self, method: str, path: str) -> CallResult:
        """Raw body of a request.

        Errors from the API come back in ``CallResult.api_response``, client errors
        are raised.
        """
        return self._call(method, path)

    def get_raw_url(self, path: str) -> CallResult:
        """GET without the API path and version prefix."""
        return self._call("GET", path, raw=True)

    def get_json_all(self, path: str) -> CallResult:
        """All results of a paginated GET using offset/limit.

        The path must not include the limit or offset query parameters.
        """
        return self.get_json_all_fn_total(path, top_level_total)

    def get_json_all_fn_total(self, path: str, total_fn: TotalFunc) -> CallResult:
        """Retrieve every result of a paginated route in two requests.

        The first request uses limit=0, its body is passed to ``total_fn`` which
        works out how many results there are. The second request asks for exactly
        that many and its result is returned as-is.
        """
        first = self.get_raw("GET", append_query(path, "limit=0"))
        if not first.ok:
            return first
        total = total_fn(first.body or b"")
        self._logger.debug(f"{path}: total={total}")
        return self.get_raw("GET", append_query(path, f"limit={total}"))

    def get_file(self, path: str) -> Tuple[Optional[FileDownload], Optional[APIResponse]]:
        """Write a response body to a temporary file.

        Returns the download details; the caller is responsible for the file.
        """
        with self.request("GET", path) as resp:
            return download_response(path, resp, self._raw_callback, self.socket_path)

    def post_raw(self, path: str, body: str, headers: Optional[Dict[str, str]] = None) -> CallResult:
        """POST raw data and return the raw response body."""
        return self._call("POST", path, body, headers)

    def post_toml(self, path: str, body: str) -> CallResult:
        """POST TOML data with the Content-Type set to text/x-toml."""
        return self.post_raw(path, body, {"Content-Type": "text/x-toml"})

    def post_json(self, path: str, body: str) -> CallResult:
        """POST JSON data with the Content-Type set to application/json."""
        return self.post_raw(path, body, {"Content-Type": "application/json"})

    def delete_raw(self, path: str) -> CallResult:
        """Send a DELETE request."""
        return self._call("DELETE", path)

    def close(self) -> None:
        self._transport.close()
