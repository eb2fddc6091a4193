"""
cloudapi client - Request plumbing for the newer image-builder-composer API.
All routes live under api/image-builder-composer/v2/ and are not versioned by the user.
"""

from __future__ import annotations
import logging
from typing import Dict, Optional, Tuple

import httpx

from ...domain.models.api import APIResponse, CallResult, FileDownload
from ...domain.models.compose import Backend
from ...domain.interfaces.backend import RawCallback
from ..transport.classify import classify_response, download_response
from ..transport.transport import Endpoint, Transport, check_socket_error

CLOUD_API_PREFIX = "api/image-builder-composer/v2/"

JSON_HEADERS = {"Content-Type": "application/json"}


def cloud_route(route: str) -> str:
    """Prefix a route with the cloudapi base path."""
    return CLOUD_API_PREFIX + route.lstrip("/")


class CloudClient:
    """Client for the cloudapi server."""

    backend = Backend.CLOUD

    def __init__(
        self,
        socket_path: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
        raw_callback: Optional[RawCallback] = None,
        enabled: Optional[bool] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._logger = logger or logging.getLogger(__name__)
        self.endpoint = Endpoint(socket_path=socket_path)
        self._transport = Transport(self.endpoint, timeout=timeout, transport=transport, logger=self._logger)
        self._raw_callback = raw_callback
        self._enabled = enabled

    @property
    def socket_path(self) -> str:
        return self.endpoint.socket_path

    def set_raw_callback(self, callback: Optional[RawCallback]) -> None:
        self._raw_callback = callback

    def exists(self) -> bool:
        """True when the server looks reachable.

        A configured ``enabled`` flag wins over probing the socket file.
        """
        if self._enabled is not None:
            return self._enabled
        return check_socket_error(self.socket_path) is None

    def _call(self, method: str, route: str, body: str = "", headers: Optional[Dict[str, str]] = None) -> CallResult:
        path = cloud_route(route)
        with self._transport.open(method, path, body, headers) as resp:
            return classify_response(method, path, resp, self._raw_callback)

    def get_json(self, route: str) -> CallResult:
        """GET a JSON document, the request always carries a JSON Content-Type."""
        return self._call("GET", route, headers=JSON_HEADERS)

    def post_json(self, route: str, body: str) -> CallResult:
        return self._call("POST", route, body, JSON_HEADERS)

    def delete(self, route: str) -> CallResult:
        return self._call("DELETE", route, headers=JSON_HEADERS)

    def get_file(self, route: str) -> Tuple[Optional[FileDownload], Optional[APIResponse]]:
        """Save a response body to a temporary file owned by the caller."""
        path = cloud_route(route)
        with self._transport.open("GET", path) as resp:
            return download_response(path, resp, self._raw_callback, self.socket_path)

    def close(self) -> None:
        self._transport.close()
