"""
Transport - Issues single HTTP requests to a server listening on a Unix domain socket.
"""

from __future__ import annotations
import grp
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Union

import httpx

from .errors import SocketMissingError, SocketPermissionError, TransportError


SOCKET_HINT = (
    "  Check to make sure that osbuild-composer.socket is enabled and started. eg.\n"
    "  systemctl enable osbuild-composer.socket && systemctl start osbuild-composer.socket"
)


@dataclass(frozen=True)
class Endpoint:
    """Where a backend lives and how its URLs are built.

    ``api_version`` is None for backends without a versioned prefix.
    """
    socket_path: str
    protocol: str = "http"
    host: str = "localhost"
    api_version: Optional[int] = None

    def raw_url(self, route: str) -> str:
        """Full URL for a route, without the API version prefix."""
        return f"{self.protocol}://{self.host}/{_strip_route(route)}"

    def api_url(self, route: str) -> str:
        """Full URL for a route, including the /api/v{N}/ prefix."""
        if self.api_version is None:
            return self.raw_url(route)
        return f"{self.protocol}://{self.host}/api/v{self.api_version}/{_strip_route(route)}"


def _strip_route(route: str) -> str:
    if not route:
        raise ValueError("route must not be empty")
    if route[0] == "/":
        return route[1:]
    return route


def append_query(url: str, query: str) -> str:
    """Add a query to the url using ? for the first and & for subsequent ones."""
    if "?" in url:
        return f"{url}&{query}"
    return f"{url}?{query}"


def check_socket_error(socket_path: str, req_error: Optional[BaseException] = None) -> Optional[TransportError]:
    """Explain a failed request in terms of the socket file.

    Returns None when the socket looks healthy and there was no request error,
    otherwise a TransportError describing the most likely cause.
    """
    try:
        info = os.stat(socket_path)
    except FileNotFoundError:
        return SocketMissingError(f"{socket_path} does not exist.\n{SOCKET_HINT}", socket_path)
    except OSError as e:
        return TransportError(str(e), socket_path)

    if not os.access(socket_path, os.R_OK | os.W_OK):
        try:
            group = grp.getgrgid(info.st_gid).gr_name
        except KeyError:
            group = None
        if not group:
            return SocketPermissionError(f"you do not have permission to access {socket_path}", socket_path)
        return SocketPermissionError(
            f"you do not have permission to access {socket_path}.  "
            f"Check to make sure that you are a member of the {group} group",
            socket_path,
            group,
        )

    # Doesn't look like a problem with the socket, pass the request's error through
    if req_error is None:
        return None
    return TransportError(str(req_error), socket_path)


class Transport:
    """One HTTP request per call over the endpoint's Unix socket."""

    def __init__(
        self,
        endpoint: Endpoint,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.endpoint = endpoint
        self._logger = logger or logging.getLogger(__name__)
        self._client = httpx.Client(
            transport=transport or httpx.HTTPTransport(uds=endpoint.socket_path),
            timeout=httpx.Timeout(timeout),
        )

    def url(self, route: str, raw: bool = False) -> str:
        return self.endpoint.raw_url(route) if raw else self.endpoint.api_url(route)

    @contextmanager
    def open(
        self,
        method: str,
        route: str,
        body: Union[str, bytes, None] = None,
        headers: Optional[Dict[str, str]] = None,
        raw: bool = False,
    ) -> Iterator[httpx.Response]:
        """Send a request and yield the unread response.

        The response is closed when the block exits. An empty route raises
        ValueError. Failures to build or send the request are raised as
        TransportError, chained to the original exception.
        """
        url = self.url(route, raw=raw)
        try:
            request = self._client.build_request(
                method,
                url,
                content=body if body else None,
                headers=headers or {},
            )
            response = self._client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            self._logger.debug(f"{method} {route} failed: {e}")
            raise check_socket_error(self.endpoint.socket_path, e) from e

        self._logger.debug(f"{method} {route} -> {response.status_code}")
        try:
            yield response
        finally:
            response.close()

    def close(self) -> None:
        self._client.close()
