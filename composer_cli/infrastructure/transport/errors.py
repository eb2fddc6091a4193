"""
Client error taxonomy.

Structured API errors are not exceptions, they are returned as APIResponse values.
Everything here is fatal to the current operation.
"""

from __future__ import annotations
from typing import Optional


class ComposerError(Exception):
    """Base class for client-side failures."""


class TransportError(ComposerError):
    """The request could not be built or sent."""

    def __init__(self, message: str, socket_path: Optional[str] = None):
        super().__init__(message)
        self.socket_path = socket_path


class SocketMissingError(TransportError):
    """The server's socket file does not exist."""


class SocketPermissionError(TransportError):
    """The socket exists but the user cannot read and write it."""

    def __init__(self, message: str, socket_path: Optional[str] = None, group: Optional[str] = None):
        super().__init__(message, socket_path)
        self.group = group


class DecodeError(ComposerError):
    """A response body did not match the expected shape."""

    def __init__(self, message: str, body: bytes = b""):
        super().__init__(message)
        self.body = body


class ProtocolError(ComposerError):
    """The server broke a protocol invariant, eg. a page without a total."""


class HostInfoError(ComposerError):
    """The host's distribution could not be determined from os-release."""
