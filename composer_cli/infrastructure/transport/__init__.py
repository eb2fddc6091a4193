"""Transport infrastructure package."""

from .errors import (
    ComposerError,
    TransportError,
    SocketMissingError,
    SocketPermissionError,
    DecodeError,
    ProtocolError,
    HostInfoError,
)
from .transport import Endpoint, Transport, append_query, check_socket_error
from .classify import classify_response, cloud_error_to_string, decode_error_envelope, download_response

__all__ = [
    'ComposerError',
    'TransportError',
    'SocketMissingError',
    'SocketPermissionError',
    'DecodeError',
    'ProtocolError',
    'HostInfoError',
    'Endpoint',
    'Transport',
    'append_query',
    'check_socket_error',
    'classify_response',
    'decode_error_envelope',
    'download_response',
    'cloud_error_to_string',
]
