"""
Response classifier - Decides whether a response is a payload or a structured API error.

Both backends report errors with 400, 404 or 500. The legacy server also (wrongly)
uses 404 for some validation errors, so 404 is handled the same way.
"""

from __future__ import annotations
import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional, Tuple

import httpx

from ...domain.interfaces.backend import RawCallback
from ...domain.models.api import APIErrorMsg, APIResponse, CallResult, FileDownload
from .errors import DecodeError, TransportError

ERROR_STATUS_CODES = frozenset({400, 404, 500})

logger = logging.getLogger(__name__)


def read_body(response: httpx.Response) -> bytes:
    """Read the whole body of a streamed response."""
    try:
        return response.read()
    except httpx.HTTPError as e:
        raise TransportError(f"reading response failed: {e}") from e


def notify(callback: Optional[RawCallback], method: str, path: str, status: int, body: bytes) -> None:
    """Pass a response to the raw callback, it must never fail the request."""
    if callback is None:
        return
    try:
        callback(method, path, status, body)
    except Exception as e:
        logger.debug(f"raw callback failed for {method} {path}: {e}")


def cloud_error_to_string(data: Dict[str, Any]) -> str:
    """Printable text for a newer-backend error envelope."""
    reason = data.get("reason") or ""
    details = data.get("details") or ""
    if reason:
        return f"{reason}\n{details}"
    return str(details)


def decode_error_envelope(body: bytes, status_code: int) -> APIResponse:
    """Decode either backend's error envelope into an APIResponse.

    Legacy:  {"status": false, "errors": [{"id": ..., "msg": ...}]}
    Newer:   {"kind": "Error", "id": ..., "code": ..., "details": ..., "reason": ...}
    """
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(body)
    except ValueError as e:
        raise DecodeError(f"Error parsing body of error ({e}): {text}", body) from e
    if not isinstance(data, dict):
        raise DecodeError(f"Unexpected error response: {text}", body)

    if data.get("kind") == "Error":
        error_id = str(data.get("code") or data.get("id") or "Error")
        return APIResponse(
            status=False,
            errors=[APIErrorMsg(error_id, cloud_error_to_string(data))],
            status_code=status_code,
        )

    if "status" in data or "errors" in data:
        errors = data.get("errors")
        if errors is not None and not isinstance(errors, list):
            raise DecodeError(f"Unexpected error response: {text}", body)
        response = APIResponse.from_dict(data, status_code=status_code)
        if not response.errors and not response.status:
            response.errors.append(APIErrorMsg("HTTPError", f"status {status_code}: {text}"))
        return response

    raise DecodeError(f"Unexpected error response: {text}", body)


def classify_response(
    method: str,
    path: str,
    response: httpx.Response,
    callback: Optional[RawCallback] = None,
) -> CallResult:
    """Read a response and turn it into a CallResult.

    400/404/500 produce a structured error, anything else is a successful payload.
    Successful bodies are never inspected for errors here.
    """
    body = read_body(response)
    notify(callback, method, path, response.status_code, body)
    if response.status_code in ERROR_STATUS_CODES:
        return CallResult(
            api_response=decode_error_envelope(body, response.status_code),
            status_code=response.status_code,
        )
    return CallResult(body=body, status_code=response.status_code)


def download_response(
    path: str,
    response: httpx.Response,
    callback: Optional[RawCallback] = None,
    socket_path: Optional[str] = None,
) -> Tuple[Optional[FileDownload], Optional[APIResponse]]:
    """Stream a GET response into a temporary file.

    Error responses are classified like any other request and no file is created.
    The caller owns the returned file.
    """
    if response.status_code in ERROR_STATUS_CODES:
        body = read_body(response)
        notify(callback, "GET", path, response.status_code, body)
        return None, decode_error_envelope(body, response.status_code)

    fd, tmp_path = tempfile.mkstemp(prefix="composer-cli-file-")
    try:
        with os.fdopen(fd, "wb") as f:
            for chunk in response.iter_bytes():
                f.write(chunk)
    except httpx.HTTPError as e:
        os.unlink(tmp_path)
        raise TransportError(f"downloading {path} failed: {e}", socket_path) from e
    except OSError:
        os.unlink(tmp_path)
        raise

    return FileDownload(
        path=tmp_path,
        content_disposition=response.headers.get("content-disposition", ""),
        content_type=response.headers.get("content-type", ""),
    ), None
