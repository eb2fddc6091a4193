"""
cloudapi API - Operations offered by the image-builder-composer server.

Error envelopes are converted to the same APIResponse shape the weldr operations
return, so callers never see the cloudapi envelope directly.
"""

from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from ...domain.models.api import APIErrorMsg, APIResponse, CallResult, FileDownload
from ...domain.models.compose import Backend, ComposeDeleteStatus, ComposeStatus, PackageNEVRA, ServerStatus
from ...utils import host_arch, host_distro
from ..transport.errors import DecodeError
from .client import CloudClient


def _decode(result: CallResult) -> Any:
    body = result.body or b""
    try:
        return json.loads(body)
    except ValueError as e:
        raise DecodeError(f"Error parsing response ({e}): {body.decode('utf-8', errors='replace')}", body) from e


def _unexpected(result: CallResult, expected: str) -> APIResponse:
    """APIResponse for a 2xx body that is not the expected kind of object."""
    text = (result.body or b"").decode("utf-8", errors="replace")
    return APIResponse.from_errors(
        [APIErrorMsg("UnexpectedResponse", f"expected {expected}: {text}")],
        result.status_code,
    )


def _items(data: Any) -> List[Dict[str, Any]]:
    """Items of a collection response, either a bare list or a {"items": [...]} object."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return list(data.get("items") or [])
    return []


class CloudAPI:
    """Compose, distribution and package operations on the cloudapi server."""

    backend = Backend.CLOUD

    def __init__(self, client: CloudClient, logger: Optional[logging.Logger] = None):
        self.client = client
        self._logger = logger or logging.getLogger(__name__)

    def exists(self) -> bool:
        return self.client.exists()

    def server_status(self) -> Tuple[Optional[ServerStatus], Optional[APIResponse]]:
        """Server details from the info block of the openapi document."""
        result = self.client.get_json("openapi")
        if not result.ok:
            return None, result.api_response
        info = _decode(result).get("info") or {}
        return ServerStatus(
            api=str(info.get("version", "")),
            backend=str(info.get("title", "")),
            build=str(info.get("version", "")),
        ), None

    def list_composes(self) -> Tuple[List[ComposeStatus], Optional[APIResponse]]:
        result = self.client.get_json("composes/")
        if not result.ok:
            return [], result.api_response
        return [ComposeStatus.from_cloud(c) for c in _items(_decode(result))], None

    def start_compose(
        self,
        blueprint: Dict[str, Any],
        compose_type: str,
        size: int = 0,
        upload_type: str = "local",
        upload_options: Optional[Dict[str, Any]] = None,
        distro: str = "",
        arch: str = "",
    ) -> Tuple[Optional[str], Optional[APIResponse]]:
        """Start a compose of a blueprint object, returns the compose id.

        ``size`` is in MiB. Without upload options the image is kept on the server
        and can be downloaded with compose_image. Distribution and architecture
        default to the host's.
        """
        image_request: Dict[str, Any] = {
            "architecture": arch or host_arch(),
            "image_type": compose_type,
            "repositories": [],
            "upload_targets": [{"type": upload_type, "upload_options": upload_options or {}}],
        }
        if size:
            image_request["size"] = size * 1024 * 1024
        request = {
            "distribution": distro or host_distro(),
            "blueprint": blueprint,
            "image_requests": [image_request],
        }
        result = self.client.post_json("compose", json.dumps(request))
        if not result.ok:
            return None, result.api_response
        data = _decode(result)
        if not isinstance(data, dict) or data.get("kind") != "ComposeId":
            return None, _unexpected(result, "ComposeId")
        return data.get("id"), None

    def compose_info(self, compose_id: str) -> Tuple[Optional[Dict[str, Any]], Optional[APIResponse]]:
        result = self.client.get_json(f"composes/{compose_id}")
        if not result.ok:
            return None, result.api_response
        data = _decode(result)
        if not isinstance(data, dict):
            return None, _unexpected(result, "ComposeStatus")
        return data, None

    def compose_status(self, compose_id: str) -> Tuple[Optional[ComposeStatus], Optional[APIResponse]]:
        """Status of a compose, "pending" is the only non-terminal value."""
        info, resp = self.compose_info(compose_id)
        if resp is not None:
            return None, resp
        info.setdefault("id", compose_id)
        return ComposeStatus.from_cloud(info), None

    def delete_compose(self, compose_id: str) -> Tuple[Optional[ComposeDeleteStatus], Optional[APIResponse]]:
        """Delete one compose, the cloudapi has no multi-item delete."""
        result = self.client.delete(f"composes/{compose_id}")
        if not result.ok:
            return None, result.api_response
        return ComposeDeleteStatus(id=compose_id, status=True, backend=Backend.CLOUD), None

    def compose_image(self, compose_id: str) -> Tuple[Optional[FileDownload], Optional[APIResponse]]:
        return self.client.get_file(f"composes/{compose_id}/download")

    def _distributions(self) -> Tuple[Optional[Dict[str, Any]], Optional[APIResponse]]:
        result = self.client.get_json("distributions")
        if not result.ok:
            return None, result.api_response
        data = _decode(result)
        if not isinstance(data, dict):
            return None, _unexpected(result, "distributions")
        return data, None

    def list_distros(self) -> Tuple[Optional[List[str]], Optional[APIResponse]]:
        distros, resp = self._distributions()
        if resp is not None:
            return None, resp
        return sorted(distros), None

    def get_compose_types(self, distro: str = "", arch: str = "") -> Tuple[Optional[List[str]], Optional[APIResponse]]:
        """Image types for a distribution and architecture, the host's by default."""
        distros, resp = self._distributions()
        if resp is not None:
            return None, resp
        distro = distro or host_distro()
        arch = arch or host_arch()
        if distro not in distros:
            return None, APIResponse.from_errors([APIErrorMsg("UnknownDistro", f"{distro} is not a supported distribution")])
        arches = distros[distro] or {}
        if arch not in arches:
            return None, APIResponse.from_errors([APIErrorMsg("UnknownArch", f"{arch} is not a supported architecture for {distro}")])
        return sorted(arches[arch] or []), None

    def depsolve_blueprint(
        self,
        blueprint: Dict[str, Any],
        distro: str = "",
        arch: str = "",
    ) -> Tuple[List[PackageNEVRA], Optional[APIResponse]]:
        request = {
            "distribution": distro or host_distro(),
            "architecture": arch or host_arch(),
            "blueprint": blueprint,
        }
        result = self.client.post_json("depsolve/blueprint", json.dumps(request))
        if not result.ok:
            return [], result.api_response
        return [PackageNEVRA.from_dict(p) for p in (_decode(result).get("packages") or [])], None

    def search_packages(
        self,
        names: List[str],
        distro: str = "",
        arch: str = "",
    ) -> Tuple[List[Dict[str, Any]], Optional[APIResponse]]:
        """Details, including summary and license, of packages matching the names."""
        request = {
            "distribution": distro or host_distro(),
            "architecture": arch or host_arch(),
            "packages": names,
        }
        result = self.client.post_json("search/packages", json.dumps(request))
        if not result.ok:
            return [], result.api_response
        return list(_decode(result).get("packages") or []), None
