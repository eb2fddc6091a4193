"""
weldr API - Operations offered by the legacy image-build server.

Every operation returns its value together with an optional APIResponse holding
structured errors from the server. Client-side failures are raised.
"""

from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from ...domain.models.api import APIErrorMsg, APIResponse, CallResult, FileDownload, Page
from ...domain.models.compose import (
    Backend,
    ComposeDeleteStatus,
    ComposeStatus,
    PackageNEVRA,
    ServerStatus,
)
from ..transport.errors import DecodeError
from ..transport.transport import append_query
from .client import WeldrClient, coerce_total


def decode_json(result: CallResult) -> Any:
    """Decode a successful body, raising DecodeError with the raw text on failure."""
    body = result.body or b""
    try:
        return json.loads(body)
    except ValueError as e:
        raise DecodeError(f"Error parsing response ({e}): {body.decode('utf-8', errors='replace')}", body) from e


def changes_total(body: bytes) -> int:
    """Largest per-blueprint change count in a blueprints/changes response.

    Several blueprints can be requested at once and each has its own total.
    """
    try:
        data = json.loads(body)
    except ValueError as e:
        raise DecodeError(f"Error parsing changes response ({e}): {body.decode('utf-8', errors='replace')}", body) from e
    total = 0
    for bp in (data.get("blueprints") or []) if isinstance(data, dict) else []:
        if isinstance(bp, dict) and "total" in bp:
            total = max(total, coerce_total(bp["total"]))
    return total


def _with_distro(route: str, distro: str) -> str:
    if distro:
        return append_query(route, f"distro={distro}")
    return route


class WeldrAPI:
    """Blueprint, compose, project, module and source operations on the weldr server."""

    backend = Backend.WELDR

    def __init__(self, client: WeldrClient, logger: Optional[logging.Logger] = None):
        self.client = client
        self._logger = logger or logging.getLogger(__name__)

    def _status_only(self, result: CallResult) -> Optional[APIResponse]:
        """APIResponse for requests whose body is just a status, None when all is well."""
        if not result.ok:
            return result.api_response
        resp = APIResponse.from_body(result.body or b"", result.status_code)
        if resp is not None and (resp.is_error or resp.warnings):
            return resp
        return None

    # Server

    def server_status(self) -> Tuple[Optional[ServerStatus], Optional[APIResponse]]:
        """Status of the API server from /api/status."""
        result = self.client.get_raw_url("/api/status")
        if not result.ok:
            return None, result.api_response
        return ServerStatus.from_dict(decode_json(result)), None

    # Blueprints

    def list_blueprints(self) -> Tuple[Optional[List[str]], Optional[APIResponse]]:
        """Names of all the blueprints on the server."""
        result = self.client.get_json_all("/blueprints/list")
        if not result.ok:
            return None, result.api_response
        page = Page.from_dict(decode_json(result), "blueprints")
        return [str(name) for name in page.items], None

    def get_blueprints_toml(self, names: List[str]) -> Tuple[List[str], List[APIErrorMsg]]:
        """Blueprints as TOML strings, one request per name."""
        blueprints: List[str] = []
        errors: List[APIErrorMsg] = []
        for name in names:
            result = self.client.get_raw("GET", f"/blueprints/info/{name}?format=toml")
            if not result.ok:
                errors.extend(result.api_response.errors)
                continue
            blueprints.append((result.body or b"").decode("utf-8"))
        return blueprints, errors

    def _blueprints_json(self, route: str) -> Tuple[Optional[Dict[str, Any]], List[APIErrorMsg]]:
        result = self.client.get_raw("GET", route)
        if not result.ok:
            return None, list(result.api_response.errors)
        try:
            data = decode_json(result)
        except DecodeError as e:
            return None, [APIErrorMsg("JSONError", str(e))]
        errors = [APIErrorMsg.from_dict(e) for e in (data.get("errors") or [])]
        return data, errors

    def get_blueprints_json(self, names: List[str]) -> Tuple[List[Any], List[APIErrorMsg]]:
        """Blueprints as JSON objects, with any per-blueprint errors."""
        data, errors = self._blueprints_json(f"/blueprints/info/{','.join(names)}")
        if data is None:
            return [], errors
        return list(data.get("blueprints") or []), errors

    def get_frozen_blueprints_json(self, names: List[str]) -> Tuple[List[Any], List[APIErrorMsg]]:
        """Frozen blueprints, unwrapped from their {"blueprint": ...} containers."""
        data, errors = self._blueprints_json(f"/blueprints/freeze/{','.join(names)}")
        if data is None:
            return [], errors
        blueprints = [b["blueprint"] for b in (data.get("blueprints") or []) if isinstance(b, dict) and "blueprint" in b]
        return blueprints, errors

    def get_blueprints_changes(self, names: List[str]) -> Tuple[List[Dict[str, Any]], List[APIErrorMsg]]:
        """Complete change history of each named blueprint."""
        route = f"/blueprints/changes/{','.join(names)}"
        result = self.client.get_json_all_fn_total(route, changes_total)
        if not result.ok:
            return [], list(result.api_response.errors)
        data = decode_json(result)
        errors = [APIErrorMsg.from_dict(e) for e in (data.get("errors") or [])]
        return list(data.get("blueprints") or []), errors

    def get_blueprint_change_toml(self, name: str, commit: str) -> Tuple[Optional[str], Optional[APIResponse]]:
        """One blueprint as TOML, as it was at a commit."""
        result = self.client.get_raw("GET", f"/blueprints/change/{name}/{commit}?format=toml")
        if not result.ok:
            return None, result.api_response
        return (result.body or b"").decode("utf-8"), None

    def get_blueprint_change_json(self, name: str, commit: str) -> Tuple[Optional[Any], Optional[APIResponse]]:
        result = self.client.get_raw("GET", f"/blueprints/change/{name}/{commit}")
        if not result.ok:
            return None, result.api_response
        return decode_json(result), None

    def depsolve_blueprints(self, names: List[str]) -> Tuple[List[Dict[str, Any]], List[APIErrorMsg]]:
        """Each blueprint with the complete list of packages it needs.

        Entries look like {"blueprint": {...}, "dependencies": [PackageNEVRA, ...]}.
        """
        data, errors = self._blueprints_json(f"/blueprints/depsolve/{','.join(names)}")
        if data is None:
            return [], errors
        blueprints = []
        for bp in data.get("blueprints") or []:
            if not isinstance(bp, dict):
                continue
            blueprints.append({
                "blueprint": bp.get("blueprint") or {},
                "dependencies": [PackageNEVRA.from_dict(d) for d in (bp.get("dependencies") or [])],
            })
        return blueprints, errors

    def push_blueprint_toml(self, blueprint: str) -> Optional[APIResponse]:
        return self._status_only(self.client.post_toml("/blueprints/new", blueprint))

    def push_blueprint_workspace_toml(self, blueprint: str) -> Optional[APIResponse]:
        return self._status_only(self.client.post_toml("/blueprints/workspace", blueprint))

    def delete_blueprint(self, name: str) -> Optional[APIResponse]:
        return self._status_only(self.client.delete_raw(f"/blueprints/delete/{name}"))

    def tag_blueprint(self, name: str) -> Optional[APIResponse]:
        return self._status_only(self.client.post_json(f"/blueprints/tag/{name}", ""))

    def undo_blueprint(self, name: str, commit: str) -> Optional[APIResponse]:
        return self._status_only(self.client.post_json(f"/blueprints/undo/{name}/{commit}", ""))

    # Composes

    def list_composes(self) -> Tuple[List[ComposeStatus], List[APIErrorMsg]]:
        """Every compose in the queue, finished and failed lists."""
        composes: List[ComposeStatus] = []
        errors: List[APIErrorMsg] = []
        for route, keys in (
            ("/compose/queue", ("new", "run")),
            ("/compose/finished", ("finished",)),
            ("/compose/failed", ("failed",)),
        ):
            result = self.client.get_raw("GET", route)
            if not result.ok:
                errors.extend(result.api_response.errors)
                return [], errors
            try:
                data = decode_json(result)
            except DecodeError as e:
                errors.append(APIErrorMsg("JSONError", str(e)))
                continue
            for key in keys:
                composes.extend(ComposeStatus.from_weldr(c) for c in (data.get(key) or []))
        if errors:
            return [], errors
        return composes, []

    def get_compose_types(self, distro: str = "") -> Tuple[Optional[List[str]], Optional[APIResponse]]:
        """Names of the enabled compose types."""
        result = self.client.get_raw("GET", _with_distro("/compose/types", distro))
        if not result.ok:
            return None, result.api_response
        data = decode_json(result)
        return [t["name"] for t in (data.get("types") or []) if t.get("enabled")], None

    def _post_compose(self, settings: Dict[str, Any], test_mode: int) -> Tuple[Optional[str], Optional[APIResponse]]:
        route = "/compose"
        if test_mode:
            route = append_query(route, f"test={test_mode}")
        result = self.client.post_json(route, json.dumps(settings))
        if not result.ok:
            return None, result.api_response
        data = decode_json(result)
        warnings = [str(w) for w in (data.get("warnings") or [])]
        resp = APIResponse(status=True, warnings=warnings, status_code=result.status_code) if warnings else None
        return data.get("build_id"), resp

    def start_compose(
        self,
        blueprint: str,
        compose_type: str,
        size: int = 0,
        test_mode: int = 0,
    ) -> Tuple[Optional[str], Optional[APIResponse]]:
        """Start a compose of a blueprint, returns the build UUID.

        A successful response may still carry warnings in the APIResponse.
        """
        settings = {
            "blueprint_name": blueprint,
            "compose_type": compose_type,
            "branch": "master",
            "size": size,
        }
        return self._post_compose(settings, test_mode)

    def start_ostree_compose(
        self,
        blueprint: str,
        compose_type: str,
        ref: str = "",
        parent: str = "",
        url: str = "",
        size: int = 0,
        image_name: str = "",
        profile: Optional[Dict[str, Any]] = None,
        test_mode: int = 0,
    ) -> Tuple[Optional[str], Optional[APIResponse]]:
        """Start an ostree compose, optionally uploading the result.

        ``profile`` is an upload profile with ``provider`` and ``settings`` keys,
        it is only sent together with ``image_name``.
        """
        settings: Dict[str, Any] = {
            "blueprint_name": blueprint,
            "compose_type": compose_type,
            "branch": "master",
            "size": size,
            "ostree": {"ref": ref, "parent": parent, "url": url},
        }
        if image_name and profile is not None:
            settings["upload"] = {
                "provider": profile.get("provider", ""),
                "image_name": image_name,
                "settings": profile.get("settings") or {},
            }
        return self._post_compose(settings, test_mode)

    def cancel_compose(self, compose_id: str) -> Tuple[Optional[ComposeDeleteStatus], List[APIErrorMsg]]:
        """Cancel a waiting or running compose."""
        result = self.client.delete_raw(f"/compose/cancel/{compose_id}")
        if not result.ok:
            return None, list(result.api_response.errors)
        data = decode_json(result)
        errors = [APIErrorMsg.from_dict(e) for e in (data.get("errors") or [])]
        if "uuid" not in data:
            return None, errors
        return ComposeDeleteStatus(id=data["uuid"], status=bool(data.get("status"))), errors

    def delete_composes(self, compose_ids: List[str]) -> Tuple[List[ComposeDeleteStatus], List[APIErrorMsg]]:
        """Delete several composes in one request.

        The server deletes what it can, so both the deleted composes and the errors
        for the rest may be returned.
        """
        result = self.client.delete_raw(f"/compose/delete/{','.join(compose_ids)}")
        if not result.ok:
            return [], list(result.api_response.errors)
        data = decode_json(result)
        deleted = [
            ComposeDeleteStatus(id=u.get("uuid", ""), status=bool(u.get("status")))
            for u in (data.get("uuids") or [])
        ]
        errors = [APIErrorMsg.from_dict(e) for e in (data.get("errors") or [])]
        return deleted, errors

    def compose_info(self, compose_id: str) -> Tuple[Optional[Dict[str, Any]], Optional[APIResponse]]:
        """Detailed information about a compose."""
        result = self.client.get_raw("GET", f"/compose/info/{compose_id}")
        if not result.ok:
            return None, result.api_response
        return decode_json(result), None

    def compose_status(self, compose_id: str) -> Tuple[Optional[ComposeStatus], Optional[APIResponse]]:
        """Current queue status of a compose, taken from its info."""
        info, resp = self.compose_info(compose_id)
        if resp is not None:
            return None, resp
        return ComposeStatus.from_weldr(info), None

    def compose_log(self, compose_id: str, size_kb: int = 1024) -> Tuple[Optional[str], Optional[APIResponse]]:
        """Last ``size_kb`` kB of a running compose's log."""
        result = self.client.get_raw("GET", f"/compose/log/{compose_id}?size={size_kb}")
        if not result.ok:
            return None, result.api_response
        return (result.body or b"").decode("utf-8", errors="replace"), None

    def compose_logs(self, compose_id: str) -> Tuple[Optional[FileDownload], Optional[APIResponse]]:
        return self.client.get_file(f"/compose/logs/{compose_id}")

    def compose_metadata(self, compose_id: str) -> Tuple[Optional[FileDownload], Optional[APIResponse]]:
        return self.client.get_file(f"/compose/metadata/{compose_id}")

    def compose_results(self, compose_id: str) -> Tuple[Optional[FileDownload], Optional[APIResponse]]:
        return self.client.get_file(f"/compose/results/{compose_id}")

    def compose_image(self, compose_id: str) -> Tuple[Optional[FileDownload], Optional[APIResponse]]:
        return self.client.get_file(f"/compose/image/{compose_id}")

    # Distros, projects, modules, sources

    def list_distros(self) -> Tuple[Optional[List[str]], Optional[APIResponse]]:
        result = self.client.get_raw("GET", "/distros/list")
        if not result.ok:
            return None, result.api_response
        return sorted(decode_json(result).get("distros") or []), None

    def list_projects(self, distro: str = "") -> Tuple[Optional[List[Dict[str, Any]]], Optional[APIResponse]]:
        result = self.client.get_json_all(_with_distro("/projects/list", distro))
        if not result.ok:
            return None, result.api_response
        return Page.from_dict(decode_json(result), "projects").items, None

    def projects_info(self, names: List[str], distro: str = "") -> Tuple[Optional[List[Dict[str, Any]]], Optional[APIResponse]]:
        result = self.client.get_raw("GET", _with_distro(f"/projects/info/{','.join(names)}", distro))
        if not result.ok:
            return None, result.api_response
        return list(decode_json(result).get("projects") or []), None

    def depsolve_projects(self, names: List[str], distro: str = "") -> Tuple[List[PackageNEVRA], List[APIErrorMsg]]:
        """Dependencies of the listed projects."""
        result = self.client.get_raw("GET", _with_distro(f"/projects/depsolve/{','.join(names)}", distro))
        if not result.ok:
            return [], list(result.api_response.errors)
        data = decode_json(result)
        errors = [APIErrorMsg.from_dict(e) for e in (data.get("errors") or [])]
        return [PackageNEVRA.from_dict(p) for p in (data.get("projects") or [])], errors

    def list_modules(self, distro: str = "") -> Tuple[Optional[List[Dict[str, Any]]], Optional[APIResponse]]:
        result = self.client.get_json_all(_with_distro("/modules/list", distro))
        if not result.ok:
            return None, result.api_response
        return Page.from_dict(decode_json(result), "modules").items, None

    def list_sources(self) -> Tuple[Optional[List[str]], Optional[APIResponse]]:
        result = self.client.get_raw("GET", "/projects/source/list")
        if not result.ok:
            return None, result.api_response
        return sorted(decode_json(result).get("sources") or []), None

    def get_sources_json(self, names: List[str]) -> Tuple[Dict[str, Any], List[APIErrorMsg]]:
        result = self.client.get_raw("GET", f"/projects/source/info/{','.join(names)}")
        if not result.ok:
            return {}, list(result.api_response.errors)
        try:
            data = decode_json(result)
        except DecodeError as e:
            return {}, [APIErrorMsg("JSONError", str(e))]
        errors = [APIErrorMsg.from_dict(e) for e in (data.get("errors") or [])]
        return dict(data.get("sources") or {}), errors

    def new_source_toml(self, source: str) -> Optional[APIResponse]:
        return self._status_only(self.client.post_toml("/projects/source/new", source))

    def delete_source(self, source_id: str) -> Optional[APIResponse]:
        return self._status_only(self.client.delete_raw(f"/projects/source/delete/{source_id}"))
