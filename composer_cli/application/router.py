"""
Dual-backend router - Presents one set of compose operations over the weldr and cloudapi servers.

The two servers do not share compose ids, so the router decides per operation
which one to ask and how to fall back.
"""

from __future__ import annotations
import logging
import os
import time
import tomllib
from typing import Any, Dict, List, Optional, Tuple

from ..domain.interfaces.backend import Clock, Sleeper
from ..domain.models.api import APIErrorMsg, APIResponse, FileDownload
from ..domain.models.compose import (
    Backend,
    ComposeDeleteStatus,
    ComposeHandle,
    ComposeStatus,
    PackageNEVRA,
    ServerStatus,
    WaitOutcome,
)
from ..infrastructure.cloud.api import CloudAPI
from ..infrastructure.weldr.api import WeldrAPI
from .wait import ComposeWaiter

# The cloudapi reports composes it has never heard of with this text. There is no
# machine readable id for it, so a change in wording breaks the delete fallback.
JOB_DOES_NOT_EXIST = "job does not exist"

CLOUD_REQUIRED = (
    "Using a local blueprint requires server support. "
    "Check to make sure that the cloudapi socket is enabled."
)


class DualBackendRouter:
    """Route compose operations to the cloudapi, the weldr API, or both."""

    def __init__(
        self,
        weldr: WeldrAPI,
        cloud: Optional[CloudAPI] = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.weldr = weldr
        self.cloud = cloud
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)
        self._cloud_available: Optional[bool] = None

    def cloud_available(self) -> bool:
        """Check whether the cloudapi is up, once per router."""
        if self._cloud_available is None:
            self._cloud_available = self.cloud is not None and self.cloud.exists()
            self._logger.debug(f"cloudapi available: {self._cloud_available}")
        return self._cloud_available

    def delete_composes(self, compose_ids: List[str]) -> Tuple[List[ComposeDeleteStatus], List[APIErrorMsg]]:
        """Delete composes from whichever server owns them.

        The cloudapi deletes one compose per request. Composes it does not know
        about are collected and deleted on the weldr server in one request. Any
        other cloudapi error stops the deletion and is returned with whatever was
        already deleted.
        """
        if not self.cloud_available():
            return self.weldr.delete_composes(compose_ids)

        deleted: List[ComposeDeleteStatus] = []
        residual: List[str] = []
        for compose_id in compose_ids:
            status, resp = self.cloud.delete_compose(compose_id)
            if resp is None:
                deleted.append(status)
            elif resp.contains(JOB_DOES_NOT_EXIST):
                residual.append(compose_id)
            else:
                return deleted, list(resp.errors)

        if not residual:
            return deleted, []
        self._logger.debug(f"deleting {residual} on the weldr server")
        weldr_deleted, errors = self.weldr.delete_composes(residual)
        return deleted + weldr_deleted, errors

    def list_composes(self) -> Tuple[List[ComposeStatus], List[APIErrorMsg]]:
        """cloudapi composes followed by the weldr ones.

        Structured errors from the cloudapi do not hide the weldr list.
        """
        composes: List[ComposeStatus] = []
        if self.cloud_available():
            cloud_composes, resp = self.cloud.list_composes()
            if resp is not None:
                self._logger.debug(f"cloudapi compose list failed: {resp}")
            composes.extend(cloud_composes)
        weldr_composes, errors = self.weldr.list_composes()
        composes.extend(weldr_composes)
        return composes, errors

    def start_compose(
        self,
        blueprint: str,
        compose_type: str,
        size: int = 0,
        upload_type: str = "local",
        upload_options: Optional[Dict[str, Any]] = None,
        test_mode: int = 0,
    ) -> Tuple[Optional[ComposeHandle], Optional[APIResponse]]:
        """Start a compose from a local TOML blueprint file or a blueprint on the server.

        A local file is only supported by the cloudapi. Reading or parsing the file
        raises OSError or ValueError.
        """
        if os.path.isfile(blueprint):
            if not self.cloud_available():
                return None, APIResponse.from_errors([APIErrorMsg("CloudUnavailable", CLOUD_REQUIRED)])
            with open(blueprint, "rb") as f:
                data = tomllib.load(f)
            compose_id, resp = self.cloud.start_compose(
                data, compose_type, size, upload_type=upload_type, upload_options=upload_options
            )
            if compose_id is None:
                return None, resp
            return ComposeHandle(compose_id, Backend.CLOUD), resp

        compose_id, resp = self.weldr.start_compose(blueprint, compose_type, size, test_mode)
        if compose_id is None:
            return None, resp
        return ComposeHandle(compose_id, Backend.WELDR), resp

    def compose_wait(self, compose_id: str, timeout: float, interval: float) -> WaitOutcome:
        """Wait for a compose, asking the cloudapi first when it is available."""
        sources = [self.cloud] if self.cloud_available() else []
        sources.append(self.weldr)
        waiter = ComposeWaiter(sources, clock=self._clock, sleep=self._sleep, logger=self._logger)
        return waiter.wait(compose_id, timeout, interval)

    def compose_image(self, compose_id: str) -> Tuple[Optional[FileDownload], Optional[APIResponse]]:
        """Download a compose's image from the first server that knows the compose."""
        if self.cloud_available():
            download, resp = self.cloud.compose_image(compose_id)
            if resp is None:
                return download, None
            self._logger.debug(f"cloudapi image download failed, trying weldr: {resp}")
        return self.weldr.compose_image(compose_id)

    def get_compose_types(self, distro: str = "", arch: str = "") -> Tuple[Optional[List[str]], Optional[APIResponse]]:
        if self.cloud_available():
            return self.cloud.get_compose_types(distro, arch)
        return self.weldr.get_compose_types(distro)

    def list_distros(self) -> Tuple[Optional[List[str]], Optional[APIResponse]]:
        if self.cloud_available():
            return self.cloud.list_distros()
        return self.weldr.list_distros()

    def depsolve_projects(
        self, names: List[str], distro: str = "", arch: str = ""
    ) -> Tuple[List[PackageNEVRA], List[APIErrorMsg]]:
        """Dependencies of a list of packages.

        The cloudapi only depsolves blueprints so the names are wrapped in one.
        """
        if not self.cloud_available():
            return self.weldr.depsolve_projects(names, distro)
        blueprint = {
            "name": "projects-depsolve",
            "version": "0.0.1",
            "packages": [{"name": name} for name in names],
        }
        deps, resp = self.cloud.depsolve_blueprint(blueprint, distro, arch)
        if resp is not None:
            return [], list(resp.errors)
        return deps, []

    def server_status(self) -> Tuple[Dict[Backend, ServerStatus], List[APIErrorMsg]]:
        """Status of the weldr server and, when available, the cloudapi server."""
        statuses: Dict[Backend, ServerStatus] = {}
        errors: List[APIErrorMsg] = []
        status, resp = self.weldr.server_status()
        if resp is not None:
            errors.extend(resp.errors)
        else:
            statuses[Backend.WELDR] = status
        if self.cloud_available():
            status, resp = self.cloud.server_status()
            if resp is not None:
                errors.extend(resp.errors)
            else:
                statuses[Backend.CLOUD] = status
        return statuses, errors
