"""
CLI presentation layer - Command handlers that call the router and print the results.
Every handler returns the process exit code.
"""

from __future__ import annotations
import argparse
import io
import json
import logging
import sys
import textwrap
import time
import tomllib
from typing import Any, Callable, Dict, List, Optional, TextIO, Tuple

from ..application.router import DualBackendRouter
from ..domain.models.api import APIErrorMsg, APIResponse, FileDownload, RawResponse
from ..domain.models.compose import ComposeStatus, sort_compose_status
from ..infrastructure.config.settings import ComposerSettings, parse_duration
from ..infrastructure.transport.errors import ComposerError
from ..utils import diff_blueprints, get_comma_args, save_blueprint, save_download

# compose list filters, mapped to the normalized status names
LIST_FILTERS = {
    "waiting": "WAITING",
    "running": "RUNNING",
    "finished": "FINISHED",
    "failed": "FAILED",
}


class JSONCollector:
    """Raw response callback that keeps every JSON body for --json output."""

    def __init__(self):
        self.responses: List[RawResponse] = []

    def __call__(self, method: str, path: str, status: int, body: bytes) -> None:
        try:
            data = json.loads(body)
        except ValueError:
            # Only JSON bodies are echoed, TOML and log text are left out
            return
        self.responses.append(RawResponse(method, path, status, data))

    def dumps(self) -> str:
        return json.dumps([r.to_dict() for r in self.responses], indent=4)


def print_wrap(out: TextIO, indent: int, columns: int, text: str) -> None:
    """Print text wrapped to ``columns`` with continuation lines indented."""
    wrapped = textwrap.fill(
        text.replace("\n", " "),
        width=columns,
        subsequent_indent=" " * indent,
        break_long_words=False,
        break_on_hyphens=False,
    )
    print(wrapped, file=out)


def format_time(ts: float) -> str:
    if ts <= 0:
        return ""
    return time.strftime("%a %b %d %H:%M:%S %Y", time.localtime(ts))


class ComposerCLI:
    """Runs one parsed command against the servers."""

    def __init__(
        self,
        router: DualBackendRouter,
        settings: ComposerSettings,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._router = router
        self._weldr = router.weldr
        self._settings = settings
        self._json = settings.json_output
        self._logger = logger or logging.getLogger(__name__)
        self._err = err or sys.stderr
        # --json output replaces the normal output entirely
        self._out = io.StringIO() if self._json else (out or sys.stdout)

    def run(self, args: argparse.Namespace) -> int:
        handler: Callable[[argparse.Namespace], int] = getattr(self, args.handler)
        try:
            return handler(args)
        except ComposerError as e:
            self._logger.debug(f"{args.handler} failed: {e!r}")
            return self.error(str(e))

    def echo(self, text: str = "") -> None:
        print(text, file=self._out)

    def error(self, message: str) -> int:
        if message:
            print(f"ERROR: {message}", file=self._err)
        return 1

    def errors(self, errors: List[APIErrorMsg]) -> int:
        """Print structured errors, they are already in the output with --json."""
        if not self._json:
            for e in errors:
                print(f"ERROR: {e}", file=self._err)
        return 1

    def response_error(self, prefix: str, resp: Optional[APIResponse]) -> Optional[int]:
        """Exit code for a failed response, None if there was nothing wrong."""
        if resp is None:
            return None
        for w in resp.warnings:
            self.echo(f"Warning: {w}")
        if not resp.is_error:
            return None
        if self._json:
            return 1
        return self.error(f"{prefix}: {resp}")

    def _save(self, prefix: str, download: Optional[FileDownload], resp: Optional[APIResponse], filename: str) -> int:
        if resp is not None:
            return self.errors(resp.errors)
        try:
            path = save_download(download.path, download.content_disposition, filename)
        except (OSError, ValueError) as e:
            return self.error(f"{prefix}: {e}")
        self.echo(path)
        return 0

    # blueprints

    def blueprints_list(self, args: argparse.Namespace) -> int:
        names, resp = self._weldr.list_blueprints()
        rc = self.response_error("List Error", resp)
        if rc is not None:
            return rc
        for name in names:
            self.echo(name)
        return 0

    def blueprints_show(self, args: argparse.Namespace) -> int:
        blueprints, errors = self._weldr.get_blueprints_toml(get_comma_args(args.names))
        for bp in blueprints:
            self.echo(bp)
        if errors:
            return self.errors(errors)
        return 0

    def blueprints_changes(self, args: argparse.Namespace) -> int:
        changes, errors = self._weldr.get_blueprints_changes(get_comma_args(args.names))
        for bp in changes:
            self.echo(bp.get("name", ""))
            for change in bp.get("changes") or []:
                revision = change.get("revision")
                rev = f"  revision {revision}" if revision else ""
                self.echo(f"    {change.get('timestamp', '')}  {change.get('commit', '')}{rev}")
                print_wrap(self._out, 8, 80, f"        {change.get('message', '')}")
            self.echo()
        if errors:
            return self.errors(errors)
        return 0

    def _push_files(self, prefix: str, filenames: List[str], push: Callable[[str], Optional[APIResponse]]) -> int:
        rc = 0
        for filename in filenames:
            try:
                with open(filename, encoding="utf-8") as f:
                    data = f.read()
            except OSError as e:
                rc = self.error(f"{prefix}: reading {filename}: {e}")
                continue
            failed = self.response_error(prefix, push(data))
            if failed is not None:
                rc = failed
        return rc

    def blueprints_push(self, args: argparse.Namespace) -> int:
        return self._push_files("Push Error", args.filenames, self._weldr.push_blueprint_toml)

    def blueprints_workspace(self, args: argparse.Namespace) -> int:
        return self._push_files("Workspace Error", args.filenames, self._weldr.push_blueprint_workspace_toml)

    def blueprints_delete(self, args: argparse.Namespace) -> int:
        rc = 0
        for name in get_comma_args(args.names):
            failed = self.response_error("Delete Error", self._weldr.delete_blueprint(name))
            if failed is not None:
                rc = failed
        return rc

    def blueprints_tag(self, args: argparse.Namespace) -> int:
        rc = 0
        for name in get_comma_args(args.names):
            failed = self.response_error("Tag Error", self._weldr.tag_blueprint(name))
            if failed is not None:
                rc = failed
        return rc

    def blueprints_undo(self, args: argparse.Namespace) -> int:
        return self.response_error("Undo Error", self._weldr.undo_blueprint(args.name, args.commit)) or 0

    def blueprints_freeze(self, args: argparse.Namespace) -> int:
        blueprints, errors = self._weldr.get_frozen_blueprints_json(get_comma_args(args.names))
        for bp in blueprints:
            if bp.get("version"):
                self.echo(f"blueprint: {bp.get('name', '')} v{bp['version']}")
            else:
                self.echo(f"blueprint: {bp.get('name', '')}")
            for item in (bp.get("modules") or []) + (bp.get("packages") or []):
                self.echo(f"    {item.get('name', '')}-{item.get('version', '')}")
        if errors:
            return self.errors(errors)
        return 0

    def blueprints_save(self, args: argparse.Namespace) -> int:
        names = get_comma_args(args.names)
        if args.commit and len(names) > 1:
            return self.error("--commit only supports one blueprint name at a time")

        if args.commit:
            if self._json:
                # Only fetched for the JSON echo
                _, resp = self._weldr.get_blueprint_change_json(names[0], args.commit)
                return self.response_error("Save Error", resp) or 0
            blueprint, resp = self._weldr.get_blueprint_change_toml(names[0], args.commit)
            if resp is not None:
                return self.errors(resp.errors)
            blueprints = [blueprint]
        else:
            if self._json:
                _, errors = self._weldr.get_blueprints_json(names)
                return self.errors(errors) if errors else 0
            blueprints, errors = self._weldr.get_blueprints_toml(names)
            if errors:
                return self.errors(errors)

        rc = 0
        for data in blueprints:
            try:
                save_blueprint(data, args.commit, args.filename)
            except (OSError, ValueError) as e:
                rc = self.error(str(e))
        return rc

    def _newest_commit(self, name: str) -> str:
        changes, errors = self._weldr.get_blueprints_changes([name])
        if errors:
            raise ValueError(str(errors[0]))
        if not changes:
            raise ValueError("no blueprints")
        if not changes[0].get("changes"):
            raise ValueError(f"no NEWEST commit for {name}")
        return changes[0]["changes"][0].get("commit", "")

    def _blueprint_at(self, name: str, commit: str) -> str:
        """TOML of a blueprint at a commit, NEWEST or WORKSPACE.

        Raises ValueError with the server's errors.
        """
        if commit == "WORKSPACE":
            blueprints, errors = self._weldr.get_blueprints_toml([name])
            if errors:
                raise ValueError(", ".join(str(e) for e in errors))
            if not blueprints:
                raise ValueError("no blueprints")
            return blueprints[0]
        if commit == "NEWEST":
            commit = self._newest_commit(name)
        blueprint, resp = self._weldr.get_blueprint_change_toml(name, commit)
        if resp is not None:
            raise ValueError(", ".join(resp.all_errors()))
        return blueprint

    def _blueprint_json_at(self, name: str, commit: str) -> None:
        if commit == "WORKSPACE":
            _, errors = self._weldr.get_blueprints_json([name])
            if errors:
                raise ValueError(str(errors[0]))
            return
        if commit == "NEWEST":
            commit = self._newest_commit(name)
        _, resp = self._weldr.get_blueprint_change_json(name, commit)
        if resp is not None:
            raise ValueError(", ".join(resp.all_errors()))

    def blueprints_diff(self, args: argparse.Namespace) -> int:
        if args.from_commit == "WORKSPACE":
            return self.error("FROM-COMMIT cannot be WORKSPACE")
        diff_args = list(args.diff_args)
        if diff_args[:1] == ["--"]:
            diff_args = diff_args[1:]
        try:
            if self._json:
                self._blueprint_json_at(args.name, args.from_commit)
                self._blueprint_json_at(args.name, args.to_commit)
                return 0
            from_bp = self._blueprint_at(args.name, args.from_commit)
            to_bp = self._blueprint_at(args.name, args.to_commit)
            proc = diff_blueprints(from_bp, args.from_commit, to_bp, args.to_commit, diff_args)
        except (OSError, ValueError, RuntimeError) as e:
            return self.error(str(e))
        if proc.stdout:
            self._out.write(proc.stdout)
        if proc.stderr:
            self._err.write(proc.stderr)
        return 0

    def blueprints_depsolve(self, args: argparse.Namespace) -> int:
        blueprints, errors = self._weldr.depsolve_blueprints(get_comma_args(args.names))
        for bp in blueprints:
            info = bp["blueprint"]
            self.echo(f"blueprint: {info.get('name', '')} v{info.get('version', '')}")
            for dep in bp["dependencies"]:
                self.echo(f"    {dep}")
        if errors:
            return self.errors(errors)
        return 0

    # compose

    def _compose_rows(self, composes: List[ComposeStatus], filters: List[str]) -> List[ComposeStatus]:
        wanted = {LIST_FILTERS[f] for f in filters if f in LIST_FILTERS}
        return [c for c in composes if not wanted or c.status in wanted]

    def compose_list(self, args: argparse.Namespace) -> int:
        composes, errors = self._router.list_composes()
        rows = [("ID", "Status", "Blueprint", "Version", "Type")]
        for c in self._compose_rows(composes, args.filters):
            rows.append((c.id, c.status, c.blueprint, c.version, c.compose_type))
        self._table(rows)
        if errors:
            return self.errors(errors)
        return 0

    def compose_status(self, args: argparse.Namespace) -> int:
        composes, errors = self._router.list_composes()
        rows = [("ID", "Status", "Time", "Blueprint", "Version", "Type", "Size")]
        for c in sort_compose_status(composes):
            size = str(c.image_size) if c.image_size > 0 else ""
            rows.append((c.id, c.status, format_time(c.timestamp), c.blueprint, c.version, c.compose_type, size))
        self._table(rows)
        if errors:
            return self.errors(errors)
        return 0

    def _table(self, rows: List[Tuple[str, ...]]) -> None:
        widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
        for row in rows:
            self.echo("   ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip())

    def compose_types(self, args: argparse.Namespace) -> int:
        types, resp = self._router.get_compose_types(args.distro, args.arch)
        rc = self.response_error("Types Error", resp)
        if rc is not None:
            return rc
        for t in sorted(types):
            self.echo(t)
        return 0

    def compose_start(self, args: argparse.Namespace) -> int:
        upload_options: Optional[Dict[str, Any]] = None
        upload_type = "local"
        if args.upload:
            upload_type, options_file = args.upload
            try:
                with open(options_file, "rb") as f:
                    upload_options = tomllib.load(f)
            except (OSError, ValueError) as e:
                return self.error(f"Error reading {options_file} - {e}")

        try:
            handle, resp = self._router.start_compose(
                args.blueprint,
                args.compose_type,
                size=args.size,
                upload_type=upload_type,
                upload_options=upload_options,
                test_mode=self._settings.test_mode,
            )
        except (OSError, ValueError) as e:
            return self.error(f"Error reading {args.blueprint} - {e}")
        rc = self.response_error("Error starting compose", resp)
        if rc is not None:
            return rc
        self.echo(f"Compose {handle.id} added to the queue")

        if args.wait:
            return self._wait(handle.id, args.wait_timeout, args.poll)
        return 0

    def compose_start_ostree(self, args: argparse.Namespace) -> int:
        if (args.image_name is None) != (args.profile is None):
            return self.error("Invalid number of arguments")
        profile: Optional[Dict[str, Any]] = None
        if args.profile:
            try:
                with open(args.profile, "rb") as f:
                    profile = tomllib.load(f)
            except (OSError, ValueError) as e:
                return self.error(f"Error reading {args.profile} - {e}")

        compose_id, resp = self._weldr.start_ostree_compose(
            args.blueprint,
            args.compose_type,
            ref=args.ref,
            parent=args.parent,
            url=args.url,
            size=args.size,
            image_name=args.image_name or "",
            profile=profile,
            test_mode=self._settings.test_mode,
        )
        rc = self.response_error("Problem starting OSTree compose", resp)
        if rc is not None:
            return rc
        self.echo(f"Compose {compose_id} added to the queue")

        if args.wait:
            return self._wait(compose_id, args.wait_timeout, args.poll)
        return 0

    def compose_cancel(self, args: argparse.Namespace) -> int:
        _, errors = self._weldr.cancel_compose(args.uuid)
        if errors:
            return self.errors(errors)
        return 0

    def compose_delete(self, args: argparse.Namespace) -> int:
        _, errors = self._router.delete_composes(get_comma_args(args.uuids))
        if errors:
            return self.errors(errors)
        return 0

    def compose_info(self, args: argparse.Namespace) -> int:
        info, resp = self._weldr.compose_info(args.uuid)
        if resp is not None:
            return self.errors(resp.errors)
        status = ComposeStatus.from_weldr(info)
        size = str(status.image_size) if status.image_size > 0 else ""
        self.echo(f"{status.id} {status.status:<8} {status.blueprint:<15} {status.version} {status.compose_type:<16} {size}".rstrip())
        blueprint = info.get("blueprint") or {}
        self.echo("Packages:")
        for p in blueprint.get("packages") or []:
            self.echo(f"    {p.get('name', '')}-{p.get('version', '')}")
        self.echo("Modules:")
        for m in blueprint.get("modules") or []:
            self.echo(f"    {m.get('name', '')}-{m.get('version', '')}")
        self.echo("Dependencies:")
        for d in (info.get("deps") or {}).get("packages") or []:
            self.echo(f"    {d.get('name', '')}-{d.get('epoch', 0)}:{d.get('version', '')}-{d.get('release', '')}.{d.get('arch', '')}")
        return 0

    def compose_log(self, args: argparse.Namespace) -> int:
        log, resp = self._weldr.compose_log(args.uuid, args.size)
        rc = self.response_error("Log error", resp)
        if rc is not None:
            return rc
        self.echo(log)
        return 0

    def compose_logs(self, args: argparse.Namespace) -> int:
        download, resp = self._weldr.compose_logs(args.uuid)
        return self._save("Logs error", download, resp, args.filename)

    def compose_metadata(self, args: argparse.Namespace) -> int:
        download, resp = self._weldr.compose_metadata(args.uuid)
        return self._save("Metadata error", download, resp, args.filename)

    def compose_results(self, args: argparse.Namespace) -> int:
        download, resp = self._weldr.compose_results(args.uuid)
        return self._save("Results error", download, resp, args.filename)

    def compose_image(self, args: argparse.Namespace) -> int:
        download, resp = self._router.compose_image(args.uuid)
        return self._save("Image error", download, resp, args.filename)

    def compose_wait(self, args: argparse.Namespace) -> int:
        return self._wait(args.uuid, args.wait_timeout, args.poll)

    def _wait(self, compose_id: str, timeout_text: Optional[str], poll_text: Optional[str]) -> int:
        try:
            timeout = parse_duration(timeout_text) if timeout_text else self._settings.wait_timeout
        except ValueError as e:
            return self.error(f"Wait Error: timeout - {e}")
        try:
            interval = parse_duration(poll_text) if poll_text else self._settings.wait_poll
        except ValueError as e:
            return self.error(f"Wait Error: poll - {e}")

        try:
            outcome = self._router.compose_wait(compose_id, timeout, interval)
        except ValueError as e:
            return self.error(f"Wait Error: {e}")
        if outcome.error is not None:
            return self.error(f"Wait Error: {outcome.error}")
        if outcome.api_response is not None:
            return self.errors(outcome.api_response.errors)
        if outcome.aborted:
            return self.error(f"Wait Error: timeout after {timeout_text or f'{timeout:g}s'}")
        self.echo(f"{outcome.status.id} {outcome.status.status}")
        return 0

    # projects, modules, sources, distros

    def _print_projects(self, projects: List[Dict[str, Any]], builds: bool = False) -> None:
        for p in projects:
            print_wrap(self._out, 6, 80, f"Name: {p.get('name', '')}")
            print_wrap(self._out, 9, 80, f"Summary: {p.get('summary', '')}")
            print_wrap(self._out, 10, 80, f"Homepage: {p.get('homepage', '')}")
            print_wrap(self._out, 13, 80, f"Description: {p.get('description', '')}")
            if builds:
                self.echo("Builds: ")
                for b in p.get("builds") or []:
                    source = b.get("source") or {}
                    self.echo(f"     {b.get('epoch', 0)}:{source.get('version', '')}-{b.get('release', '')} at {b.get('build_time', '')} for {b.get('arch', '')}")
            self.echo("\n")

    def projects_list(self, args: argparse.Namespace) -> int:
        projects, resp = self._weldr.list_projects(args.distro)
        rc = self.response_error("List Error", resp)
        if rc is not None:
            return rc
        self._print_projects(projects)
        return 0

    def projects_info(self, args: argparse.Namespace) -> int:
        projects, resp = self._weldr.projects_info(get_comma_args(args.names), args.distro)
        if resp is not None and resp.is_error:
            if self._json:
                return 1
            return self.error("\n".join(resp.all_errors()))
        self._print_projects(projects, builds=True)
        return 0

    def projects_depsolve(self, args: argparse.Namespace) -> int:
        deps, errors = self._router.depsolve_projects(get_comma_args(args.names), args.distro, args.arch)
        for d in deps:
            self.echo(f"    {d}")
        if errors:
            return self.errors(errors)
        return 0

    def modules_list(self, args: argparse.Namespace) -> int:
        modules, resp = self._weldr.list_modules(args.distro)
        rc = self.response_error("List Error", resp)
        if rc is not None:
            return rc
        for m in modules:
            self.echo(m.get("name", ""))
        return 0

    def sources_list(self, args: argparse.Namespace) -> int:
        sources, resp = self._weldr.list_sources()
        rc = self.response_error("List Error", resp)
        if rc is not None:
            return rc
        for s in sources:
            self.echo(s)
        return 0

    def sources_info(self, args: argparse.Namespace) -> int:
        sources, errors = self._weldr.get_sources_json(get_comma_args(args.names))
        for name in sorted(sources):
            self.echo(json.dumps({name: sources[name]}, indent=4))
        if errors:
            return self.errors(errors)
        return 0

    def sources_add(self, args: argparse.Namespace) -> int:
        return self._push_files("Add Error", args.filenames, self._weldr.new_source_toml)

    def sources_delete(self, args: argparse.Namespace) -> int:
        return self.response_error("Delete Error", self._weldr.delete_source(args.name)) or 0

    def distros_list(self, args: argparse.Namespace) -> int:
        distros, resp = self._router.list_distros()
        rc = self.response_error("List Error", resp)
        if rc is not None:
            return rc
        for d in distros:
            self.echo(d)
        return 0

    # status

    def status_show(self, args: argparse.Namespace) -> int:
        statuses, errors = self._router.server_status()
        for backend, status in statuses.items():
            self.echo(f"API server status ({backend.value}):")
            self.echo(f"    Database version:   {status.db_version}")
            self.echo(f"    Database supported: {str(status.db_supported).lower()}")
            self.echo(f"    Schema version:     {status.schema_version}")
            self.echo(f"    API version:        {status.api}")
            self.echo(f"    Backend:            {status.backend}")
            self.echo(f"    Build:              {status.build}")
            for msg in status.messages:
                self.echo(msg)
        if errors:
            return self.errors(errors)
        return 0
