#!/usr/bin/env python3
"""
Main CLI application for composer-cli.
"""

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

# Load environment variables
load_dotenv()

from . import __version__
from .application.router import DualBackendRouter
from .infrastructure.cloud import CloudAPI, CloudClient
from .infrastructure.config.settings import reload_settings
from .infrastructure.weldr import WeldrAPI, WeldrClient
from .presentation.cli import ComposerCLI, JSONCollector
from .utils import setup_logging


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for every command group."""
    parser = argparse.ArgumentParser(
        prog="composer-cli",
        description="Command line client for the osbuild-composer image-build servers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s blueprints list
  %(prog)s compose start http-server qcow2 --wait
  %(prog)s compose start ./local-blueprint.toml qcow2
  %(prog)s --json compose status
        """
    )

    # Flags left unset fall back to COMPOSER_* environment variables
    parser.add_argument('-a', '--api', dest='api_version', type=int,
                        help='weldr server API version to use (default: 1)')
    parser.add_argument('-j', '--json', dest='json_output', action='store_const', const=True,
                        help='Output the raw JSON response instead of the normal output')
    parser.add_argument('--log', dest='log_file',
                        help='Path to optional logfile')
    parser.add_argument('-s', '--socket',
                        help="Path to the weldr API server's socket file (default: /run/weldr/api.socket)")
    parser.add_argument('--cloudsocket', dest='cloud_socket',
                        help="Path to the cloudapi server's socket file (default: /run/cloudapi/api.socket)")
    parser.add_argument('--test', dest='test_mode', type=int, choices=[0, 1, 2],
                        help='Pass test mode to compose. 1=Mock compose with fail. 2=Mock compose with finished.')
    parser.add_argument('--timeout', type=float,
                        help='Timeout to use for server communication. Set to 0 for no timeout (default: 240)')
    parser.add_argument('--log-level', dest='log_level',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Set logging level')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    groups = parser.add_subparsers(dest='group', metavar='<group>')
    groups.required = True

    _add_blueprints(groups)
    _add_compose(groups)
    _add_projects(groups)

    modules = groups.add_parser('modules', help='Module commands').add_subparsers(dest='command', metavar='<command>')
    modules.required = True
    cmd = modules.add_parser('list', help='List all of the modules')
    cmd.add_argument('--distro', default='', help='Return results for distribution')
    cmd.set_defaults(handler='modules_list')

    _add_sources(groups)

    distros = groups.add_parser('distros', help='Distribution commands').add_subparsers(dest='command', metavar='<command>')
    distros.required = True
    distros.add_parser('list', help='List the available distributions').set_defaults(handler='distros_list')

    status = groups.add_parser('status', help='API server status commands').add_subparsers(dest='command', metavar='<command>')
    status.required = True
    status.add_parser('show', help='Show API server status').set_defaults(handler='status_show')

    groups.add_parser('version', help='Show the version').set_defaults(handler=None)
    return parser


def _add_blueprints(groups) -> None:
    bp = groups.add_parser('blueprints', help='Blueprint commands').add_subparsers(dest='command', metavar='<command>')
    bp.required = True

    bp.add_parser('list', help='List all of the blueprints').set_defaults(handler='blueprints_list')

    for name, handler, help_text in (
        ('show', 'blueprints_show', 'Show the blueprints in TOML format'),
        ('changes', 'blueprints_changes', 'Show the changes made to blueprints'),
        ('delete', 'blueprints_delete', 'Delete the blueprints from the server'),
        ('tag', 'blueprints_tag', 'Tag the most recent blueprint change as a release'),
        ('freeze', 'blueprints_freeze', 'Show the blueprints with the exact package versions'),
        ('depsolve', 'blueprints_depsolve', 'Depsolve the blueprints and output the package lists'),
    ):
        cmd = bp.add_parser(name, help=help_text)
        cmd.add_argument('names', nargs='+', metavar='BLUEPRINT')
        cmd.set_defaults(handler=handler)

    for name, handler, help_text in (
        ('push', 'blueprints_push', 'Push TOML blueprint files to the server'),
        ('workspace', 'blueprints_workspace', 'Push TOML blueprint files to the workspace'),
    ):
        cmd = bp.add_parser(name, help=help_text)
        cmd.add_argument('filenames', nargs='+', metavar='FILE')
        cmd.set_defaults(handler=handler)

    cmd = bp.add_parser('save', help='Save the blueprints to TOML files named BLUEPRINT-NAME.toml')
    cmd.add_argument('names', nargs='+', metavar='BLUEPRINT')
    cmd.add_argument('--filename', default='', help='Optional path and filename to save the blueprint into')
    cmd.add_argument('--commit', default='', help='Blueprint commit to retrieve instead of the latest')
    cmd.set_defaults(handler='blueprints_save')

    cmd = bp.add_parser('diff', help='List the differences between two blueprint commits',
                        epilog='FROM-COMMIT is a commit hash or NEWEST, TO-COMMIT is a commit hash, NEWEST '
                               'or WORKSPACE. Arguments after -- are passed to the system diff utility.')
    cmd.add_argument('name', metavar='BLUEPRINT')
    cmd.add_argument('from_commit', metavar='FROM-COMMIT')
    cmd.add_argument('to_commit', metavar='TO-COMMIT')
    cmd.add_argument('diff_args', nargs=argparse.REMAINDER, metavar='DIFF-ARG')
    cmd.set_defaults(handler='blueprints_diff')

    cmd = bp.add_parser('undo', help='Revert a blueprint to a previous commit')
    cmd.add_argument('name', metavar='BLUEPRINT')
    cmd.add_argument('commit', metavar='COMMIT')
    cmd.set_defaults(handler='blueprints_undo')


def _add_wait_flags(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument('--timeout', dest='wait_timeout', help='Maximum time to wait (default: 5m)')
    cmd.add_argument('--poll', help='Polling interval (default: 10s)')


def _add_compose(groups) -> None:
    compose = groups.add_parser('compose', help='Compose commands').add_subparsers(dest='command', metavar='<command>')
    compose.required = True

    cmd = compose.add_parser('list', help='List basic information about composes')
    cmd.add_argument('filters', nargs='*', metavar='STATUS', help='waiting, running, finished or failed')
    cmd.set_defaults(handler='compose_list')

    compose.add_parser('status', help='Show the status of all composes').set_defaults(handler='compose_status')

    cmd = compose.add_parser('types', help='List the supported output types')
    cmd.add_argument('--distro', default='', help='Distribution')
    cmd.add_argument('--arch', default='', help='Architecture, cloudapi only')
    cmd.set_defaults(handler='compose_types')

    cmd = compose.add_parser('start', help='Start a compose using the blueprint name or a local blueprint file')
    cmd.add_argument('blueprint', metavar='BLUEPRINT')
    cmd.add_argument('compose_type', metavar='TYPE')
    cmd.add_argument('--size', type=int, default=0, help='Size of image in MiB')
    cmd.add_argument('--upload', nargs=2, metavar=('TARGET', 'OPTIONS_FILE'),
                     help='Upload target and TOML upload options, cloudapi only')
    cmd.add_argument('--wait', action='store_true', help='Wait for compose to finish')
    _add_wait_flags(cmd)
    cmd.set_defaults(handler='compose_start')

    cmd = compose.add_parser('start-ostree', help='Start an ostree compose using the blueprint and output type')
    cmd.add_argument('blueprint', metavar='BLUEPRINT')
    cmd.add_argument('compose_type', metavar='TYPE')
    cmd.add_argument('image_name', nargs='?', metavar='IMAGE-NAME')
    cmd.add_argument('profile', nargs='?', metavar='PROFILE.TOML')
    cmd.add_argument('--size', type=int, default=0, help='Size of image in MiB')
    cmd.add_argument('--ref', default='', help='OSTree reference')
    cmd.add_argument('--parent', default='', help='OSTree parent')
    cmd.add_argument('--url', default='', help='OSTree url')
    cmd.add_argument('--wait', action='store_true', help='Wait for compose to finish')
    _add_wait_flags(cmd)
    cmd.set_defaults(handler='compose_start_ostree')

    cmd = compose.add_parser('cancel', help='Cancel a running compose')
    cmd.add_argument('uuid', metavar='UUID')
    cmd.set_defaults(handler='compose_cancel')

    cmd = compose.add_parser('delete', help='Delete one or more composes')
    cmd.add_argument('uuids', nargs='+', metavar='UUID')
    cmd.set_defaults(handler='compose_delete')

    cmd = compose.add_parser('info', help='Show detailed information on the compose')
    cmd.add_argument('uuid', metavar='UUID')
    cmd.set_defaults(handler='compose_info')

    cmd = compose.add_parser('log', help='Show the last SIZE kB of the compose log')
    cmd.add_argument('uuid', metavar='UUID')
    cmd.add_argument('size', nargs='?', type=int, default=1024, metavar='SIZE')
    cmd.set_defaults(handler='compose_log')

    for name, handler, help_text in (
        ('logs', 'compose_logs', 'Get a tar of the logs for the compose'),
        ('metadata', 'compose_metadata', 'Get a tar of the metadata for the compose'),
        ('results', 'compose_results', 'Get a tar of the metadata, logs, and image for the compose'),
        ('image', 'compose_image', 'Get the compose image file'),
    ):
        cmd = compose.add_parser(name, help=help_text)
        cmd.add_argument('uuid', metavar='UUID')
        cmd.add_argument('--filename', default='', help='Optional path and filename to save the file into')
        cmd.set_defaults(handler=handler)

    cmd = compose.add_parser('wait', help='Wait for a compose to finish')
    cmd.add_argument('uuid', metavar='UUID')
    _add_wait_flags(cmd)
    cmd.set_defaults(handler='compose_wait')


def _add_projects(groups) -> None:
    projects = groups.add_parser('projects', help='Project commands').add_subparsers(dest='command', metavar='<command>')
    projects.required = True

    cmd = projects.add_parser('list', help='List all of the available projects')
    cmd.add_argument('--distro', default='', help='Return results for distribution')
    cmd.set_defaults(handler='projects_list')

    cmd = projects.add_parser('info', help='Show details about the projects')
    cmd.add_argument('names', nargs='+', metavar='PROJECT')
    cmd.add_argument('--distro', default='', help='Return results for distribution')
    cmd.set_defaults(handler='projects_info')

    cmd = projects.add_parser('depsolve', help='Show the dependencies of the projects')
    cmd.add_argument('names', nargs='+', metavar='PROJECT')
    cmd.add_argument('--distro', default='', help='Return results for distribution')
    cmd.add_argument('--arch', default='', help='Architecture, cloudapi only')
    cmd.set_defaults(handler='projects_depsolve')


def _add_sources(groups) -> None:
    sources = groups.add_parser('sources', help='Project source commands').add_subparsers(dest='command', metavar='<command>')
    sources.required = True

    sources.add_parser('list', help='List the available sources').set_defaults(handler='sources_list')

    cmd = sources.add_parser('info', help='Show the details of the sources')
    cmd.add_argument('names', nargs='+', metavar='SOURCE')
    cmd.set_defaults(handler='sources_info')

    cmd = sources.add_parser('add', help='Add TOML source files to the server')
    cmd.add_argument('filenames', nargs='+', metavar='FILE')
    cmd.set_defaults(handler='sources_add')

    cmd = sources.add_parser('delete', help='Delete a source')
    cmd.add_argument('name', metavar='SOURCE')
    cmd.set_defaults(handler='sources_delete')


GLOBAL_SETTINGS = ('api_version', 'json_output', 'log_file', 'socket', 'cloud_socket', 'test_mode', 'timeout', 'log_level')


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for composer-cli."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.group == 'version':
        print(f"composer-cli v{__version__}")
        return 0

    overrides = {name: getattr(args, name) for name in GLOBAL_SETTINGS if getattr(args, name) is not None}
    try:
        settings = reload_settings(**overrides)
    except ValidationError as e:
        print(f"ERROR: invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level, settings.log_file, settings.log_format)
    logger = logging.getLogger(__name__)
    logger.debug(f"settings: {settings.to_dict()}")

    collector = JSONCollector() if settings.json_output else None
    weldr_client = WeldrClient(
        settings.socket,
        api_version=settings.api_version,
        timeout=settings.request_timeout,
        raw_callback=collector,
    )
    cloud_client = CloudClient(
        settings.cloud_socket,
        timeout=settings.request_timeout,
        raw_callback=collector,
        enabled=settings.cloud_enabled,
    )
    router = DualBackendRouter(WeldrAPI(weldr_client), CloudAPI(cloud_client))

    try:
        rc = ComposerCLI(router, settings).run(args)
    finally:
        weldr_client.close()
        cloud_client.close()
        if collector is not None:
            print(collector.dumps())
    return rc


if __name__ == "__main__":
    sys.exit(main())
