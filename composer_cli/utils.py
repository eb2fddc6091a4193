"""
Utility functions for composer-cli.
"""

import logging
import os
import platform
import re
import shutil
import subprocess
import sys
import tempfile
import tomllib
from typing import Dict, List, Optional

from .infrastructure.transport.errors import HostInfoError


def setup_logging(level: str = "WARNING", log_file: Optional[str] = None,
                  fmt: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s') -> None:
    """Setup logging configuration.

    Logs go to stderr so they never mix with command output or --json.
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=fmt,
        handlers=handlers,
        force=True,
    )

    # Reduce noise from third-party libraries unless debugging
    if level.upper() != "DEBUG":
        for name in ("httpx", "httpcore"):
            logging.getLogger(name).setLevel(logging.WARNING)


def get_comma_args(args: List[str]) -> List[str]:
    """Split arguments that may be comma and/or space separated.

    Empty entries are dropped, eg. ["a,b", "c, d"] -> ["a", "b", "c", "d"].
    """
    result = []
    for arg in args:
        result.extend(a for a in re.split(r"[, ]", arg) if a)
    return result


def get_content_filename(header: str) -> str:
    """Filename from a Content-Disposition header.

    Raises ValueError when there is no usable filename.
    """
    for part in header.split(";"):
        fields = part.strip().split("=", 1)
        if len(fields) == 2 and fields[0].strip().lower() == "filename":
            name = fields[1].strip().strip('"')
            filename = os.path.basename(name)
            if filename in ("", "/", ".", ".."):
                raise ValueError(f"Invalid filename in header: {part.strip()}")
            return filename
    raise ValueError(f"No filename in header: {header}")


def save_download(tmp_path: str, content_disposition: str, path: str = "") -> str:
    """Move a downloaded temporary file to its final name and return that name.

    With no ``path`` the server's filename is used in the current directory, a
    directory ``path`` receives the server's filename, anything else is the
    destination itself. Existing files are never overwritten.
    """
    if not path:
        filename = get_content_filename(content_disposition)
    elif os.path.isdir(path):
        filename = os.path.join(path, get_content_filename(content_disposition))
    elif path.endswith("/"):
        raise FileNotFoundError(f"{path} does not exist")
    else:
        filename = path

    if os.path.exists(filename):
        raise FileExistsError(f"{filename} exists, skipping download")
    shutil.move(tmp_path, filename)
    return filename


def save_blueprint(data: str, commit: str = "", path: str = "") -> str:
    """Write a TOML blueprint to disk and return the filename used.

    The file is named after the blueprint with spaces replaced by dashes, plus the
    commit when there is one. ``path`` works like save_download's, except that an
    existing file is overwritten. Raises ValueError for a blueprint without a usable
    name and OSError when the file cannot be written.
    """
    try:
        bp = tomllib.loads(data)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Unmarshal of blueprint failed: {e}") from e
    name = bp.get("name")
    if not isinstance(name, str):
        raise ValueError("no 'name' in blueprint")

    filename = name.replace(" ", "-")
    if commit:
        filename = f"{filename}-{commit}"
    filename = os.path.basename(filename + ".toml")

    if path:
        if os.path.isdir(path):
            filename = os.path.join(path, filename)
        elif os.path.exists(path):
            filename = path
        elif path.endswith("/"):
            raise FileNotFoundError(f"{path} does not exist")
        else:
            filename = path

    if os.path.basename(filename) == ".toml":
        raise ValueError(f"Invalid blueprint filename: {name}")

    fd = os.open(filename, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(data)
    return filename


def diff_blueprints(from_bp: str, from_commit: str, to_bp: str, to_commit: str,
                    diff_args: Optional[List[str]] = None) -> subprocess.CompletedProcess:
    """Run the system diff on two TOML blueprints saved in a temporary directory.

    The files are named as save_blueprint names them, with the commit labels
    appended. diff exits with 1 when the files differ, only a larger exit code
    raises RuntimeError.
    """
    diff = shutil.which("diff")
    if diff is None:
        raise RuntimeError("The diff utility is required, please install it")
    args = list(diff_args) if diff_args else ["--color", "-u"]
    with tempfile.TemporaryDirectory(prefix="bp-diff-") as tmp_dir:
        from_file = save_blueprint(from_bp, from_commit, tmp_dir)
        to_file = save_blueprint(to_bp, to_commit, tmp_dir)
        proc = subprocess.run(
            [diff, *args, os.path.basename(from_file), os.path.basename(to_file)],
            cwd=tmp_dir,
            capture_output=True,
            text=True,
        )
    if proc.returncode > 1:
        raise RuntimeError(f"diff error: exit status {proc.returncode}: {proc.stderr.strip()}")
    return proc


def host_arch() -> str:
    """Architecture of this host using the image-builder names."""
    machine = platform.machine()
    return {
        "amd64": "x86_64",
        "AMD64": "x86_64",
        "arm64": "aarch64",
    }.get(machine, machine)


def read_os_release(path: Optional[str] = None) -> Dict[str, str]:
    """Key/value pairs from os-release.

    Raises HostInfoError when the file cannot be read.
    """
    try:
        if path is None:
            return dict(platform.freedesktop_os_release())
        release: Dict[str, str] = {}
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                release[key] = value.strip().strip('"').strip("'")
        return release
    except OSError as e:
        raise HostInfoError(f"reading os-release failed: {e}") from e


def host_distro(path: Optional[str] = None) -> str:
    """Distribution name of this host, eg. fedora-40.

    Raises HostInfoError when os-release lacks ID or VERSION_ID, pass --distro instead.
    """
    release = read_os_release(path)
    if "ID" not in release or "VERSION_ID" not in release:
        raise HostInfoError("os-release is missing ID or VERSION_ID, use --distro to select a distribution")
    return f"{release['ID']}-{release['VERSION_ID']}"
