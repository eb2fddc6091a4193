import logging
import os
import pathlib
import subprocess

import pytest

from composer_cli import utils
from composer_cli.infrastructure.transport import HostInfoError
from composer_cli.utils import (
    diff_blueprints,
    get_comma_args,
    get_content_filename,
    host_distro,
    save_blueprint,
    save_download,
    setup_logging,
)


def test_get_comma_args():
    assert get_comma_args(['a,b', 'c, d', ',,e']) == ['a', 'b', 'c', 'd', 'e']
    assert get_comma_args([]) == []


@pytest.mark.parametrize('header,filename', [
    ('attachment; filename=disk.qcow2', 'disk.qcow2'),
    ('attachment; filename="logs.tar"', 'logs.tar'),
    ('attachment; FILENAME=../../etc/passwd', 'passwd'),
])
def test_get_content_filename(header, filename):
    assert get_content_filename(header) == filename


@pytest.mark.parametrize('header', ['attachment', 'attachment; filename=', 'attachment; filename=..', ''])
def test_get_content_filename_invalid(header):
    with pytest.raises(ValueError):
        get_content_filename(header)


def _download(tmp_path, data=b'image'):
    tmp = tmp_path / 'composer-cli-file-x'
    tmp.write_bytes(data)
    return str(tmp)


def test_save_download_uses_server_name(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    saved = save_download(_download(tmp_path), 'attachment; filename=disk.qcow2')
    assert saved == 'disk.qcow2'
    assert (tmp_path / 'disk.qcow2').read_bytes() == b'image'


def test_save_download_into_directory(tmp_path):
    out = tmp_path / 'out'
    out.mkdir()
    saved = save_download(_download(tmp_path), 'attachment; filename=disk.qcow2', str(out))
    assert saved == str(out / 'disk.qcow2')


def test_save_download_explicit_name(tmp_path):
    target = tmp_path / 'renamed.img'
    assert save_download(_download(tmp_path), 'attachment; filename=disk.qcow2', str(target)) == str(target)
    assert target.exists()


def test_save_download_never_overwrites(tmp_path):
    target = tmp_path / 'exists.img'
    target.write_bytes(b'old')
    with pytest.raises(FileExistsError):
        save_download(_download(tmp_path), 'attachment; filename=disk.qcow2', str(target))
    assert target.read_bytes() == b'old'


def test_save_download_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        save_download(_download(tmp_path), 'attachment; filename=disk.qcow2', str(tmp_path / 'nope') + '/')


def test_host_distro(tmp_path):
    release = tmp_path / 'os-release'
    release.write_text('# comment\nNAME="Fedora Linux"\nID=fedora\nVERSION_ID=40\n')
    assert host_distro(str(release)) == 'fedora-40'


def test_host_distro_incomplete(tmp_path):
    release = tmp_path / 'os-release'
    release.write_text('ID=debian\nPRETTY_NAME="Debian GNU/Linux trixie/sid"\n')
    with pytest.raises(HostInfoError, match='VERSION_ID'):
        host_distro(str(release))


def test_host_distro_unreadable(tmp_path, monkeypatch):
    with pytest.raises(HostInfoError):
        host_distro(str(tmp_path / 'missing'))

    def _no_os_release():
        raise OSError('no os-release')

    monkeypatch.setattr(utils.platform, 'freedesktop_os_release', _no_os_release)
    with pytest.raises(HostInfoError, match='no os-release'):
        host_distro()


@pytest.mark.parametrize('machine,arch', [('x86_64', 'x86_64'), ('AMD64', 'x86_64'), ('arm64', 'aarch64'), ('ppc64le', 'ppc64le')])
def test_host_arch(monkeypatch, machine, arch):
    monkeypatch.setattr(utils.platform, 'machine', lambda: machine)
    assert utils.host_arch() == arch


def test_setup_logging_quiets_httpx(tmp_path):
    log_file = tmp_path / 'composer.log'
    setup_logging('info', str(log_file))
    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger('httpx').level == logging.WARNING
    logging.getLogger('composer_cli').info('hello')
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert 'hello' in log_file.read_text()
    for handler in logging.getLogger().handlers[:]:
        logging.getLogger().removeHandler(handler)
        handler.close()


SIMPLE = 'name = "simple image"\nversion = "0.1.0"\n'


def test_save_blueprint_default_name(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert save_blueprint(SIMPLE) == 'simple-image.toml'
    assert (tmp_path / 'simple-image.toml').read_text() == SIMPLE
    assert os.stat(tmp_path / 'simple-image.toml').st_mode & 0o777 == 0o600
    assert save_blueprint(SIMPLE, commit='abc123') == 'simple-image-abc123.toml'


def test_save_blueprint_paths(tmp_path):
    assert save_blueprint(SIMPLE, path=str(tmp_path)) == str(tmp_path / 'simple-image.toml')

    existing = tmp_path / 'old.toml'
    existing.write_text('name = "old"\nversion = "9.9.9"\nextra = "more text than the new one"\n')
    assert save_blueprint(SIMPLE, path=str(existing)) == str(existing)
    assert existing.read_text() == SIMPLE

    new_file = tmp_path / 'new.toml'
    assert save_blueprint(SIMPLE, path=str(new_file)) == str(new_file)
    assert new_file.read_text() == SIMPLE

    with pytest.raises(FileNotFoundError, match='does not exist'):
        save_blueprint(SIMPLE, path=str(tmp_path / 'missing') + '/')


@pytest.mark.parametrize('data,message', [
    ('version = "0.1.0"\n', "no 'name'"),
    ('name = ""\n', 'Invalid blueprint filename'),
    ('name = [\n', 'Unmarshal of blueprint failed'),
])
def test_save_blueprint_invalid(tmp_path, monkeypatch, data, message):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ValueError, match=message):
        save_blueprint(data)
    assert list(tmp_path.iterdir()) == []


def test_diff_blueprints(monkeypatch):
    calls = []

    def _run(argv, cwd, capture_output, text):
        calls.append(argv)
        files = {name: pathlib.Path(cwd, name).read_text() for name in argv[-2:]}
        return subprocess.CompletedProcess(argv, 1, stdout=str(files), stderr='')

    monkeypatch.setattr(utils.shutil, 'which', lambda name: '/usr/bin/diff')
    monkeypatch.setattr(utils.subprocess, 'run', _run)
    proc = diff_blueprints('name = "simple"\n', 'abc', 'name = "simple"\nversion = "2"\n', 'WORKSPACE')
    assert proc.returncode == 1
    assert calls == [['/usr/bin/diff', '--color', '-u', 'simple-abc.toml', 'simple-WORKSPACE.toml']]
    assert 'version = "2"' in proc.stdout

    diff_blueprints('name = "simple"\n', 'a', 'name = "simple"\n', 'b', ['-c'])
    assert calls[-1] == ['/usr/bin/diff', '-c', 'simple-a.toml', 'simple-b.toml']


def test_diff_blueprints_errors(monkeypatch):
    monkeypatch.setattr(utils.shutil, 'which', lambda name: None)
    with pytest.raises(RuntimeError, match='diff utility is required'):
        diff_blueprints('name = "a"\n', 'x', 'name = "a"\n', 'y')

    monkeypatch.setattr(utils.shutil, 'which', lambda name: '/usr/bin/diff')
    monkeypatch.setattr(utils.subprocess, 'run',
                        lambda argv, **kw: subprocess.CompletedProcess(argv, 2, stdout='', stderr='bad option'))
    with pytest.raises(RuntimeError, match='bad option'):
        diff_blueprints('name = "a"\n', 'x', 'name = "a"\n', 'y', ['--bogus'])
