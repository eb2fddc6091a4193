import httpx
import pytest

from composer_cli.infrastructure.transport import (
    Endpoint,
    SocketMissingError,
    SocketPermissionError,
    Transport,
    TransportError,
    append_query,
    check_socket_error,
)
from composer_cli.infrastructure.transport.transport import SOCKET_HINT


@pytest.mark.parametrize('route,expected', [
    ('/blueprints/list', 'http://localhost/api/v1/blueprints/list'),
    ('blueprints/list', 'http://localhost/api/v1/blueprints/list'),
    ('//double', 'http://localhost/api/v1//double'),
])
def test_api_url_strips_one_leading_slash(route, expected):
    assert Endpoint('/tmp/sock', api_version=1).api_url(route) == expected


def test_raw_url_has_no_version_prefix():
    ep = Endpoint('/tmp/sock', api_version=1)
    assert ep.raw_url('/api/status') == 'http://localhost/api/status'
    assert ep.raw_url('api/image-builder-composer/v2/openapi') == 'http://localhost/api/image-builder-composer/v2/openapi'


def test_unversioned_endpoint_uses_raw_urls():
    ep = Endpoint('/tmp/sock')
    assert ep.api_url('/composes/') == ep.raw_url('/composes/') == 'http://localhost/composes/'


def test_api_version_is_used():
    assert Endpoint('/tmp/sock', api_version=2).api_url('/status') == 'http://localhost/api/v2/status'


def test_empty_route_is_rejected():
    with pytest.raises(ValueError):
        Endpoint('/tmp/sock').raw_url('')


def test_append_query():
    assert append_query('/projects/list', 'limit=0') == '/projects/list?limit=0'
    assert append_query('/projects/list?distro=fedora-40', 'limit=0') == '/projects/list?distro=fedora-40&limit=0'


def test_missing_socket(tmp_path):
    path = str(tmp_path / 'api.socket')
    err = check_socket_error(path)
    assert isinstance(err, SocketMissingError)
    assert str(err) == f'{path} does not exist.\n{SOCKET_HINT}'
    assert 'systemctl enable osbuild-composer.socket' in str(err)


def test_healthy_socket_passes_request_error_through(tmp_path):
    sock = tmp_path / 'api.socket'
    sock.touch()
    assert check_socket_error(str(sock)) is None

    err = check_socket_error(str(sock), RuntimeError('connection reset'))
    assert isinstance(err, TransportError)
    assert not isinstance(err, SocketMissingError)
    assert str(err) == 'connection reset'


def test_permission_denied_names_the_group(tmp_path, monkeypatch):
    sock = tmp_path / 'api.socket'
    sock.touch()

    class _Group:
        gr_name = 'weldr'

    monkeypatch.setattr('composer_cli.infrastructure.transport.transport.os.access', lambda p, m: False)
    monkeypatch.setattr('composer_cli.infrastructure.transport.transport.grp.getgrgid', lambda gid: _Group())
    err = check_socket_error(str(sock))
    assert isinstance(err, SocketPermissionError)
    assert err.group == 'weldr'
    assert str(err) == (
        f'you do not have permission to access {sock}.  '
        'Check to make sure that you are a member of the weldr group'
    )


def test_permission_denied_without_group(tmp_path, monkeypatch):
    sock = tmp_path / 'api.socket'
    sock.touch()

    def _no_group(gid):
        raise KeyError(gid)

    monkeypatch.setattr('composer_cli.infrastructure.transport.transport.os.access', lambda p, m: False)
    monkeypatch.setattr('composer_cli.infrastructure.transport.transport.grp.getgrgid', _no_group)
    err = check_socket_error(str(sock))
    assert isinstance(err, SocketPermissionError)
    assert str(err) == f'you do not have permission to access {sock}'


def test_connect_failure_is_explained_by_the_socket(tmp_path):
    path = str(tmp_path / 'missing.socket')

    def _refuse(request):
        raise httpx.ConnectError('No such file or directory', request=request)

    transport = Transport(Endpoint(path, api_version=1), transport=httpx.MockTransport(_refuse))
    with pytest.raises(SocketMissingError) as exc:
        with transport.open('GET', '/blueprints/list'):
            pass
    assert isinstance(exc.value.__cause__, httpx.ConnectError)
    assert exc.value.socket_path == path


def test_open_sends_body_and_headers():
    seen = {}

    def _handler(request):
        seen['url'] = str(request.url)
        seen['content'] = request.content
        seen['type'] = request.headers.get('content-type')
        return httpx.Response(200, text='ok')

    transport = Transport(Endpoint('/tmp/sock', api_version=1), transport=httpx.MockTransport(_handler))
    with transport.open('POST', '/blueprints/new', 'name = "x"', {'Content-Type': 'text/x-toml'}) as resp:
        assert resp.read() == b'ok'
    assert seen == {
        'url': 'http://localhost/api/v1/blueprints/new',
        'content': b'name = "x"',
        'type': 'text/x-toml',
    }


def test_empty_route_is_not_reported_as_a_socket_problem(tmp_path):
    transport = Transport(Endpoint(str(tmp_path / 'missing.socket'), api_version=1))
    try:
        with pytest.raises(ValueError, match='route must not be empty'):
            with transport.open('GET', ''):
                pass
    finally:
        transport.close()
