import json

import pytest

from composer_cli.application import DualBackendRouter
from composer_cli.domain.models import Backend, WaitState
from composer_cli.infrastructure.cloud import CloudAPI, CloudClient

PREFIX = '/api/image-builder-composer/v2/'

NOT_FOUND = {
    'kind': 'Error', 'id': '15', 'code': 'IMAGE-BUILDER-COMPOSER-15',
    'reason': 'Compose with given id not found', 'details': 'job does not exist',
}


@pytest.fixture
def router(weldr, cloud, clock):
    return DualBackendRouter(weldr, cloud, clock=clock, sleep=clock.sleep)


@pytest.fixture
def weldr_only(weldr, cloud_server, clock):
    offline = CloudAPI(CloudClient('/run/cloudapi/api.socket', transport=cloud_server.transport, enabled=False))
    return DualBackendRouter(weldr, offline, clock=clock, sleep=clock.sleep)


def test_delete_splits_between_backends(router, server, cloud_server):
    cloud_server.add('DELETE', PREFIX + 'composes/A', {'id': 'A', 'kind': 'ComposeDeleteStatus'})
    cloud_server.add('DELETE', PREFIX + 'composes/B', NOT_FOUND, status=404)
    server.add('DELETE', '/api/v1/compose/delete/B', {'uuids': [{'uuid': 'B', 'status': True}], 'errors': []})

    deleted, errors = router.delete_composes(['A', 'B'])
    assert errors == []
    assert [(d.id, d.backend) for d in deleted] == [('A', Backend.CLOUD), ('B', Backend.WELDR)]
    assert cloud_server.paths() == [PREFIX + 'composes/A', PREFIX + 'composes/B']
    assert server.paths() == ['/api/v1/compose/delete/B']


def test_delete_residuals_are_one_batch(router, server, cloud_server):
    cloud_server.add('DELETE', PREFIX + 'composes/B', NOT_FOUND, status=404)
    cloud_server.add('DELETE', PREFIX + 'composes/C', NOT_FOUND, status=404)
    server.add('DELETE', '/api/v1/compose/delete/B,C', {
        'uuids': [{'uuid': 'B', 'status': True}],
        'errors': [{'id': 'UnknownUUID', 'msg': 'C is not a valid build uuid'}],
    })
    deleted, errors = router.delete_composes(['B', 'C'])
    assert [d.id for d in deleted] == ['B']
    assert [e.id for e in errors] == ['UnknownUUID']
    assert len(server.requests) == 1


def test_delete_other_cloud_error_aborts(router, server, cloud_server):
    cloud_server.add('DELETE', PREFIX + 'composes/A', {'id': 'A'})
    cloud_server.add('DELETE', PREFIX + 'composes/B', {
        'kind': 'Error', 'id': '10', 'code': 'IMAGE-BUILDER-COMPOSER-10',
        'reason': 'Failed to delete compose', 'details': 'permission denied',
    }, status=500)

    deleted, errors = router.delete_composes(['A', 'B', 'C'])
    assert [d.id for d in deleted] == ['A']
    assert errors[0].id == 'IMAGE-BUILDER-COMPOSER-10'
    assert PREFIX + 'composes/C' not in cloud_server.paths()
    assert server.requests == []


def test_delete_without_cloud_uses_weldr_only(weldr_only, server, cloud_server):
    server.add('DELETE', '/api/v1/compose/delete/A,B', {
        'uuids': [{'uuid': 'A', 'status': True}, {'uuid': 'B', 'status': True}], 'errors': [],
    })
    deleted, errors = weldr_only.delete_composes(['A', 'B'])
    assert errors == []
    assert len(deleted) == 2
    assert cloud_server.requests == []


def _weldr_queues(server, finished=()):
    server.add('GET', '/api/v1/compose/queue', {'new': [], 'run': []})
    server.add('GET', '/api/v1/compose/finished', {'finished': [{'id': f, 'queue_status': 'FINISHED'} for f in finished]})
    server.add('GET', '/api/v1/compose/failed', {'failed': []})


def test_list_composes_cloud_first(router, server, cloud_server):
    cloud_server.add('GET', PREFIX + 'composes/', [{'id': 'c', 'status': 'pending'}])
    _weldr_queues(server, finished=['w'])
    composes, errors = router.list_composes()
    assert errors == []
    assert [(c.id, c.backend) for c in composes] == [('c', Backend.CLOUD), ('w', Backend.WELDR)]


def test_list_composes_cloud_error_keeps_weldr(router, server, cloud_server):
    cloud_server.add('GET', PREFIX + 'composes/', {'kind': 'Error', 'id': '1', 'details': 'broken'}, status=500)
    _weldr_queues(server, finished=['w'])
    composes, errors = router.list_composes()
    assert [c.id for c in composes] == ['w']
    assert errors == []


def test_start_local_blueprint_goes_to_cloud(router, server, cloud_server, tmp_path):
    bp = tmp_path / 'bp.toml'
    bp.write_text('name = "local"\n\n[[packages]]\nname = "tmux"\n')
    cloud_server.add('POST', PREFIX + 'compose', {'id': 'c-1', 'kind': 'ComposeId'}, status=201)

    handle, resp = router.start_compose(str(bp), 'qcow2')
    assert resp is None
    assert handle.id == 'c-1'
    assert handle.backend is Backend.CLOUD
    request = json.loads(cloud_server.requests[0].content)
    assert request['blueprint'] == {'name': 'local', 'packages': [{'name': 'tmux'}]}
    assert server.requests == []


def test_start_local_blueprint_needs_cloud(weldr_only, tmp_path):
    bp = tmp_path / 'bp.toml'
    bp.write_text('name = "local"\n')
    handle, resp = weldr_only.start_compose(str(bp), 'qcow2')
    assert handle is None
    assert 'requires server support' in str(resp)


def test_start_bad_local_blueprint_raises(router, tmp_path):
    bp = tmp_path / 'bp.toml'
    bp.write_text('name = \n')
    with pytest.raises(ValueError):
        router.start_compose(str(bp), 'qcow2')


def test_start_named_blueprint_goes_to_weldr(router, server, cloud_server):
    server.add('POST', '/api/v1/compose?test=1', {'status': True, 'build_id': 'w-1'})
    handle, resp = router.start_compose('http-server', 'qcow2', test_mode=1)
    assert resp is None
    assert handle.id == 'w-1'
    assert handle.backend is Backend.WELDR
    assert cloud_server.requests == []


def test_preference_uses_cloud_exclusively(router, server, cloud_server):
    cloud_server.add('GET', PREFIX + 'distributions', {'fedora-40': {'x86_64': ['qcow2']}})
    assert router.list_distros() == (['fedora-40'], None)
    assert router.get_compose_types() == (['qcow2'], None)
    assert server.requests == []


def test_preference_falls_back_to_weldr(weldr_only, server, cloud_server):
    server.add('GET', '/api/v1/distros/list', {'distros': ['fedora-40']})
    server.add('GET', '/api/v1/compose/types', {'types': [{'name': 'qcow2', 'enabled': True}]})
    assert weldr_only.list_distros() == (['fedora-40'], None)
    assert weldr_only.get_compose_types() == (['qcow2'], None)
    assert cloud_server.requests == []


def test_depsolve_projects_through_cloud(router, cloud_server):
    cloud_server.add('POST', PREFIX + 'depsolve/blueprint', {'packages': [
        {'name': 'tmux', 'version': '3.4', 'release': '1.fc40', 'arch': 'x86_64'},
    ]})
    deps, errors = router.depsolve_projects(['tmux'])
    assert errors == []
    assert [d.name for d in deps] == ['tmux']
    request = json.loads(cloud_server.requests[0].content)
    assert request['blueprint']['packages'] == [{'name': 'tmux'}]


def test_depsolve_projects_through_weldr(weldr_only, server):
    server.add('GET', '/api/v1/projects/depsolve/tmux,bash', {'projects': [{'name': 'tmux'}, {'name': 'bash'}]})
    deps, errors = weldr_only.depsolve_projects(['tmux', 'bash'])
    assert [d.name for d in deps] == ['tmux', 'bash']


def test_wait_tries_cloud_then_weldr(router, server, cloud_server, clock):
    cloud_server.add('GET', PREFIX + 'composes/abc', NOT_FOUND, status=404)
    server.add('GET', '/api/v1/compose/info/abc', {'id': 'abc', 'queue_status': 'RUNNING', 'blueprint': {'name': 'bp'}})
    server.add('GET', '/api/v1/compose/info/abc', {'id': 'abc', 'queue_status': 'FINISHED', 'blueprint': {'name': 'bp'}})

    outcome = router.compose_wait('abc', timeout=60, interval=10)
    assert outcome.state is WaitState.TERMINAL
    assert outcome.status.status == 'FINISHED'
    assert outcome.status.backend is Backend.WELDR
    assert cloud_server.paths() == [PREFIX + 'composes/abc']
    assert clock.sleeps == [10]


def test_wait_on_cloud_compose(router, server, cloud_server, clock):
    cloud_server.add('GET', PREFIX + 'composes/abc', {'id': 'abc', 'status': 'pending'})
    cloud_server.add('GET', PREFIX + 'composes/abc', {'id': 'abc', 'status': 'failure'})
    outcome = router.compose_wait('abc', timeout=60, interval=10)
    assert outcome.terminal
    assert outcome.status.status == 'FAILED'
    assert server.requests == []


def test_compose_image_falls_back(router, server, cloud_server):
    cloud_server.add('GET', PREFIX + 'composes/abc/download', NOT_FOUND, status=404)
    server.add('GET', '/api/v1/compose/image/abc',
               {'status': False, 'errors': [{'id': 'BuildInWrongState', 'msg': 'not finished'}]}, status=400)
    download, resp = router.compose_image('abc')
    assert download is None
    assert resp.has_error_id('BuildInWrongState')


def test_server_status_from_both(router, server, cloud_server):
    server.add('GET', '/api/status', {'api': '1', 'backend': 'osbuild-composer'})
    cloud_server.add('GET', PREFIX + 'openapi', {'info': {'title': 'cloudapi', 'version': '2'}})
    statuses, errors = router.server_status()
    assert errors == []
    assert statuses[Backend.WELDR].backend == 'osbuild-composer'
    assert statuses[Backend.CLOUD].api == '2'


def test_cloud_is_checked_once(weldr, clock):
    calls = []

    class _Cloud:
        def exists(self):
            calls.append(1)
            return False

    router = DualBackendRouter(weldr, _Cloud(), clock=clock, sleep=clock.sleep)
    assert router.cloud_available() is False
    assert router.cloud_available() is False
    assert calls == [1]
