import json
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pytest

from composer_cli.infrastructure.cloud import CloudAPI, CloudClient
from composer_cli.infrastructure.weldr import WeldrAPI, WeldrClient


class FakeServer:
    """Canned responses keyed by method and path (including the query).

    A route registered several times answers with each response in turn, the
    last one repeats.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Tuple[int, bytes, Dict[str, str]]]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, body: Any = None, status: int = 200,
            raw: Optional[bytes] = None, headers: Optional[Dict[str, str]] = None) -> None:
        content = raw if raw is not None else json.dumps(body).encode()
        self.routes.setdefault((method, path), []).append((status, content, headers or {}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = unquote(request.url.raw_path.decode())
        responses = self.routes.get((request.method, path))
        if not responses:
            return httpx.Response(404, json={'status': False, 'errors': [{'id': 'HTTPError', 'msg': f'no route {request.method} {path}'}]})
        status, content, headers = responses.pop(0) if len(responses) > 1 else responses[0]
        return httpx.Response(status, content=content, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self) -> List[str]:
        return [unquote(r.url.raw_path.decode()) for r in self.requests]


class FakeClock:
    """Clock and sleep pair where sleeping only moves time forward."""

    def __init__(self, start: float = 1000.0):
        self.start = start
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    @property
    def elapsed(self) -> float:
        return self.now - self.start


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def cloud_server():
    return FakeServer()


@pytest.fixture
def weldr_client(server):
    client = WeldrClient('/run/weldr/api.socket', transport=server.transport)
    yield client
    client.close()


@pytest.fixture
def weldr(weldr_client):
    return WeldrAPI(weldr_client)


@pytest.fixture
def cloud_client(cloud_server):
    client = CloudClient('/run/cloudapi/api.socket', transport=cloud_server.transport, enabled=True)
    yield client
    client.close()


@pytest.fixture
def cloud(cloud_client, monkeypatch):
    monkeypatch.setattr('composer_cli.infrastructure.cloud.api.host_distro', lambda: 'fedora-40')
    monkeypatch.setattr('composer_cli.infrastructure.cloud.api.host_arch', lambda: 'x86_64')
    return CloudAPI(cloud_client)


@pytest.fixture
def clock():
    return FakeClock()
