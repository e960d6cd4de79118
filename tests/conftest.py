import fnmatch
from unittest import mock

import pytest

from app import create_app
from core.backend_client import BackendClient


class FakeRedis:
    """Dict-backed stand-in for the redis commands the job layer uses"""

    def __init__(self):
        self.data = {}
        self.expiries = {}

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiries[key] = ex
        return True

    def get(self, key):
        return self.data.get(key)

    def scan_iter(self, match=None, count=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def ping(self):
        return True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def backend():
    client = mock.create_autospec(BackendClient, instance=True)
    client.post.return_value = {'success': True}
    return client


@pytest.fixture
def app(fake_redis, backend):
    app = create_app('testing', redis_client=fake_redis, backend_client=backend)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def status_store(app):
    return app.status_store
