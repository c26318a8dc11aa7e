"""Shared test fixtures for pipeline board tests."""

import asyncio
import sys
from pathlib import Path

import pytest

# Ensure the repo root (pkg/, pipeline_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.pipeline.client import StoreClient
from pkg.pipeline.errors import PersistenceError
from pkg.pipeline.schema import Asset, Identity
from pkg.pipeline.store import TaskStore


IDENTITIES = [
    Identity("u1", "Asha Cutter", "https://example.test/a.png"),
    Identity("u2", "Ben Stitch"),
]
ASSETS = [Asset("SKU-100", "Denim jacket"), Asset("SKU-200", "Chino")]


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "pipeline.db")


@pytest.fixture
def store(db_path):
    s = TaskStore(db_path)
    s.seed(IDENTITIES, ASSETS)
    return s


class FailingUpdateClient(StoreClient):
    """StoreClient whose update() always fails, counting the attempts."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.update_calls = 0

    async def update(self, task_id, patch):
        self.update_calls += 1
        raise PersistenceError("connection reset")


class CountingClient(StoreClient):
    """StoreClient recording every write it is asked to make."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes = []

    async def update(self, task_id, patch):
        self.writes.append(("update", task_id, dict(patch)))
        return await super().update(task_id, patch)

    async def delete(self, task_id):
        self.writes.append(("delete", task_id))
        return await super().delete(task_id)

    async def insert(self, task):
        self.writes.append(("insert", task.task_id))
        return await super().insert(task)


class LateAckClient(StoreClient):
    """Commits updates at once but answers `delay` seconds later."""

    def __init__(self, *args, delay=0.3, **kwargs):
        super().__init__(*args, **kwargs)
        self.delay = delay

    async def update(self, task_id, patch):
        row = await super().update(task_id, patch)
        await asyncio.sleep(self.delay)
        return row


async def wait_for(predicate, timeout=3.0, interval=0.02):
    """Poll `predicate` until true or `timeout` elapses. Returns the final result."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(interval)
    return True


class _FlaskResponse:
    def __init__(self, resp):
        self.status_code = resp.status_code
        self._resp = resp

    def json(self):
        data = self._resp.get_json(silent=True)
        if data is None:
            raise ValueError("no JSON body")
        return data


class FlaskSession:
    """requests.Session stand-in that routes calls to a Flask test client."""

    def __init__(self, app, base_url="http://board.test"):
        self._client = app.test_client()
        self.base_url = base_url
        self.closed = False

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        resp = self._client.open(path, method=method, query_string=params, json=json, headers=headers)
        return _FlaskResponse(resp)

    def close(self):
        self.closed = True


@pytest.fixture
def api_secret(store, db_path, monkeypatch):
    import pipeline_server

    monkeypatch.setenv("PIPELINE_DB", db_path)
    monkeypatch.setattr(pipeline_server, "API_SECRET", "test-secret")
    pipeline_server.app.config["TESTING"] = True
    return "test-secret"


@pytest.fixture
def flask_session(api_secret):
    import pipeline_server

    return FlaskSession(pipeline_server.app)
