"""Pytest fixtures: VAPID keys, a mocked push service, a recording subscription store."""
import asyncio
import os
import tempfile

import httpx
import pytest

# The SQLite path is read when db is imported, so it must be set before main is imported.
os.environ.setdefault("GRIDLEAD_DB_PATH", os.path.join(tempfile.mkdtemp(), "gridlead-test.db"))
os.environ.pop("SUPABASE_URL", None)

from fastapi.testclient import TestClient

from main import Settings, app, get_http_client, get_settings, get_store
from vapid import generate_key_pair

FCM_ENDPOINT = "https://fcm.googleapis.com/fcm/send/abc"


class RecordingStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.saved = []
        self.removed = []

    async def save(self, subscription, user_id=None):
        self.saved.append((subscription, user_id))

    async def remove(self, endpoint):
        self.removed.append(endpoint)
        if self.fail:
            raise RuntimeError("subscription store unavailable")


class PushServiceMock:
    """Stands in for the browser push service behind an httpx.MockTransport."""

    open_clients = []

    def __init__(self, status_code: int = 201, text: str = "", error: Exception | None = None):
        self.status_code = status_code
        self.text = text
        self.error = error
        self.requests = []
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))
        PushServiceMock.open_clients.append(self.client)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.text)

    @classmethod
    def close_all(cls):
        loop = asyncio.new_event_loop()
        try:
            while cls.open_clients:
                loop.run_until_complete(cls.open_clients.pop().aclose())
        finally:
            loop.close()


def make_settings(keys=None, **overrides) -> Settings:
    private_key, public_key = keys if keys else ("", "")
    values = {
        "vapid_public_key": public_key,
        "vapid_private_key": private_key,
        "vapid_subject": "mailto:ops@gridlead.test",
        "push_timeout": 10.0,
        "encrypt_payload": False,
        "supabase_url": "",
        "supabase_service_role_key": "",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(scope="session")
def vapid_keys():
    """(private_b64, public_b64) generated once per session."""
    return generate_key_pair()


@pytest.fixture
def settings(vapid_keys):
    return make_settings(vapid_keys)


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def push_service():
    return PushServiceMock()


@pytest.fixture
def client(settings, store, push_service):
    """TestClient with settings, store and outbound HTTP swapped out."""
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_http_client] = lambda: push_service.client
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _close_push_services():
    yield
    PushServiceMock.close_all()
