import pytest
from fastapi.testclient import TestClient

from timeseriesui.config import Settings
from timeseriesui.connections import BackendType, Connection
from timeseriesui.server import create_app
from timeseriesui.utils_tests.fake_backend import FakeBackend, json_route

FAKE_INFLUX_URL = "http://localhost:9999"


@pytest.fixture
def fake_backend():
    """Upstream stub answering InfluxDB's /ping with {"ok": true}."""
    return FakeBackend(
        {
            "/ping": json_route(
                200, {"ok": True}, headers={"X-Influxdb-Version": "1.8.10"}
            ),
        }
    )


@pytest.fixture
def influx_connection():
    return Connection(
        name="InfluxDB (local)",
        type=BackendType.INFLUXDB,
        url=FAKE_INFLUX_URL,
        username="admin",
        password="secret",
    )


@pytest.fixture
def make_client(fake_backend):
    """Factory for a TestClient over an app whose upstream calls hit ``fake_backend``."""
    clients = []

    def _make(**settings_kwargs) -> TestClient:
        settings = Settings(**settings_kwargs)
        client = TestClient(create_app(settings, transport=fake_backend.transport))
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)
