"""
Tests for the liveness and readiness probes
"""
# Third Party
from fastapi.testclient import TestClient
import pytest

# Local
from contour_operator.health import ServerThread, create_health_app
from contour_operator.test_helpers.helpers import configure_logging

configure_logging()

## Helpers #####################################################################


class ProbeState:
    def __init__(self, healthy=True, ready=True):
        self.healthy = healthy
        self.ready = ready


@pytest.fixture
def state():
    return ProbeState()


@pytest.fixture
def client(state):
    return TestClient(create_health_app(lambda: state.healthy, lambda: state.ready))


## Tests #######################################################################


def test_healthz(client, state):
    """Liveness follows the health check"""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    state.healthy = False
    response = client.get("/healthz")
    assert response.status_code == 503
    assert response.json() == {"status": "unhealthy"}


def test_readyz(client, state):
    """Readiness follows the readiness check independently of liveness"""
    state.ready = False
    assert client.get("/readyz").status_code == 503
    assert client.get("/healthz").status_code == 200

    state.ready = True
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


def test_unknown_path(client):
    assert client.get("/metrics").status_code == 404


def test_server_thread_config():
    """The server thread serves the app on the given address"""
    app = create_health_app(lambda: True, lambda: True)
    thread = ServerThread(app, "127.0.0.1", 18081, name="health_server")
    assert thread.daemon
    assert thread.name == "health_server"
    assert thread.server.config.host == "127.0.0.1"
    assert thread.server.config.port == 18081
    thread.stop()
    assert thread.server.should_exit
