from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.db.session import get_db
from app.main import app


def test_ping(client: TestClient):
    r = client.get("/api/v1/health/ping")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_db_health(client: TestClient):
    r = client.get("/api/v1/health/db")
    assert r.status_code == 200, r.text


def test_root_lists_app(client: TestClient):
    r = client.get("/")
    assert r.status_code == 200


def test_storage_outage_is_503(client: TestClient):
    class DownSession:
        def execute(self, *args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    def _down():
        yield DownSession()

    app.dependency_overrides[get_db] = _down
    r = client.get("/api/v1/health/db")
    assert r.status_code == 503
    assert r.json()["error"] == "TransportFailure"
