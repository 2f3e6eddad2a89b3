import pytest
from fastapi.testclient import TestClient

import config
import database
import main
from database import get_db
from main import app

ORIGIN = "http://localhost:5173"


@pytest.fixture
def fresh_connection():
    database._connect.cache_clear()
    yield
    database._connect.cache_clear()


def broken_db():
    raise RuntimeError("database handle exploded")


def test_root(client):
    assert client.get("/").json() == {"message": "Commerce API"}


def test_database_status(client, db, make_product, monkeypatch):
    make_product()
    monkeypatch.setattr(main, "get_db", lambda: db)
    body = client.get("/test").json()
    assert body["connection_status"] == "Connected"
    assert body["database_name"] == "commerce_test"
    assert "product" in body["collections"]


def test_database_status_reports_unreachable_database(client, monkeypatch, fresh_connection):
    monkeypatch.setattr(config, "DATABASE_URL", "mongodb://127.0.0.1:1")
    monkeypatch.setattr(config, "DB_TIMEOUT_MS", 300)
    response = client.get("/test")
    assert response.status_code == 200
    body = response.json()
    assert body["connection_status"] == "Not Connected"
    assert body["database"].startswith("❌ Error")


def test_failed_first_connect_closes_client(monkeypatch, fresh_connection):
    from pymongo.errors import ServerSelectionTimeoutError

    clients = []

    class Collection:
        def create_index(self, *args, **kwargs):
            raise ServerSelectionTimeoutError("no servers")

    class Client:
        def __init__(self, *args, **kwargs):
            self.closed = False
            clients.append(self)

        def __getitem__(self, name):
            return {"product": Collection(), "user": Collection()}

        def close(self):
            self.closed = True

    monkeypatch.setattr(database, "MongoClient", Client)
    with pytest.raises(ServerSelectionTimeoutError):
        get_db()
    assert len(clients) == 1
    assert clients[0].closed


def test_unexpected_error_includes_message_outside_production(monkeypatch):
    monkeypatch.setattr(config, "APP_ENV", "development")
    app.dependency_overrides[get_db] = broken_db
    try:
        with TestClient(app, raise_server_exceptions=False) as c:
            response = c.get("/api/product", headers={"Origin": ORIGIN})
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal"
    assert body["message"] == "database handle exploded"
    assert "access-control-allow-origin" in response.headers


def test_unexpected_error_hides_message_in_production(monkeypatch):
    monkeypatch.setattr(config, "APP_ENV", "production")
    app.dependency_overrides[get_db] = broken_db
    try:
        with TestClient(app, raise_server_exceptions=False) as c:
            response = c.get("/api/product")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 500
    assert response.json() == {"error": "Internal", "detail": "Internal server error"}


def test_cors_headers_on_rejected_token(client):
    response = client.get(
        "/api/product",
        headers={"Authorization": "Bearer broken", "Origin": ORIGIN},
    )
    assert response.status_code == 401
    assert "access-control-allow-origin" in response.headers
