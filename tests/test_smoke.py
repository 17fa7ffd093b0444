import pytest
from werkzeug.security import generate_password_hash

from app.agritrace import create_app
from app.agritrace.db import session_scope
from app.agritrace.models import Base, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        u = User(email="broker@example.com", password_hash=generate_password_hash("pw-broker"), role="broker", is_active=True)
        s.add(u)

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_me(client):
    # Anonymous should be rejected
    r = client.get("/auth/me")
    assert r.status_code == 401

    # Login
    r = client.post("/auth/login", json={"email": "broker@example.com", "password": "pw-broker"})
    assert r.status_code == 200
    assert r.json["role"] == "broker"

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["email"] == "broker@example.com"

    client.post("/auth/logout")
    r = client.get("/auth/me")
    assert r.status_code == 401


def test_login_bad_password(client):
    r = client.post("/auth/login", json={"email": "broker@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json["error"] == "invalid_credentials"


def test_schema_guardrail_reports_missing_tables(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'empty.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")

    app = create_app()
    r = app.test_client().get("/api/traces/TR-20261018-0000000000")
    assert r.status_code == 503
    assert r.json["error"] == "schema_out_of_date"
    assert "batches (table)" in r.json["missing"]
