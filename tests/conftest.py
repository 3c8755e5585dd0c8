import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from taskboard import config
from taskboard.db import Base, get_db
from taskboard.main import app, seed_admin

engine_test = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
SessionTest = sessionmaker(bind=engine_test, autocommit=False, autoflush=False)


def override_get_db():
    db = SessionTest()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine_test)
    session = SessionTest()
    seed_admin(session)
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine_test)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register(client, email: str, name: str = "", password: str = "secret123") -> dict:
    res = client.post(
        "/api/auth/register",
        json={"name": name or email.split("@")[0], "email": email, "password": password},
    )
    assert res.status_code == 201, res.text
    return res.json()


@pytest.fixture
def alice(client):
    return register(client, "alice@example.com", "Alice")


@pytest.fixture
def bob(client):
    return register(client, "bob@example.com", "Bob")


@pytest.fixture
def admin(client):
    res = client.post(
        "/api/auth/login",
        json={"email": config.SEED_ADMIN_EMAIL, "password": config.SEED_ADMIN_PASSWORD},
    )
    assert res.status_code == 200, res.text
    return res.json()


def make_board(client, token: str, title: str = "Launch") -> dict:
    res = client.post("/api/boards", json={"title": title}, headers=auth_header(token))
    assert res.status_code == 201, res.text
    return res.json()["board"]


def make_task(client, token: str, list_id: str, title: str = "Write docs", **fields) -> dict:
    body = {"title": title, "listId": list_id, **fields}
    res = client.post("/api/tasks", json=body, headers=auth_header(token))
    assert res.status_code == 201, res.text
    return res.json()["task"]
