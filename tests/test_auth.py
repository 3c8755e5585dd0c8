import pytest
from jose import jwt

from taskboard import config
from taskboard.errors import Conflict
from taskboard.storage import Storage
from conftest import auth_header, register


def test_register_returns_token_and_user(client):
    data = register(client, "Carol@Example.com", "Carol")
    assert data["token"]
    assert data["user"]["email"] == "carol@example.com"
    assert data["user"]["role"] == "user"
    assert data["user"]["name"] == "Carol"


def test_signup_alias(client):
    res = client.post(
        "/api/auth/signup", json={"email": "dave@example.com", "password": "secret123"}
    )
    assert res.status_code == 201
    assert res.json()["user"]["name"] == "dave"


def test_token_claims(client, alice):
    claims = jwt.decode(alice["token"], config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    assert claims["id"] == alice["user"]["id"]
    assert claims["email"] == "alice@example.com"
    assert claims["role"] == "user"
    assert claims["name"] == "Alice"
    assert claims["exp"] > 0


def test_duplicate_email_conflicts(client, alice):
    res = client.post(
        "/api/auth/register",
        json={"name": "Other", "email": "ALICE@example.com", "password": "secret123"},
    )
    assert res.status_code == 409
    assert res.json() == {"error": "Email is already registered"}


def test_racing_registration_conflicts(client, db, alice, monkeypatch):
    # the lookup misses, as when another request registers in between
    monkeypatch.setattr(Storage, "get_user_by_email", lambda self, email: None)
    res = client.post(
        "/api/auth/register",
        json={"name": "Twin", "email": "alice@example.com", "password": "secret123"},
    )
    assert res.status_code == 409
    assert res.json() == {"error": "Email is already registered"}

    with pytest.raises(Conflict):
        Storage(db).create_user("Twin", "alice@example.com")
    # the session is still usable after the rollback
    assert Storage(db).count_users() == 2


def test_register_validates_input(client):
    res = client.post("/api/auth/register", json={"email": "not-an-email", "password": "secret123"})
    assert res.status_code == 400
    assert res.json()["error"] == "Invalid email format"

    res = client.post("/api/auth/register", json={"email": "x@example.com", "password": "123"})
    assert res.status_code == 400

    res = client.post("/api/auth/register", json={"email": "x@example.com"})
    assert res.status_code == 400
    assert "password" in res.json()["error"]


def test_login(client, alice):
    res = client.post(
        "/api/auth/login", json={"email": "alice@example.com", "password": "secret123"}
    )
    assert res.status_code == 200
    assert res.json()["user"]["id"] == alice["user"]["id"]


def test_login_does_not_reveal_existing_email(client, alice):
    wrong_password = client.post(
        "/api/auth/login", json={"email": "alice@example.com", "password": "nope-nope"}
    )
    unknown_email = client.post(
        "/api/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"}
    )
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"error": "Invalid credentials"}


def test_me_requires_token(client, alice):
    assert client.get("/api/auth/me").status_code == 401
    res = client.get("/api/auth/me", headers=auth_header(alice["token"]))
    assert res.status_code == 200
    assert res.json()["user"]["email"] == "alice@example.com"


def test_invalid_token_rejected(client):
    res = client.get("/api/boards", headers=auth_header("garbage"))
    assert res.status_code == 401
    assert res.json() == {"error": "Invalid or expired token"}

    res = client.get("/api/boards", headers={"Authorization": "Basic abc"})
    assert res.status_code == 401


def test_expired_token_rejected(client, alice, monkeypatch):
    monkeypatch.setattr(config, "JWT_EXPIRES_DAYS", -1)
    res = client.post(
        "/api/auth/login", json={"email": "alice@example.com", "password": "secret123"}
    )
    token = res.json()["token"]
    res = client.get("/api/boards", headers=auth_header(token))
    assert res.status_code == 401


def test_token_for_deleted_user_rejected(client, alice, admin):
    res = client.delete(f"/api/users/{alice['user']['id']}", headers=auth_header(admin["token"]))
    assert res.status_code == 200
    res = client.get("/api/boards", headers=auth_header(alice["token"]))
    assert res.status_code == 401
