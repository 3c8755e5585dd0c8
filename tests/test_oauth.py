import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from taskboard import config, oauth
from taskboard.errors import Unauthenticated


@pytest.fixture
def google(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_CLIENT_ID", "client-id")
    monkeypatch.setattr(config, "GOOGLE_CLIENT_SECRET", "client-secret")
    monkeypatch.setattr(config, "FRONTEND_URL", "http://front.test")


def consent_state(client) -> str:
    res = client.get("/api/auth/google", follow_redirects=False)
    return parse_qs(urlparse(res.headers["location"]).query)["state"][0]


def callback(client, code="abc"):
    state = consent_state(client)
    return client.get(
        "/api/auth/google/callback",
        params={"code": code, "state": state},
        follow_redirects=False,
    )


def redirected_user(res) -> dict:
    return json.loads(parse_qs(urlparse(res.headers["location"]).query)["user"][0])


def test_google_not_configured(client, monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_CLIENT_ID", "")
    res = client.get("/api/auth/google", follow_redirects=False)
    assert res.status_code == 503
    assert res.json() == {"error": "Google sign-in is not configured"}
    assert "set-cookie" not in res.headers


def test_google_redirects_to_consent(client, google):
    res = client.get("/api/auth/google", follow_redirects=False)
    assert res.status_code == 307
    location = urlparse(res.headers["location"])
    assert location.netloc == "accounts.google.com"
    query = parse_qs(location.query)
    assert query["client_id"] == ["client-id"]
    assert query["response_type"] == ["code"]
    assert len(query["state"][0]) >= 16
    assert "oauth_state=" in res.headers["set-cookie"]
    assert "httponly" in res.headers["set-cookie"].lower()


def test_callback_creates_user_and_redirects(client, google, monkeypatch):
    monkeypatch.setattr(
        oauth,
        "fetch_profile",
        lambda code: {"sub": "g-123", "email": "Gina@Example.com", "name": "Gina"},
    )
    res = callback(client)
    assert res.status_code == 307
    location = urlparse(res.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "http://front.test/auth/callback"
    query = parse_qs(location.query)
    user = json.loads(query["user"][0])
    assert user["email"] == "gina@example.com"
    assert user["role"] == "user"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {query['token'][0]}"})
    assert me.json()["user"]["id"] == user["id"]

    # the same Google account maps to the same user on the next sign-in
    again = callback(client, code="def")
    assert redirected_user(again)["id"] == user["id"]


def test_callback_links_existing_email(client, google, alice, monkeypatch):
    monkeypatch.setattr(
        oauth,
        "fetch_profile",
        lambda code: {"sub": "g-alice", "email": "alice@example.com", "name": "Alice G"},
    )
    res = callback(client)
    assert redirected_user(res)["id"] == alice["user"]["id"]


def test_callback_failure_redirects_to_login(client, google, monkeypatch):
    def fail(code):
        raise Unauthenticated("Google authentication failed")

    monkeypatch.setattr(oauth, "fetch_profile", fail)
    res = callback(client)
    assert res.headers["location"] == "http://front.test/login?error=oauth_failed"

    res = client.get("/api/auth/google/callback?error=access_denied", follow_redirects=False)
    assert res.headers["location"] == "http://front.test/login?error=oauth_failed"


def test_callback_rejects_forged_state(client, google, monkeypatch):
    def never(code):
        raise AssertionError("code must not be exchanged")

    monkeypatch.setattr(oauth, "fetch_profile", never)
    failure = "http://front.test/login?error=oauth_failed"

    consent_state(client)
    res = client.get(
        "/api/auth/google/callback",
        params={"code": "abc", "state": "forged"},
        follow_redirects=False,
    )
    assert res.headers["location"] == failure

    res = client.get("/api/auth/google/callback?code=abc", follow_redirects=False)
    assert res.headers["location"] == failure


def test_callback_requires_state_cookie(client, google, monkeypatch):
    monkeypatch.setattr(
        oauth, "fetch_profile", lambda code: {"sub": "g-1", "email": "x@example.com"}
    )
    state = consent_state(client)
    client.cookies.clear()
    res = client.get(
        "/api/auth/google/callback",
        params={"code": "abc", "state": state},
        follow_redirects=False,
    )
    assert res.headers["location"] == "http://front.test/login?error=oauth_failed"


def test_state_cookie_is_signed_and_expires(google, monkeypatch):
    state, cookie = oauth.new_state()
    assert oauth.state_matches(state, cookie)
    assert not oauth.state_matches(state + "x", cookie)
    assert not oauth.state_matches(state, cookie.replace(".", ".x", 1))
    assert not oauth.state_matches(None, cookie)

    monkeypatch.setattr(oauth, "STATE_MAX_AGE", -1)
    state, cookie = oauth.new_state()
    assert not oauth.state_matches(state, cookie)


def test_fetch_profile_exchanges_code(google):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.host == "oauth2.googleapis.com":
            assert b"code=the-code" in request.content
            return httpx.Response(200, json={"access_token": "tok"})
        assert request.headers["Authorization"] == "Bearer tok"
        return httpx.Response(200, json={"sub": "g-1", "email": "x@example.com", "name": "X"})

    http = httpx.Client(transport=httpx.MockTransport(handler))
    profile = oauth.fetch_profile("the-code", client=http)
    assert profile["sub"] == "g-1"
    assert seen == ["/token", "/v1/userinfo"]


def test_fetch_profile_rejects_bad_exchange(google):
    http = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(400, json={})))
    with pytest.raises(Unauthenticated):
        oauth.fetch_profile("bad", client=http)
