"""Google sign-in: consent redirect, CSRF state, code exchange and profile lookup."""

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt

from . import config
from .errors import ServiceUnavailable, Unauthenticated

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


def is_configured() -> bool:
    return bool(config.GOOGLE_CLIENT_ID and config.GOOGLE_CLIENT_SECRET)


def _require_configured() -> None:
    if not is_configured():
        raise ServiceUnavailable("Google sign-in is not configured")


def authorization_url(state: str | None = None) -> str:
    _require_configured()
    params = {
        "client_id": config.GOOGLE_CLIENT_ID,
        "redirect_uri": config.GOOGLE_CALLBACK_URL,
        "response_type": "code",
        "scope": "openid email profile",
        "prompt": "select_account",
    }
    if state:
        params["state"] = state
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def fetch_profile(code: str, client: httpx.Client | None = None) -> dict:
    """Exchange an authorization ``code`` and return the Google profile.

    The returned dict carries ``sub``, ``email`` and ``name``.
    """
    _require_configured()
    owns_client = client is None
    client = client or httpx.Client(timeout=10.0)
    try:
        token_resp = client.post(
            TOKEN_URL,
            data={
                "code": code,
                "client_id": config.GOOGLE_CLIENT_ID,
                "client_secret": config.GOOGLE_CLIENT_SECRET,
                "redirect_uri": config.GOOGLE_CALLBACK_URL,
                "grant_type": "authorization_code",
            },
        )
        if token_resp.status_code != 200:
            logger.warning("Google token exchange failed with %s", token_resp.status_code)
            raise Unauthenticated("Google authentication failed")
        access_token = token_resp.json().get("access_token")
        if not access_token:
            raise Unauthenticated("Google authentication failed")

        profile_resp = client.get(
            USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
        )
        if profile_resp.status_code != 200:
            logger.warning("Google profile lookup failed with %s", profile_resp.status_code)
            raise Unauthenticated("Google authentication failed")
        profile = profile_resp.json()
    except httpx.HTTPError as exc:
        logger.warning("Google sign-in transport error: %s", exc)
        raise Unauthenticated("Google authentication failed") from exc
    finally:
        if owns_client:
            client.close()

    if not profile.get("sub") or not profile.get("email"):
        raise Unauthenticated("Google account has no email")
    return profile


# === CSRF state ===
# The consent redirect carries a random ``state``; the same value is kept in a
# signed, short-lived cookie and must come back unchanged on the callback.

STATE_COOKIE = "oauth_state"
STATE_MAX_AGE = 600


def new_state() -> tuple[str, str]:
    """Return ``(state, cookie_value)`` for a fresh consent redirect."""
    state = secrets.token_urlsafe(24)
    expires = datetime.now(timezone.utc) + timedelta(seconds=STATE_MAX_AGE)
    cookie = jwt.encode(
        {"state": state, "exp": expires}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM
    )
    return state, cookie


def state_matches(state: str | None, cookie: str | None) -> bool:
    if not state or not cookie:
        return False
    try:
        claims = jwt.decode(cookie, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        return False
    expected = claims.get("state")
    return isinstance(expected, str) and hmac.compare_digest(expected, state)
