import base64
import hashlib
import logging
from datetime import datetime, timedelta, timezone

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import config
from .db import User, get_db
from .errors import Forbidden, Unauthenticated

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def _pw_prehash(password: str) -> bytes:
    """Pre-hash so passwords longer than bcrypt's 72-byte limit still count in full."""
    digest = hashlib.sha256(password.encode("utf-8")).digest()
    return base64.b64encode(digest)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_pw_prehash(password), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_pw_prehash(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_token(user: User) -> str:
    expires = datetime.now(timezone.utc) + timedelta(days=config.JWT_EXPIRES_DAYS)
    claims = {
        "sub": user.id,
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "name": user.name,
        "exp": expires,
    }
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as exc:
        raise Unauthenticated("Invalid or expired token") from exc


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the principal behind ``Authorization: Bearer <token>``.

    The token only names the principal; the user row is re-read on every
    request so deleted accounts and role changes take effect immediately.
    """
    if creds is None or not creds.credentials:
        raise Unauthenticated()
    payload = decode_token(creds.credentials)
    user_id = payload.get("id") or payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid or expired token")
    user = db.get(User, user_id)
    if user is None:
        raise Unauthenticated("Invalid or expired token")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        logger.warning("User %s denied admin access", user.id)
        raise Forbidden()
    return user
