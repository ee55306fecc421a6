"""Session-token authentication for the intervention API."""

# purpose: resolve opaque bearer tokens into active users before any access guard runs
# status: production
# depends_on: rpma.models.UserSession

from __future__ import annotations

import hashlib
import os
import secrets
from datetime import timedelta

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from . import models
from .clock import as_utc, utcnow
from .database import get_db
from .errors import AuthenticationError

SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "12"))


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_session_token(
    db: Session,
    user: models.User,
    *,
    ttl: timedelta | None = None,
) -> str:
    """Create a session for ``user`` and return the raw bearer token.

    Only the digest is stored, so the token cannot be recovered later.
    """

    token = secrets.token_urlsafe(32)
    session = models.UserSession(
        user_id=user.id,
        token_hash=hash_token(token),
        expires_at=utcnow() + (ttl or timedelta(hours=SESSION_TTL_HOURS)),
    )
    db.add(session)
    db.commit()
    return token


def revoke_session_token(db: Session, token: str) -> bool:
    session = (
        db.query(models.UserSession)
        .filter(models.UserSession.token_hash == hash_token(token))
        .first()
    )
    if session is None or session.revoked_at is not None:
        return False
    session.revoked_at = utcnow()
    db.add(session)
    db.commit()
    return True


def authenticate(db: Session, session_token: str | None) -> models.User:
    """Return the active user behind ``session_token`` or raise AuthenticationError."""

    if not session_token:
        raise AuthenticationError("Missing session token")
    session = (
        db.query(models.UserSession)
        .filter(models.UserSession.token_hash == hash_token(session_token))
        .first()
    )
    if session is None or session.revoked_at is not None:
        raise AuthenticationError("Invalid session token")
    if as_utc(session.expires_at) <= utcnow():
        raise AuthenticationError("Session expired")
    user = session.user
    if user is None or user.is_active is False:
        raise AuthenticationError("User account is inactive")
    return user


bearer_scheme = HTTPBearer(auto_error=False)


def bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    return credentials.credentials if credentials else None


def get_current_user(
    token: str | None = Depends(bearer_token),
    db: Session = Depends(get_db),
) -> models.User:
    try:
        return authenticate(db, token)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=401,
            detail=exc.to_detail(),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
