"""
vendor_billing/session.py

Explicit authentication session.

An AuthSession holds the bearer token and the user it resolves to. It has an
explicit lifecycle instead of module-level mutable state:

- AuthSession.issue(user)        after a successful login
- AuthSession.load(token)        from a persisted credential (Authorization header)
- session.clear()                on logout

Tokens are stateless HS256 JWTs; claims mirror what the UI needs to render
(userId, email, role, vendorId). Authorization never trusts the claims: the
user row is re-read on every request so role/vendor changes apply immediately.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from flask import current_app

from .exceptions import AuthenticationError
from .extensions import db
from .models import User
from .security import Actor

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def _secret() -> str:
    return current_app.config["JWT_SECRET"]


def _algorithm() -> str:
    return current_app.config.get("JWT_ALGORITHM", "HS256")


def encode_token(user: User) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.name,
        "vendorId": user.vendor_id,
        "iat": now,
        "exp": now + timedelta(days=current_app.config.get("JWT_EXPIRES_DAYS", 7)),
    }
    return jwt.encode(payload, _secret(), algorithm=_algorithm())


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, _secret(), algorithms=[_algorithm()])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def token_from_header(header_value: Optional[str]) -> Optional[str]:
    if not header_value or not header_value.startswith(BEARER_PREFIX):
        return None
    token = header_value[len(BEARER_PREFIX):].strip()
    return token or None


class AuthSession:
    """Token + resolved user for one caller."""

    def __init__(self, token: Optional[str] = None, user: Optional[User] = None):
        self.token = token
        self.user = user

    @classmethod
    def issue(cls, user: User) -> "AuthSession":
        return cls(token=encode_token(user), user=user)

    @classmethod
    def load(cls, token: Optional[str]) -> "AuthSession":
        """
        Resolve a persisted token to an active user.

        Raises AuthenticationError for missing/invalid/expired tokens and for
        users that no longer exist or were deactivated.
        """
        if not token:
            raise AuthenticationError("No token provided")

        claims = decode_token(token)
        try:
            user_id = int(claims.get("sub"))
        except (TypeError, ValueError):
            raise AuthenticationError("Invalid token")

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("User not found")

        return cls(token=token, user=user)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def actor(self) -> Actor:
        if self.user is None:
            raise AuthenticationError("Unauthorized: Please login to access this resource")
        return Actor.from_user(self.user)

    def clear(self) -> None:
        if self.user is not None:
            logger.info("Session cleared for user %s", self.user.id)
        self.token = None
        self.user = None

    def to_dict(self) -> dict:
        return {"token": self.token, "user": self.user.to_dict() if self.user else None}


def load_user_from_request(request) -> Optional[User]:
    """Flask-Login request_loader: bearer token -> User (None if absent/invalid)."""
    token = token_from_header(request.headers.get("Authorization"))
    if token is None:
        return None
    try:
        return AuthSession.load(token).user
    except AuthenticationError as exc:
        logger.debug("Rejected bearer token: %s", exc.message)
        return None
