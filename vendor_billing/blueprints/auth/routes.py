"""
vendor_billing/blueprints/auth/routes.py

Authentication routes (token based).

- POST /auth/login   email + password -> {token, user}
- GET  /auth/me      current user, vendor and enabled capabilities
- POST /auth/logout  clears the caller's session

Tokens are stateless; logout only ends the session on this side.
The client is expected to drop the token.
"""

from __future__ import annotations

import logging

from flask import Blueprint, request
from flask_login import current_user

from ...exceptions import AuthenticationError, ValidationError
from ...models import User
from ...security import api_login_required, current_actor
from ...session import AuthSession, token_from_header
from ...utils import json_body, ok

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        raise ValidationError("Email and password are required")

    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active or not user.check_password(password):
        logger.info("Failed login for %s", email)
        raise AuthenticationError("Invalid email or password")

    session = AuthSession.issue(user)
    logger.info("User %s logged in", user.id)
    return ok(session.to_dict())


@auth_bp.route("/me", methods=["GET"])
@api_login_required
def me():
    actor = current_actor()
    data = current_user.to_dict()
    data["vendor"] = current_user.vendor.to_dict() if current_user.vendor else None
    data["capabilities"] = sorted(c.value for c in actor.capabilities)
    return ok(data)


@auth_bp.route("/logout", methods=["POST"])
@api_login_required
def logout():
    session = AuthSession(
        token=token_from_header(request.headers.get("Authorization")),
        user=current_user._get_current_object(),
    )
    session.clear()
    return ok({"message": "Logged out"})
