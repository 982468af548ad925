"""
vendor_billing/seed.py

Seed reference data.

Rules:
- Safe to run multiple times (idempotent).
- Seeds the three roles (ADMIN / VENDOR / USER) exactly as spelled in RoleName.
- Creates the bootstrap administrator from ADMIN_EMAIL / ADMIN_PASSWORD if missing.
  An existing account is never modified (its password is not reset).
"""

from __future__ import annotations

import logging

from flask import current_app

from .enums import RoleName
from .extensions import db
from .models import Role, User

logger = logging.getLogger(__name__)


def seed_roles() -> dict[RoleName, Role]:
    roles = {}
    for role_name in RoleName:
        role = Role.query.filter_by(name=role_name.value).first()
        if not role:
            role = Role(name=role_name.value)
            db.session.add(role)
            logger.info("Seeded role %s", role_name.value)
        roles[role_name] = role

    db.session.flush()
    return roles


def seed_admin(admin_role: Role) -> User | None:
    email = (current_app.config.get("ADMIN_EMAIL") or "").strip().lower()
    password = current_app.config.get("ADMIN_PASSWORD")
    if not email or not password:
        return None

    user = User.query.filter_by(email=email).first()
    if user:
        return user

    user = User(email=email, name="Administrator", role=admin_role, is_active=True)
    user.set_password(password)
    db.session.add(user)
    logger.info("Seeded bootstrap administrator %s", email)
    return user


def seed_defaults() -> None:
    """Roles + bootstrap admin, committed in one transaction."""
    roles = seed_roles()
    seed_admin(roles[RoleName.ADMIN])
    db.session.commit()
