"""
User management.

Rules enforced (server-side):
- ADMIN manages every user, including other administrators.
- VENDOR manages only VENDOR/USER accounts attached to its own vendor.
- Users of other vendors are reported as "not found" to a VENDOR.
- Only ADMIN deletes users, and ADMIN accounts can never be deleted.
"""

from __future__ import annotations

import logging

from flask import Blueprint, request

from ...enums import RoleName
from ...exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ...extensions import db
from ...lifecycle import atomic
from ...models import Role, User, Vendor
from ...security import (
    Capability,
    api_login_required,
    current_actor,
    ensure_can_assign_role,
    ensure_can_delete_user,
    ensure_can_manage_user,
)
from ...utils import clean_text, json_body, ok, parse_bool, parse_optional_int

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__, url_prefix="/users")

MIN_PASSWORD_LENGTH = 6


def _parse_role(value) -> RoleName:
    try:
        return RoleName(value)
    except ValueError:
        raise ValidationError("Role must be one of ADMIN, VENDOR, USER", details={"field": "role"})


def _role_row(role: RoleName) -> Role:
    row = Role.query.filter_by(name=role.value).first()
    if row is None:
        raise ConflictError(f"Role {role.value} is not seeded; run `flask seed`")
    return row


def _vendor_id_from(data: dict, default):
    if "vendorId" not in data:
        return default
    vendor_id = parse_optional_int(data.get("vendorId"))
    if data.get("vendorId") not in (None, "") and vendor_id is None:
        raise ValidationError("vendorId must be an integer", details={"field": "vendorId"})
    if vendor_id is not None and db.session.get(Vendor, vendor_id) is None:
        raise NotFoundError("Vendor not found")
    return vendor_id


def _check_password(password) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={"field": "password"},
        )
    return password


def _load_managed_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    ensure_can_manage_user(current_actor(), user)
    return user


# ---------------------------------------------------------------------
# LIST
# ---------------------------------------------------------------------
@users_bp.route("", methods=["GET"])
@api_login_required
def list_users():
    actor = current_actor()
    query = User.query

    if actor.can(Capability.MANAGE_ALL_USERS):
        vendor_id = parse_optional_int(request.args.get("vendorId"))
        if vendor_id is not None:
            query = query.filter(User.vendor_id == vendor_id)
    elif actor.can(Capability.MANAGE_OWN_VENDOR_USERS):
        query = query.filter(User.vendor_id == actor.vendor_id)
    else:
        raise ForbiddenError("You are not allowed to manage users")

    role = (request.args.get("role") or "").strip()
    if role:
        query = query.join(Role).filter(Role.name == _parse_role(role).value)

    users = query.order_by(User.created_at.desc(), User.id.desc()).all()
    return ok([u.to_dict() for u in users])


@users_bp.route("/roles", methods=["GET"])
@api_login_required
def list_roles():
    actor = current_actor()
    if actor.can(Capability.MANAGE_ALL_USERS):
        names = [r.value for r in RoleName]
    elif actor.can(Capability.MANAGE_OWN_VENDOR_USERS):
        names = [RoleName.VENDOR.value, RoleName.USER.value]
    else:
        raise ForbiddenError("You are not allowed to manage users")

    roles = Role.query.filter(Role.name.in_(names)).order_by(Role.id).all()
    return ok([r.to_dict() for r in roles])


# ---------------------------------------------------------------------
# CREATE
# ---------------------------------------------------------------------
@users_bp.route("", methods=["POST"])
@api_login_required
def create_user():
    actor = current_actor()
    if not (actor.can(Capability.MANAGE_ALL_USERS) or actor.can(Capability.MANAGE_OWN_VENDOR_USERS)):
        raise ForbiddenError("You are not allowed to manage users")

    data = json_body()
    email = (data.get("email") or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required", details={"field": "email"})
    password = _check_password(data.get("password"))
    role = _parse_role(data.get("role") or RoleName.USER.value)

    default_vendor = None if actor.can(Capability.MANAGE_ALL_USERS) else actor.vendor_id
    vendor_id = _vendor_id_from(data, default_vendor)
    ensure_can_assign_role(actor, role, vendor_id)

    if User.query.filter_by(email=email).first():
        raise ConflictError("Email already exists")

    user = User(
        email=email,
        name=clean_text(data.get("name")),
        role=_role_row(role),
        vendor_id=vendor_id,
        is_active=True,
    )
    user.set_password(password)

    with atomic():
        db.session.add(user)

    logger.info("User %s (%s) created by user %s", user.id, role.value, actor.user_id)
    return ok(user.to_dict(), status=201)


# ---------------------------------------------------------------------
# EDIT
# ---------------------------------------------------------------------
@users_bp.route("/<int:user_id>", methods=["GET"])
@api_login_required
def get_user(user_id: int):
    return ok(_load_managed_user(user_id).to_dict())


@users_bp.route("/<int:user_id>", methods=["PUT"])
@api_login_required
def update_user(user_id: int):
    actor = current_actor()
    user = _load_managed_user(user_id)
    data = json_body()

    if "email" in data:
        email = (data.get("email") or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationError("A valid email is required", details={"field": "email"})
        existing = User.query.filter_by(email=email).first()
        if existing and existing.id != user.id:
            raise ConflictError("Email already exists")
        user.email = email

    if "name" in data:
        user.name = clean_text(data.get("name"))

    if data.get("password"):
        user.set_password(_check_password(data.get("password")))

    if "isActive" in data:
        is_active = parse_bool(data.get("isActive"))
        if is_active is None:
            raise ValidationError("isActive must be a boolean", details={"field": "isActive"})
        user.is_active = is_active

    if "role" in data or "vendorId" in data:
        role = _parse_role(data.get("role")) if "role" in data else user.role_name
        vendor_id = _vendor_id_from(data, user.vendor_id)
        ensure_can_assign_role(actor, role, vendor_id)
        user.role = _role_row(role)
        user.vendor_id = vendor_id

    with atomic():
        db.session.add(user)

    logger.info("User %s updated by user %s", user.id, actor.user_id)
    return ok(user.to_dict())


# ---------------------------------------------------------------------
# DELETE
# ---------------------------------------------------------------------
@users_bp.route("/<int:user_id>", methods=["DELETE"])
@api_login_required
def delete_user(user_id: int):
    actor = current_actor()
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not actor.can(Capability.MANAGE_ALL_USERS) and user.vendor_id != actor.vendor_id:
        raise NotFoundError("User not found")

    ensure_can_delete_user(actor, user)

    with atomic():
        db.session.delete(user)

    logger.info("User %s deleted by user %s", user_id, actor.user_id)
    return ok({"message": "User deleted"})
