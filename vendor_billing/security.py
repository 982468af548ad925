"""
vendor_billing/security.py

Role-scoped access control for the billing core.

Key rules:
- UI is never trusted; every permission check happens server-side.
- ADMIN: sees every vendor; reviews documents; issues payment vouchers; manages users.
- VENDOR: sees and mutates only its own vendor's documents; manages its own vendor's users.
- USER: read-only access to the vendor it is attached to (if any).

Error semantics:
- Target outside the actor's visibility (other vendor, or missing) -> NotFoundError.
  Existence is never leaked through a different error.
- Visible target, action not permitted for the role -> ForbiddenError.

Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
We use functools.wraps everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Callable, FrozenSet, Optional

from flask import g
from flask_login import current_user, login_required

from .enums import RoleName
from .exceptions import AuthenticationError, ConflictError, ForbiddenError, NotFoundError


class Capability(str, Enum):
    """Things an actor may do. Also drives navigation visibility in the UI."""

    VIEW_OWN_VENDOR = "view_own_vendor"
    VIEW_ALL_VENDORS = "view_all_vendors"
    SUBMIT_JOBS = "submit_jobs"
    SUBMIT_BILLING = "submit_billing"
    ISSUE_RECEIPTS = "issue_receipts"
    REVIEW_DOCUMENTS = "review_documents"
    CREATE_PAYMENT_VOUCHER = "create_payment_voucher"
    MANAGE_OWN_VENDOR_USERS = "manage_own_vendor_users"
    MANAGE_ALL_USERS = "manage_all_users"
    DELETE_USERS = "delete_users"
    MANAGE_VENDOR_SETTINGS = "manage_vendor_settings"
    REGISTER_VENDOR = "register_vendor"


_ADMIN = frozenset(
    {
        Capability.VIEW_ALL_VENDORS,
        Capability.REVIEW_DOCUMENTS,
        Capability.CREATE_PAYMENT_VOUCHER,
        Capability.MANAGE_ALL_USERS,
        Capability.DELETE_USERS,
    }
)

# (with vendor, without vendor)
_ROLE_CAPABILITIES = {
    RoleName.ADMIN: (_ADMIN, _ADMIN),
    RoleName.VENDOR: (
        frozenset(
            {
                Capability.VIEW_OWN_VENDOR,
                Capability.SUBMIT_JOBS,
                Capability.SUBMIT_BILLING,
                Capability.ISSUE_RECEIPTS,
                Capability.MANAGE_OWN_VENDOR_USERS,
                Capability.MANAGE_VENDOR_SETTINGS,
            }
        ),
        frozenset({Capability.REGISTER_VENDOR}),
    ),
    RoleName.USER: (frozenset({Capability.VIEW_OWN_VENDOR}), frozenset()),
}

# Every role must have an entry; adding a RoleName without one fails at import.
_missing = set(RoleName) - set(_ROLE_CAPABILITIES)
if _missing:
    raise RuntimeError(f"capabilities not defined for roles: {sorted(r.value for r in _missing)}")


def capabilities_for(role: RoleName, has_vendor: bool) -> FrozenSet[Capability]:
    """Pure function: enabled capabilities for (role, hasVendor)."""
    with_vendor, without_vendor = _ROLE_CAPABILITIES[role]
    return with_vendor if has_vendor else without_vendor


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller of a core operation.

    Passed explicitly to lifecycle functions instead of reading ambient state.
    """

    user_id: int
    role: RoleName
    vendor_id: Optional[int] = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, role=user.role_name, vendor_id=user.vendor_id)

    @property
    def is_admin(self) -> bool:
        return self.role is RoleName.ADMIN

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return capabilities_for(self.role, self.vendor_id is not None)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


# ---------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------
def can_view_vendor(actor: Actor, vendor_id: Optional[int]) -> bool:
    if actor.can(Capability.VIEW_ALL_VENDORS):
        return True
    return (
        actor.can(Capability.VIEW_OWN_VENDOR)
        and actor.vendor_id is not None
        and vendor_id == actor.vendor_id
    )


def ensure_visible(actor: Actor, entity: Any, label: str = "Document") -> Any:
    """
    Return entity if it exists and belongs to the actor's scope.

    Missing and out-of-scope entities raise the SAME NotFoundError.
    """
    if entity is None or not can_view_vendor(actor, getattr(entity, "vendor_id", None)):
        raise NotFoundError(f"{label} not found")
    return entity


def require_capability(actor: Actor, capability: Capability, message: str | None = None) -> None:
    if not actor.can(capability):
        raise ForbiddenError(message or "You are not allowed to perform this action")


def resolve_vendor_scope(actor: Actor, requested_vendor_id: Optional[int]) -> Optional[int]:
    """
    Vendor filter for list endpoints.

    - ADMIN: requested vendor (or None = all vendors)
    - VENDOR/USER: always their own vendor; requesting another vendor -> NotFoundError
    """
    if actor.can(Capability.VIEW_ALL_VENDORS):
        return requested_vendor_id
    if not actor.can(Capability.VIEW_OWN_VENDOR) or actor.vendor_id is None:
        raise NotFoundError("Vendor not found")
    if requested_vendor_id is not None and requested_vendor_id != actor.vendor_id:
        raise NotFoundError("Vendor not found")
    return actor.vendor_id


def ensure_can_manage_user(actor: Actor, target) -> None:
    """
    Create/edit permission for a target user (target may be a new, unsaved User).

    ADMIN: any user, including other admins.
    VENDOR: only users attached to its own vendor, never ADMIN-role users.
    """
    if actor.can(Capability.MANAGE_ALL_USERS):
        return
    if not actor.can(Capability.MANAGE_OWN_VENDOR_USERS):
        raise ForbiddenError("You are not allowed to manage users")
    if getattr(target, "vendor_id", None) != actor.vendor_id:
        raise NotFoundError("User not found")
    if target.role is not None and RoleName(target.role.name) is RoleName.ADMIN:
        raise ForbiddenError("Only administrators can edit administrator accounts")


def ensure_can_assign_role(actor: Actor, role: RoleName, vendor_id: Optional[int]) -> None:
    """A VENDOR may only create VENDOR/USER accounts for its own vendor."""
    if actor.can(Capability.MANAGE_ALL_USERS):
        return
    if role is RoleName.ADMIN:
        raise ForbiddenError("Only administrators can grant the ADMIN role")
    if vendor_id != actor.vendor_id:
        raise ForbiddenError("Users can only be attached to your own vendor")


def ensure_can_delete_user(actor: Actor, target) -> None:
    require_capability(actor, Capability.DELETE_USERS, "Only administrators can delete users")
    if RoleName(target.role.name) is RoleName.ADMIN:
        raise ConflictError("Administrator accounts cannot be deleted")


# ---------------------------------------------------------------------
# Flask integration
# ---------------------------------------------------------------------
def current_actor() -> Actor:
    """Actor for the current request (set by api_login_required)."""
    actor = getattr(g, "actor", None)
    if actor is None:
        if not current_user.is_authenticated:
            raise AuthenticationError("Unauthorized: Please login to access this resource")
        actor = Actor.from_user(current_user)
        g.actor = actor
    return actor


def api_login_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: authenticated requests only; binds g.actor for the view."""
    @wraps(view_func)
    @login_required
    def wrapper(*args: Any, **kwargs: Any):
        current_actor()
        return view_func(*args, **kwargs)

    return wrapper


def capability_required(capability: Capability, message: str | None = None) -> Callable[..., Any]:
    """
    Decorator factory: authenticated + capability.

    Usage:
        @bp.route("/")
        @capability_required(Capability.CREATE_PAYMENT_VOUCHER)
        def create(): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        @api_login_required
        def wrapper(*args: Any, **kwargs: Any):
            require_capability(current_actor(), capability, message)
            return view_func(*args, **kwargs)

        return wrapper

    return decorator
