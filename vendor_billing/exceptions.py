"""
vendor_billing/exceptions.py

Typed error taxonomy for the billing core.

Every error carries:
- message: human readable, safe to return to the caller (never includes
  another vendor's data)
- code: stable machine-readable identifier the UI can localize
- status_code: HTTP status used by the JSON error handler in create_app()

    BillingError
    +-- ValidationError      400  malformed/missing monetary or identity fields
    +-- AuthenticationError  401  missing/invalid credentials or token
    +-- ForbiddenError       403  role/ownership violation
    +-- NotFoundError        404  missing entity OR outside the actor's scope
    +-- ConflictError        409  invalid state transition, duplicate reference
    +-- PersistenceError     503  backing store unavailable
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for all errors surfaced by the billing core."""

    status_code = 500
    code = "billing_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BillingError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(BillingError):
    status_code = 401
    code = "unauthenticated"


class ForbiddenError(BillingError):
    status_code = 403
    code = "forbidden"


class NotFoundError(BillingError):
    """
    Raised for missing entities AND for entities outside the actor's visibility.

    Both cases must be indistinguishable to the caller.
    """

    status_code = 404
    code = "not_found"


class ConflictError(BillingError):
    status_code = 409
    code = "conflict"


class PersistenceError(BillingError):
    status_code = 503
    code = "persistence_error"
