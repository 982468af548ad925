"""
vendor_billing/blueprints/payment_vouchers/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose payment_vouchers_bp for app factory registration.
- Keep import minimal to avoid side effects.
"""

from __future__ import annotations

from .routes import payment_vouchers_bp  # noqa: F401
