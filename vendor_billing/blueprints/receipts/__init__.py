"""Receipts blueprint: vendor-issued receipts and their review actions."""

from .routes import receipts_bp  # noqa: F401
