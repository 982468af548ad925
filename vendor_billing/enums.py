"""
Enumeration types used throughout the billing API.

Role names and document states are closed sets. They are stored as their
literal string values, which are part of the public API ("ADMIN", "PENDING",
...) and are compared exactly (case-sensitive).
"""

from enum import Enum


class RoleName(str, Enum):
    """Role of a login user. Seeded once as reference data."""

    ADMIN = "ADMIN"
    VENDOR = "VENDOR"
    USER = "USER"


class DocumentStatus(str, Enum):
    """Lifecycle of billing notes and receipts."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    VOIDED = "VOIDED"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    BILLED = "BILLED"


class VoucherStatus(str, Enum):
    """Payment vouchers are append-only; cancelling keeps the record."""

    ISSUED = "ISSUED"
    CANCELLED = "CANCELLED"


class DocumentType(str, Enum):
    """Document kinds that take part in per-vendor auto-numbering."""

    BILLING = "BILLING"
    RECEIPT = "RECEIPT"


class DateFormat(str, Enum):
    YYYYMMDD = "YYYYMMDD"
    YYYYMM = "YYYYMM"
    YYMM = "YYMM"


class ResetPeriod(str, Enum):
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    NEVER = "NEVER"
