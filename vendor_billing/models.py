"""
Vendor Billing System – Domain Models

Entities:
- Role / User (login, role-scoped access)
- Vendor + VatConfig + DocumentNumberConfig / DocumentNumberSequence
- Job + JobItem (billable work submitted by a vendor)
- BillingNote -> Receipt -> PaymentVoucher (document lifecycle)

IMPORTANT:
- Derived money fields (price_before_vat, vat_amount, ...) are written once by the
  lifecycle/backfill code and are authoritative afterwards; they are never recomputed on read.
- Serialization (to_dict) uses the camelCase field names of the JSON API.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .enums import (
    DateFormat,
    DocumentStatus,
    DocumentType,
    JobStatus,
    ResetPeriod,
    RoleName,
    VoucherStatus,
)
from .extensions import db
from .money import DEFAULT_VAT_RATE, DEFAULT_WHT_RATE, format_money, format_rate, sum_money


def _iso(value):
    return value.isoformat() if value else None


# Receipt <-> PaymentVoucher (append-only settlement links)
payment_voucher_receipts = db.Table(
    "payment_voucher_receipts",
    db.Column(
        "payment_voucher_id",
        db.Integer,
        db.ForeignKey("payment_vouchers.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "receipt_id",
        db.Integer,
        db.ForeignKey("receipts.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


# ---------------------------------------------------------------------
# Roles & users
# ---------------------------------------------------------------------
class Role(db.Model):
    """Reference data: ADMIN / VENDOR / USER (seeded once)."""

    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(20), unique=True, nullable=False, index=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name}

    def __repr__(self):
        return f"<Role {self.name}>"


class User(UserMixin, db.Model):
    """System login user; optionally attached to one Vendor."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)

    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False, index=True)

    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    role = db.relationship("Role", lazy="joined")
    vendor = db.relationship("Vendor", back_populates="users")

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def role_name(self) -> RoleName:
        return RoleName(self.role.name)

    @property
    def is_admin(self) -> bool:
        return self.role_name is RoleName.ADMIN

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.name,
            "isActive": self.is_active,
            "vendor": self.vendor.to_summary() if self.vendor else None,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email}>"


# ---------------------------------------------------------------------
# Vendor master data
# ---------------------------------------------------------------------
class Vendor(db.Model):
    __tablename__ = "vendors"

    id = db.Column(db.Integer, primary_key=True)

    company_name = db.Column(db.String(255), nullable=False)
    company_address = db.Column(db.Text, nullable=True)
    tax_id = db.Column(db.String(20), nullable=False, unique=True, index=True)

    bank_account = db.Column(db.String(50))
    bank_name = db.Column(db.String(120))
    bank_branch = db.Column(db.String(120))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    users = db.relationship("User", back_populates="vendor", lazy=True)
    vat_config = db.relationship(
        "VatConfig",
        back_populates="vendor",
        uselist=False,
        cascade="all, delete-orphan",
    )
    number_config = db.relationship(
        "DocumentNumberConfig",
        back_populates="vendor",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def to_summary(self):
        return {"id": self.id, "companyName": self.company_name}

    def to_dict(self):
        return {
            "id": self.id,
            "companyName": self.company_name,
            "companyAddress": self.company_address,
            "taxId": self.tax_id,
            "bankAccount": self.bank_account,
            "bankName": self.bank_name,
            "bankBranch": self.bank_branch,
        }

    def __repr__(self):
        return f"<Vendor {self.tax_id} - {self.company_name}>"


class VatConfig(db.Model):
    """
    Per-vendor tax settings.

    Rates are stored as percents (7.00 = 7%).
    calculate_before_vat=True means job totals are entered WITHOUT VAT.
    """

    __tablename__ = "vat_configs"

    id = db.Column(db.Integer, primary_key=True)

    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    vat_rate = db.Column(db.Numeric(5, 2), nullable=False, default=DEFAULT_VAT_RATE)
    wht_rate = db.Column(db.Numeric(5, 2), nullable=False, default=DEFAULT_WHT_RATE)
    calculate_before_vat = db.Column(db.Boolean, nullable=False, default=False)

    vendor = db.relationship("Vendor", back_populates="vat_config")

    def to_dict(self):
        return {
            "vatRate": format_rate(self.vat_rate),
            "whtRate": format_rate(self.wht_rate),
            "calculateBeforeVat": self.calculate_before_vat,
        }


class DocumentNumberConfig(db.Model):
    """Auto-numbering settings per vendor (billing notes and receipts)."""

    __tablename__ = "document_number_configs"

    id = db.Column(db.Integer, primary_key=True)

    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    billing_enabled = db.Column(db.Boolean, nullable=False, default=False)
    billing_prefix = db.Column(db.String(10), nullable=False, default="B")
    receipt_enabled = db.Column(db.Boolean, nullable=False, default=False)
    receipt_prefix = db.Column(db.String(10), nullable=False, default="R")

    date_format = db.Column(db.Enum(DateFormat), nullable=False, default=DateFormat.YYYYMMDD)
    running_digits = db.Column(db.Integer, nullable=False, default=3)
    reset_period = db.Column(db.Enum(ResetPeriod), nullable=False, default=ResetPeriod.DAILY)

    vendor = db.relationship("Vendor", back_populates="number_config")

    def to_dict(self):
        return {
            "billingEnabled": self.billing_enabled,
            "billingPrefix": self.billing_prefix,
            "receiptEnabled": self.receipt_enabled,
            "receiptPrefix": self.receipt_prefix,
            "dateFormat": self.date_format.value,
            "runningDigits": self.running_digits,
            "resetPeriod": self.reset_period.value,
        }


class DocumentNumberSequence(db.Model):
    __tablename__ = "document_number_sequences"

    id = db.Column(db.Integer, primary_key=True)

    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_type = db.Column(db.Enum(DocumentType), nullable=False)
    period_key = db.Column(db.String(20), nullable=False)
    last_number = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.UniqueConstraint("vendor_id", "document_type", "period_key", name="uq_docnumber_vendor_type_period"),
    )


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------
class Job(db.Model):
    """A unit of billable work submitted by a vendor."""

    __tablename__ = "jobs"

    id = db.Column(db.Integer, primary_key=True)

    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    description = db.Column(db.Text, nullable=False)
    ref_invoice_no = db.Column(db.String(100))
    container_no = db.Column(db.String(100))
    truck_plate = db.Column(db.String(50))
    declaration_no = db.Column(db.String(100))
    clearance_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.Enum(JobStatus), nullable=False, default=JobStatus.PENDING, index=True)

    billing_note_id = db.Column(
        db.Integer,
        db.ForeignKey("billing_notes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship(
        "JobItem",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobItem.id",
    )
    billing_note = db.relationship("BillingNote", back_populates="jobs")

    @property
    def total_amount(self) -> Decimal:
        return sum_money(item.amount for item in self.items) or Decimal("0.00")

    def to_dict(self):
        return {
            "id": self.id,
            "vendorId": self.vendor_id,
            "description": self.description,
            "refInvoiceNo": self.ref_invoice_no,
            "containerNo": self.container_no,
            "truckPlate": self.truck_plate,
            "declarationNo": self.declaration_no,
            "clearanceDate": _iso(self.clearance_date),
            "status": self.status.value,
            "billingNoteId": self.billing_note_id,
            "items": [item.to_dict() for item in self.items],
            "totalAmount": format_money(self.total_amount),
            "createdAt": _iso(self.created_at),
        }


class JobItem(db.Model):
    __tablename__ = "job_items"

    id = db.Column(db.Integer, primary_key=True)

    job_id = db.Column(
        db.Integer,
        db.ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    description = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    job = db.relationship("Job", back_populates="items")

    def to_dict(self):
        return {"id": self.id, "description": self.description, "amount": format_money(self.amount)}


# ---------------------------------------------------------------------
# Billing documents
# ---------------------------------------------------------------------
class BillingNote(db.Model):
    """
    Vendor-submitted invoice-like document summarizing jobs.

    subtotal is the amount as submitted. subtotal_includes_vat records which
    convention it uses; NULL means a legacy row where this was never recorded.
    """

    __tablename__ = "billing_notes"

    id = db.Column(db.Integer, primary_key=True)

    billing_ref = db.Column(db.String(50), nullable=False, index=True)

    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    billing_date = db.Column(db.Date, nullable=False, default=lambda: datetime.utcnow().date())

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    vat_rate_text = db.Column(db.String(20), nullable=True)
    wht_rate_text = db.Column(db.String(20), nullable=True)
    subtotal_includes_vat = db.Column(db.Boolean, nullable=True)

    price_before_vat = db.Column(db.Numeric(12, 2), nullable=True)
    vat_amount = db.Column(db.Numeric(12, 2), nullable=True)
    wht_amount = db.Column(db.Numeric(12, 2), nullable=True)
    net_total = db.Column(db.Numeric(12, 2), nullable=True)

    status = db.Column(
        db.Enum(DocumentStatus),
        nullable=False,
        default=DocumentStatus.PENDING,
        index=True,
    )
    remark = db.Column(db.Text, nullable=True)

    receipt_id = db.Column(
        db.Integer,
        db.ForeignKey("receipts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint("vendor_id", "billing_ref", name="uq_billing_vendor_ref"),)

    vendor = db.relationship("Vendor", backref=db.backref("billing_notes", lazy=True))
    jobs = db.relationship("Job", back_populates="billing_note", order_by="Job.id")
    receipt = db.relationship("Receipt", back_populates="billing_notes")

    def to_dict(self, include_jobs: bool = True):
        data = {
            "id": self.id,
            "billingRef": self.billing_ref,
            "vendorId": self.vendor_id,
            "billingDate": _iso(self.billing_date),
            "subtotal": format_money(self.subtotal),
            "vatRateText": self.vat_rate_text,
            "whtRateText": self.wht_rate_text,
            "subtotalIncludesVat": self.subtotal_includes_vat,
            "priceBeforeVat": format_money(self.price_before_vat),
            "vatAmount": format_money(self.vat_amount),
            "whtAmount": format_money(self.wht_amount),
            "netTotal": format_money(self.net_total),
            "status": self.status.value,
            "remark": self.remark,
            "receiptId": self.receipt_id,
            "createdAt": _iso(self.created_at),
        }
        if include_jobs:
            data["jobs"] = [job.to_dict() for job in self.jobs]
        return data


class Receipt(db.Model):
    """Issued against one or more APPROVED billing notes of one vendor."""

    __tablename__ = "receipts"

    id = db.Column(db.Integer, primary_key=True)

    receipt_ref = db.Column(db.String(50), nullable=False, index=True)

    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    receipt_date = db.Column(db.Date, nullable=False, default=lambda: datetime.utcnow().date())

    status = db.Column(
        db.Enum(DocumentStatus),
        nullable=False,
        default=DocumentStatus.PENDING,
        index=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint("vendor_id", "receipt_ref", name="uq_receipt_vendor_ref"),)

    vendor = db.relationship("Vendor", backref=db.backref("receipts", lazy=True))
    billing_notes = db.relationship("BillingNote", back_populates="receipt", order_by="BillingNote.id")
    payment_vouchers = db.relationship(
        "PaymentVoucher",
        secondary=payment_voucher_receipts,
        back_populates="receipts",
    )

    def totals(self) -> dict:
        notes = self.billing_notes
        return {
            "subtotal": sum_money(n.subtotal for n in notes),
            "price_before_vat": sum_money(n.price_before_vat for n in notes),
            "vat_amount": sum_money(n.vat_amount for n in notes),
            "wht_amount": sum_money(n.wht_amount for n in notes),
            "net_total": sum_money(n.net_total for n in notes),
        }

    def to_dict(self, include_notes: bool = True):
        totals = self.totals()
        data = {
            "id": self.id,
            "receiptRef": self.receipt_ref,
            "vendorId": self.vendor_id,
            "receiptDate": _iso(self.receipt_date),
            "status": self.status.value,
            "subtotal": format_money(totals["subtotal"]),
            "priceBeforeVat": format_money(totals["price_before_vat"]),
            "vatAmount": format_money(totals["vat_amount"]),
            "whtAmount": format_money(totals["wht_amount"]),
            "netTotal": format_money(totals["net_total"]),
            "createdAt": _iso(self.created_at),
        }
        if include_notes:
            data["billingNotes"] = [n.to_dict(include_jobs=False) for n in self.billing_notes]
        return data


class PaymentVoucher(db.Model):
    """
    Admin-issued settlement record against APPROVED receipts.

    Append-only: creating a voucher never mutates its receipts. Totals are a
    snapshot taken at creation time.
    """

    __tablename__ = "payment_vouchers"

    id = db.Column(db.Integer, primary_key=True)

    voucher_ref = db.Column(db.String(50), nullable=False, unique=True, index=True)

    vendor_id = db.Column(
        db.Integer,
        db.ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    voucher_date = db.Column(db.Date, nullable=False, default=lambda: datetime.utcnow().date())

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_vat = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_wht = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    net_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    status = db.Column(db.Enum(VoucherStatus), nullable=False, default=VoucherStatus.ISSUED, index=True)
    remark = db.Column(db.Text, nullable=True)

    created_by_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    vendor = db.relationship("Vendor", backref=db.backref("payment_vouchers", lazy=True))
    created_by = db.relationship("User")
    receipts = db.relationship(
        "Receipt",
        secondary=payment_voucher_receipts,
        back_populates="payment_vouchers",
        order_by="Receipt.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "voucherRef": self.voucher_ref,
            "vendorId": self.vendor_id,
            "vendor": self.vendor.to_summary() if self.vendor else None,
            "voucherDate": _iso(self.voucher_date),
            "subtotal": format_money(self.subtotal),
            "totalVat": format_money(self.total_vat),
            "totalWht": format_money(self.total_wht),
            "netTotal": format_money(self.net_total),
            "status": self.status.value,
            "remark": self.remark,
            "createdBy": (
                {"id": self.created_by.id, "email": self.created_by.email, "name": self.created_by.name}
                if self.created_by
                else None
            ),
            "receipts": [r.to_dict(include_notes=False) for r in self.receipts],
            "createdAt": _iso(self.created_at),
        }
