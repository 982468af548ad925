"""
vendor_billing/numbering.py

Human-readable document references.

- Auto-numbering (per vendor, opt-in): {prefix}{date part}{running number}
  e.g. B20260315001, with the running number reset DAILY/MONTHLY/YEARLY/NEVER.
- Fallbacks when auto-numbering is disabled:
  - billing notes: VBS{year}-{NNNN}
  - receipts:      RE{year}-{NNNN}
- Payment vouchers (global): PV{yyyymmdd}{NNN}

References are generated once at creation and never regenerated.
Billing/receipt references are unique per vendor; voucher references are unique globally.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from .enums import DateFormat, DocumentType, ResetPeriod
from .exceptions import ConflictError
from .extensions import db
from .models import (
    BillingNote,
    DocumentNumberConfig,
    DocumentNumberSequence,
    PaymentVoucher,
    Receipt,
)

DEFAULT_PREFIXES = {DocumentType.BILLING: "B", DocumentType.RECEIPT: "R"}


def format_date_part(on_date: date, date_format: DateFormat) -> str:
    if date_format is DateFormat.YYYYMM:
        return on_date.strftime("%Y%m")
    if date_format is DateFormat.YYMM:
        return on_date.strftime("%y%m")
    return on_date.strftime("%Y%m%d")


def period_key(on_date: date, reset_period: ResetPeriod) -> str:
    """Sequence bucket; the running number restarts at 1 in each new bucket."""
    if reset_period is ResetPeriod.MONTHLY:
        return on_date.strftime("%Y%m")
    if reset_period is ResetPeriod.YEARLY:
        return on_date.strftime("%Y")
    if reset_period is ResetPeriod.NEVER:
        return "ALL"
    return on_date.strftime("%Y%m%d")


def _prefix_and_enabled(config: DocumentNumberConfig, document_type: DocumentType) -> tuple[str, bool]:
    if document_type is DocumentType.BILLING:
        return config.billing_prefix, config.billing_enabled
    return config.receipt_prefix, config.receipt_enabled


def _format_number(config: DocumentNumberConfig, document_type: DocumentType, on_date: date, number: int) -> str:
    prefix, _ = _prefix_and_enabled(config, document_type)
    running = str(number).zfill(config.running_digits)
    return f"{prefix}{format_date_part(on_date, config.date_format)}{running}"


def _sequence_query(vendor_id: int, document_type: DocumentType, key: str):
    return DocumentNumberSequence.query.filter_by(
        vendor_id=vendor_id,
        document_type=document_type,
        period_key=key,
    )


def generate_document_number(
    vendor_id: int,
    document_type: DocumentType,
    on_date: Optional[date] = None,
) -> Optional[str]:
    """
    Next auto-number for a vendor, or None when auto-numbering is off.

    Increments the sequence inside the caller's transaction; the caller commits.
    """
    on_date = on_date or date.today()
    config = DocumentNumberConfig.query.filter_by(vendor_id=vendor_id).first()
    if config is None:
        return None

    _, enabled = _prefix_and_enabled(config, document_type)
    if not enabled:
        return None

    key = period_key(on_date, config.reset_period)
    sequence = _sequence_query(vendor_id, document_type, key).with_for_update().first()

    if sequence is None:
        sequence = DocumentNumberSequence(
            vendor_id=vendor_id,
            document_type=document_type,
            period_key=key,
            last_number=1,
        )
        db.session.add(sequence)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError("Document number sequence is busy, please retry")
        number = 1
    else:
        db.session.execute(
            update(DocumentNumberSequence)
            .where(DocumentNumberSequence.id == sequence.id)
            .values(last_number=DocumentNumberSequence.last_number + 1)
            .execution_options(synchronize_session="fetch")
        )
        number = db.session.scalar(
            select(DocumentNumberSequence.last_number).where(DocumentNumberSequence.id == sequence.id)
        )

    return _format_number(config, document_type, on_date, number)


def preview_document_number(
    vendor_id: int,
    document_type: DocumentType,
    on_date: Optional[date] = None,
) -> str:
    """Next number WITHOUT incrementing the sequence."""
    on_date = on_date or date.today()
    config = DocumentNumberConfig.query.filter_by(vendor_id=vendor_id).first()

    if config is None:
        return f"{DEFAULT_PREFIXES[document_type]}{on_date.strftime('%Y%m%d')}001"

    key = period_key(on_date, config.reset_period)
    sequence = _sequence_query(vendor_id, document_type, key).first()
    next_number = (sequence.last_number if sequence else 0) + 1
    return _format_number(config, document_type, on_date, next_number)


# ---------------------------------------------------------------------
# Fallback references
# ---------------------------------------------------------------------
def _next_in_series(column, prefix: str, width: int, *criteria) -> str:
    """
    {prefix}{max + 1}, zero-padded to `width`.

    Only refs that are the prefix followed by digits count, so custom refs
    sharing the prefix ("VBS2026-X") are ignored and 10000 follows 9999.
    """
    pattern = re.compile(rf"{re.escape(prefix)}(\d+)")
    refs = db.session.scalars(select(column).where(column.startswith(prefix, autoescape=True), *criteria))
    numbers = [int(match.group(1)) for match in map(pattern.fullmatch, refs) if match]
    return f"{prefix}{max(numbers, default=0) + 1:0{width}d}"


def fallback_billing_ref(vendor_id: int, on_date: Optional[date] = None) -> str:
    prefix = f"VBS{(on_date or date.today()).year}-"
    return _next_in_series(BillingNote.billing_ref, prefix, 4, BillingNote.vendor_id == vendor_id)


def fallback_receipt_ref(vendor_id: int, on_date: Optional[date] = None) -> str:
    prefix = f"RE{(on_date or date.today()).year}-"
    return _next_in_series(Receipt.receipt_ref, prefix, 4, Receipt.vendor_id == vendor_id)


def next_voucher_ref(on_date: Optional[date] = None) -> str:
    prefix = f"PV{(on_date or date.today()).strftime('%Y%m%d')}"
    return _next_in_series(PaymentVoucher.voucher_ref, prefix, 3)
