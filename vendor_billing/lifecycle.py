"""
vendor_billing/lifecycle.py

Document lifecycle: Job -> BillingNote -> Receipt -> PaymentVoucher.

BillingNote / Receipt states:

    DRAFT -> PENDING -> APPROVED
               |           |
               +-> REJECTED|
    DRAFT/PENDING/APPROVED -> VOIDED

IMPORTANT:
- Every operation takes an explicit Actor; nothing reads the request here.
- Every status change is a conditional UPDATE ... WHERE id = :id AND status = :expected.
  Zero affected rows means someone else changed the row first -> ConflictError.
- Multi-row operations run in one transaction; any failure rolls the whole thing back.
- Payment vouchers are append-only: creating one never touches its receipts.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from .enums import DocumentStatus, DocumentType, JobStatus, RoleName, VoucherStatus
from .exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .extensions import db
from .models import BillingNote, Job, JobItem, PaymentVoucher, Receipt, Vendor, payment_voucher_receipts
from .money import compute_billing_amounts, format_rate, money, parse_amount, parse_rate
from .numbering import (
    fallback_billing_ref,
    fallback_receipt_ref,
    generate_document_number,
    next_voucher_ref,
)
from .security import Actor, Capability, ensure_visible, require_capability
from .utils import clean_text, missing_ids, parse_bool, parse_date, parse_id_list, parse_required_int, require_text

logger = logging.getLogger(__name__)

S = DocumentStatus

# (from, to) -> roles allowed to take that edge
TRANSITIONS = {
    (S.DRAFT, S.PENDING): frozenset({RoleName.VENDOR}),
    (S.PENDING, S.APPROVED): frozenset({RoleName.ADMIN}),
    (S.PENDING, S.REJECTED): frozenset({RoleName.ADMIN}),
    (S.DRAFT, S.VOIDED): frozenset({RoleName.VENDOR, RoleName.ADMIN}),
    (S.PENDING, S.VOIDED): frozenset({RoleName.VENDOR, RoleName.ADMIN}),
    (S.APPROVED, S.VOIDED): frozenset({RoleName.ADMIN}),
}

EDITABLE_STATES = (S.DRAFT, S.PENDING)
RELEASING_STATES = (S.REJECTED, S.VOIDED)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
@contextmanager
def atomic():
    """Commit on success, roll back on any error. Duplicate keys surface as ConflictError."""
    try:
        yield
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error, transaction rolled back: %s", exc.orig)
        raise ConflictError("The change conflicts with existing data") from exc
    except Exception:
        db.session.rollback()
        raise


def _guarded_update(model, entity_id: int, criteria: Iterable, values: dict, label: str) -> None:
    """Single-row conditional update; no match means a concurrent change."""
    stmt = (
        update(model)
        .where(model.id == entity_id, *criteria)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise ConflictError(f"{label} was changed by another request, reload and try again")


def check_transition(actor: Actor, current: DocumentStatus, target: DocumentStatus) -> None:
    """
    Role first, then edge:
    - actor's role never moves anything into `target` -> ForbiddenError
    - no edge current -> target                        -> ConflictError
    - edge exists but not for this role                -> ForbiddenError
    """
    roles_into_target = set()
    for (_, to_state), roles in TRANSITIONS.items():
        if to_state is target:
            roles_into_target |= roles

    if actor.role not in roles_into_target:
        raise ForbiddenError(f"Your role cannot move documents to {target.value}")

    allowed = TRANSITIONS.get((current, target))
    if allowed is None:
        raise ConflictError(f"Cannot change status from {current.value} to {target.value}")
    if actor.role not in allowed:
        raise ForbiddenError(f"Your role cannot change status from {current.value} to {target.value}")


def parse_status(value) -> DocumentStatus:
    try:
        return DocumentStatus(value)
    except ValueError:
        raise ValidationError("Unknown status", details={"field": "status"})


def _vendor_tax_defaults(vendor_id: int) -> tuple[Decimal, Decimal, bool]:
    """(vat %, wht %, calculate_before_vat) for a vendor; app defaults when unset."""
    vendor = db.session.get(Vendor, vendor_id)
    config = vendor.vat_config if vendor else None
    if config is None:
        return (
            parse_rate(current_app.config.get("DEFAULT_VAT_RATE")),
            parse_rate(current_app.config.get("DEFAULT_WHT_RATE"), Decimal("3"), "whtRate"),
            False,
        )
    return Decimal(config.vat_rate), Decimal(config.wht_rate), bool(config.calculate_before_vat)


def _amounts_for_jobs(vendor_id: int, jobs: list[Job], calculate_before_vat: Optional[bool]):
    vat, wht, vendor_before_vat = _vendor_tax_defaults(vendor_id)
    before_vat = vendor_before_vat if calculate_before_vat is None else calculate_before_vat
    subtotal = sum((job.total_amount for job in jobs), Decimal("0.00"))
    return compute_billing_amounts(subtotal, vat, wht, subtotal_includes_vat=not before_vat)


def _load_jobs(actor: Actor, job_ids: list[int]) -> list[Job]:
    """Jobs by id, all inside the actor's scope, in request order."""
    jobs = Job.query.filter(Job.id.in_(job_ids)).all()
    by_id = {job.id: job for job in jobs}
    if missing_ids(job_ids, by_id):
        raise NotFoundError("Job not found")
    for job in jobs:
        ensure_visible(actor, job, "Job")
    return [by_id[i] for i in job_ids]


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------
def _parse_items(raw_items) -> list[JobItem]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item is required", details={"field": "items"})

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", details={"field": f"items[{index}]"})
        items.append(
            JobItem(
                description=require_text(raw.get("description"), f"items[{index}].description"),
                amount=money(parse_amount(raw.get("amount"), f"items[{index}].amount")),
            )
        )
    return items


def _apply_job_fields(job: Job, data: dict) -> None:
    if "description" in data or job.description is None:
        job.description = require_text(data.get("description"), "description")
    if "refInvoiceNo" in data:
        job.ref_invoice_no = clean_text(data.get("refInvoiceNo"))
    if "containerNo" in data:
        job.container_no = clean_text(data.get("containerNo"))
    if "truckPlate" in data:
        job.truck_plate = clean_text(data.get("truckPlate"))
    if "declarationNo" in data:
        job.declaration_no = clean_text(data.get("declarationNo"))
    if "clearanceDate" in data:
        job.clearance_date = parse_date(data.get("clearanceDate"), "clearanceDate")


def create_job(actor: Actor, data: dict) -> Job:
    require_capability(actor, Capability.SUBMIT_JOBS, "Only vendors can submit jobs")

    job = Job(vendor_id=actor.vendor_id, status=JobStatus.PENDING)
    _apply_job_fields(job, data)
    job.items = _parse_items(data.get("items"))

    with atomic():
        db.session.add(job)

    logger.info("Job %s created for vendor %s", job.id, job.vendor_id)
    return job


def update_job(actor: Actor, job_id: int, data: dict) -> Job:
    job = ensure_visible(actor, db.session.get(Job, job_id), "Job")
    require_capability(actor, Capability.SUBMIT_JOBS, "Only vendors can edit jobs")
    if job.status is not JobStatus.PENDING:
        raise ConflictError("Only pending jobs can be edited")

    with atomic():
        _guarded_update(Job, job.id, [Job.status == JobStatus.PENDING], {"vendor_id": job.vendor_id}, "Job")
        _apply_job_fields(job, data)
        if "items" in data:
            job.items = _parse_items(data.get("items"))

    return job


def delete_job(actor: Actor, job_id: int) -> None:
    job = ensure_visible(actor, db.session.get(Job, job_id), "Job")
    require_capability(actor, Capability.SUBMIT_JOBS, "Only vendors can delete jobs")
    if job.status is not JobStatus.PENDING:
        raise ConflictError("Only pending jobs can be deleted")

    with atomic():
        _guarded_update(Job, job.id, [Job.status == JobStatus.PENDING], {"vendor_id": job.vendor_id}, "Job")
        db.session.delete(job)

    logger.info("Job %s deleted", job_id)


# ---------------------------------------------------------------------
# Billing notes
# ---------------------------------------------------------------------
def preview_billing(actor: Actor, job_ids, calculate_before_vat=None) -> dict:
    """Amounts for a prospective billing note. Nothing is persisted."""
    require_capability(actor, Capability.SUBMIT_BILLING, "Only vendors can preview billing notes")
    jobs = _load_jobs(actor, parse_id_list(job_ids, "jobIds"))
    amounts = _amounts_for_jobs(actor.vendor_id, jobs, parse_bool(calculate_before_vat))

    data = amounts.to_dict()
    data["jobs"] = [job.to_dict() for job in jobs]
    return data


def _release_jobs(note_id: int) -> None:
    db.session.execute(
        update(Job)
        .where(Job.billing_note_id == note_id)
        .values(status=JobStatus.PENDING, billing_note_id=None)
        .execution_options(synchronize_session="fetch")
    )


def _claim_jobs(note_id: int, vendor_id: int, job_ids: list[int]) -> None:
    """Mark PENDING jobs as billed on note_id; all-or-nothing."""
    result = db.session.execute(
        update(Job)
        .where(
            Job.id.in_(job_ids),
            Job.vendor_id == vendor_id,
            Job.status == JobStatus.PENDING,
        )
        .values(status=JobStatus.BILLED, billing_note_id=note_id)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != len(job_ids):
        raise ConflictError("One or more jobs are already billed")


def _apply_amounts(note: BillingNote, amounts) -> None:
    note.subtotal = amounts.subtotal
    note.vat_rate_text = format_rate(amounts.vat_rate)
    note.wht_rate_text = format_rate(amounts.wht_rate)
    note.subtotal_includes_vat = amounts.subtotal_includes_vat
    note.price_before_vat = amounts.price_before_vat
    note.vat_amount = amounts.vat_amount
    note.wht_amount = amounts.wht_amount
    note.net_total = amounts.net_total


def create_billing_note(
    actor: Actor,
    job_ids,
    billing_ref: Optional[str] = None,
    remark: Optional[str] = None,
    calculate_before_vat=None,
    draft: bool = False,
    billing_date=None,
) -> BillingNote:
    require_capability(actor, Capability.SUBMIT_BILLING, "Only vendors can create billing notes")

    ids = parse_id_list(job_ids, "jobIds")
    jobs = _load_jobs(actor, ids)
    if any(job.status is not JobStatus.PENDING for job in jobs):
        raise ConflictError("One or more jobs are already billed")

    on_date = parse_date(billing_date, "billingDate", default=date.today())
    amounts = _amounts_for_jobs(actor.vendor_id, jobs, parse_bool(calculate_before_vat))

    custom_ref = clean_text(billing_ref)
    if custom_ref and BillingNote.query.filter_by(vendor_id=actor.vendor_id, billing_ref=custom_ref).first():
        raise ConflictError("Billing reference already exists")

    with atomic():
        ref = (
            custom_ref
            or generate_document_number(actor.vendor_id, DocumentType.BILLING, on_date)
            or fallback_billing_ref(actor.vendor_id, on_date)
        )
        note = BillingNote(
            billing_ref=ref,
            vendor_id=actor.vendor_id,
            billing_date=on_date,
            status=S.DRAFT if draft else S.PENDING,
            remark=clean_text(remark),
        )
        _apply_amounts(note, amounts)
        db.session.add(note)
        db.session.flush()
        _claim_jobs(note.id, actor.vendor_id, ids)

    logger.info(
        "Billing note %s created for vendor %s (%s jobs, status %s)",
        note.billing_ref,
        note.vendor_id,
        len(ids),
        note.status.value,
    )
    return note


def update_billing_note(
    actor: Actor,
    note_id: int,
    job_ids=None,
    remark: Optional[str] = None,
    calculate_before_vat=None,
) -> BillingNote:
    """Replace jobs / remark of a DRAFT or PENDING note and recompute its amounts."""
    note = ensure_visible(actor, db.session.get(BillingNote, note_id), "Billing note")
    require_capability(actor, Capability.SUBMIT_BILLING, "Only vendors can edit billing notes")
    if note.status not in EDITABLE_STATES:
        raise ConflictError(f"A {note.status.value} billing note cannot be edited")

    current_status = note.status
    with atomic():
        # Locks out a racing approval for the rest of the transaction
        _guarded_update(
            BillingNote,
            note.id,
            [BillingNote.status == current_status],
            {"status": current_status},
            "Billing note",
        )

        if job_ids is not None:
            ids = parse_id_list(job_ids, "jobIds")
            jobs = _load_jobs(actor, ids)
            if any(job.status is not JobStatus.PENDING and job.billing_note_id != note.id for job in jobs):
                raise ConflictError("One or more jobs are already billed")
            _release_jobs(note.id)
            _claim_jobs(note.id, note.vendor_id, ids)

        if remark is not None:
            note.remark = clean_text(remark)

        before_vat = parse_bool(calculate_before_vat)
        if before_vat is None and note.subtotal_includes_vat is not None:
            before_vat = not note.subtotal_includes_vat

        jobs = Job.query.filter_by(billing_note_id=note.id).order_by(Job.id).all()
        _apply_amounts(note, _amounts_for_jobs(note.vendor_id, jobs, before_vat))

    db.session.refresh(note)
    return note


def transition_billing_note(actor: Actor, note_id: int, target, remark: Optional[str] = None) -> BillingNote:
    target = parse_status(target)
    note = ensure_visible(actor, db.session.get(BillingNote, note_id), "Billing note")
    current = note.status
    check_transition(actor, current, target)

    criteria = [BillingNote.status == current]
    if current is S.APPROVED and target is S.VOIDED:
        if note.receipt_id is not None:
            raise ConflictError("Billing note is on a receipt and cannot be voided")
        criteria.append(BillingNote.receipt_id.is_(None))

    values = {"status": target}
    if remark is not None:
        values["remark"] = clean_text(remark)

    with atomic():
        _guarded_update(BillingNote, note.id, criteria, values, "Billing note")
        if target in RELEASING_STATES:
            _release_jobs(note.id)

    db.session.refresh(note)
    logger.info(
        "Billing note %s: %s -> %s by user %s",
        note.billing_ref,
        current.value,
        target.value,
        actor.user_id,
    )
    return note


# ---------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------
def create_receipt(actor: Actor, billing_note_ids, receipt_date=None, receipt_ref: Optional[str] = None) -> Receipt:
    require_capability(actor, Capability.ISSUE_RECEIPTS, "Only vendors can create receipts")

    ids = parse_id_list(billing_note_ids, "billingNoteIds")
    notes = BillingNote.query.filter(BillingNote.id.in_(ids)).all()
    if missing_ids(ids, [n.id for n in notes]):
        raise NotFoundError("Billing note not found")
    for note in notes:
        ensure_visible(actor, note, "Billing note")

    for note in notes:
        if note.status is not S.APPROVED:
            raise ConflictError(f"Billing note {note.billing_ref} is not approved")
        if note.receipt_id is not None:
            raise ConflictError(f"Billing note {note.billing_ref} is already on a receipt")

    on_date = parse_date(receipt_date, "receiptDate", default=date.today())
    custom_ref = clean_text(receipt_ref)
    if custom_ref and Receipt.query.filter_by(vendor_id=actor.vendor_id, receipt_ref=custom_ref).first():
        raise ConflictError("Receipt reference already exists")

    with atomic():
        receipt = Receipt(
            receipt_ref=(
                custom_ref
                or generate_document_number(actor.vendor_id, DocumentType.RECEIPT, on_date)
                or fallback_receipt_ref(actor.vendor_id, on_date)
            ),
            vendor_id=actor.vendor_id,
            receipt_date=on_date,
            status=S.PENDING,
        )
        db.session.add(receipt)
        db.session.flush()

        result = db.session.execute(
            update(BillingNote)
            .where(
                BillingNote.id.in_(ids),
                BillingNote.vendor_id == actor.vendor_id,
                BillingNote.status == S.APPROVED,
                BillingNote.receipt_id.is_(None),
            )
            .values(receipt_id=receipt.id)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != len(ids):
            raise ConflictError("One or more billing notes changed while creating the receipt")

    db.session.refresh(receipt)
    logger.info("Receipt %s created for vendor %s (%s notes)", receipt.receipt_ref, receipt.vendor_id, len(ids))
    return receipt


def _issued_voucher_link(receipt_id):
    """Link rows tying `receipt_id` (a value or the Receipt.id column) to an ISSUED voucher."""
    return (
        select(payment_voucher_receipts.c.receipt_id)
        .join(PaymentVoucher, PaymentVoucher.id == payment_voucher_receipts.c.payment_voucher_id)
        .where(
            payment_voucher_receipts.c.receipt_id == receipt_id,
            PaymentVoucher.status == VoucherStatus.ISSUED,
        )
    )


def _on_issued_voucher(receipt_id: int) -> bool:
    return db.session.scalar(_issued_voucher_link(receipt_id).limit(1)) is not None


def transition_receipt(actor: Actor, receipt_id: int, target) -> Receipt:
    target = parse_status(target)
    receipt = ensure_visible(actor, db.session.get(Receipt, receipt_id), "Receipt")
    current = receipt.status
    check_transition(actor, current, target)

    criteria = [Receipt.status == current]
    with atomic():
        if current is S.APPROVED and target is S.VOIDED:
            # Same row lock create_payment_voucher takes on its receipts
            db.session.query(Receipt.id).filter(Receipt.id == receipt.id).with_for_update().one()
            if _on_issued_voucher(receipt.id):
                raise ConflictError("Receipt is on an issued payment voucher and cannot be voided")
            criteria.append(~_issued_voucher_link(Receipt.id).correlate(Receipt).exists())

        _guarded_update(Receipt, receipt.id, criteria, {"status": target}, "Receipt")
        if target in RELEASING_STATES:
            db.session.execute(
                update(BillingNote)
                .where(BillingNote.receipt_id == receipt.id)
                .values(receipt_id=None)
                .execution_options(synchronize_session="fetch")
            )

    db.session.refresh(receipt)
    logger.info(
        "Receipt %s: %s -> %s by user %s",
        receipt.receipt_ref,
        current.value,
        target.value,
        actor.user_id,
    )
    return receipt


# ---------------------------------------------------------------------
# Payment vouchers
# ---------------------------------------------------------------------
def eligible_receipts(actor: Actor, vendor_id: int) -> list[Receipt]:
    """APPROVED receipts of a vendor that are not on an ISSUED voucher."""
    require_capability(actor, Capability.CREATE_PAYMENT_VOUCHER, "Only administrators can view payment vouchers")
    if db.session.get(Vendor, vendor_id) is None:
        raise NotFoundError("Vendor not found")

    issued = (
        select(payment_voucher_receipts.c.receipt_id)
        .join(PaymentVoucher, PaymentVoucher.id == payment_voucher_receipts.c.payment_voucher_id)
        .where(PaymentVoucher.status == VoucherStatus.ISSUED)
    )
    return (
        Receipt.query.filter(
            Receipt.vendor_id == vendor_id,
            Receipt.status == S.APPROVED,
            ~Receipt.id.in_(issued),
        )
        .order_by(Receipt.receipt_date.asc(), Receipt.id.asc())
        .all()
    )


def create_payment_voucher(
    actor: Actor,
    vendor_id,
    receipt_ids,
    voucher_date=None,
    remark: Optional[str] = None,
) -> PaymentVoucher:
    require_capability(actor, Capability.CREATE_PAYMENT_VOUCHER, "Only administrators can create payment vouchers")

    vendor = db.session.get(Vendor, parse_required_int(vendor_id, "vendorId"))
    if vendor is None:
        raise NotFoundError("Vendor not found")

    ids = parse_id_list(receipt_ids, "receiptIds")
    on_date = parse_date(voucher_date, "voucherDate", default=date.today())

    with atomic():
        receipts = (
            Receipt.query.filter(Receipt.id.in_(ids), Receipt.vendor_id == vendor.id)
            .with_for_update()
            .all()
        )
        if missing_ids(ids, [r.id for r in receipts]):
            raise NotFoundError("Receipt not found")

        totals = []
        for receipt in receipts:
            if receipt.status is not S.APPROVED:
                raise ConflictError(f"Receipt {receipt.receipt_ref} is not approved")
            if _on_issued_voucher(receipt.id):
                raise ConflictError(f"Receipt {receipt.receipt_ref} is already on a payment voucher")
            receipt_totals = receipt.totals()
            if any(value is None for value in receipt_totals.values()):
                raise ConflictError(
                    f"Receipt {receipt.receipt_ref} has billing notes without computed amounts"
                )
            totals.append(receipt_totals)

        voucher = PaymentVoucher(
            voucher_ref=next_voucher_ref(on_date),
            vendor_id=vendor.id,
            voucher_date=on_date,
            subtotal=money(sum((t["subtotal"] for t in totals), Decimal("0"))),
            total_vat=money(sum((t["vat_amount"] for t in totals), Decimal("0"))),
            total_wht=money(sum((t["wht_amount"] for t in totals), Decimal("0"))),
            net_total=money(sum((t["net_total"] for t in totals), Decimal("0"))),
            status=VoucherStatus.ISSUED,
            remark=clean_text(remark),
            created_by_id=actor.user_id,
        )
        voucher.receipts = receipts
        db.session.add(voucher)

    logger.info(
        "Payment voucher %s issued for vendor %s (%s receipts, net %s)",
        voucher.voucher_ref,
        vendor.id,
        len(ids),
        voucher.net_total,
    )
    return voucher


def cancel_payment_voucher(actor: Actor, voucher_id: int, remark: Optional[str] = None) -> PaymentVoucher:
    require_capability(actor, Capability.CREATE_PAYMENT_VOUCHER, "Only administrators can cancel payment vouchers")
    voucher = db.session.get(PaymentVoucher, voucher_id)
    if voucher is None:
        raise NotFoundError("Payment voucher not found")
    if voucher.status is not VoucherStatus.ISSUED:
        raise ConflictError("Payment voucher is already cancelled")

    values = {"status": VoucherStatus.CANCELLED}
    if remark is not None:
        values["remark"] = clean_text(remark)

    with atomic():
        _guarded_update(
            PaymentVoucher,
            voucher.id,
            [PaymentVoucher.status == VoucherStatus.ISSUED],
            values,
            "Payment voucher",
        )

    db.session.refresh(voucher)
    logger.info("Payment voucher %s cancelled by user %s", voucher.voucher_ref, actor.user_id)
    return voucher


# ---------------------------------------------------------------------
# Pending counts
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PendingCounts:
    billing: int = 0
    receipt: int = 0


def pending_counts(vendor_ids: Optional[Iterable[int]] = None) -> dict[int, PendingCounts]:
    """Live COUNT(*) of PENDING billing notes / receipts per vendor."""
    if vendor_ids is not None:
        vendor_ids = list(vendor_ids)

    def _grouped(model) -> dict[int, int]:
        query = db.session.query(model.vendor_id, func.count(model.id)).filter(model.status == S.PENDING)
        if vendor_ids is not None:
            query = query.filter(model.vendor_id.in_(vendor_ids))
        return dict(query.group_by(model.vendor_id).all())

    billing = _grouped(BillingNote)
    receipts = _grouped(Receipt)

    keys = set(billing) | set(receipts)
    if vendor_ids is not None:
        keys |= set(vendor_ids)
    return {
        vendor_id: PendingCounts(billing=billing.get(vendor_id, 0), receipt=receipts.get(vendor_id, 0))
        for vendor_id in keys
    }
