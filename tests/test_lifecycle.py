from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from vendor_billing import lifecycle
from vendor_billing.enums import DocumentStatus, JobStatus, RoleName, VoucherStatus
from vendor_billing.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from vendor_billing.lifecycle import (
    cancel_payment_voucher,
    check_transition,
    create_billing_note,
    create_job,
    create_payment_voucher,
    create_receipt,
    delete_job,
    eligible_receipts,
    pending_counts,
    preview_billing,
    transition_billing_note,
    transition_receipt,
    update_billing_note,
    update_job,
)
from vendor_billing.models import BillingNote, Job, Receipt
from vendor_billing.security import Actor


def _approved_note(world, actor, make_job, *amounts):
    job = make_job(world.vendor_a, *amounts)
    note = create_billing_note(actor(world.vendor_a_user), [job.id])
    return transition_billing_note(actor(world.admin), note.id, "APPROVED")


def _approved_receipt(world, actor, make_job, *amounts):
    note = _approved_note(world, actor, make_job, *amounts)
    receipt = create_receipt(actor(world.vendor_a_user), [note.id])
    return transition_receipt(actor(world.admin), receipt.id, "APPROVED")


# ---------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------
def test_role_is_checked_before_the_edge():
    vendor = Actor(user_id=1, role=RoleName.VENDOR, vendor_id=1)
    # No VENDOR edge leads to APPROVED at all, whatever the current state
    with pytest.raises(ForbiddenError):
        check_transition(vendor, DocumentStatus.APPROVED, DocumentStatus.APPROVED)


def test_missing_edge_is_a_conflict():
    admin = Actor(user_id=1, role=RoleName.ADMIN)
    with pytest.raises(ConflictError):
        check_transition(admin, DocumentStatus.REJECTED, DocumentStatus.APPROVED)


def test_existing_edge_for_other_role_is_forbidden():
    vendor = Actor(user_id=1, role=RoleName.VENDOR, vendor_id=1)
    with pytest.raises(ForbiddenError):
        check_transition(vendor, DocumentStatus.APPROVED, DocumentStatus.VOIDED)


def test_user_role_cannot_transition_anything():
    user = Actor(user_id=1, role=RoleName.USER, vendor_id=1)
    for target in DocumentStatus:
        with pytest.raises(ForbiddenError):
            check_transition(user, DocumentStatus.PENDING, target)


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------
def test_create_job_validates_items(world, actor):
    with pytest.raises(ValidationError):
        create_job(actor(world.vendor_a_user), {"description": "Clearance", "items": []})
    with pytest.raises(ValidationError):
        create_job(
            actor(world.vendor_a_user),
            {"description": "Clearance", "items": [{"description": "Fee", "amount": "-1"}]},
        )


def test_create_and_edit_job(world, actor):
    job = create_job(
        actor(world.vendor_a_user),
        {
            "description": "Clearance",
            "containerNo": "MSKU1234567",
            "clearanceDate": "2026-03-15",
            "items": [{"description": "Fee", "amount": "100"}, {"description": "Transport", "amount": "7"}],
        },
    )
    assert job.vendor_id == world.vendor_a.id
    assert job.total_amount == Decimal("107.00")
    assert job.clearance_date == date(2026, 3, 15)

    job = update_job(actor(world.vendor_a_user), job.id, {"truckPlate": "70-1234"})
    assert job.truck_plate == "70-1234"
    assert job.container_no == "MSKU1234567"


def test_admin_and_user_cannot_create_jobs(world, actor):
    for user in (world.admin, world.user_a):
        with pytest.raises(ForbiddenError):
            create_job(actor(user), {"description": "x", "items": [{"description": "a", "amount": 1}]})


def test_billed_job_is_frozen(world, actor, make_job):
    job = make_job(world.vendor_a, "107")
    create_billing_note(actor(world.vendor_a_user), [job.id])

    with pytest.raises(ConflictError):
        update_job(actor(world.vendor_a_user), job.id, {"description": "changed"})
    with pytest.raises(ConflictError):
        delete_job(actor(world.vendor_a_user), job.id)


def test_other_vendor_job_is_not_found(world, actor, make_job):
    job = make_job(world.vendor_a, "107")
    with pytest.raises(NotFoundError):
        delete_job(actor(world.vendor_b_user), job.id)


# ---------------------------------------------------------------------
# Billing notes
# ---------------------------------------------------------------------
def test_preview_does_not_persist(world, actor, make_job):
    job = make_job(world.vendor_a, "100", "7")
    data = preview_billing(actor(world.vendor_a_user), [job.id])

    assert data["subtotal"] == "107.00"
    assert data["priceBeforeVat"] == "100.00"
    assert data["netTotal"] == "104.00"
    assert BillingNote.query.count() == 0


def test_create_billing_note(world, actor, make_job, db):
    jobs = [make_job(world.vendor_a, "53.50"), make_job(world.vendor_a, "53.50")]
    note = create_billing_note(actor(world.vendor_a_user), [j.id for j in jobs], remark="March")

    assert note.status is DocumentStatus.PENDING
    assert note.billing_ref == f"VBS{date.today().year}-0001"
    assert note.subtotal == Decimal("107.00")
    assert note.vat_rate_text == "7"
    assert note.wht_rate_text == "3"
    assert note.price_before_vat == Decimal("100.00")
    assert note.subtotal_includes_vat is True

    db.session.expire_all()
    assert {j.status for j in Job.query.all()} == {JobStatus.BILLED}
    assert {j.billing_note_id for j in Job.query.all()} == {note.id}


def test_exclusive_subtotal_keeps_price(world, actor, make_job):
    job = make_job(world.vendor_a, "100")
    note = create_billing_note(actor(world.vendor_a_user), [job.id], calculate_before_vat=True)

    assert note.subtotal_includes_vat is False
    assert note.price_before_vat == Decimal("100.00")
    assert note.net_total == Decimal("104.00")


def test_fallback_refs_increment_per_vendor(world, actor, make_job):
    first = create_billing_note(actor(world.vendor_a_user), [make_job(world.vendor_a, "1").id])
    second = create_billing_note(actor(world.vendor_a_user), [make_job(world.vendor_a, "1").id])
    other = create_billing_note(actor(world.vendor_b_user), [make_job(world.vendor_b, "1").id])

    year = date.today().year
    assert first.billing_ref == f"VBS{year}-0001"
    assert second.billing_ref == f"VBS{year}-0002"
    assert other.billing_ref == f"VBS{year}-0001"


def test_duplicate_custom_ref_is_a_conflict(world, actor, make_job):
    create_billing_note(actor(world.vendor_a_user), [make_job(world.vendor_a, "1").id], billing_ref="INV-1")
    with pytest.raises(ConflictError):
        create_billing_note(actor(world.vendor_a_user), [make_job(world.vendor_a, "1").id], billing_ref="INV-1")


def test_job_cannot_be_billed_twice(world, actor, make_job):
    job = make_job(world.vendor_a, "107")
    create_billing_note(actor(world.vendor_a_user), [job.id])
    with pytest.raises(ConflictError):
        create_billing_note(actor(world.vendor_a_user), [job.id])


def test_foreign_job_is_not_found(world, actor, make_job):
    job = make_job(world.vendor_b, "107")
    with pytest.raises(NotFoundError):
        create_billing_note(actor(world.vendor_a_user), [job.id])


def test_vendor_cannot_approve_own_note(world, actor, make_job):
    note = create_billing_note(actor(world.vendor_a_user), [make_job(world.vendor_a, "107").id])
    with pytest.raises(ForbiddenError):
        transition_billing_note(actor(world.vendor_a_user), note.id, "APPROVED")


def test_draft_submit_and_approve(world, actor, make_job):
    note = create_billing_note(actor(world.vendor_a_user), [make_job(world.vendor_a, "107").id], draft=True)
    assert note.status is DocumentStatus.DRAFT

    note = transition_billing_note(actor(world.vendor_a_user), note.id, "PENDING")
    assert note.status is DocumentStatus.PENDING

    note = transition_billing_note(actor(world.admin), note.id, "APPROVED")
    assert note.status is DocumentStatus.APPROVED


def test_reject_releases_jobs(world, actor, make_job, db):
    job = make_job(world.vendor_a, "107")
    note = create_billing_note(actor(world.vendor_a_user), [job.id])

    transition_billing_note(actor(world.admin), note.id, "REJECTED", remark="Wrong amounts")

    db.session.expire_all()
    job = db.session.get(Job, job.id)
    assert job.status is JobStatus.PENDING
    assert job.billing_note_id is None
    assert db.session.get(BillingNote, note.id).remark == "Wrong amounts"


def test_rejected_note_is_final(world, actor, make_job):
    note = create_billing_note(actor(world.vendor_a_user), [make_job(world.vendor_a, "107").id])
    transition_billing_note(actor(world.admin), note.id, "REJECTED")
    with pytest.raises(ConflictError):
        transition_billing_note(actor(world.admin), note.id, "APPROVED")


def test_update_note_replaces_jobs_and_recomputes(world, actor, make_job, db):
    first = make_job(world.vendor_a, "107")
    second = make_job(world.vendor_a, "214")
    note = create_billing_note(actor(world.vendor_a_user), [first.id])

    note = update_billing_note(actor(world.vendor_a_user), note.id, job_ids=[second.id])

    assert note.subtotal == Decimal("214.00")
    assert note.price_before_vat == Decimal("200.00")
    db.session.expire_all()
    assert db.session.get(Job, first.id).status is JobStatus.PENDING
    assert db.session.get(Job, second.id).billing_note_id == note.id


def test_approved_note_cannot_be_edited(world, actor, make_job):
    note = _approved_note(world, actor, make_job, "107")
    with pytest.raises(ConflictError):
        update_billing_note(actor(world.vendor_a_user), note.id, remark="late edit")


def test_approved_note_on_receipt_cannot_be_voided(world, actor, make_job):
    note = _approved_note(world, actor, make_job, "107")
    create_receipt(actor(world.vendor_a_user), [note.id])
    with pytest.raises(ConflictError):
        transition_billing_note(actor(world.admin), note.id, "VOIDED")


# ---------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------
def test_receipt_requires_approved_notes(world, actor, make_job):
    note = create_billing_note(actor(world.vendor_a_user), [make_job(world.vendor_a, "107").id])
    with pytest.raises(ConflictError):
        create_receipt(actor(world.vendor_a_user), [note.id])


def test_receipt_requires_at_least_one_note(world, actor):
    with pytest.raises(ValidationError):
        create_receipt(actor(world.vendor_a_user), [])


def test_receipt_totals_are_live(world, actor, make_job):
    notes = [_approved_note(world, actor, make_job, "107"), _approved_note(world, actor, make_job, "53.50")]
    receipt = create_receipt(actor(world.vendor_a_user), [n.id for n in notes])

    assert receipt.status is DocumentStatus.PENDING
    assert receipt.receipt_ref == f"RE{date.today().year}-0001"
    data = receipt.to_dict()
    assert data["subtotal"] == "160.50"
    assert data["priceBeforeVat"] == "150.00"
    assert data["netTotal"] == "156.00"
    assert notes[0].status is DocumentStatus.APPROVED


def test_note_cannot_be_on_two_receipts(world, actor, make_job):
    note = _approved_note(world, actor, make_job, "107")
    create_receipt(actor(world.vendor_a_user), [note.id])
    with pytest.raises(ConflictError):
        create_receipt(actor(world.vendor_a_user), [note.id])


def test_voided_receipt_releases_notes(world, actor, make_job):
    note = _approved_note(world, actor, make_job, "107")
    receipt = create_receipt(actor(world.vendor_a_user), [note.id])

    transition_receipt(actor(world.vendor_a_user), receipt.id, "VOIDED")

    again = create_receipt(actor(world.vendor_a_user), [note.id])
    assert again.id != receipt.id


def test_admin_cannot_create_receipts(world, actor, make_job):
    note = _approved_note(world, actor, make_job, "107")
    with pytest.raises(ForbiddenError):
        create_receipt(actor(world.admin), [note.id])


# ---------------------------------------------------------------------
# Payment vouchers
# ---------------------------------------------------------------------
def test_voucher_snapshots_totals_and_leaves_receipts_alone(world, actor, make_job):
    receipt = _approved_receipt(world, actor, make_job, "107")
    voucher = create_payment_voucher(actor(world.admin), world.vendor_a.id, [receipt.id], remark="Batch 1")

    assert voucher.status is VoucherStatus.ISSUED
    assert voucher.voucher_ref == f"PV{date.today():%Y%m%d}001"
    assert voucher.subtotal == Decimal("107.00")
    assert voucher.total_vat == Decimal("7.00")
    assert voucher.total_wht == Decimal("3.00")
    assert voucher.net_total == Decimal("104.00")
    assert receipt.status is DocumentStatus.APPROVED
    assert voucher.created_by_id == world.admin.id


def test_voucher_requires_admin(world, actor, make_job):
    receipt = _approved_receipt(world, actor, make_job, "107")
    with pytest.raises(ForbiddenError):
        create_payment_voucher(actor(world.vendor_a_user), world.vendor_a.id, [receipt.id])


def test_voucher_rejects_unapproved_receipt(world, actor, make_job):
    note = _approved_note(world, actor, make_job, "107")
    receipt = create_receipt(actor(world.vendor_a_user), [note.id])
    with pytest.raises(ConflictError):
        create_payment_voucher(actor(world.admin), world.vendor_a.id, [receipt.id])


def test_receipt_of_other_vendor_is_not_found(world, actor, make_job):
    receipt = _approved_receipt(world, actor, make_job, "107")
    with pytest.raises(NotFoundError):
        create_payment_voucher(actor(world.admin), world.vendor_b.id, [receipt.id])


def test_receipt_on_issued_voucher_is_not_eligible(world, actor, make_job):
    receipt = _approved_receipt(world, actor, make_job, "107")
    assert [r.id for r in eligible_receipts(actor(world.admin), world.vendor_a.id)] == [receipt.id]

    voucher = create_payment_voucher(actor(world.admin), world.vendor_a.id, [receipt.id])
    assert eligible_receipts(actor(world.admin), world.vendor_a.id) == []
    with pytest.raises(ConflictError):
        create_payment_voucher(actor(world.admin), world.vendor_a.id, [receipt.id])
    with pytest.raises(ConflictError):
        transition_receipt(actor(world.admin), receipt.id, "VOIDED")

    cancel_payment_voucher(actor(world.admin), voucher.id)
    assert [r.id for r in eligible_receipts(actor(world.admin), world.vendor_a.id)] == [receipt.id]


def test_void_loses_to_voucher_issued_after_the_check(world, actor, make_job, monkeypatch, db):
    receipt = _approved_receipt(world, actor, make_job, "107")
    real_check = lifecycle._on_issued_voucher
    issued = {}

    def check_then_issue(receipt_id):
        if "voucher" in issued:
            return real_check(receipt_id)
        issued["voucher"] = None
        issued["voucher"] = create_payment_voucher(actor(world.admin), world.vendor_a.id, [receipt_id])
        return False

    monkeypatch.setattr(lifecycle, "_on_issued_voucher", check_then_issue)

    with pytest.raises(ConflictError):
        transition_receipt(actor(world.admin), receipt.id, "VOIDED")

    db.session.expire_all()
    assert db.session.get(Receipt, receipt.id).status is DocumentStatus.APPROVED
    assert {n.receipt_id for n in BillingNote.query.all()} == {receipt.id}
    assert issued["voucher"].status is VoucherStatus.ISSUED


def test_cancelled_voucher_cannot_be_cancelled_again(world, actor, make_job):
    receipt = _approved_receipt(world, actor, make_job, "107")
    voucher = create_payment_voucher(actor(world.admin), world.vendor_a.id, [receipt.id])
    cancel_payment_voucher(actor(world.admin), voucher.id)
    with pytest.raises(ConflictError):
        cancel_payment_voucher(actor(world.admin), voucher.id)


# ---------------------------------------------------------------------
# Pending counts
# ---------------------------------------------------------------------
def test_pending_counts_follow_transitions(world, actor, make_job):
    vendor = actor(world.vendor_a_user)
    admin = actor(world.admin)
    a = create_billing_note(vendor, [make_job(world.vendor_a, "107").id])
    b = create_billing_note(vendor, [make_job(world.vendor_a, "107").id])
    create_billing_note(actor(world.vendor_b_user), [make_job(world.vendor_b, "107").id])

    counts = pending_counts([world.vendor_a.id, world.vendor_b.id])
    assert counts[world.vendor_a.id].billing == 2
    assert counts[world.vendor_b.id].billing == 1

    transition_billing_note(admin, a.id, "APPROVED")
    transition_billing_note(admin, b.id, "REJECTED")
    assert pending_counts([world.vendor_a.id])[world.vendor_a.id].billing == 0

    create_receipt(vendor, [a.id])
    assert pending_counts([world.vendor_a.id])[world.vendor_a.id].receipt == 1
