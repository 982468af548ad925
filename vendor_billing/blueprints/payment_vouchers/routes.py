"""
vendor_billing/blueprints/payment_vouchers/routes.py

Payment vouchers (Admin only).

- A voucher settles one or more APPROVED receipts of one vendor.
- Vouchers are append-only; cancelling keeps the record with status CANCELLED.
"""

from __future__ import annotations

from flask import Blueprint

from ...enums import VoucherStatus
from ...exceptions import NotFoundError
from ...extensions import db
from ...lifecycle import cancel_payment_voucher, create_payment_voucher, eligible_receipts
from ...models import PaymentVoucher
from ...security import Capability, capability_required, current_actor
from ...utils import json_body, ok
from ..common import scoped_query, status_filter

payment_vouchers_bp = Blueprint("payment_vouchers", __name__, url_prefix="/payment-vouchers")

ADMIN_ONLY = "Only administrators can manage payment vouchers"


@payment_vouchers_bp.route("", methods=["GET"])
@capability_required(Capability.CREATE_PAYMENT_VOUCHER, ADMIN_ONLY)
def list_vouchers():
    query = status_filter(scoped_query(PaymentVoucher, current_actor()), PaymentVoucher, VoucherStatus)
    vouchers = query.order_by(PaymentVoucher.created_at.desc(), PaymentVoucher.id.desc()).all()
    return ok([v.to_dict() for v in vouchers])


@payment_vouchers_bp.route("/<int:voucher_id>", methods=["GET"])
@capability_required(Capability.CREATE_PAYMENT_VOUCHER, ADMIN_ONLY)
def get_voucher(voucher_id: int):
    voucher = db.session.get(PaymentVoucher, voucher_id)
    if voucher is None:
        raise NotFoundError("Payment voucher not found")
    return ok(voucher.to_dict())


@payment_vouchers_bp.route("/eligible-receipts/<int:vendor_id>", methods=["GET"])
@capability_required(Capability.CREATE_PAYMENT_VOUCHER, ADMIN_ONLY)
def list_eligible_receipts(vendor_id: int):
    receipts = eligible_receipts(current_actor(), vendor_id)
    return ok([r.to_dict(include_notes=False) for r in receipts])


@payment_vouchers_bp.route("", methods=["POST"])
@capability_required(Capability.CREATE_PAYMENT_VOUCHER, ADMIN_ONLY)
def create():
    data = json_body()
    voucher = create_payment_voucher(
        current_actor(),
        data.get("vendorId"),
        data.get("receiptIds"),
        voucher_date=data.get("voucherDate"),
        remark=data.get("remark"),
    )
    return ok(voucher.to_dict(), status=201)


@payment_vouchers_bp.route("/<int:voucher_id>/cancel", methods=["POST"])
@capability_required(Capability.CREATE_PAYMENT_VOUCHER, ADMIN_ONLY)
def cancel(voucher_id: int):
    voucher = cancel_payment_voucher(current_actor(), voucher_id, remark=json_body().get("remark"))
    return ok(voucher.to_dict())
