"""
vendor_billing/blueprints/receipts/routes.py

Receipts issued by a vendor against its APPROVED billing notes.
Totals are derived live from the attached notes.
"""

from __future__ import annotations

from flask import Blueprint, abort

from ...enums import DocumentStatus
from ...extensions import db
from ...lifecycle import create_receipt, transition_receipt
from ...models import Receipt
from ...security import api_login_required, current_actor, ensure_visible
from ...utils import json_body, ok
from ..common import scoped_query, status_filter

receipts_bp = Blueprint("receipts", __name__, url_prefix="/receipts")

ACTIONS = {
    "approve": DocumentStatus.APPROVED,
    "reject": DocumentStatus.REJECTED,
    "void": DocumentStatus.VOIDED,
}


@receipts_bp.route("", methods=["GET"])
@api_login_required
def list_receipts():
    query = status_filter(scoped_query(Receipt, current_actor()), Receipt, DocumentStatus)
    receipts = query.order_by(Receipt.created_at.desc(), Receipt.id.desc()).all()
    return ok([r.to_dict(include_notes=False) for r in receipts])


@receipts_bp.route("/<int:receipt_id>", methods=["GET"])
@api_login_required
def get_receipt(receipt_id: int):
    receipt = ensure_visible(current_actor(), db.session.get(Receipt, receipt_id), "Receipt")
    return ok(receipt.to_dict())


@receipts_bp.route("", methods=["POST"])
@api_login_required
def create():
    data = json_body()
    receipt = create_receipt(
        current_actor(),
        data.get("billingNoteIds"),
        receipt_date=data.get("receiptDate"),
        receipt_ref=data.get("receiptRef"),
    )
    return ok(receipt.to_dict(), status=201)


@receipts_bp.route("/<int:receipt_id>/<action>", methods=["POST"])
@api_login_required
def change_status(receipt_id: int, action: str):
    target = ACTIONS.get(action)
    if target is None:
        abort(404)

    receipt = transition_receipt(current_actor(), receipt_id, target)
    return ok(receipt.to_dict())
