"""
vendor_billing/blueprints/billing/routes.py

Billing note routes.

Includes:
- List / detail (vendor-scoped)
- Preview of amounts before submitting
- Create / edit (VENDOR, own jobs only)
- Status actions: submit, approve, reject, void

IMPORTANT:
- Who may take which transition is decided by lifecycle.check_transition.
"""

from __future__ import annotations

from flask import Blueprint, abort

from ...enums import DocumentStatus
from ...extensions import db
from ...lifecycle import (
    create_billing_note,
    preview_billing,
    transition_billing_note,
    update_billing_note,
)
from ...models import BillingNote
from ...security import api_login_required, current_actor, ensure_visible
from ...utils import json_body, ok, parse_bool
from ..common import scoped_query, status_filter

billing_bp = Blueprint("billing", __name__, url_prefix="/billing")

ACTIONS = {
    "submit": DocumentStatus.PENDING,
    "approve": DocumentStatus.APPROVED,
    "reject": DocumentStatus.REJECTED,
    "void": DocumentStatus.VOIDED,
}


@billing_bp.route("", methods=["GET"])
@api_login_required
def list_billing_notes():
    query = status_filter(scoped_query(BillingNote, current_actor()), BillingNote, DocumentStatus)
    notes = query.order_by(BillingNote.created_at.desc(), BillingNote.id.desc()).all()
    return ok([n.to_dict(include_jobs=False) for n in notes])


@billing_bp.route("/<int:note_id>", methods=["GET"])
@api_login_required
def get_billing_note(note_id: int):
    note = ensure_visible(current_actor(), db.session.get(BillingNote, note_id), "Billing note")
    return ok(note.to_dict())


@billing_bp.route("/preview", methods=["POST"])
@api_login_required
def preview():
    data = json_body()
    return ok(preview_billing(current_actor(), data.get("jobIds"), data.get("calculateBeforeVat")))


@billing_bp.route("", methods=["POST"])
@api_login_required
def create():
    data = json_body()
    note = create_billing_note(
        current_actor(),
        data.get("jobIds"),
        billing_ref=data.get("billingRef"),
        remark=data.get("remark"),
        calculate_before_vat=data.get("calculateBeforeVat"),
        draft=bool(parse_bool(data.get("draft"))),
        billing_date=data.get("billingDate"),
    )
    return ok(note.to_dict(), status=201)


@billing_bp.route("/<int:note_id>", methods=["PUT"])
@api_login_required
def update(note_id: int):
    data = json_body()
    note = update_billing_note(
        current_actor(),
        note_id,
        job_ids=data.get("jobIds"),
        remark=data.get("remark"),
        calculate_before_vat=data.get("calculateBeforeVat"),
    )
    return ok(note.to_dict())


@billing_bp.route("/<int:note_id>/<action>", methods=["POST"])
@api_login_required
def change_status(note_id: int, action: str):
    target = ACTIONS.get(action)
    if target is None:
        abort(404)

    note = transition_billing_note(current_actor(), note_id, target, remark=json_body().get("remark"))
    return ok(note.to_dict())
