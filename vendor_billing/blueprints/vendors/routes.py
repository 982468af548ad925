"""
vendor_billing/blueprints/vendors/routes.py

Vendor directory with live pending counts.

- ADMIN sees every vendor.
- VENDOR/USER see only the vendor they are attached to.
"""

from __future__ import annotations

from flask import Blueprint

from ...exceptions import NotFoundError
from ...extensions import db
from ...lifecycle import pending_counts
from ...models import Vendor
from ...security import Capability, api_login_required, can_view_vendor, current_actor
from ...utils import ok

vendors_bp = Blueprint("vendors", __name__, url_prefix="/vendors")


def _with_counts(data: dict, counts) -> dict:
    data["pendingBillingCount"] = counts.billing
    data["pendingReceiptCount"] = counts.receipt
    return data


@vendors_bp.route("", methods=["GET"])
@api_login_required
def list_vendors():
    actor = current_actor()

    if actor.can(Capability.VIEW_ALL_VENDORS):
        vendors = Vendor.query.order_by(Vendor.company_name.asc()).all()
    elif actor.vendor_id is not None and actor.can(Capability.VIEW_OWN_VENDOR):
        vendors = Vendor.query.filter_by(id=actor.vendor_id).all()
    else:
        vendors = []

    counts = pending_counts([v.id for v in vendors])
    return ok(
        [
            _with_counts(
                {"id": v.id, "companyName": v.company_name, "taxId": v.tax_id},
                counts[v.id],
            )
            for v in vendors
        ]
    )


@vendors_bp.route("/<int:vendor_id>", methods=["GET"])
@api_login_required
def get_vendor(vendor_id: int):
    actor = current_actor()
    vendor = db.session.get(Vendor, vendor_id)
    if vendor is None or not can_view_vendor(actor, vendor.id):
        raise NotFoundError("Vendor not found")

    data = vendor.to_dict()
    data["vatConfig"] = vendor.vat_config.to_dict() if vendor.vat_config else None
    return ok(_with_counts(data, pending_counts([vendor.id])[vendor.id]))
