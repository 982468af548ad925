"""
vendor_billing/blueprints/settings/routes.py

Vendor self-service settings.

Includes:
- Vendor registration (a VENDOR user without a vendor creates one and is attached to it)
- Company profile
- VAT / WHT configuration
- Document auto-numbering configuration + preview

IMPORTANT:
- Only VENDOR users manage settings, and only for their own vendor.
- Rates are percents in [0, 100].
"""

from __future__ import annotations

import logging
from decimal import Decimal

from flask import Blueprint, current_app, request
from flask_login import current_user

from ...enums import DateFormat, DocumentType, ResetPeriod
from ...exceptions import ConflictError, ValidationError
from ...extensions import db
from ...lifecycle import atomic
from ...models import DocumentNumberConfig, VatConfig, Vendor
from ...money import HUNDRED, format_rate, parse_rate, to_decimal
from ...numbering import preview_document_number
from ...security import Capability, api_login_required, capability_required, current_actor
from ...utils import clean_text, json_body, ok, parse_bool, parse_optional_int, require_text

logger = logging.getLogger(__name__)

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")

MAX_PREFIX_LENGTH = 10
MIN_RUNNING_DIGITS = 2
MAX_RUNNING_DIGITS = 6


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def _parse_percent(value, field: str) -> Decimal:
    rate = to_decimal(value)
    if rate is None:
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if rate < 0 or rate > HUNDRED:
        raise ValidationError(f"{field} must be between 0 and 100", details={"field": field})
    return rate


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"{field} must be one of {allowed}", details={"field": field})


def _default_vat_config() -> dict:
    return {
        "vatRate": format_rate(parse_rate(current_app.config.get("DEFAULT_VAT_RATE"))),
        "whtRate": format_rate(parse_rate(current_app.config.get("DEFAULT_WHT_RATE"), Decimal("3"), "whtRate")),
        "calculateBeforeVat": False,
    }


def _default_number_config() -> dict:
    return {
        "billingEnabled": False,
        "billingPrefix": "B",
        "receiptEnabled": False,
        "receiptPrefix": "R",
        "dateFormat": DateFormat.YYYYMMDD.value,
        "runningDigits": 3,
        "resetPeriod": ResetPeriod.DAILY.value,
    }


def _own_vendor() -> Vendor:
    return db.session.get(Vendor, current_actor().vendor_id)


def _apply_vendor_fields(vendor: Vendor, data: dict) -> None:
    if "companyName" in data or vendor.company_name is None:
        vendor.company_name = require_text(data.get("companyName"), "companyName")

    if "taxId" in data or vendor.tax_id is None:
        tax_id = require_text(data.get("taxId"), "taxId")
        existing = Vendor.query.filter_by(tax_id=tax_id).first()
        if existing and existing.id != vendor.id:
            raise ConflictError("Tax ID already registered")
        vendor.tax_id = tax_id

    if "companyAddress" in data:
        vendor.company_address = clean_text(data.get("companyAddress"))
    if "bankAccount" in data:
        vendor.bank_account = clean_text(data.get("bankAccount"))
    if "bankName" in data:
        vendor.bank_name = clean_text(data.get("bankName"))
    if "bankBranch" in data:
        vendor.bank_branch = clean_text(data.get("bankBranch"))


# ---------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------
@settings_bp.route("", methods=["GET"])
@api_login_required
def get_settings():
    vendor = current_user.vendor
    if vendor is None:
        return ok({"vendor": None, "vatConfig": _default_vat_config(), "documentNumber": None})

    return ok(
        {
            "vendor": vendor.to_dict(),
            "vatConfig": vendor.vat_config.to_dict() if vendor.vat_config else _default_vat_config(),
            "documentNumber": (
                vendor.number_config.to_dict() if vendor.number_config else _default_number_config()
            ),
        }
    )


# ---------------------------------------------------------------------
# Vendor profile
# ---------------------------------------------------------------------
@settings_bp.route("/vendor", methods=["POST"])
@capability_required(Capability.REGISTER_VENDOR, "Only vendor users without a company can register one")
def register_vendor():
    data = json_body()
    vendor = Vendor()
    _apply_vendor_fields(vendor, data)
    vendor.vat_config = VatConfig(
        vat_rate=parse_rate(current_app.config.get("DEFAULT_VAT_RATE")),
        wht_rate=parse_rate(current_app.config.get("DEFAULT_WHT_RATE"), Decimal("3"), "whtRate"),
        calculate_before_vat=False,
    )

    user = current_user._get_current_object()
    with atomic():
        db.session.add(vendor)
        db.session.flush()
        user.vendor_id = vendor.id

    logger.info("Vendor %s registered by user %s", vendor.id, user.id)
    return ok(vendor.to_dict(), status=201)


@settings_bp.route("/vendor", methods=["PUT"])
@capability_required(Capability.MANAGE_VENDOR_SETTINGS, "Only vendor users can edit company settings")
def update_vendor():
    vendor = _own_vendor()
    _apply_vendor_fields(vendor, json_body())

    with atomic():
        db.session.add(vendor)

    return ok(vendor.to_dict())


# ---------------------------------------------------------------------
# VAT
# ---------------------------------------------------------------------
@settings_bp.route("/vat", methods=["PUT"])
@capability_required(Capability.MANAGE_VENDOR_SETTINGS, "Only vendor users can edit VAT settings")
def update_vat():
    vendor = _own_vendor()
    data = json_body()

    config = vendor.vat_config or VatConfig(
        vendor_id=vendor.id,
        vat_rate=parse_rate(current_app.config.get("DEFAULT_VAT_RATE")),
        wht_rate=parse_rate(current_app.config.get("DEFAULT_WHT_RATE"), Decimal("3"), "whtRate"),
        calculate_before_vat=False,
    )

    if "vatRate" in data:
        config.vat_rate = _parse_percent(data.get("vatRate"), "vatRate")
    if "whtRate" in data:
        config.wht_rate = _parse_percent(data.get("whtRate"), "whtRate")
    if "calculateBeforeVat" in data:
        flag = parse_bool(data.get("calculateBeforeVat"))
        if flag is None:
            raise ValidationError("calculateBeforeVat must be a boolean", details={"field": "calculateBeforeVat"})
        config.calculate_before_vat = flag

    with atomic():
        db.session.add(config)

    logger.info("VAT settings updated for vendor %s", vendor.id)
    return ok(config.to_dict())


# ---------------------------------------------------------------------
# Document numbering
# ---------------------------------------------------------------------
@settings_bp.route("/document-number", methods=["GET"])
@capability_required(Capability.MANAGE_VENDOR_SETTINGS, "Only vendor users can view numbering settings")
def get_document_number():
    config = DocumentNumberConfig.query.filter_by(vendor_id=current_actor().vendor_id).first()
    return ok(config.to_dict() if config else _default_number_config())


@settings_bp.route("/document-number", methods=["PUT"])
@capability_required(Capability.MANAGE_VENDOR_SETTINGS, "Only vendor users can edit numbering settings")
def update_document_number():
    vendor_id = current_actor().vendor_id
    data = json_body()
    config = DocumentNumberConfig.query.filter_by(vendor_id=vendor_id).first() or DocumentNumberConfig(
        vendor_id=vendor_id,
        billing_enabled=False,
        billing_prefix="B",
        receipt_enabled=False,
        receipt_prefix="R",
        date_format=DateFormat.YYYYMMDD,
        running_digits=3,
        reset_period=ResetPeriod.DAILY,
    )

    for flag_field, attr in (("billingEnabled", "billing_enabled"), ("receiptEnabled", "receipt_enabled")):
        if flag_field in data:
            flag = parse_bool(data.get(flag_field))
            if flag is None:
                raise ValidationError(f"{flag_field} must be a boolean", details={"field": flag_field})
            setattr(config, attr, flag)

    for prefix_field, attr in (("billingPrefix", "billing_prefix"), ("receiptPrefix", "receipt_prefix")):
        if prefix_field in data:
            prefix = require_text(data.get(prefix_field), prefix_field)
            if len(prefix) > MAX_PREFIX_LENGTH:
                raise ValidationError(
                    f"{prefix_field} must be at most {MAX_PREFIX_LENGTH} characters",
                    details={"field": prefix_field},
                )
            setattr(config, attr, prefix)

    if "dateFormat" in data:
        config.date_format = _parse_enum(DateFormat, data.get("dateFormat"), "dateFormat")
    if "resetPeriod" in data:
        config.reset_period = _parse_enum(ResetPeriod, data.get("resetPeriod"), "resetPeriod")
    if "runningDigits" in data:
        digits = parse_optional_int(data.get("runningDigits"))
        if digits is None or not MIN_RUNNING_DIGITS <= digits <= MAX_RUNNING_DIGITS:
            raise ValidationError(
                f"runningDigits must be between {MIN_RUNNING_DIGITS} and {MAX_RUNNING_DIGITS}",
                details={"field": "runningDigits"},
            )
        config.running_digits = digits

    with atomic():
        db.session.add(config)

    logger.info("Document numbering updated for vendor %s", vendor_id)
    return ok(config.to_dict())


@settings_bp.route("/document-number/preview", methods=["GET"])
@capability_required(Capability.MANAGE_VENDOR_SETTINGS, "Only vendor users can preview document numbers")
def preview_document_numbers():
    vendor_id = current_actor().vendor_id
    requested = (request.args.get("type") or "").strip().upper()

    if requested:
        document_type = _parse_enum(DocumentType, requested, "type")
        return ok({"type": document_type.value, "number": preview_document_number(vendor_id, document_type)})

    return ok(
        {
            "billing": preview_document_number(vendor_id, DocumentType.BILLING),
            "receipt": preview_document_number(vendor_id, DocumentType.RECEIPT),
        }
    )
