"""
vendor_billing/backfill.py

One-off/periodic job that fills BillingNote.price_before_vat for rows created
before the value was stored.

Rules:
- Only rows with price_before_vat IS NULL are touched, with a conditional
  UPDATE ... WHERE price_before_vat IS NULL. Values that are already set are never
  overwritten, so re-runs are no-ops and the job is safe next to live traffic.
- subtotal_includes_vat = False  -> price_before_vat = subtotal
- subtotal_includes_vat = NULL   -> legacy row, treated as VAT-inclusive and
                                    counted as "assumed_inclusive"
- Missing / negative subtotal    -> skipped, counted as "skipped_invalid"
- A persistence failure halts the batch, logs the last processed billing_ref
  and raises PersistenceError. Re-running resumes from the remaining NULL rows.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from .exceptions import PersistenceError, ValidationError
from .extensions import db
from .models import BillingNote
from .money import price_before_vat

logger = logging.getLogger(__name__)

BATCH_SIZE = 200


@dataclass
class BackfillReport:
    scanned: int = 0
    updated: int = 0
    skipped_invalid: int = 0
    assumed_inclusive: int = 0
    last_billing_ref: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _value_for(note: BillingNote):
    if note.subtotal_includes_vat is False:
        return price_before_vat(note.subtotal, 0)
    return price_before_vat(note.subtotal, note.vat_rate_text)


def backfill_price_before_vat(dry_run: bool = False, batch_size: int = BATCH_SIZE) -> BackfillReport:
    """Compute and persist missing price_before_vat values. Returns a report."""
    report = BackfillReport()
    last_id = 0

    try:
        while True:
            notes = (
                BillingNote.query.filter(
                    BillingNote.price_before_vat.is_(None),
                    BillingNote.id > last_id,
                )
                .order_by(BillingNote.id.asc())
                .limit(batch_size)
                .all()
            )
            if not notes:
                break

            for note in notes:
                last_id = note.id
                report.scanned += 1

                try:
                    value = _value_for(note)
                except ValidationError as exc:
                    report.skipped_invalid += 1
                    logger.warning("Skipping billing note %s: %s", note.billing_ref, exc.message)
                    continue

                if note.subtotal_includes_vat is None:
                    report.assumed_inclusive += 1
                    logger.info(
                        "Billing note %s has no VAT convention recorded; treating subtotal as VAT-inclusive",
                        note.billing_ref,
                    )

                if dry_run:
                    report.updated += 1
                    report.last_billing_ref = note.billing_ref
                    continue

                result = db.session.execute(
                    update(BillingNote)
                    .where(BillingNote.id == note.id, BillingNote.price_before_vat.is_(None))
                    .values(price_before_vat=value)
                    .execution_options(synchronize_session=False)
                )
                db.session.commit()

                if result.rowcount == 1:
                    report.updated += 1
                report.last_billing_ref = note.billing_ref

            db.session.expire_all()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(
            "Backfill halted after billing note %s: %s",
            report.last_billing_ref or "<none>",
            exc,
        )
        raise PersistenceError(
            "Backfill interrupted by a database error; re-run to resume",
            details={"lastBillingRef": report.last_billing_ref},
        ) from exc

    if dry_run:
        db.session.rollback()

    logger.info(
        "Backfill %s: scanned=%s updated=%s skipped_invalid=%s assumed_inclusive=%s",
        "dry run" if dry_run else "done",
        report.scanned,
        report.updated,
        report.skipped_invalid,
        report.assumed_inclusive,
    )
    return report
