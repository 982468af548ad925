"""
vendor_billing/money.py

VAT-aware monetary computation.

Rules:
- All arithmetic uses Decimal, never binary floats.
- Money is rounded to 2 places with ROUND_HALF_UP.
- Rates are ALWAYS percents (7 means 7%, 0.5 means 0.5%).
- A VAT-inclusive subtotal is converted to the pre-VAT price by division:
      price_before_vat = subtotal / (1 + vat_rate / 100)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .exceptions import ValidationError

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")

DEFAULT_VAT_RATE = Decimal("7")
DEFAULT_WHT_RATE = Decimal("3")


def money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal | None:
    """Convert int/str/float/Decimal to Decimal. Returns None if empty or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        raw = str(value).strip().replace(",", "")
        if raw == "":
            return None
        try:
            # str() first so 93.46 stays 93.46 instead of its binary expansion
            result = Decimal(raw)
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite():
        return None
    return result


def parse_amount(value, field: str = "subtotal") -> Decimal:
    """
    Parse a monetary input.

    Missing, unparseable or negative amounts are input errors. They are never
    coerced to zero.
    """
    amount = to_decimal(value)
    if amount is None:
        raise ValidationError(f"{field} is required and must be a number", details={"field": field})
    if amount < 0:
        raise ValidationError(f"{field} must not be negative", details={"field": field})
    return amount


def parse_rate(value, default: Decimal = DEFAULT_VAT_RATE, field: str = "vatRate") -> Decimal:
    """
    Parse a stored percent rate (e.g. BillingNote.vat_rate_text).

    Absent or unparseable -> default. Negative -> ValidationError.
    """
    rate = to_decimal(value)
    if rate is None:
        return Decimal(default)
    if rate < 0:
        raise ValidationError(f"{field} must not be negative", details={"field": field})
    return rate


def parse_vat_rate(value) -> Decimal:
    return parse_rate(value, DEFAULT_VAT_RATE, "vatRate")


def format_rate(rate: Decimal) -> str:
    """Render a percent for storage as text: 7 -> "7", 7.50 -> "7.5", 100 -> "100"."""
    text = format(Decimal(rate).normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def format_money(value: Decimal | None) -> str | None:
    """JSON representation: string with exactly 2 fractional digits."""
    if value is None:
        return None
    return str(money(Decimal(value)))


def price_before_vat(subtotal, vat_rate_percent=None) -> Decimal:
    """
    Derive the pre-VAT price from a VAT-inclusive subtotal.

    >>> price_before_vat(107, "7")
    Decimal('100.00')
    >>> price_before_vat(100, None)
    Decimal('93.46')
    """
    amount = parse_amount(subtotal)
    rate = parse_vat_rate(vat_rate_percent)
    if rate == 0:
        return money(amount)
    return money(amount / (Decimal("1") + rate / HUNDRED))


@dataclass(frozen=True)
class BillingAmounts:
    """Derived amounts stored on a BillingNote."""

    subtotal: Decimal
    price_before_vat: Decimal
    vat_amount: Decimal
    wht_amount: Decimal
    net_total: Decimal
    vat_rate: Decimal
    wht_rate: Decimal
    subtotal_includes_vat: bool

    def to_dict(self) -> dict:
        return {
            "subtotal": format_money(self.subtotal),
            "priceBeforeVat": format_money(self.price_before_vat),
            "vatAmount": format_money(self.vat_amount),
            "whtAmount": format_money(self.wht_amount),
            "netTotal": format_money(self.net_total),
            "vatRate": format_rate(self.vat_rate),
            "whtRate": format_rate(self.wht_rate),
            "subtotalIncludesVat": self.subtotal_includes_vat,
        }


def compute_billing_amounts(
    subtotal,
    vat_rate=None,
    wht_rate=None,
    *,
    subtotal_includes_vat: bool = True,
) -> BillingAmounts:
    """
    Full amount breakdown for a billing note.

    - Inclusive subtotal: price_before_vat = subtotal / (1 + vat%)
    - Exclusive subtotal: price_before_vat = subtotal
    - VAT and WHT are computed from price_before_vat
    - net_total = price_before_vat + VAT - WHT
    """
    amount = money(parse_amount(subtotal))
    vat = parse_rate(vat_rate, DEFAULT_VAT_RATE, "vatRate")
    wht = parse_rate(wht_rate, DEFAULT_WHT_RATE, "whtRate")

    if subtotal_includes_vat:
        before_vat = price_before_vat(amount, vat)
    else:
        before_vat = amount

    vat_amount = money(before_vat * vat / HUNDRED)
    wht_amount = money(before_vat * wht / HUNDRED)
    net_total = money(before_vat + vat_amount - wht_amount)

    return BillingAmounts(
        subtotal=amount,
        price_before_vat=before_vat,
        vat_amount=vat_amount,
        wht_amount=wht_amount,
        net_total=net_total,
        vat_rate=vat,
        wht_rate=wht,
        subtotal_includes_vat=subtotal_includes_vat,
    )


def sum_money(values) -> Decimal | None:
    """Sum of money values; None if any value is still unknown (e.g. not backfilled)."""
    total = Decimal("0.00")
    for value in values:
        if value is None:
            return None
        total += Decimal(value)
    return money(total)
