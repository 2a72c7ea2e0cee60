"""
Money and VAT arithmetic.

All amounts are integer cents. Quantities and VAT rates are Decimal so that
0.5 days or a 5.5% rate never pass through binary floating point.

Rounding is half-up and happens per line: the document VAT is the sum of
the already-rounded line VATs, so the figure on the document always equals
the sum of the lines shown to the client.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, ties away from zero."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class LineAmounts:
    subtotal_cents: int
    vat_amount_cents: int
    total_cents: int


@dataclass(frozen=True)
class DocumentTotals:
    subtotal_cents: int
    vat_amount_cents: int
    total_cents: int
    lines: tuple[LineAmounts, ...]


def calculate_line(quantity: Decimal, unit_price_cents: int, vat_rate: Decimal) -> LineAmounts:
    """
    Amounts for one line item.

    Args:
        quantity: Positive quantity (hours, days, units)
        unit_price_cents: Non-negative unit price in cents
        vat_rate: Percentage, 0 to 100 (20 means 20%)
    """
    subtotal = round_half_up(Decimal(quantity) * unit_price_cents)
    vat = round_half_up(subtotal * Decimal(vat_rate) / 100)
    return LineAmounts(subtotal_cents=subtotal, vat_amount_cents=vat, total_cents=subtotal + vat)


def calculate_totals(items: Iterable) -> DocumentTotals:
    """
    Totals for an ordered sequence of line items.

    Each item needs quantity, unit_price_cents and vat_rate attributes.
    Inputs are validated by the caller; this never raises on valid models.
    """
    lines = tuple(
        calculate_line(item.quantity, item.unit_price_cents, item.vat_rate)
        for item in items
    )
    return DocumentTotals(
        subtotal_cents=sum(line.subtotal_cents for line in lines),
        vat_amount_cents=sum(line.vat_amount_cents for line in lines),
        total_cents=sum(line.total_cents for line in lines),
        lines=lines,
    )


def application_fee(total_cents: int, commission_rate: Decimal) -> int:
    """Platform fee on a destination charge. 5% of 10000 is 500."""
    return round_half_up(Decimal(total_cents) * Decimal(commission_rate))


def format_eur(cents: int) -> str:
    """French display format: 1234567 -> '12 345,67 €'."""
    sign = "-" if cents < 0 else ""
    euros, rest = divmod(abs(cents), 100)
    grouped = f"{euros:,}".replace(",", " ")
    return f"{sign}{grouped},{rest:02d} €"

