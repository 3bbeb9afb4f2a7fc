"""
Money arithmetic for invoices.

Rounding happens once, at the aggregate level: item subtotals stay unrounded
and invoice_totals() rounds subtotal, tax and total to cents from the raw sum.
"""
import math
from dataclasses import dataclass
from typing import Iterable

from models.invoice import InvoiceItem


@dataclass(frozen=True)
class Totals:
    subtotal: float
    tax_amount: float
    total: float


def round2(value: float) -> float:
    """
    Round to cents, half-up on the cent-scaled value (0.125 -> 0.13).

    Infinity and NaN come back unchanged.
    """
    scaled = value * 100 + 0.5
    if not math.isfinite(scaled):
        return value
    return math.floor(scaled) / 100


def item_subtotal(quantity: float, price: float) -> float:
    return quantity * price


def invoice_totals(
    items: Iterable[InvoiceItem],
    tax_rate: float,
    discount: float,
) -> Totals:
    """
    Compute the aggregate totals for a list of items.

    Each item's subtotal is trusted as given. tax_rate and discount are
    fractions and are not validated here.
    """
    raw = sum(item.subtotal for item in items)
    return Totals(
        subtotal=round2(raw),
        tax_amount=round2(raw * tax_rate),
        total=round2(raw * (1 + tax_rate) - raw * discount),
    )


def discount_amount(subtotal: float, discount: float) -> float:
    return round2(subtotal * discount)


def format_money(value: float) -> str:
    """Fixed two-decimal dollar string: 1234.5 -> '$1234.50', -3 -> '-$3.00'."""
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):.2f}"
