"""Ledger derivation - invoice balance and status from line items and payments"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable
from tuition_billing.domain.models import InvoiceStatus, LedgerTotals, LineItem


def round_cents(value: Decimal) -> int:
    """Round a fractional cent amount half-up to whole cents"""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_tax_cents(item: LineItem) -> int:
    if not item.tax_percentage:
        return 0
    return round_cents(Decimal(item.amount_cents) * Decimal(str(item.tax_percentage)) / Decimal(100))


def compute_original_amount(items: Iterable[LineItem]) -> int:
    """
    Original invoice amount in cents.

    original = sum(amount) - sum(discount) + sum(penalty) + sum(amount * tax% / 100)
    """
    total = 0
    for item in items:
        total += item.amount_cents - item.discount_cents + item.penalty_cents + line_tax_cents(item)
    return total


def compute_totals(items: Iterable[LineItem], completed_payments_cents: Iterable[int]) -> LedgerTotals:
    """
    Derive original amount, total paid and remaining balance.

    Only completed payments should be passed in; remaining never goes negative.
    """
    original = compute_original_amount(items)
    total_paid = sum(completed_payments_cents)
    remaining = max(0, original - total_paid)

    return LedgerTotals(
        original_cents=original,
        total_paid_cents=total_paid,
        remaining_cents=remaining,
    )


def derive_status(totals: LedgerTotals) -> InvoiceStatus:
    """Paid when fully covered, Partially Paid when something was paid, else Unpaid"""
    if totals.total_paid_cents >= totals.original_cents:
        return InvoiceStatus.PAID
    elif totals.total_paid_cents > 0:
        return InvoiceStatus.PARTIALLY_PAID
    else:
        return InvoiceStatus.UNPAID
