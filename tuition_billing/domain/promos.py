"""Promo discount rules for recurring installment invoices"""

from decimal import Decimal
from typing import Optional
from tuition_billing.domain.ledger import round_cents
from tuition_billing.domain.models import PromoApplication, PromoApplyScope, PromoTerms, PromoType

MONTHLY_SCOPES = (PromoApplyScope.MONTHLY, PromoApplyScope.BOTH)
MERCHANDISE_PROMO_TYPES = (PromoType.FREE_MERCHANDISE, PromoType.COMBINED)


def is_monthly_promo_eligible(
    apply_scope: Optional[PromoApplyScope],
    months_applied: int,
    months_to_apply: Optional[int],
) -> bool:
    """
    A monthly promo applies while its cycle budget lasts.

    A profile without a months_to_apply bound gets no monthly promo, which keeps
    months_applied <= months_to_apply true for every profile.
    """
    if apply_scope not in MONTHLY_SCOPES:
        return False
    if months_to_apply is None:
        return False
    return (months_applied or 0) < months_to_apply


def _percentage(value: Optional[float]) -> Decimal:
    return Decimal(str(value)) if value else Decimal(0)


def _format_percentage(value: float) -> str:
    return f"{value:g}%"


def _format_amount(cents: int) -> str:
    return f"PHP {Decimal(cents) / 100:.2f}"


def calculate_discount(terms: PromoTerms, base_cents: int) -> tuple[int, Optional[str]]:
    """
    Discount in cents for one cycle and the label describing it.

    percentage_discount: base * pct / 100
    fixed_discount:      fixed amount
    combined:            percentage when set, otherwise the fixed amount
    The discount never exceeds the base amount.
    """
    pct = _percentage(terms.discount_percentage)
    fixed = terms.discount_amount_cents or 0

    discount = 0
    label = None
    if terms.promo_type == PromoType.PERCENTAGE_DISCOUNT and pct > 0:
        discount = round_cents(Decimal(base_cents) * pct / 100)
        label = _format_percentage(terms.discount_percentage)
    elif terms.promo_type == PromoType.FIXED_DISCOUNT and fixed > 0:
        discount = fixed
        label = _format_amount(fixed)
    elif terms.promo_type == PromoType.COMBINED:
        if pct > 0:
            discount = round_cents(Decimal(base_cents) * pct / 100)
            label = _format_percentage(terms.discount_percentage)
        elif fixed > 0:
            discount = fixed
            label = _format_amount(fixed)

    discount = max(0, min(discount, base_cents))
    if discount == 0:
        return 0, None
    return discount, label


def apply_promo(terms: PromoTerms, base_cents: int) -> PromoApplication:
    """Discount and free merchandise lines granted for one billing cycle"""
    discount, label = calculate_discount(terms, base_cents)
    discount_description = f"Promo: {terms.name} ({label})" if discount > 0 else None

    merchandise_descriptions = []
    if terms.promo_type in MERCHANDISE_PROMO_TYPES:
        for merchandise_name, quantity in terms.merchandise:
            for _ in range(quantity or 1):
                merchandise_descriptions.append(f"Free: {merchandise_name} (Promo: {terms.name})")

    return PromoApplication(
        discount_cents=discount,
        discount_description=discount_description,
        merchandise_descriptions=merchandise_descriptions,
    )
