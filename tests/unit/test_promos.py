"""Unit tests for monthly promo discounts"""

from tuition_billing.domain.models import PromoApplyScope, PromoTerms, PromoType
from tuition_billing.domain.promos import apply_promo, calculate_discount, is_monthly_promo_eligible


def test_monthly_eligibility_respects_cycle_budget():
    assert is_monthly_promo_eligible(PromoApplyScope.MONTHLY, 0, 2) is True
    assert is_monthly_promo_eligible(PromoApplyScope.BOTH, 1, 2) is True
    assert is_monthly_promo_eligible(PromoApplyScope.MONTHLY, 2, 2) is False


def test_downpayment_only_promo_never_monthly():
    assert is_monthly_promo_eligible(PromoApplyScope.DOWNPAYMENT, 0, 3) is False
    assert is_monthly_promo_eligible(None, 0, 3) is False


def test_unbounded_promo_not_applied_monthly():
    """Without months_to_apply there is no budget to spend"""
    assert is_monthly_promo_eligible(PromoApplyScope.MONTHLY, 0, None) is False


def test_percentage_discount():
    terms = PromoTerms(name="Early Bird", promo_type=PromoType.PERCENTAGE_DISCOUNT, discount_percentage=10)
    assert calculate_discount(terms, 100000) == (10000, "10%")


def test_percentage_discount_rounds_half_up():
    terms = PromoTerms(name="Odd", promo_type=PromoType.PERCENTAGE_DISCOUNT, discount_percentage=12.5)
    # 12.5% of 1001 cents = 125.125
    assert calculate_discount(terms, 1001) == (125, "12.5%")


def test_fixed_discount_capped_at_base():
    terms = PromoTerms(name="Big", promo_type=PromoType.FIXED_DISCOUNT, discount_amount_cents=150000)
    discount, label = calculate_discount(terms, 100000)

    assert discount == 100000
    assert label == "PHP 1500.00"


def test_combined_prefers_percentage():
    terms = PromoTerms(
        name="Combo",
        promo_type=PromoType.COMBINED,
        discount_percentage=20,
        discount_amount_cents=5000,
    )
    assert calculate_discount(terms, 100000) == (20000, "20%")


def test_combined_falls_back_to_fixed():
    terms = PromoTerms(name="Combo", promo_type=PromoType.COMBINED, discount_amount_cents=5000)
    assert calculate_discount(terms, 100000) == (5000, "PHP 50.00")


def test_apply_promo_descriptions():
    terms = PromoTerms(name="Summer", promo_type=PromoType.PERCENTAGE_DISCOUNT, discount_percentage=10)
    application = apply_promo(terms, 100000)

    assert application.discount_cents == 10000
    assert application.discount_description == "Promo: Summer (10%)"
    assert application.merchandise_descriptions == []
    assert application.applied is True


def test_free_merchandise_one_line_per_unit():
    terms = PromoTerms(
        name="Starter Kit",
        promo_type=PromoType.FREE_MERCHANDISE,
        merchandise=[("Songbook", 2), ("Tote Bag", 1)],
    )
    application = apply_promo(terms, 100000)

    assert application.discount_cents == 0
    assert application.discount_description is None
    assert application.merchandise_descriptions == [
        "Free: Songbook (Promo: Starter Kit)",
        "Free: Songbook (Promo: Starter Kit)",
        "Free: Tote Bag (Promo: Starter Kit)",
    ]
    assert application.applied is True


def test_percentage_promo_ignores_merchandise():
    terms = PromoTerms(
        name="Summer",
        promo_type=PromoType.PERCENTAGE_DISCOUNT,
        discount_percentage=10,
        merchandise=[("Songbook", 1)],
    )
    assert apply_promo(terms, 100000).merchandise_descriptions == []


def test_zero_value_promo_not_applied():
    terms = PromoTerms(name="Empty", promo_type=PromoType.FIXED_DISCOUNT, discount_amount_cents=0)
    assert apply_promo(terms, 100000).applied is False
