"""Integration tests for recurring installment invoice generation"""

from datetime import date, timedelta
from tuition_billing.domain.models import InvoiceStatus, PromoApplyScope, PromoType, ScheduleStatus
from tuition_billing.infrastructure.database.models import (
    InstallmentProfile,
    Invoice,
    InvoiceLineItem,
    InvoiceStudent,
    ScheduledInstallment,
)
from tuition_billing.services.generation import process_due_installment_invoices

TODAY = date(2026, 3, 2)


def _generated_invoices(db, profile_id):
    return db.query(Invoice).filter(Invoice.installment_profile_id == profile_id).order_by(Invoice.id).all()


def test_generates_invoice_and_advances_schedule(db, seed, session_factory):
    """A due unbounded profile gets one invoice and a schedule one month out"""
    student = seed.student()
    profile = seed.profile(student, amount_cents=100000)
    row = seed.schedule(profile, next_generation_date=TODAY, next_invoice_month=date(2026, 3, 1))
    db.commit()

    result = process_due_installment_invoices(today=TODAY, session_factory=session_factory)

    assert result.total_due == 1
    assert result.processed == 1
    assert result.errors == 0

    db.expire_all()
    invoices = _generated_invoices(db, profile.id)
    assert len(invoices) == 1
    invoice = invoices[0]
    assert invoice.amount_cents == 100000
    assert invoice.status == InvoiceStatus.UNPAID
    assert invoice.issue_date == TODAY
    assert invoice.due_date == TODAY + timedelta(days=7)
    assert invoice.description == f"INV-{invoice.id}"
    assert invoice.remarks.startswith("Auto-generated from installment invoice")
    assert db.query(InvoiceStudent).filter_by(invoice_id=invoice.id, student_id=student.id).count() == 1

    row = db.get(ScheduledInstallment, row.id)
    assert row.next_generation_date == date(2026, 4, 2)
    assert row.next_invoice_month == date(2026, 4, 1)
    assert row.status == ScheduleStatus.SCHEDULED
    assert row.scheduled_date == TODAY

    profile = db.get(InstallmentProfile, profile.id)
    assert profile.generated_count == 1
    assert profile.is_active is True

    detail = result.details["processed"][0]
    assert detail["invoice_id"] == invoice.id
    assert detail["student_name"] == "Maria Santos"
    assert detail["phase_limit_reached"] is False


def test_second_run_same_day_generates_nothing(db, seed, session_factory):
    """Generation is exactly-once per due date"""
    student = seed.student()
    profile = seed.profile(student)
    seed.schedule(profile, next_generation_date=TODAY)
    db.commit()

    process_due_installment_invoices(today=TODAY, session_factory=session_factory)
    second = process_due_installment_invoices(today=TODAY, session_factory=session_factory)

    assert second.total_due == 0
    db.expire_all()
    assert len(_generated_invoices(db, profile.id)) == 1


def test_future_schedule_not_due(db, seed, session_factory):
    student = seed.student()
    profile = seed.profile(student)
    seed.schedule(profile, next_generation_date=TODAY + timedelta(days=1))
    db.commit()

    result = process_due_installment_invoices(today=TODAY, session_factory=session_factory)

    assert result.total_due == 0
    assert result.processed == 0


def test_unpaid_downpayment_blocks_generation(db, seed, session_factory):
    student = seed.student()
    downpayment = seed.invoice(student, amount_cents=50000)
    profile = seed.profile(student, downpayment_invoice=downpayment, downpayment_paid=False)
    seed.schedule(profile, next_generation_date=TODAY)
    db.commit()

    result = process_due_installment_invoices(today=TODAY, session_factory=session_factory)

    assert result.total_due == 0


def test_phase_limit_terminates_profile(db, seed, session_factory):
    """The last allowed cycle deactivates the profile and finalizes the schedule"""
    student = seed.student()
    profile = seed.profile(student, total_phases=2, generated_count=1)
    row = seed.schedule(profile, next_generation_date=TODAY, status=ScheduleStatus.SCHEDULED)
    db.commit()

    result = process_due_installment_invoices(today=TODAY, session_factory=session_factory)

    assert result.processed == 1
    assert result.details["processed"][0]["phase_limit_reached"] is True

    db.expire_all()
    profile = db.get(InstallmentProfile, profile.id)
    row = db.get(ScheduledInstallment, row.id)
    assert profile.generated_count == 2
    assert profile.is_active is False
    assert row.status == ScheduleStatus.GENERATED

    later = process_due_installment_invoices(today=TODAY + timedelta(days=60), session_factory=session_factory)
    assert later.total_due == 0


def test_paid_installments_at_limit_reported_as_error(db, seed, session_factory):
    """Paid phases already cover the plan: the row is rolled back and reported"""
    student = seed.student()
    profile = seed.profile(student, total_phases=2, generated_count=0)
    for _ in range(2):
        seed.invoice(student, profile=profile, status=InvoiceStatus.PAID)
    row = seed.schedule(profile, next_generation_date=TODAY)
    db.commit()

    result = process_due_installment_invoices(today=TODAY, session_factory=session_factory)

    assert result.processed == 0
    assert result.errors == 1
    error = result.details["errors"][0]
    assert error["installment_id"] == row.id
    assert error["student_id"] == student.id
    assert "Phase limit" in error["error"]

    db.expire_all()
    assert len(_generated_invoices(db, profile.id)) == 2
    assert db.get(InstallmentProfile, profile.id).generated_count == 0


def test_failing_row_does_not_stop_batch(db, seed, session_factory):
    student = seed.student()
    blocked = seed.profile(student, total_phases=1)
    seed.invoice(student, profile=blocked, status=InvoiceStatus.PAID)
    seed.schedule(blocked, next_generation_date=TODAY - timedelta(days=1))

    other = seed.student("Jose Rizal")
    healthy = seed.profile(other)
    seed.schedule(healthy, next_generation_date=TODAY)
    db.commit()

    result = process_due_installment_invoices(today=TODAY, session_factory=session_factory)

    assert result.total_due == 2
    assert result.processed == 1
    assert result.errors == 1
    db.expire_all()
    assert len(_generated_invoices(db, healthy.id)) == 1


def test_monthly_promo_applied_within_budget(db, seed, session_factory):
    """Discount lines stop once promo_months_to_apply cycles were billed"""
    student = seed.student()
    promo = seed.promo(PromoType.PERCENTAGE_DISCOUNT, discount_percentage=10, name="Summer")
    profile = seed.profile(
        student,
        amount_cents=100000,
        promo=promo,
        promo_apply_scope=PromoApplyScope.MONTHLY,
        promo_months_to_apply=1,
    )
    seed.schedule(profile, next_generation_date=TODAY)
    db.commit()

    process_due_installment_invoices(today=TODAY, session_factory=session_factory)
    process_due_installment_invoices(today=date(2026, 4, 2), session_factory=session_factory)

    db.expire_all()
    first, second = _generated_invoices(db, profile.id)
    assert first.amount_cents == 90000
    assert first.promo_id == promo.id
    discount_lines = db.query(InvoiceLineItem).filter(InvoiceLineItem.invoice_id == first.id).all()
    assert any(line.description == "Promo: Summer (10%)" and line.discount_cents == 10000 for line in discount_lines)

    assert second.amount_cents == 100000
    assert second.promo_id is None
    profile = db.get(InstallmentProfile, profile.id)
    assert profile.promo_months_applied == 1


def test_merchandise_only_promo_consumes_budget(db, seed, session_factory):
    student = seed.student()
    promo = seed.promo(PromoType.FREE_MERCHANDISE, merchandise=[("Songbook", 2)], name="Starter Kit")
    profile = seed.profile(
        student,
        promo=promo,
        promo_apply_scope=PromoApplyScope.BOTH,
        promo_months_to_apply=3,
    )
    seed.schedule(profile, next_generation_date=TODAY)
    db.commit()

    process_due_installment_invoices(today=TODAY, session_factory=session_factory)

    db.expire_all()
    (invoice,) = _generated_invoices(db, profile.id)
    free_lines = (
        db.query(InvoiceLineItem)
        .filter(InvoiceLineItem.invoice_id == invoice.id, InvoiceLineItem.description.like("Free:%"))
        .all()
    )
    assert len(free_lines) == 2
    assert all(line.amount_cents == 0 for line in free_lines)
    assert invoice.amount_cents == 100000
    assert db.get(InstallmentProfile, profile.id).promo_months_applied == 1


def test_schedule_snapshot_amount_wins(db, seed, session_factory):
    student = seed.student()
    profile = seed.profile(student, amount_cents=100000)
    seed.schedule(profile, next_generation_date=TODAY, amount_cents=80000)
    db.commit()

    process_due_installment_invoices(today=TODAY, session_factory=session_factory)

    db.expire_all()
    (invoice,) = _generated_invoices(db, profile.id)
    assert invoice.amount_cents == 80000
