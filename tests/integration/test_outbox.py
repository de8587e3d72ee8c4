"""Integration tests for the post-commit outbox"""

from datetime import date
from tuition_billing.config import settings
from tuition_billing.domain.models import OutboxStatus, ScheduleStatus
from tuition_billing.infrastructure.database.models import InstallmentProfile, Invoice, OutboxTask, ScheduledInstallment
from tuition_billing.infrastructure.database.repositories import OutboxRepository
from tuition_billing.services.generation import process_due_installment_invoices
from tuition_billing.services.outbox import drain_outbox, enqueue_first_installment
from tuition_billing.services.payments import PaymentService

TODAY = date(2026, 3, 2)


def _settle_downpayment(db, seed, first_generation_date=None):
    student = seed.student()
    downpayment = seed.invoice(student, amount_cents=50000, description="Downpayment")
    profile = seed.profile(
        student,
        amount_cents=120000,
        total_phases=6,
        downpayment_invoice=downpayment,
        first_generation_date=first_generation_date,
    )
    db.commit()

    payment, _ = PaymentService(db, today=TODAY).create_payment(
        invoice_id=downpayment.id,
        student_id=student.id,
        payment_method="GCash",
        payment_type="Downpayment",
        payable_amount_cents=50000,
        issue_date=TODAY,
    )
    db.commit()
    return profile, downpayment, payment


def test_drain_generates_first_installment(db, seed, session_factory):
    """The first installment is billed right after the downpayment settles"""
    profile, downpayment, _ = _settle_downpayment(db, seed, first_generation_date=date(2026, 3, 15))

    result = drain_outbox(session_factory=session_factory, today=TODAY)

    assert result.attempted == 1
    assert result.succeeded == 1
    assert result.failed == 0

    db.expire_all()
    invoices = (
        db.query(Invoice)
        .filter(Invoice.installment_profile_id == profile.id, Invoice.id != downpayment.id)
        .all()
    )
    assert len(invoices) == 1
    assert invoices[0].amount_cents == 120000
    assert invoices[0].issue_date == date(2026, 3, 15)

    row = db.query(ScheduledInstallment).filter(ScheduledInstallment.profile_id == profile.id).one()
    assert row.status == ScheduleStatus.SCHEDULED
    assert row.next_generation_date == date(2026, 4, 15)
    assert db.get(InstallmentProfile, profile.id).generated_count == 1

    task = db.query(OutboxTask).one()
    assert task.status == OutboxStatus.DONE
    assert task.attempts == 1


def test_drain_is_idempotent(db, seed, session_factory):
    _settle_downpayment(db, seed)

    drain_outbox(session_factory=session_factory, today=TODAY)
    second = drain_outbox(session_factory=session_factory, today=TODAY)

    assert second.attempted == 0


def test_reverted_downpayment_task_completes_without_invoice(db, seed, session_factory):
    """A task whose schedule row was deleted finishes as a no-op"""
    profile, downpayment, payment = _settle_downpayment(db, seed)
    PaymentService(db, today=TODAY).delete_payment(payment.id)
    db.commit()

    result = drain_outbox(session_factory=session_factory, today=TODAY)

    assert result.succeeded == 1
    db.expire_all()
    assert db.query(Invoice).filter(Invoice.installment_profile_id == profile.id).count() == 0
    assert db.query(OutboxTask).one().status == OutboxStatus.DONE


def test_failing_task_retried_then_marked_failed(db, session_factory, monkeypatch):
    monkeypatch.setattr(settings, "outbox_max_attempts", 2)
    OutboxRepository(db).enqueue("reticulate_splines", {})
    db.commit()

    first = drain_outbox(session_factory=session_factory, today=TODAY)
    assert first.failed == 1
    db.expire_all()
    task = db.query(OutboxTask).one()
    assert task.status == OutboxStatus.PENDING
    assert task.attempts == 1
    assert "Unknown outbox task type" in task.last_error

    drain_outbox(session_factory=session_factory, today=TODAY)
    db.expire_all()
    task = db.query(OutboxTask).one()
    assert task.status == OutboxStatus.FAILED
    assert task.attempts == 2

    third = drain_outbox(session_factory=session_factory, today=TODAY)
    assert third.attempted == 0


def test_enqueue_first_installment_payload(db, seed):
    student = seed.student()
    profile = seed.profile(student)
    row = seed.schedule(profile)

    task = enqueue_first_installment(db, row.id)

    assert task.task_type == "generate_first_installment"
    assert task.payload == {"scheduled_installment_id": row.id}
    assert task.status == OutboxStatus.PENDING
    assert task.attempts == 0


def test_repaid_downpayment_bills_each_cycle_once(db, seed, session_factory):
    """Pay, drain, delete the payment, pay again: the schedule keeps billing once per cycle"""
    profile, downpayment, payment = _settle_downpayment(db, seed)
    drain_outbox(session_factory=session_factory, today=TODAY)

    PaymentService(db, today=TODAY).delete_payment(payment.id)
    db.commit()
    PaymentService(db, today=TODAY).create_payment(
        invoice_id=downpayment.id,
        student_id=profile.student_id,
        payment_method="GCash",
        payment_type="Downpayment",
        payable_amount_cents=50000,
        issue_date=TODAY,
    )
    db.commit()

    second_drain = drain_outbox(session_factory=session_factory, today=TODAY)
    assert second_drain.attempted == 0

    april = process_due_installment_invoices(today=date(2026, 4, 2), session_factory=session_factory)
    assert april.processed == 1

    db.expire_all()
    rows = db.query(ScheduledInstallment).filter(ScheduledInstallment.profile_id == profile.id).all()
    assert len(rows) == 1
    assert rows[0].next_generation_date == date(2026, 5, 2)
    issue_dates = sorted(
        invoice.issue_date
        for invoice in db.query(Invoice).filter(
            Invoice.installment_profile_id == profile.id, Invoice.id != downpayment.id
        )
    )
    assert issue_dates == [TODAY, date(2026, 4, 2)]
