"""Payment-driven invoice settlement: status, enrollment, reservations and downpayments"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from sqlalchemy.orm import Session
from tuition_billing.config import settings
from tuition_billing.domain.exceptions import NotFoundError
from tuition_billing.domain.installments import next_phase, parse_class_id, parse_phase_range
from tuition_billing.domain.models import (
    InvoiceStatus,
    PaymentAction,
    PaymentEvent,
    ReservationStatus,
    SettlementOutcome,
)
from tuition_billing.infrastructure.database.models import InstallmentProfile, Invoice
from tuition_billing.infrastructure.database.repositories import (
    EnrollmentRepository,
    InstallmentRepository,
    InvoiceRepository,
    ReservationRepository,
)
from tuition_billing.services.ledger import refresh_invoice
from tuition_billing.services.outbox import enqueue_first_installment
from tuition_billing.utils.date_utils import business_today, utcnow

logger = logging.getLogger(__name__)

RESERVATION_FEE_MARKER = "Reservation Fee"
ENROLLED_BY = "System"

# Legacy rows without source_invoice_id are matched by enrolled_at around the issue date
LEGACY_WINDOW = timedelta(hours=24)
LEGACY_WINDOW_ON_DELETE = timedelta(hours=1)


def _is_reservation_fee(invoice: Invoice) -> bool:
    return RESERVATION_FEE_MARKER in (invoice.description or "")


class SettlementStateMachine:
    """Applies the side effects of one invoice status transition"""

    def __init__(self, db: Session, today: date):
        self.db = db
        self.today = today
        self.enrollments = EnrollmentRepository(db)
        self.installments = InstallmentRepository(db)
        self.reservations = ReservationRepository(db)

    # Into Paid

    def settle_paid(self, invoice: Invoice, event: PaymentEvent, outcome: SettlementOutcome) -> None:
        reservation = self.reservations.get_by_invoice(invoice.id)
        if reservation is not None:
            if reservation.status == ReservationStatus.RESERVED:
                reservation.status = ReservationStatus.FEE_PAID
                reservation.reservation_fee_paid_at = utcnow()
                outcome.reservation_status = reservation.status
            return

        downpayment_profile = self.installments.get_profile_by_downpayment(invoice.id)
        if downpayment_profile is not None:
            if not downpayment_profile.downpayment_paid:
                self._settle_downpayment(downpayment_profile, outcome)
            return

        if invoice.installment_profile_id is not None:
            self._advance_phase(invoice, event, outcome)
            return

        if not _is_reservation_fee(invoice):
            self._enroll_full_payment(invoice, event, outcome)

    def _settle_downpayment(self, profile: InstallmentProfile, outcome: SettlementOutcome) -> None:
        """Unlock recurring billing; the first installment is generated after commit"""
        profile.downpayment_paid = True
        outcome.downpayment_settled = True

        # A re-paid downpayment resumes the schedule that already exists
        existing = self.installments.open_schedule(profile.id)
        if existing is not None:
            logger.info(
                "Downpayment settled, schedule resumed",
                extra={"profile_id": profile.id, "installment_id": existing.id},
            )
            return

        generation_date = profile.first_generation_date or self.today
        row = self.installments.create_schedule(
            profile_id=profile.id,
            scheduled_date=generation_date,
            next_generation_date=generation_date,
            next_invoice_month=profile.first_billing_month or generation_date,
            amount_cents=profile.amount_cents,
            frequency=profile.frequency,
        )
        task = enqueue_first_installment(self.db, row.id)

        outcome.outbox_task_ids.append(str(task.id))
        logger.info(
            "Downpayment settled",
            extra={"profile_id": profile.id, "installment_id": row.id, "task_id": str(task.id)},
        )

    def _advance_phase(self, invoice: Invoice, event: PaymentEvent, outcome: SettlementOutcome) -> None:
        profile = invoice.profile
        if profile is None or profile.class_id is None:
            return
        # Only the plan owner's own payment moves their phase
        if profile.student_id != event.student_id:
            return

        student_id, class_id = profile.student_id, profile.class_id
        if not self.enrollments.has_any(student_id, class_id):
            phase = 1
        else:
            total_phases = self.enrollments.class_phase_count(class_id) or profile.total_phases
            phase = next_phase(self.enrollments.highest_phase(student_id, class_id) or 0, total_phases)
            if phase is None or self.enrollments.active_phase_exists(student_id, class_id, phase):
                return

        self.enrollments.enroll(student_id, class_id, phase, ENROLLED_BY, source_invoice_id=invoice.id)
        outcome.enrolled_phases.append(phase)

    def _enroll_full_payment(self, invoice: Invoice, event: PaymentEvent, outcome: SettlementOutcome) -> None:
        class_id = parse_class_id(invoice.remarks)
        if class_id is None or not self.enrollments.class_exists(class_id):
            return
        if self.enrollments.has_any(event.student_id, class_id):
            return

        phase_start, phase_end = parse_phase_range(invoice.remarks, self.enrollments.class_phase_count(class_id) or 1)
        for phase in range(phase_start, phase_end + 1):
            self.enrollments.enroll(event.student_id, class_id, phase, ENROLLED_BY, source_invoice_id=invoice.id)
            outcome.enrolled_phases.append(phase)

    # Into Unpaid

    def revert_unpaid(self, invoice: Invoice, event: PaymentEvent, outcome: SettlementOutcome) -> None:
        reservation = self.reservations.get_by_invoice(invoice.id)
        if reservation is not None:
            self._revert_reservation(reservation, outcome)
            return

        downpayment_profile = self.installments.get_profile_by_downpayment(invoice.id)
        if downpayment_profile is not None:
            if downpayment_profile.downpayment_paid:
                self._revert_downpayment(downpayment_profile, outcome)
            return

        if invoice.installment_profile_id is None and not _is_reservation_fee(invoice):
            outcome.unenrolled_count += self._unenroll_package(invoice, event)

    def _revert_reservation(self, reservation, outcome: SettlementOutcome) -> None:
        if reservation.status not in (ReservationStatus.FEE_PAID, ReservationStatus.UPGRADED):
            return

        if reservation.status == ReservationStatus.UPGRADED:
            outcome.unenrolled_count += self.enrollments.delete_for(
                reservation.student_id, reservation.class_id, reservation.phase_number
            )

        if reservation.due_date is not None and reservation.due_date < self.today:
            reservation.status = ReservationStatus.EXPIRED
            reservation.expired_at = utcnow()
        else:
            reservation.status = ReservationStatus.RESERVED
        reservation.reservation_fee_paid_at = None
        outcome.reservation_status = reservation.status

    def _revert_downpayment(self, profile: InstallmentProfile, outcome: SettlementOutcome) -> None:
        profile.downpayment_paid = False
        row = self.installments.earliest_pending_schedule(profile.id)
        if row is not None:
            self.installments.delete_schedule(row)

        outcome.downpayment_reverted = True
        logger.info("Downpayment reverted", extra={"profile_id": profile.id})

    def _unenroll_package(self, invoice: Invoice, event: PaymentEvent) -> int:
        """Undo enrollments created by this invoice's payment"""
        removed = self.enrollments.delete_by_source_invoice(invoice.id)
        if removed or not settings.enrollment_window_fallback:
            return removed

        class_id = parse_class_id(invoice.remarks)
        if class_id is None:
            return 0

        window = LEGACY_WINDOW_ON_DELETE if event.action == PaymentAction.DELETED else LEGACY_WINDOW
        if invoice.issue_date is not None:
            anchor = datetime.combine(invoice.issue_date, time.min, tzinfo=timezone.utc)
        else:
            anchor = utcnow()
        return self.enrollments.delete_legacy_in_window(event.student_id, class_id, anchor - window, anchor + window)


def apply_payment_settlement(db: Session, event: PaymentEvent, today: Optional[date] = None) -> SettlementOutcome:
    """
    Re-derive an invoice after a payment write and apply transition side effects.

    Runs inside the caller's transaction, after the payment row has been
    inserted, updated or deleted. The invoice row is locked for the rest of it.

    Raises:
        NotFoundError: invoice does not exist
    """
    today = today or business_today()
    invoice = InvoiceRepository(db).get(event.invoice_id, lock=True)
    if invoice is None:
        raise NotFoundError(f"Invoice {event.invoice_id} not found")

    previous_status = invoice.status
    if previous_status == InvoiceStatus.CANCELLED:
        return SettlementOutcome(
            invoice_id=invoice.id,
            previous_status=previous_status,
            status=previous_status,
            remaining_cents=invoice.amount_cents,
        )

    totals, status = refresh_invoice(db, invoice)
    outcome = SettlementOutcome(
        invoice_id=invoice.id,
        previous_status=previous_status,
        status=status,
        remaining_cents=totals.remaining_cents,
    )

    machine = SettlementStateMachine(db, today)
    if status == InvoiceStatus.PAID and previous_status != InvoiceStatus.PAID:
        machine.settle_paid(invoice, event, outcome)
    elif status == InvoiceStatus.UNPAID and previous_status in (InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_PAID):
        machine.revert_unpaid(invoice, event, outcome)

    db.flush()
    return outcome
