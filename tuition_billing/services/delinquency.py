"""Late penalties and auto-removal for overdue installment invoices"""

import logging
import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Optional
from sqlalchemy.orm import Session, sessionmaker
from tuition_billing.domain.ledger import round_cents
from tuition_billing.domain.models import DelinquencyBatchResult, InvoiceStatus
from tuition_billing.domain.settings import FINAL_DROPOFF_DAYS, PENALTY_GRACE_DAYS, PENALTY_RATE
from tuition_billing.infrastructure.database.repositories import EnrollmentRepository, InvoiceRepository
from tuition_billing.infrastructure.database.session import SessionLocal
from tuition_billing.infrastructure.observability.logging import log_job_summary
from tuition_billing.infrastructure.observability.metrics import job_duration_histogram, record_delinquency
from tuition_billing.services.ledger import compute_ledger, refresh_invoice
from tuition_billing.services.settings import SettingsResolver
from tuition_billing.utils.date_utils import business_today, utcnow

logger = logging.getLogger(__name__)

REMOVED_BY = "System"


def penalty_description(rate: float) -> str:
    return f"Late Payment Penalty ({rate * 100:g}%)"


def _process_invoice(
    db: Session,
    invoice_id: int,
    today: date,
    resolver: SettingsResolver,
) -> tuple[bool, bool]:
    """
    Apply penalty and removal rules to one locked invoice.

    Returns (penalty_applied, removal_applied).
    """
    invoices = InvoiceRepository(db)
    invoice = invoices.get(invoice_id, lock=True)
    if (
        invoice is None
        or invoice.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)
        or invoice.due_date is None
        or invoice.due_date >= today
    ):
        return False, False

    totals = compute_ledger(db, invoice.id)
    if totals.remaining_cents <= 0:
        return False, False

    profile = invoice.profile
    branch_id = invoice.branch_id or (profile.branch_id if profile else None)
    effective = resolver.get_effective_settings([PENALTY_RATE, PENALTY_GRACE_DAYS, FINAL_DROPOFF_DAYS], branch_id)
    rate = float(effective[PENALTY_RATE].value or 0)
    grace_days = int(effective[PENALTY_GRACE_DAYS].value or 0)
    dropoff_days = int(effective[FINAL_DROPOFF_DAYS].value or 0)

    # Penalty, once per due date
    penalty_applied = False
    penalty_eligible = today > invoice.due_date + timedelta(days=grace_days)
    if penalty_eligible and invoice.late_penalty_applied_for_due_date != invoice.due_date:
        penalty_cents = round_cents(Decimal(totals.remaining_cents) * Decimal(str(rate)))
        if penalty_cents > 0:
            invoices.add_line_item(invoice.id, penalty_description(rate), penalty_cents=penalty_cents)
            penalty_applied = True

        invoice.late_penalty_applied_for_due_date = invoice.due_date
        totals, _ = refresh_invoice(db, invoice)

        if penalty_applied:
            logger.info(
                "Late payment penalty applied",
                extra={"invoice_id": invoice.id, "penalty_cents": penalty_cents, "due_date": invoice.due_date.isoformat()},
            )

    # Removal
    removal_applied = False
    removal_eligible = today >= invoice.due_date + timedelta(days=dropoff_days)
    if removal_eligible and totals.remaining_cents > 0 and profile is not None and profile.class_id is not None:
        removed = EnrollmentRepository(db).remove_active(
            student_id=profile.student_id,
            class_id=profile.class_id,
            reason=f"Installment delinquency (>= {dropoff_days} days overdue)",
            removed_by=REMOVED_BY,
            removed_at=utcnow(),
        )
        if removed > 0:
            removal_applied = True
            logger.info(
                "Student removed for installment delinquency",
                extra={
                    "invoice_id": invoice.id,
                    "student_id": profile.student_id,
                    "class_id": profile.class_id,
                    "rows_removed": removed,
                },
            )

    return penalty_applied, removal_applied


def process_installment_delinquencies(
    today: Optional[date] = None,
    session_factory: Optional[sessionmaker] = None,
    resolver_factory: Callable[[Session], SettingsResolver] = SettingsResolver,
) -> DelinquencyBatchResult:
    """
    Penalize and unenroll for every overdue installment-linked invoice.

    Each invoice runs in its own transaction with the invoice row locked.
    Settings are resolved per invoice branch by a resolver built for that
    transaction.
    """
    today = today or business_today()
    session_factory = session_factory or SessionLocal
    start_time = time.time()

    with session_factory() as db:
        invoice_ids = InvoiceRepository(db).overdue_installment_invoice_ids(today)

    result = DelinquencyBatchResult(scanned=len(invoice_ids))

    for invoice_id in invoice_ids:
        try:
            with session_factory() as db, db.begin():
                penalty_applied, removal_applied = _process_invoice(db, invoice_id, today, resolver_factory(db))
        except Exception as e:
            result.errors += 1
            logger.error(f"Delinquency processing failed: {e}", extra={"invoice_id": invoice_id})
            continue

        if penalty_applied:
            result.penalties_applied += 1
        if removal_applied:
            result.removals_applied += 1

    duration = time.time() - start_time
    job_duration_histogram.labels(job="installment_delinquency").observe(duration)
    record_delinquency(result.penalties_applied, result.removals_applied, result.errors)
    log_job_summary(
        "installment_delinquency",
        {
            "scanned": result.scanned,
            "penalties_applied": result.penalties_applied,
            "removals_applied": result.removals_applied,
            "errors": result.errors,
        },
        duration * 1000,
    )
    return result
