"""Recurring installment invoice generation"""

import logging
import time
from datetime import date
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session, sessionmaker
from tuition_billing.domain.exceptions import PhaseLimitReachedError
from tuition_billing.domain.installments import (
    calculate_due_date,
    calculate_next_generation_date,
    calculate_next_invoice_month,
)
from tuition_billing.domain.models import GenerationBatchResult, PromoApplication, ScheduleStatus
from tuition_billing.domain.promos import apply_promo, is_monthly_promo_eligible
from tuition_billing.infrastructure.database.repositories import InstallmentRepository, InvoiceRepository
from tuition_billing.infrastructure.database.session import SessionLocal
from tuition_billing.infrastructure.observability.logging import log_job_summary
from tuition_billing.infrastructure.observability.metrics import job_duration_histogram, record_generation
from tuition_billing.utils.date_utils import business_today

logger = logging.getLogger(__name__)

NO_PROMO = PromoApplication(discount_cents=0, discount_description=None, merchandise_descriptions=[])


def generate_installment_invoice(
    db: Session,
    schedule_id: int,
    today: date,
    require_due: bool = True,
) -> Optional[Dict[str, Any]]:
    """
    Materialize the next invoice for one schedule row inside the caller's transaction.

    The row is re-read under a skip-locked row lock and the due predicate is
    re-checked; None is returned when it is held elsewhere or no longer
    generatable. require_due=False ignores next_generation_date so the first
    installment can be billed right after its downpayment settles.

    Raises:
        PhaseLimitReachedError: the profile already has total_phases paid installments
    """
    installments = InstallmentRepository(db)
    invoices = InvoiceRepository(db)

    row = installments.lock_generatable_schedule(schedule_id, today if require_due else None)
    if row is None:
        return None

    profile = row.profile
    frequency = row.frequency or profile.frequency
    base_cents = row.amount_cents if row.amount_cents is not None else profile.amount_cents

    # 1. Promo for this cycle
    promo = NO_PROMO
    if profile.promo_id and is_monthly_promo_eligible(
        profile.promo_apply_scope, profile.promo_months_applied, profile.promo_months_to_apply
    ):
        terms = installments.promo_terms(profile)
        if terms is not None:
            promo = apply_promo(terms, base_cents)

    # 2. Dates
    issue_date = row.next_generation_date
    due_date = calculate_due_date(issue_date)

    # 3. Never bill past the phase count, whatever the schedule says
    paid_count = invoices.count_paid_installments(profile.id, exclude_invoice_id=profile.downpayment_invoice_id)
    if profile.total_phases is not None and paid_count >= profile.total_phases:
        raise PhaseLimitReachedError(
            f"Phase limit reached: {paid_count} of {profile.total_phases} installments already paid"
        )

    # 4. Invoice, line items and student link
    invoice = invoices.create_invoice(
        branch_id=profile.branch_id,
        amount_cents=base_cents - promo.discount_cents,
        issue_date=issue_date,
        due_date=due_date,
        remarks=f"Auto-generated from installment invoice: {profile.description or ''}".rstrip(),
        installment_profile_id=profile.id,
        promo_id=profile.promo_id if promo.applied else None,
    )
    invoices.add_line_item(invoice.id, profile.description or "Installment payment", amount_cents=base_cents)
    if promo.discount_cents > 0:
        invoices.add_line_item(invoice.id, promo.discount_description, discount_cents=promo.discount_cents)
    for merchandise_description in promo.merchandise_descriptions:
        invoices.add_line_item(invoice.id, merchandise_description)
    invoices.link_student(invoice.id, profile.student_id)

    # 5. Promo cycle budget
    if promo.applied:
        profile.promo_months_applied = (profile.promo_months_applied or 0) + 1

    # 6. Advance the schedule
    profile.generated_count = (profile.generated_count or 0) + 1
    phase_limit_reached = profile.total_phases is not None and profile.generated_count >= profile.total_phases

    row.scheduled_date = today
    if phase_limit_reached:
        profile.is_active = False
        row.status = ScheduleStatus.GENERATED
    else:
        row.next_invoice_month = calculate_next_invoice_month(
            row.next_invoice_month or row.next_generation_date, frequency
        )
        row.next_generation_date = calculate_next_generation_date(row.next_generation_date, frequency)
        row.status = ScheduleStatus.SCHEDULED

    db.flush()

    logger.info(
        "Installment invoice generated",
        extra={
            "invoice_id": invoice.id,
            "installment_id": row.id,
            "profile_id": profile.id,
            "student_id": profile.student_id,
            "generated_count": profile.generated_count,
            "phase_limit_reached": phase_limit_reached,
        },
    )

    return {
        "installment_id": row.id,
        "invoice_id": invoice.id,
        "invoice_description": invoice.description,
        "student_name": profile.student.full_name if profile.student else None,
        "amount_cents": invoice.amount_cents,
        "next_generation_date": None if phase_limit_reached else row.next_generation_date.isoformat(),
        "next_invoice_month": None
        if phase_limit_reached or row.next_invoice_month is None
        else row.next_invoice_month.isoformat(),
        "generated_count": profile.generated_count,
        "total_phases": profile.total_phases,
        "phase_limit_reached": phase_limit_reached,
    }


def process_due_installment_invoices(
    today: Optional[date] = None,
    session_factory: Optional[sessionmaker] = None,
) -> GenerationBatchResult:
    """
    Generate invoices for every due schedule row.

    Each row runs in its own transaction; a failing row is rolled back and
    reported without stopping the batch. Errors while selecting the batch
    propagate to the caller.
    """
    today = today or business_today()
    session_factory = session_factory or SessionLocal
    start_time = time.time()

    with session_factory() as db:
        candidates = InstallmentRepository(db).due_schedules(today)

    details: Dict[str, list] = {"processed": [], "errors": []}

    for schedule_id, student_id in candidates:
        try:
            with session_factory() as db, db.begin():
                detail = generate_installment_invoice(db, schedule_id, today)
        except Exception as e:
            logger.error(
                f"Installment generation failed: {e}",
                extra={"installment_id": schedule_id, "student_id": student_id},
            )
            details["errors"].append({"installment_id": schedule_id, "student_id": student_id, "error": str(e)})
            continue

        if detail is None:
            logger.info("Schedule row skipped (locked or no longer due)", extra={"installment_id": schedule_id})
            continue

        details["processed"].append(detail)

    result = GenerationBatchResult(
        total_due=len(candidates),
        processed=len(details["processed"]),
        errors=len(details["errors"]),
        details=details,
    )

    duration = time.time() - start_time
    job_duration_histogram.labels(job="installment_invoice_generation").observe(duration)
    record_generation(result.processed, result.errors)
    log_job_summary(
        "installment_invoice_generation",
        {"total_due": result.total_due, "processed": result.processed, "errors": result.errors},
        duration * 1000,
    )
    return result
