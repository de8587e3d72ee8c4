"""One-time overdue reminders for unpaid invoices"""

import asyncio
import logging
import time
from datetime import date
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session, sessionmaker
from tuition_billing.config import settings
from tuition_billing.domain.models import InvoiceStatus, ReminderBatchResult
from tuition_billing.infrastructure.clients.notifications import NotificationClient
from tuition_billing.infrastructure.database.models import Branch, Invoice, Student
from tuition_billing.infrastructure.database.repositories import InvoiceRepository
from tuition_billing.infrastructure.database.session import SessionLocal
from tuition_billing.infrastructure.observability.logging import log_job_summary
from tuition_billing.infrastructure.observability.metrics import job_duration_histogram, record_overdue_reminders
from tuition_billing.services.ledger import compute_ledger
from tuition_billing.utils.date_utils import business_today, utcnow

logger = logging.getLogger(__name__)

OVERDUE_REMINDER_EVENT = "OVERDUE_REMINDER"


def _reminder_payload(db: Session, invoice: Invoice, student: Student, remaining_cents: int) -> Dict[str, Any]:
    branch = db.get(Branch, invoice.branch_id) if invoice.branch_id else None
    profile = invoice.profile
    school_class = profile.school_class if profile else None
    return {
        "event": OVERDUE_REMINDER_EVENT,
        "invoice_id": invoice.id,
        "invoice_number": invoice.description or f"INV-{invoice.id}",
        "student_id": student.id,
        "student_name": student.full_name,
        "to": [student.email.strip()],
        "remaining_cents": remaining_cents,
        "due_date": invoice.due_date.isoformat(),
        "class_name": school_class.name if school_class else None,
        "branch_name": branch.name if branch else None,
    }


def _remind(db: Session, link_id: int, client: NotificationClient) -> bool:
    """
    Send the reminder for one locked invoice-student link and mark it.

    Returns False when the link was taken by another run or the invoice no
    longer needs a reminder.
    """
    invoices = InvoiceRepository(db)
    link = invoices.lock_unreminded_link(link_id)
    if link is None:
        return False

    invoice = invoices.get(link.invoice_id)
    if invoice is None or invoice.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
        return False

    student = db.get(Student, link.student_id)
    totals = compute_ledger(db, invoice.id)
    asyncio.run(client.send_overdue_reminder(_reminder_payload(db, invoice, student, totals.remaining_cents)))

    link.overdue_reminder_sent_at = utcnow()
    db.flush()
    logger.info(
        "Overdue reminder sent",
        extra={"invoice_id": invoice.id, "student_id": student.id, "remaining_cents": totals.remaining_cents},
    )
    return True


def process_overdue_reminders(
    today: Optional[date] = None,
    session_factory: Optional[sessionmaker] = None,
    notification_client: Optional[NotificationClient] = None,
    batch_limit: Optional[int] = None,
) -> ReminderBatchResult:
    """
    Remind each student once about every invoice that went past due unpaid.

    Links are taken oldest due date first, up to batch_limit per run. Each
    link runs in its own transaction; the marker is only written after the
    notification service accepted the reminder, so a failed send is retried
    on the next run.
    """
    today = today or business_today()
    session_factory = session_factory or SessionLocal
    client = notification_client or NotificationClient()
    limit = batch_limit or settings.overdue_reminder_batch_limit
    start_time = time.time()

    with session_factory() as db:
        link_ids = InvoiceRepository(db).overdue_reminder_candidates(today, limit)

    result = ReminderBatchResult(candidates=len(link_ids))

    for link_id in link_ids:
        try:
            with session_factory() as db, db.begin():
                sent = _remind(db, link_id, client)
        except Exception as e:
            result.errors += 1
            logger.error(f"Overdue reminder failed: {e}", extra={"invoice_student_id": link_id})
            continue

        if sent:
            result.sent += 1

    duration = time.time() - start_time
    job_duration_histogram.labels(job="overdue_reminders").observe(duration)
    record_overdue_reminders(result.sent, result.errors)
    log_job_summary(
        "overdue_reminders",
        {"candidates": result.candidates, "sent": result.sent, "errors": result.errors},
        duration * 1000,
    )
    return result
