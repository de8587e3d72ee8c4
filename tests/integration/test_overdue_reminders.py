"""Integration tests for one-time overdue invoice reminders"""

from datetime import date, timedelta
from unittest.mock import AsyncMock
from tuition_billing.domain.exceptions import NotificationDeliveryError
from tuition_billing.domain.models import InvoiceStatus
from tuition_billing.infrastructure.database.models import InvoiceStudent
from tuition_billing.services.overdue_reminders import process_overdue_reminders

TODAY = date(2026, 3, 2)
YESTERDAY = TODAY - timedelta(days=1)


def _run(session_factory, notification_client, **kwargs):
    return process_overdue_reminders(
        today=TODAY, session_factory=session_factory, notification_client=notification_client, **kwargs
    )


def _marker(db, invoice, student):
    db.expire_all()
    link = (
        db.query(InvoiceStudent)
        .filter(InvoiceStudent.invoice_id == invoice.id, InvoiceStudent.student_id == student.id)
        .one()
    )
    return link.overdue_reminder_sent_at


def test_reminds_once_per_invoice_student(db, seed, session_factory, notification_client: AsyncMock):
    student = seed.student()
    school_class = seed.school_class()
    branch = seed.branch()
    profile = seed.profile(student, school_class=school_class)
    invoice = seed.invoice(student, due_date=YESTERDAY, profile=profile, branch=branch, description="INV-42")
    seed.payment(invoice, student, 30000)
    db.commit()

    first = _run(session_factory, notification_client)

    assert (first.candidates, first.sent, first.errors) == (1, 1, 0)
    payload = notification_client.send_overdue_reminder.await_args.args[0]
    assert payload["event"] == "OVERDUE_REMINDER"
    assert payload["invoice_id"] == invoice.id
    assert payload["invoice_number"] == "INV-42"
    assert payload["to"] == ["student@example.com"]
    assert payload["remaining_cents"] == 70000
    assert payload["due_date"] == YESTERDAY.isoformat()
    assert payload["class_name"] == school_class.name
    assert payload["branch_name"] == branch.name
    assert _marker(db, invoice, student) is not None

    second = _run(session_factory, notification_client)

    assert second.candidates == 0
    notification_client.send_overdue_reminder.assert_awaited_once()


def test_skips_settled_future_and_unreachable(db, seed, session_factory, notification_client: AsyncMock):
    student = seed.student()
    no_email = seed.student("Jose Rizal")
    no_email.email = "  "
    seed.invoice(student, due_date=YESTERDAY, status=InvoiceStatus.PAID)
    seed.invoice(student, due_date=YESTERDAY, status=InvoiceStatus.CANCELLED)
    seed.invoice(student, due_date=TODAY)
    seed.invoice(no_email, due_date=YESTERDAY)
    db.commit()

    result = _run(session_factory, notification_client)

    assert result.candidates == 0
    notification_client.send_overdue_reminder.assert_not_awaited()


def test_failed_send_left_unmarked_for_next_run(db, seed, session_factory, notification_client: AsyncMock):
    student = seed.student()
    invoice = seed.invoice(student, due_date=YESTERDAY)
    db.commit()
    notification_client.send_overdue_reminder.side_effect = NotificationDeliveryError("service unavailable")

    failed = _run(session_factory, notification_client)

    assert (failed.sent, failed.errors) == (0, 1)
    assert _marker(db, invoice, student) is None

    notification_client.send_overdue_reminder.side_effect = None
    retried = _run(session_factory, notification_client)

    assert (retried.sent, retried.errors) == (1, 0)
    assert _marker(db, invoice, student) is not None


def test_batch_limit_takes_oldest_due_first(db, seed, session_factory, notification_client: AsyncMock):
    student = seed.student()
    newest = seed.invoice(student, due_date=TODAY - timedelta(days=1))
    oldest = seed.invoice(student, due_date=TODAY - timedelta(days=10))
    middle = seed.invoice(student, due_date=TODAY - timedelta(days=5))
    db.commit()

    result = _run(session_factory, notification_client, batch_limit=2)

    assert (result.candidates, result.sent) == (2, 2)
    reminded = [call.args[0]["invoice_id"] for call in notification_client.send_overdue_reminder.await_args_list]
    assert reminded == [oldest.id, middle.id]
    assert _marker(db, newest, student) is None


def test_each_linked_student_reminded(db, seed, session_factory, notification_client: AsyncMock):
    student = seed.student()
    sibling = seed.student("Ana Santos")
    invoice = seed.invoice(student, due_date=YESTERDAY)
    db.add(InvoiceStudent(invoice_id=invoice.id, student_id=sibling.id))
    db.commit()

    result = _run(session_factory, notification_client)

    assert result.sent == 2
    assert _marker(db, invoice, student) is not None
    assert _marker(db, invoice, sibling) is not None
