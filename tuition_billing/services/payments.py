"""Payment writes and the settlement they trigger"""

import logging
from datetime import date
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from tuition_billing.domain.exceptions import NotFoundError, PaymentValidationError
from tuition_billing.domain.models import InvoiceStatus, PaymentAction, PaymentEvent, PaymentStatus, SettlementOutcome
from tuition_billing.infrastructure.database.models import Payment
from tuition_billing.infrastructure.database.repositories import InvoiceRepository, PaymentRepository
from tuition_billing.services.settlement import apply_payment_settlement

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "payment_method",
    "payment_type",
    "payable_amount_cents",
    "status",
    "issue_date",
    "reference_number",
    "remarks",
)


class PaymentService:
    """
    Create, amend and delete payments inside the caller's transaction.

    Every write is followed by settlement of the affected invoice; the caller
    commits or rolls back both together.
    """

    def __init__(self, db: Session, today: Optional[date] = None):
        self.db = db
        self.today = today
        self.invoices = InvoiceRepository(db)
        self.payments = PaymentRepository(db)

    def _settle(self, payment: Payment, action: PaymentAction) -> SettlementOutcome:
        event = PaymentEvent(invoice_id=payment.invoice_id, student_id=payment.student_id, action=action)
        return apply_payment_settlement(self.db, event, today=self.today)

    def get_payment(self, payment_id: int) -> Payment:
        payment = self.payments.get(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    def create_payment(
        self,
        invoice_id: int,
        student_id: int,
        payment_method: str,
        payment_type: str,
        payable_amount_cents: int,
        issue_date: date,
        status: PaymentStatus = PaymentStatus.COMPLETED,
        reference_number: Optional[str] = None,
        remarks: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> tuple[Payment, SettlementOutcome]:
        """
        Record a payment against an invoice and settle it.

        Raises:
            NotFoundError: invoice does not exist
            PaymentValidationError: non-positive amount, cancelled invoice, or
                student not linked to the invoice
        """
        if payable_amount_cents is None or payable_amount_cents <= 0:
            raise PaymentValidationError("Payable amount must be greater than 0")

        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if invoice.status == InvoiceStatus.CANCELLED:
            raise PaymentValidationError("Cannot record a payment against a cancelled invoice")
        if not self.invoices.is_student_linked(invoice_id, student_id):
            raise PaymentValidationError(f"Student {student_id} is not linked to invoice {invoice_id}")

        payment = self.payments.add(
            Payment(
                invoice_id=invoice_id,
                student_id=student_id,
                branch_id=invoice.branch_id,
                payment_method=payment_method,
                payment_type=payment_type,
                payable_amount_cents=payable_amount_cents,
                status=PaymentStatus(status),
                issue_date=issue_date,
                reference_number=reference_number,
                remarks=remarks,
                created_by=created_by,
            )
        )
        return payment, self._settle(payment, PaymentAction.CREATED)

    def update_payment(self, payment_id: int, changes: Dict[str, Any]) -> tuple[Payment, SettlementOutcome]:
        """Amend a payment's mutable fields and re-settle its invoice"""
        payment = self.get_payment(payment_id)

        for field_name, value in changes.items():
            if field_name not in UPDATABLE_FIELDS:
                raise PaymentValidationError(f"Field {field_name} cannot be updated")
            if field_name == "payable_amount_cents" and (value is None or value <= 0):
                raise PaymentValidationError("Payable amount must be greater than 0")
            if field_name == "status":
                value = PaymentStatus(value)
            setattr(payment, field_name, value)

        self.db.flush()
        return payment, self._settle(payment, PaymentAction.UPDATED)

    def delete_payment(self, payment_id: int) -> SettlementOutcome:
        """Remove a payment and re-settle its invoice"""
        payment = self.get_payment(payment_id)
        event = PaymentEvent(invoice_id=payment.invoice_id, student_id=payment.student_id, action=PaymentAction.DELETED)

        self.payments.delete(payment)
        logger.info("Payment deleted", extra={"payment_id": payment_id, "invoice_id": event.invoice_id})
        return apply_payment_settlement(self.db, event, today=self.today)
