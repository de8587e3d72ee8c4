"""Invoice ledger evaluation against persisted line items and payments"""

from sqlalchemy.orm import Session
from tuition_billing.domain.exceptions import NotFoundError
from tuition_billing.domain.ledger import compute_totals, derive_status
from tuition_billing.domain.models import InvoiceStatus, LedgerTotals
from tuition_billing.infrastructure.database.models import Invoice
from tuition_billing.infrastructure.database.repositories import InvoiceRepository


def compute_ledger(db: Session, invoice_id: int) -> LedgerTotals:
    """
    Derive an invoice's totals from its current rows.

    Pending writes in the session are flushed first, so the result reflects
    line items and payments added earlier in the same transaction.
    """
    db.flush()
    repo = InvoiceRepository(db)
    return compute_totals(repo.line_items(invoice_id), repo.completed_payment_amounts(invoice_id))


def refresh_invoice(db: Session, invoice: Invoice) -> tuple[LedgerTotals, InvoiceStatus]:
    """Write the derived remaining balance and status onto the invoice row"""
    if invoice is None:
        raise NotFoundError("Invoice not found")

    totals = compute_ledger(db, invoice.id)
    status = derive_status(totals)
    invoice.amount_cents = totals.remaining_cents
    invoice.status = status
    db.flush()
    return totals, status
