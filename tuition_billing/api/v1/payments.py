"""POST/PUT/DELETE /v1/payments - payment writes with invoice settlement"""

import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session, sessionmaker

from tuition_billing.api.v1.schemas import (
    PaymentCreateRequest,
    PaymentResponse,
    PaymentUpdateRequest,
    SettlementSchema,
)
from tuition_billing.api.dependencies import get_notification_client, get_request_id
from tuition_billing.infrastructure.database.session import get_db, get_session_factory
from tuition_billing.infrastructure.clients.notifications import NotificationClient
from tuition_billing.domain.exceptions import NotFoundError, PaymentValidationError
from tuition_billing.domain.models import PaymentAction, SettlementOutcome
from tuition_billing.services.outbox import drain_outbox
from tuition_billing.services.payments import PaymentService
from tuition_billing.infrastructure.observability.metrics import record_settlement
from tuition_billing.infrastructure.observability.logging import log_settlement

router = APIRouter()


def _settlement_schema(outcome: SettlementOutcome) -> SettlementSchema:
    return SettlementSchema(
        invoice_id=outcome.invoice_id,
        previous_status=outcome.previous_status,
        status=outcome.status,
        remaining_cents=outcome.remaining_cents,
        enrolled_phases=outcome.enrolled_phases,
        unenrolled_count=outcome.unenrolled_count,
        reservation_status=outcome.reservation_status,
        downpayment_settled=outcome.downpayment_settled,
        downpayment_reverted=outcome.downpayment_reverted,
    )


def _after_commit(
    outcome: SettlementOutcome,
    action: PaymentAction,
    request_id: str,
    background_tasks: BackgroundTasks,
    session_factory: sessionmaker,
    notification_client: NotificationClient,
    student_id: int,
) -> None:
    """Metrics, logs and post-commit background work for a settled payment"""
    record_settlement(outcome.previous_status, outcome.status)
    log_settlement(
        request_id,
        outcome.invoice_id,
        action.value,
        outcome.previous_status.value,
        outcome.status.value,
        outcome.remaining_cents,
    )

    if outcome.outbox_task_ids:
        background_tasks.add_task(drain_outbox, session_factory)

    background_tasks.add_task(
        notification_client.deliver_receipt,
        {
            "event": f"PAYMENT_{action.value.upper()}",
            "invoice_id": outcome.invoice_id,
            "student_id": student_id,
            "invoice_status": outcome.status.value,
            "remaining_cents": outcome.remaining_cents,
        },
    )


def _handle_error(db: Session, e: Exception, request_id: str):
    db.rollback()
    if isinstance(e, NotFoundError):
        logging.warning(f"Not found: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PaymentValidationError):
        logging.warning(f"Payment rejected: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail=str(e))
    logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
    raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/payments", response_model=PaymentResponse, status_code=201)
def create_payment(
    request_body: PaymentCreateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """
    Record a payment and settle its invoice.

    Flow:
    1. Validate the student is linked to the invoice
    2. Insert the payment and re-derive the invoice balance/status
    3. Apply transition side effects (enrollment, reservation, downpayment)
    4. Commit, then drain queued outbox work and send the receipt in the background
    """
    request_id = get_request_id(request)

    try:
        payment, outcome = PaymentService(db).create_payment(**request_body.model_dump())
        db.commit()
    except Exception as e:
        _handle_error(db, e, request_id)

    _after_commit(
        outcome, PaymentAction.CREATED, request_id, background_tasks, session_factory, notification_client,
        payment.student_id,
    )
    return PaymentResponse(
        payment_id=payment.id,
        invoice_id=payment.invoice_id,
        payable_amount_cents=payment.payable_amount_cents,
        status=payment.status,
        settlement=_settlement_schema(outcome),
    )


@router.put("/payments/{payment_id}", response_model=PaymentResponse)
def update_payment(
    payment_id: int,
    request_body: PaymentUpdateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """Amend a payment and re-settle its invoice"""
    request_id = get_request_id(request)

    try:
        payment, outcome = PaymentService(db).update_payment(payment_id, request_body.model_dump(exclude_unset=True))
        db.commit()
    except Exception as e:
        _handle_error(db, e, request_id)

    _after_commit(
        outcome, PaymentAction.UPDATED, request_id, background_tasks, session_factory, notification_client,
        payment.student_id,
    )
    return PaymentResponse(
        payment_id=payment.id,
        invoice_id=payment.invoice_id,
        payable_amount_cents=payment.payable_amount_cents,
        status=payment.status,
        settlement=_settlement_schema(outcome),
    )


@router.delete("/payments/{payment_id}", response_model=PaymentResponse)
def delete_payment(
    payment_id: int,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """Delete a payment and re-settle its invoice"""
    request_id = get_request_id(request)

    try:
        service = PaymentService(db)
        student_id = service.get_payment(payment_id).student_id
        outcome = service.delete_payment(payment_id)
        db.commit()
    except Exception as e:
        _handle_error(db, e, request_id)

    _after_commit(
        outcome, PaymentAction.DELETED, request_id, background_tasks, session_factory, notification_client,
        student_id,
    )
    return PaymentResponse(invoice_id=outcome.invoice_id, settlement=_settlement_schema(outcome))
