"""Installment job triggers and profile lookup"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, sessionmaker

from tuition_billing.api.v1.schemas import DelinquencyResponse, GenerationResponse, ProfileResponse, ScheduleSchema
from tuition_billing.infrastructure.database.session import get_db, get_session_factory
from tuition_billing.infrastructure.database.repositories import InstallmentRepository
from tuition_billing.services.delinquency import process_installment_delinquencies
from tuition_billing.services.generation import process_due_installment_invoices

router = APIRouter()


@router.post("/installments/process-due", response_model=GenerationResponse)
def process_due(
    today: Optional[date] = Query(None, description="Business date to run as; defaults to today"),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """Run recurring invoice generation for every due schedule row"""
    result = process_due_installment_invoices(today=today, session_factory=session_factory)
    return GenerationResponse(
        total_due=result.total_due,
        processed=result.processed,
        errors=result.errors,
        details=result.details,
    )


@router.post("/installments/delinquencies/process", response_model=DelinquencyResponse)
def process_delinquencies(
    today: Optional[date] = Query(None, description="Business date to run as; defaults to today"),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """Apply late penalties and delinquency removals to overdue installment invoices"""
    result = process_installment_delinquencies(today=today, session_factory=session_factory)
    return DelinquencyResponse(
        scanned=result.scanned,
        penalties_applied=result.penalties_applied,
        removals_applied=result.removals_applied,
        errors=result.errors,
    )


@router.get("/installments/profiles/{profile_id}", response_model=ProfileResponse)
def get_profile(profile_id: int, db: Session = Depends(get_db)):
    """
    Retrieve an installment profile with its schedule rows.

    Returns:
        Profile billing state and next-due markers
    """
    profile = InstallmentRepository(db).get_profile(profile_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Installment profile not found")

    schedule = [
        ScheduleSchema(
            installment_id=row.id,
            status=row.status,
            scheduled_date=row.scheduled_date,
            next_generation_date=row.next_generation_date,
            next_invoice_month=row.next_invoice_month,
            amount_cents=row.amount_cents,
            frequency=row.frequency,
        )
        for row in profile.schedule
    ]

    return ProfileResponse(
        profile_id=profile.id,
        student_id=profile.student_id,
        class_id=profile.class_id,
        description=profile.description,
        amount_cents=profile.amount_cents,
        frequency=profile.frequency,
        total_phases=profile.total_phases,
        generated_count=profile.generated_count,
        is_active=profile.is_active,
        downpayment_paid=profile.downpayment_paid,
        downpayment_invoice_id=profile.downpayment_invoice_id,
        promo_months_applied=profile.promo_months_applied,
        promo_months_to_apply=profile.promo_months_to_apply,
        schedule=schedule,
    )
