"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date
from typing import Any, Dict, List, Optional
from tuition_billing.domain.models import InvoiceStatus, PaymentStatus, ReservationStatus, ScheduleStatus, SettingScope


class PaymentCreateRequest(BaseModel):
    """Request body for POST /v1/payments"""

    invoice_id: int
    student_id: int
    payment_method: str = Field(..., min_length=1)
    payment_type: str = Field(..., min_length=1)
    payable_amount_cents: int = Field(..., gt=0, description="Amount paid in cents")
    issue_date: date
    status: PaymentStatus = PaymentStatus.COMPLETED
    reference_number: Optional[str] = None
    remarks: Optional[str] = None
    created_by: Optional[str] = None


class PaymentUpdateRequest(BaseModel):
    """Request body for PUT /v1/payments/{payment_id}; omitted fields are unchanged"""

    payment_method: Optional[str] = None
    payment_type: Optional[str] = None
    payable_amount_cents: Optional[int] = Field(None, gt=0)
    status: Optional[PaymentStatus] = None
    issue_date: Optional[date] = None
    reference_number: Optional[str] = None
    remarks: Optional[str] = None


class SettlementSchema(BaseModel):
    """What the payment write did to its invoice"""

    invoice_id: int
    previous_status: InvoiceStatus
    status: InvoiceStatus
    remaining_cents: int
    enrolled_phases: List[int] = []
    unenrolled_count: int = 0
    reservation_status: Optional[ReservationStatus] = None
    downpayment_settled: bool = False
    downpayment_reverted: bool = False


class PaymentResponse(BaseModel):
    """Response for payment writes"""

    payment_id: Optional[int] = None
    invoice_id: int
    payable_amount_cents: Optional[int] = None
    status: Optional[PaymentStatus] = None
    settlement: SettlementSchema


class GenerationResponse(BaseModel):
    """Response for POST /v1/installments/process-due"""

    total_due: int
    processed: int
    errors: int
    details: Dict[str, List[Dict[str, Any]]]


class DelinquencyResponse(BaseModel):
    """Response for POST /v1/installments/delinquencies/process"""

    scanned: int
    penalties_applied: int
    removals_applied: int
    errors: int


class ScheduleSchema(BaseModel):
    """Scheduled installment row of a profile"""

    installment_id: int
    status: ScheduleStatus
    scheduled_date: Optional[date] = None
    next_generation_date: date
    next_invoice_month: Optional[date] = None
    amount_cents: Optional[int] = None
    frequency: Optional[str] = None


class ProfileResponse(BaseModel):
    """Response for GET /v1/installments/profiles/{profile_id}"""

    profile_id: int
    student_id: int
    class_id: Optional[int] = None
    description: Optional[str] = None
    amount_cents: int
    frequency: str
    total_phases: Optional[int] = None
    generated_count: int
    is_active: bool
    downpayment_paid: bool
    downpayment_invoice_id: Optional[int] = None
    promo_months_applied: int
    promo_months_to_apply: Optional[int] = None
    schedule: List[ScheduleSchema]


class EffectiveSettingSchema(BaseModel):
    """Resolved value of one setting"""

    value: Any
    scope: SettingScope
    type: str
    category: Optional[str] = None
    description: Optional[str] = None


class EffectiveSettingsResponse(BaseModel):
    """Response for settings reads and writes"""

    branch_id: Optional[int] = None
    settings: Dict[str, EffectiveSettingSchema]


class SettingsBatchRequest(BaseModel):
    """Request body for PUT /v1/settings/batch"""

    scope: SettingScope
    branch_id: Optional[int] = None
    settings: Dict[str, Any] = Field(..., min_length=1)
    updated_by: Optional[str] = None
