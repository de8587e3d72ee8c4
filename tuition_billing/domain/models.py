"""Domain models - pure Python enums and dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional


class InvoiceStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"
    CANCELLED = "Cancelled"


class PaymentStatus(str, Enum):
    COMPLETED = "Completed"
    PENDING = "Pending"
    CANCELLED = "Cancelled"


class ScheduleStatus(str, Enum):
    """Lifecycle of a scheduled installment row.

    PENDING: created at downpayment settlement, first invoice not generated yet
    SCHEDULED: at least one invoice generated, due again on next_generation_date
    GENERATED: phase limit reached, row is final
    """

    PENDING = "Pending"
    SCHEDULED = "Scheduled"
    GENERATED = "Generated"


class EnrollmentStatus(str, Enum):
    ACTIVE = "Active"
    REMOVED = "Removed"


class ReservationStatus(str, Enum):
    RESERVED = "Reserved"
    FEE_PAID = "Fee Paid"
    UPGRADED = "Upgraded"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"


class PromoType(str, Enum):
    PERCENTAGE_DISCOUNT = "percentage_discount"
    FIXED_DISCOUNT = "fixed_discount"
    FREE_MERCHANDISE = "free_merchandise"
    COMBINED = "combined"


class PromoApplyScope(str, Enum):
    DOWNPAYMENT = "downpayment"
    MONTHLY = "monthly"
    BOTH = "both"


class SettingScope(str, Enum):
    BRANCH = "branch"
    GLOBAL = "global"
    DEFAULT = "default"


class PaymentAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass
class LineItem:
    """Invoice line item amounts used for ledger derivation"""

    amount_cents: int
    discount_cents: int = 0
    penalty_cents: int = 0
    tax_percentage: Optional[float] = None


@dataclass
class LedgerTotals:
    """Financial truth for one invoice derived from line items and payments"""

    original_cents: int
    total_paid_cents: int
    remaining_cents: int


@dataclass
class PromoTerms:
    """Promo definition as seen by the generation engine"""

    name: str
    promo_type: PromoType
    discount_percentage: Optional[float] = None
    discount_amount_cents: Optional[int] = None
    merchandise: List[tuple[str, int]] = field(default_factory=list)  # (name, quantity)


@dataclass
class PromoApplication:
    """Outcome of applying a promo to one billing cycle"""

    discount_cents: int
    discount_description: Optional[str]
    merchandise_descriptions: List[str]

    @property
    def applied(self) -> bool:
        return self.discount_cents > 0 or bool(self.merchandise_descriptions)


@dataclass
class EffectiveSetting:
    """Setting value resolved through branch -> global -> default precedence"""

    key: str
    value: Any
    scope: SettingScope
    type: str
    category: Optional[str] = None
    description: Optional[str] = None


@dataclass
class PaymentEvent:
    """Payment write that triggers settlement"""

    invoice_id: int
    student_id: int
    action: PaymentAction


@dataclass
class SettlementOutcome:
    """What a settlement pass changed"""

    invoice_id: int
    previous_status: InvoiceStatus
    status: InvoiceStatus
    remaining_cents: int
    enrolled_phases: List[int] = field(default_factory=list)
    unenrolled_count: int = 0
    reservation_status: Optional[ReservationStatus] = None
    downpayment_settled: bool = False
    downpayment_reverted: bool = False
    outbox_task_ids: List[str] = field(default_factory=list)


@dataclass
class GenerationBatchResult:
    """Summary of a recurring generation run"""

    total_due: int
    processed: int
    errors: int
    details: Dict[str, List[Dict[str, Any]]]


@dataclass
class DelinquencyBatchResult:
    """Summary of a delinquency run"""

    scanned: int = 0
    penalties_applied: int = 0
    removals_applied: int = 0
    errors: int = 0


@dataclass
class DrainResult:
    """Summary of an outbox drain pass"""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass
class ReminderBatchResult:
    """Summary of an overdue reminder run"""

    candidates: int = 0
    sent: int = 0
    errors: int = 0
