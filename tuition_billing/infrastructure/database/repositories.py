"""Data access layer for billing, enrollment and settings entities"""

import uuid
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from tuition_billing.infrastructure.database.models import (
    ClassEnrollment,
    InstallmentProfile,
    Invoice,
    InvoiceLineItem,
    InvoiceStudent,
    OutboxTask,
    Payment,
    Reservation,
    ScheduledInstallment,
    SchoolClass,
    Student,
    SystemSetting,
)
from tuition_billing.domain.models import (
    EnrollmentStatus,
    InvoiceStatus,
    LineItem,
    OutboxStatus,
    PaymentStatus,
    PromoTerms,
    ScheduleStatus,
)


class InvoiceRepository:
    """Repository for invoices, their line items and student links"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, invoice_id: int, lock: bool = False) -> Optional[Invoice]:
        """Fetch invoice, optionally row-locked for the rest of the transaction"""
        query = self.db.query(Invoice).filter(Invoice.id == invoice_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def line_items(self, invoice_id: int) -> List[LineItem]:
        rows = self.db.query(InvoiceLineItem).filter(InvoiceLineItem.invoice_id == invoice_id).all()
        return [
            LineItem(
                amount_cents=row.amount_cents or 0,
                discount_cents=row.discount_cents or 0,
                penalty_cents=row.penalty_cents or 0,
                tax_percentage=row.tax_percentage,
            )
            for row in rows
        ]

    def completed_payment_amounts(self, invoice_id: int) -> List[int]:
        rows = (
            self.db.query(Payment.payable_amount_cents)
            .filter(Payment.invoice_id == invoice_id, Payment.status == PaymentStatus.COMPLETED)
            .all()
        )
        return [amount for (amount,) in rows]

    def create_invoice(
        self,
        branch_id: Optional[int],
        amount_cents: int,
        issue_date: date,
        due_date: date,
        remarks: Optional[str] = None,
        installment_profile_id: Optional[int] = None,
        promo_id: Optional[int] = None,
    ) -> Invoice:
        """Persist invoice and name it INV-{id} once the id is known"""
        invoice = Invoice(
            description="TEMP",
            branch_id=branch_id,
            amount_cents=amount_cents,
            status=InvoiceStatus.UNPAID,
            remarks=remarks,
            issue_date=issue_date,
            due_date=due_date,
            installment_profile_id=installment_profile_id,
            promo_id=promo_id,
        )
        self.db.add(invoice)
        self.db.flush()  # Get ID without committing
        invoice.description = f"INV-{invoice.id}"
        return invoice

    def add_line_item(
        self,
        invoice_id: int,
        description: str,
        amount_cents: int = 0,
        discount_cents: int = 0,
        penalty_cents: int = 0,
        tax_percentage: Optional[float] = None,
    ) -> InvoiceLineItem:
        item = InvoiceLineItem(
            invoice_id=invoice_id,
            description=description,
            amount_cents=amount_cents,
            discount_cents=discount_cents,
            penalty_cents=penalty_cents,
            tax_percentage=tax_percentage,
        )
        self.db.add(item)
        self.db.flush()
        return item

    def link_student(self, invoice_id: int, student_id: int) -> None:
        self.db.add(InvoiceStudent(invoice_id=invoice_id, student_id=student_id))
        self.db.flush()

    def is_student_linked(self, invoice_id: int, student_id: int) -> bool:
        return (
            self.db.query(InvoiceStudent.id)
            .filter(InvoiceStudent.invoice_id == invoice_id, InvoiceStudent.student_id == student_id)
            .first()
            is not None
        )

    def count_paid_installments(self, profile_id: int, exclude_invoice_id: Optional[int]) -> int:
        """Paid invoices linked to a profile; the downpayment is not a phase"""
        query = self.db.query(func.count(Invoice.id)).filter(
            Invoice.installment_profile_id == profile_id,
            Invoice.status == InvoiceStatus.PAID,
        )
        if exclude_invoice_id is not None:
            query = query.filter(Invoice.id != exclude_invoice_id)
        return query.scalar() or 0

    def overdue_installment_invoice_ids(self, today: date) -> List[int]:
        """Installment-linked invoices past due and not yet settled or cancelled"""
        rows = (
            self.db.query(Invoice.id)
            .filter(
                Invoice.installment_profile_id.isnot(None),
                Invoice.status.notin_([InvoiceStatus.PAID, InvoiceStatus.CANCELLED]),
                Invoice.due_date.isnot(None),
                Invoice.due_date < today,
            )
            .order_by(Invoice.due_date, Invoice.id)
            .all()
        )
        return [invoice_id for (invoice_id,) in rows]

    def overdue_reminder_candidates(self, today: date, limit: int) -> List[int]:
        """Invoice-student links past due that have never been reminded and have an email on file"""
        rows = (
            self.db.query(InvoiceStudent.id)
            .join(Invoice, InvoiceStudent.invoice_id == Invoice.id)
            .join(Student, InvoiceStudent.student_id == Student.id)
            .filter(
                InvoiceStudent.overdue_reminder_sent_at.is_(None),
                Invoice.status.notin_([InvoiceStatus.PAID, InvoiceStatus.CANCELLED]),
                Invoice.due_date.isnot(None),
                Invoice.due_date < today,
                Student.email.isnot(None),
                func.trim(Student.email) != "",
            )
            .order_by(Invoice.due_date, InvoiceStudent.id)
            .limit(limit)
            .all()
        )
        return [link_id for (link_id,) in rows]

    def lock_unreminded_link(self, link_id: int) -> Optional[InvoiceStudent]:
        return (
            self.db.query(InvoiceStudent)
            .filter(InvoiceStudent.id == link_id, InvoiceStudent.overdue_reminder_sent_at.is_(None))
            .with_for_update(skip_locked=True)
            .first()
        )


class PaymentRepository:
    """Repository for payments"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, payment_id: int) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.id == payment_id).first()

    def add(self, payment: Payment) -> Payment:
        self.db.add(payment)
        self.db.flush()
        return payment

    def delete(self, payment: Payment) -> None:
        self.db.delete(payment)
        self.db.flush()


class InstallmentRepository:
    """Repository for installment profiles and their schedule rows"""

    def __init__(self, db: Session):
        self.db = db

    def get_profile(self, profile_id: int) -> Optional[InstallmentProfile]:
        return self.db.query(InstallmentProfile).filter(InstallmentProfile.id == profile_id).first()

    def get_profile_by_downpayment(self, invoice_id: int) -> Optional[InstallmentProfile]:
        return (
            self.db.query(InstallmentProfile)
            .filter(InstallmentProfile.downpayment_invoice_id == invoice_id)
            .first()
        )

    def _due_filters(self, today: Optional[date]) -> list:
        filters = [
            ScheduledInstallment.status != ScheduleStatus.GENERATED,
            InstallmentProfile.is_active.is_(True),
            or_(
                InstallmentProfile.total_phases.is_(None),
                InstallmentProfile.generated_count < InstallmentProfile.total_phases,
            ),
            or_(
                InstallmentProfile.downpayment_invoice_id.is_(None),
                InstallmentProfile.downpayment_paid.is_(True),
            ),
        ]
        if today is not None:
            filters.append(ScheduledInstallment.next_generation_date <= today)
        return filters

    def due_schedules(self, today: date) -> List[tuple[int, int]]:
        """(schedule_id, student_id) of rows whose next generation date has arrived, oldest first"""
        rows = (
            self.db.query(ScheduledInstallment.id, InstallmentProfile.student_id)
            .join(InstallmentProfile, ScheduledInstallment.profile_id == InstallmentProfile.id)
            .filter(*self._due_filters(today))
            .order_by(ScheduledInstallment.next_generation_date, ScheduledInstallment.id)
            .all()
        )
        return [(schedule_id, student_id) for schedule_id, student_id in rows]

    def lock_generatable_schedule(self, schedule_id: int, today: Optional[date]) -> Optional[ScheduledInstallment]:
        """
        Re-read a schedule row under FOR UPDATE SKIP LOCKED and re-check the due predicate.

        Returns None when another worker holds the row or it is no longer generatable.
        Passing today=None skips the date condition (immediate first-installment generation).
        """
        return (
            self.db.query(ScheduledInstallment)
            .join(InstallmentProfile, ScheduledInstallment.profile_id == InstallmentProfile.id)
            .filter(ScheduledInstallment.id == schedule_id, *self._due_filters(today))
            .with_for_update(skip_locked=True, of=ScheduledInstallment)
            .first()
        )

    def create_schedule(
        self,
        profile_id: int,
        scheduled_date: date,
        next_generation_date: date,
        next_invoice_month: Optional[date],
        amount_cents: int,
        frequency: str,
    ) -> ScheduledInstallment:
        row = ScheduledInstallment(
            profile_id=profile_id,
            scheduled_date=scheduled_date,
            status=ScheduleStatus.PENDING,
            next_generation_date=next_generation_date,
            next_invoice_month=next_invoice_month,
            amount_cents=amount_cents,
            frequency=frequency,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def open_schedule(self, profile_id: int) -> Optional[ScheduledInstallment]:
        """The profile's schedule row that can still generate, if any"""
        return (
            self.db.query(ScheduledInstallment)
            .filter(
                ScheduledInstallment.profile_id == profile_id,
                ScheduledInstallment.status != ScheduleStatus.GENERATED,
            )
            .order_by(ScheduledInstallment.id)
            .first()
        )

    def earliest_pending_schedule(self, profile_id: int) -> Optional[ScheduledInstallment]:
        return (
            self.db.query(ScheduledInstallment)
            .filter(
                ScheduledInstallment.profile_id == profile_id,
                ScheduledInstallment.status == ScheduleStatus.PENDING,
            )
            .order_by(ScheduledInstallment.scheduled_date, ScheduledInstallment.id)
            .first()
        )

    def delete_schedule(self, row: ScheduledInstallment) -> None:
        self.db.delete(row)
        self.db.flush()

    def promo_terms(self, profile: InstallmentProfile) -> Optional[PromoTerms]:
        promo = profile.promo
        if promo is None:
            return None
        return PromoTerms(
            name=promo.name,
            promo_type=promo.promo_type,
            discount_percentage=promo.discount_percentage,
            discount_amount_cents=promo.discount_amount_cents,
            merchandise=[(m.merchandise_name, m.quantity) for m in promo.merchandise],
        )


class EnrollmentRepository:
    """Repository for per-phase class enrollment rows"""

    def __init__(self, db: Session):
        self.db = db

    def class_phase_count(self, class_id: int) -> Optional[int]:
        row = self.db.query(SchoolClass.number_of_phases).filter(SchoolClass.id == class_id).first()
        return row[0] if row else None

    def class_exists(self, class_id: int) -> bool:
        return self.db.query(SchoolClass.id).filter(SchoolClass.id == class_id).first() is not None

    def has_any(self, student_id: int, class_id: int) -> bool:
        return (
            self.db.query(ClassEnrollment.id)
            .filter(ClassEnrollment.student_id == student_id, ClassEnrollment.class_id == class_id)
            .first()
            is not None
        )

    def highest_phase(self, student_id: int, class_id: int) -> Optional[int]:
        """Highest phase ever recorded for the pair; Removed rows still count"""
        return (
            self.db.query(func.max(ClassEnrollment.phase_number))
            .filter(ClassEnrollment.student_id == student_id, ClassEnrollment.class_id == class_id)
            .scalar()
        )

    def active_phase_exists(self, student_id: int, class_id: int, phase_number: int) -> bool:
        return (
            self.db.query(ClassEnrollment.id)
            .filter(
                ClassEnrollment.student_id == student_id,
                ClassEnrollment.class_id == class_id,
                ClassEnrollment.phase_number == phase_number,
                ClassEnrollment.enrollment_status == EnrollmentStatus.ACTIVE,
            )
            .first()
            is not None
        )

    def active_rows(self, student_id: int, class_id: int) -> List[ClassEnrollment]:
        return (
            self.db.query(ClassEnrollment)
            .filter(
                ClassEnrollment.student_id == student_id,
                ClassEnrollment.class_id == class_id,
                ClassEnrollment.enrollment_status == EnrollmentStatus.ACTIVE,
            )
            .order_by(ClassEnrollment.phase_number)
            .all()
        )

    def enroll(
        self,
        student_id: int,
        class_id: int,
        phase_number: int,
        enrolled_by: str,
        source_invoice_id: Optional[int],
    ) -> ClassEnrollment:
        row = ClassEnrollment(
            student_id=student_id,
            class_id=class_id,
            phase_number=phase_number,
            enrollment_status=EnrollmentStatus.ACTIVE,
            enrolled_by=enrolled_by,
            source_invoice_id=source_invoice_id,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def remove_active(self, student_id: int, class_id: int, reason: str, removed_by: str, removed_at: datetime) -> int:
        """Mark every Active row of the pair Removed; returns rows changed"""
        rows = self.active_rows(student_id, class_id)
        for row in rows:
            row.enrollment_status = EnrollmentStatus.REMOVED
            row.removed_at = removed_at
            row.removed_reason = reason
            row.removed_by = removed_by
        self.db.flush()
        return len(rows)

    def _delete_all(self, rows: Iterable[ClassEnrollment]) -> int:
        count = 0
        for row in rows:
            self.db.delete(row)
            count += 1
        self.db.flush()
        return count

    def delete_by_source_invoice(self, invoice_id: int) -> int:
        rows = self.db.query(ClassEnrollment).filter(ClassEnrollment.source_invoice_id == invoice_id).all()
        return self._delete_all(rows)

    def delete_legacy_in_window(self, student_id: int, class_id: int, start: datetime, end: datetime) -> int:
        """Delete the pair's rows with no source invoice enrolled inside [start, end]"""
        rows = (
            self.db.query(ClassEnrollment)
            .filter(
                ClassEnrollment.student_id == student_id,
                ClassEnrollment.class_id == class_id,
                ClassEnrollment.source_invoice_id.is_(None),
                ClassEnrollment.enrolled_at >= start,
                ClassEnrollment.enrolled_at <= end,
            )
            .all()
        )
        return self._delete_all(rows)

    def delete_for(self, student_id: int, class_id: int, phase_number: Optional[int] = None) -> int:
        query = self.db.query(ClassEnrollment).filter(
            ClassEnrollment.student_id == student_id,
            ClassEnrollment.class_id == class_id,
        )
        if phase_number is not None:
            query = query.filter(ClassEnrollment.phase_number == phase_number)
        return self._delete_all(query.all())


class ReservationRepository:
    """Repository for class reservations"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_invoice(self, invoice_id: int) -> Optional[Reservation]:
        return self.db.query(Reservation).filter(Reservation.invoice_id == invoice_id).first()


class SettingsRepository:
    """Repository for global and branch-scoped system settings"""

    def __init__(self, db: Session):
        self.db = db

    def rows_by_key(self, keys: List[str], branch_id: Optional[int]) -> Dict[str, SystemSetting]:
        """Rows for the given scope only; branch_id None selects global defaults"""
        query = self.db.query(SystemSetting).filter(SystemSetting.setting_key.in_(keys))
        if branch_id is None:
            query = query.filter(SystemSetting.branch_id.is_(None))
        else:
            query = query.filter(SystemSetting.branch_id == branch_id)
        return {row.setting_key: row for row in query.all()}

    def upsert(
        self,
        key: str,
        stored_value: str,
        setting_type: str,
        category: Optional[str],
        description: Optional[str],
        branch_id: Optional[int],
        updated_by: Optional[str],
        updated_at: datetime,
    ) -> SystemSetting:
        row = self.rows_by_key([key], branch_id).get(key)
        if row is None:
            row = SystemSetting(setting_key=key, branch_id=branch_id)
            self.db.add(row)

        row.setting_value = stored_value
        row.setting_type = setting_type
        row.category = category
        row.description = description
        row.updated_by = updated_by
        row.updated_at = updated_at
        self.db.flush()
        return row


class OutboxRepository:
    """Repository for post-commit outbox tasks"""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, task_type: str, payload: Dict[str, Any]) -> OutboxTask:
        task = OutboxTask(task_type=task_type, payload=payload, status=OutboxStatus.PENDING, attempts=0)
        self.db.add(task)
        self.db.flush()
        return task

    def pending_ids(self, limit: int) -> List[uuid.UUID]:
        rows = (
            self.db.query(OutboxTask.id)
            .filter(OutboxTask.status == OutboxStatus.PENDING)
            .order_by(OutboxTask.created_at)
            .limit(limit)
            .all()
        )
        return [task_id for (task_id,) in rows]

    def lock(self, task_id: uuid.UUID) -> Optional[OutboxTask]:
        return (
            self.db.query(OutboxTask)
            .filter(OutboxTask.id == task_id, OutboxTask.status == OutboxStatus.PENDING)
            .with_for_update(skip_locked=True)
            .first()
        )
