"""SQLAlchemy ORM models for billing, enrollment and settings tables"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    Float,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    Uuid,
    Index,
    UniqueConstraint,
    Enum as SAEnum,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from tuition_billing.domain.models import (
    EnrollmentStatus,
    InvoiceStatus,
    OutboxStatus,
    PaymentStatus,
    PromoApplyScope,
    PromoType,
    ReservationStatus,
    ScheduleStatus,
)

Base = declarative_base()


def _enum(enum_cls):
    """Store the enum's value ("Partially Paid"), not its member name"""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


class Branch(Base):
    __tablename__ = "branch"

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)


class Student(Base):
    __tablename__ = "student"

    id = Column(Integer, primary_key=True)
    full_name = Column(Text, nullable=False)
    email = Column(Text, nullable=True)


class SchoolClass(Base):
    """Class a student enrolls into phase by phase"""

    __tablename__ = "school_class"

    id = Column(Integer, primary_key=True)
    branch_id = Column(Integer, ForeignKey("branch.id"), nullable=True)
    name = Column(Text, nullable=False)
    number_of_phases = Column(Integer, nullable=True)


class Promo(Base):
    __tablename__ = "promo"

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    promo_type = Column(_enum(PromoType), nullable=False)
    discount_percentage = Column(Float, nullable=True)
    discount_amount_cents = Column(BigInteger, nullable=True)

    merchandise = relationship("PromoMerchandise", back_populates="promo", cascade="all, delete-orphan")


class PromoMerchandise(Base):
    __tablename__ = "promo_merchandise"

    id = Column(Integer, primary_key=True)
    promo_id = Column(Integer, ForeignKey("promo.id", ondelete="CASCADE"), nullable=False)
    merchandise_name = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    promo = relationship("Promo", back_populates="merchandise")


class InstallmentProfile(Base):
    """A student's installment payment plan"""

    __tablename__ = "installment_profile"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("student.id"), nullable=False, index=True)
    branch_id = Column(Integer, ForeignKey("branch.id"), nullable=True)
    class_id = Column(Integer, ForeignKey("school_class.id"), nullable=True)
    package_id = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    amount_cents = Column(BigInteger, nullable=False)
    frequency = Column(String(32), nullable=False, default="1 month(s)")
    total_phases = Column(Integer, nullable=True)
    generated_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    first_generation_date = Column(Date, nullable=True)
    first_billing_month = Column(Date, nullable=True)
    downpayment_paid = Column(Boolean, nullable=False, default=False)
    downpayment_invoice_id = Column(Integer, ForeignKey("invoice.id", use_alter=True), nullable=True)
    promo_id = Column(Integer, ForeignKey("promo.id"), nullable=True)
    promo_apply_scope = Column(_enum(PromoApplyScope), nullable=True)
    promo_months_to_apply = Column(Integer, nullable=True)
    promo_months_applied = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    student = relationship("Student")
    school_class = relationship("SchoolClass")
    promo = relationship("Promo")
    schedule = relationship("ScheduledInstallment", back_populates="profile", cascade="all, delete-orphan")


class ScheduledInstallment(Base):
    """Next-due marker driving recurring invoice generation for a profile"""

    __tablename__ = "scheduled_installment"

    id = Column(Integer, primary_key=True)
    profile_id = Column(Integer, ForeignKey("installment_profile.id", ondelete="CASCADE"), nullable=False, index=True)
    scheduled_date = Column(Date, nullable=True)
    status = Column(_enum(ScheduleStatus), nullable=False, default=ScheduleStatus.PENDING)
    next_generation_date = Column(Date, nullable=False, index=True)
    next_invoice_month = Column(Date, nullable=True)
    amount_cents = Column(BigInteger, nullable=True)
    frequency = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    profile = relationship("InstallmentProfile", back_populates="schedule")


class Invoice(Base):
    """Invoice; amount_cents holds the current remaining balance"""

    __tablename__ = "invoice"

    id = Column(Integer, primary_key=True)
    description = Column(Text, nullable=False, default="")
    branch_id = Column(Integer, ForeignKey("branch.id"), nullable=True)
    amount_cents = Column(BigInteger, nullable=False, default=0)
    status = Column(_enum(InvoiceStatus), nullable=False, default=InvoiceStatus.UNPAID, index=True)
    remarks = Column(Text, nullable=True)
    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True, index=True)
    installment_profile_id = Column(Integer, ForeignKey("installment_profile.id"), nullable=True, index=True)
    promo_id = Column(Integer, ForeignKey("promo.id"), nullable=True)
    late_penalty_applied_for_due_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items = relationship("InvoiceLineItem", back_populates="invoice", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="invoice")
    profile = relationship("InstallmentProfile", foreign_keys=[installment_profile_id])


class InvoiceStudent(Base):
    __tablename__ = "invoice_student"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("student.id"), nullable=False, index=True)
    # Set once the first overdue reminder for this invoice-student went out
    overdue_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("invoice_id", "student_id", name="uq_invoice_student"),)


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_item"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False, default=0)
    discount_cents = Column(BigInteger, nullable=False, default=0)
    penalty_cents = Column(BigInteger, nullable=False, default=0)
    tax_percentage = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    invoice = relationship("Invoice", back_populates="items")


class Payment(Base):
    __tablename__ = "payment"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("student.id"), nullable=False)
    branch_id = Column(Integer, ForeignKey("branch.id"), nullable=True)
    payment_method = Column(Text, nullable=False)
    payment_type = Column(Text, nullable=False)
    payable_amount_cents = Column(BigInteger, nullable=False)
    status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.COMPLETED)
    issue_date = Column(Date, nullable=False)
    reference_number = Column(Text, nullable=True)
    remarks = Column(Text, nullable=True)
    created_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    invoice = relationship("Invoice", back_populates="payments")


class ClassEnrollment(Base):
    """One row per (student, class, phase) enrollment"""

    __tablename__ = "class_enrollment"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("student.id"), nullable=False)
    class_id = Column(Integer, ForeignKey("school_class.id"), nullable=False)
    phase_number = Column(Integer, nullable=False, default=1)
    enrollment_status = Column(_enum(EnrollmentStatus), nullable=False, default=EnrollmentStatus.ACTIVE)
    enrolled_by = Column(Text, nullable=True)
    enrolled_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    source_invoice_id = Column(Integer, ForeignKey("invoice.id", ondelete="SET NULL"), nullable=True, index=True)
    removed_at = Column(DateTime(timezone=True), nullable=True)
    removed_reason = Column(Text, nullable=True)
    removed_by = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_class_enrollment_student_class", "student_id", "class_id"),
        Index(
            "uq_class_enrollment_active_phase",
            "student_id",
            "class_id",
            "phase_number",
            unique=True,
            postgresql_where=text("enrollment_status = 'Active'"),
            sqlite_where=text("enrollment_status = 'Active'"),
        ),
    )


class Reservation(Base):
    """Seat reservation secured by a reservation-fee invoice"""

    __tablename__ = "reservation"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("student.id"), nullable=False)
    class_id = Column(Integer, ForeignKey("school_class.id"), nullable=False)
    phase_number = Column(Integer, nullable=True)
    branch_id = Column(Integer, ForeignKey("branch.id"), nullable=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id"), nullable=True, index=True)
    status = Column(_enum(ReservationStatus), nullable=False, default=ReservationStatus.RESERVED)
    due_date = Column(Date, nullable=True)
    reservation_fee_paid_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)


class SystemSetting(Base):
    """Setting row; branch_id NULL holds the global default"""

    __tablename__ = "system_setting"

    id = Column(Integer, primary_key=True)
    setting_key = Column(String(128), nullable=False)
    setting_value = Column(Text, nullable=True)
    setting_type = Column(String(16), nullable=False, default="string")
    category = Column(String(64), nullable=True)
    description = Column(Text, nullable=True)
    branch_id = Column(Integer, ForeignKey("branch.id"), nullable=True)
    updated_by = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("setting_key", "branch_id", name="uq_system_setting_branch"),
        Index(
            "uq_system_setting_global",
            "setting_key",
            unique=True,
            postgresql_where=text("branch_id IS NULL"),
            sqlite_where=text("branch_id IS NULL"),
        ),
    )


class OutboxTask(Base):
    """Post-commit work queue with retry tracking"""

    __tablename__ = "outbox_task"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    task_type = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(_enum(OutboxStatus), nullable=False, default=OutboxStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
