"""Pytest fixtures for testing"""

import pytest
from datetime import date, timedelta
from typing import Generator, Iterable, Optional
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from tuition_billing.api.main import create_app
from tuition_billing.api.dependencies import get_notification_client
from tuition_billing.infrastructure.clients.notifications import NotificationClient
from tuition_billing.infrastructure.database.models import (
    Base,
    Branch,
    ClassEnrollment,
    InstallmentProfile,
    Invoice,
    InvoiceLineItem,
    InvoiceStudent,
    Payment,
    Promo,
    PromoMerchandise,
    Reservation,
    ScheduledInstallment,
    SchoolClass,
    Student,
    SystemSetting,
)
from tuition_billing.infrastructure.database.session import get_db, get_session_factory
from tuition_billing.domain.models import (
    EnrollmentStatus,
    InvoiceStatus,
    PaymentStatus,
    PromoApplyScope,
    PromoType,
    ReservationStatus,
    ScheduleStatus,
)

TODAY = date(2026, 3, 2)


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite database per test so separate sessions see committed rows"""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    """Session for seeding and assertions"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def notification_client() -> AsyncMock:
    return AsyncMock(spec=NotificationClient)


@pytest.fixture
def client(session_factory, notification_client) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notification_client] = lambda: notification_client
    return TestClient(app)


class Seeder:
    """Builds billing rows in the test session; callers commit before running engines"""

    def __init__(self, db: Session):
        self.db = db

    def _add(self, obj):
        self.db.add(obj)
        self.db.flush()
        return obj

    def branch(self, name: str = "Main Branch") -> Branch:
        return self._add(Branch(name=name))

    def student(self, full_name: str = "Maria Santos") -> Student:
        return self._add(Student(full_name=full_name, email="student@example.com"))

    def school_class(self, number_of_phases: Optional[int] = 3, branch: Optional[Branch] = None) -> SchoolClass:
        return self._add(
            SchoolClass(name="Piano Level 1", number_of_phases=number_of_phases, branch_id=branch.id if branch else None)
        )

    def promo(
        self,
        promo_type: PromoType = PromoType.PERCENTAGE_DISCOUNT,
        discount_percentage: Optional[float] = None,
        discount_amount_cents: Optional[int] = None,
        merchandise: Iterable[tuple[str, int]] = (),
        name: str = "Summer Promo",
    ) -> Promo:
        promo = self._add(
            Promo(
                name=name,
                promo_type=promo_type,
                discount_percentage=discount_percentage,
                discount_amount_cents=discount_amount_cents,
            )
        )
        for merchandise_name, quantity in merchandise:
            self._add(PromoMerchandise(promo_id=promo.id, merchandise_name=merchandise_name, quantity=quantity))
        return promo

    def profile(
        self,
        student: Student,
        school_class: Optional[SchoolClass] = None,
        amount_cents: int = 100000,
        frequency: str = "1 month(s)",
        total_phases: Optional[int] = None,
        branch: Optional[Branch] = None,
        downpayment_invoice: Optional[Invoice] = None,
        downpayment_paid: bool = False,
        first_generation_date: Optional[date] = None,
        first_billing_month: Optional[date] = None,
        promo: Optional[Promo] = None,
        promo_apply_scope: Optional[PromoApplyScope] = None,
        promo_months_to_apply: Optional[int] = None,
        promo_months_applied: int = 0,
        generated_count: int = 0,
    ) -> InstallmentProfile:
        return self._add(
            InstallmentProfile(
                student_id=student.id,
                branch_id=branch.id if branch else None,
                class_id=school_class.id if school_class else None,
                description="Piano Level 1 - Monthly",
                amount_cents=amount_cents,
                frequency=frequency,
                total_phases=total_phases,
                generated_count=generated_count,
                is_active=True,
                first_generation_date=first_generation_date,
                first_billing_month=first_billing_month,
                downpayment_paid=downpayment_paid,
                downpayment_invoice_id=downpayment_invoice.id if downpayment_invoice else None,
                promo_id=promo.id if promo else None,
                promo_apply_scope=promo_apply_scope,
                promo_months_to_apply=promo_months_to_apply,
                promo_months_applied=promo_months_applied,
            )
        )

    def schedule(
        self,
        profile: InstallmentProfile,
        next_generation_date: date = TODAY,
        status: ScheduleStatus = ScheduleStatus.PENDING,
        next_invoice_month: Optional[date] = None,
        amount_cents: Optional[int] = None,
    ) -> ScheduledInstallment:
        return self._add(
            ScheduledInstallment(
                profile_id=profile.id,
                scheduled_date=next_generation_date,
                status=status,
                next_generation_date=next_generation_date,
                next_invoice_month=next_invoice_month,
                amount_cents=amount_cents,
                frequency=profile.frequency,
            )
        )

    def invoice(
        self,
        student: Student,
        amount_cents: int = 100000,
        due_date: Optional[date] = None,
        issue_date: Optional[date] = None,
        profile: Optional[InstallmentProfile] = None,
        branch: Optional[Branch] = None,
        description: str = "INV-TEST",
        remarks: Optional[str] = None,
        status: InvoiceStatus = InvoiceStatus.UNPAID,
    ) -> Invoice:
        issue_date = issue_date or TODAY - timedelta(days=7)
        invoice = self._add(
            Invoice(
                description=description,
                branch_id=branch.id if branch else None,
                amount_cents=amount_cents,
                status=status,
                remarks=remarks,
                issue_date=issue_date,
                due_date=due_date or issue_date + timedelta(days=7),
                installment_profile_id=profile.id if profile else None,
            )
        )
        self._add(InvoiceLineItem(invoice_id=invoice.id, description="Tuition", amount_cents=amount_cents))
        self._add(InvoiceStudent(invoice_id=invoice.id, student_id=student.id))
        return invoice

    def payment(
        self,
        invoice: Invoice,
        student: Student,
        amount_cents: int,
        status: PaymentStatus = PaymentStatus.COMPLETED,
    ) -> Payment:
        return self._add(
            Payment(
                invoice_id=invoice.id,
                student_id=student.id,
                payment_method="Cash",
                payment_type="Full Payment",
                payable_amount_cents=amount_cents,
                status=status,
                issue_date=TODAY,
            )
        )

    def enrollment(
        self,
        student: Student,
        school_class: SchoolClass,
        phase_number: int = 1,
        status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
        source_invoice: Optional[Invoice] = None,
    ) -> ClassEnrollment:
        return self._add(
            ClassEnrollment(
                student_id=student.id,
                class_id=school_class.id,
                phase_number=phase_number,
                enrollment_status=status,
                enrolled_by="Registrar",
                source_invoice_id=source_invoice.id if source_invoice else None,
            )
        )

    def reservation(
        self,
        student: Student,
        school_class: SchoolClass,
        invoice: Invoice,
        status: ReservationStatus = ReservationStatus.RESERVED,
        phase_number: Optional[int] = 1,
        due_date: Optional[date] = None,
    ) -> Reservation:
        return self._add(
            Reservation(
                student_id=student.id,
                class_id=school_class.id,
                phase_number=phase_number,
                invoice_id=invoice.id,
                status=status,
                due_date=due_date,
            )
        )

    def setting(self, key: str, value: str, setting_type: str, branch: Optional[Branch] = None) -> SystemSetting:
        return self._add(
            SystemSetting(
                setting_key=key,
                setting_value=value,
                setting_type=setting_type,
                category="billing",
                branch_id=branch.id if branch else None,
            )
        )


@pytest.fixture
def seed(db: Session) -> Seeder:
    return Seeder(db)
