"""Pytest fixtures for testing"""

import pytest
from datetime import date, datetime
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from loan_engine.api.main import create_app
from loan_engine.infrastructure.database.models import Base
from loan_engine.infrastructure.database.session import get_db
from loan_engine.services.deductions import MandateService
from loan_engine.services.loans import LoanService
from loan_engine.services.onboarding import OnboardingService


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

FIXED_NOW = datetime(2024, 1, 15, 9, 0, 0)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def clock():
    """Frozen clock for services that stamp times"""
    return lambda: FIXED_NOW


@pytest.fixture
def lender(db: Session):
    return OnboardingService(db).register_lender("Harbor Capital", user_id="user-lender")


@pytest.fixture
def borrower(db: Session):
    """KYC-verified, low-risk borrower"""
    service = OnboardingService(db)
    borrower = service.register_borrower(
        full_name="Amina Otieno",
        national_id="27845120",
        phone_number="+254700000001",
        country_code="KE",
        currency="USD",
        user_id="user-borrower",
    )
    return service.complete_onboarding(borrower.id)


@pytest.fixture
def active_loan(db: Session, lender, borrower):
    """120,000 at 15% over 12 months, offered by the lender and accepted"""
    service = LoanService(db)
    loan, _ = service.create_loan(
        lender_id=lender.id,
        borrower_id=borrower.id,
        principal_minor=120_000,
        apr_bps=1500,
        term_months=12,
        purpose="business",
        start_date=date(2024, 1, 1),
    )
    loan, _ = service.transition_loan(loan.id, "accept", "borrower")
    return loan


@pytest.fixture
def payment_method(db: Session, borrower):
    return MandateService(db).register_payment_method(borrower.id, "tok_visa_4242", "4242")


@pytest.fixture
def mandate(db: Session, active_loan, payment_method):
    """Monthly mandate on the 15th; returns (mandate, first deduction)"""
    return MandateService(db).create_mandate(
        loan_id=active_loan.id,
        payment_method_id=payment_method.id,
        amount_minor=10_831,
        frequency="monthly",
        deduction_day=15,
        start_date=date(2024, 1, 15),
    )
