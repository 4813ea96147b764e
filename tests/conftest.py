"""Pytest configuration and shared fixtures."""
import os
from datetime import date
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
os.environ["LOG_LEVEL"] = "warning"
os.environ.pop("SENTRY_DSN", None)

# Now import after environment is set
from fastapi.testclient import TestClient

from hcbilling.api.dependencies import get_documents, get_settings
from hcbilling.config.database import Base, get_db
from hcbilling.config.settings import AccountingSettings, BillingSettings
from hcbilling.main import app
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.billing.claim_service import ClaimCreationService
from hcbilling.services.billing.payment_service import ManualPaymentService, PaymentCreationService
from hcbilling.services.billing.reconciliation import ReconciliationService

# Import factories and configure them
from tests.factories import (
    AppointmentFactory,
    ChargeFactory,
    ClaimFactory,
    PayerFactory,
    ServiceFactory,
)
from tests.utils.edi_samples import jane_doe_claim
from tests.utils.fake_accounting import FakeAccountingAdapter

INCOME_ACCOUNT_ID = "79"


# Test database setup
@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """Create a test database session on a fresh in-memory database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(test_db: Session) -> Generator[Session, None, None]:
    """Provide a database session for tests."""
    # Configure factories to use this session
    PayerFactory._meta.sqlalchemy_session = test_db
    ServiceFactory._meta.sqlalchemy_session = test_db
    ChargeFactory._meta.sqlalchemy_session = test_db
    AppointmentFactory._meta.sqlalchemy_session = test_db
    ClaimFactory._meta.sqlalchemy_session = test_db

    yield test_db
    test_db.rollback()


@pytest.fixture(scope="function")
def override_get_db(db_session: Session):
    """Override the get_db dependency."""

    def _get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close in tests

    return _get_db


# Settings and accounting fixtures
@pytest.fixture(scope="function")
def accounting_settings() -> AccountingSettings:
    """Accounting settings with every company-level reference configured."""
    return AccountingSettings(
        base_url="https://quickbooks.test",
        realm_id="4620816365",
        access_token="test-token",
        payment_term_id="3",
        contractual_adjustment_item_id="CA",
        coinsurance_item_id="CO",
        interest_item_id="INT",
        origination_fee_item_id="FEE",
        accrued_revenue_account_id="ACC",
    )


@pytest.fixture(scope="function")
def billing_settings(tmp_path) -> BillingSettings:
    """Billing settings with file directories under a temporary directory."""
    return BillingSettings(
        currency_code="USD",
        claims_inbox_dir=tmp_path / "inbox" / "claims",
        processed_claims_dir=tmp_path / "processed" / "claims",
        processed_payments_dir=tmp_path / "processed" / "payments",
        upload_dir=tmp_path / "uploads",
    )


@pytest.fixture(scope="function")
def fake_adapter() -> FakeAccountingAdapter:
    """In-memory accounting system."""
    return FakeAccountingAdapter()


@pytest.fixture(scope="function")
def documents(fake_adapter, accounting_settings) -> AccountingDocuments:
    return AccountingDocuments(fake_adapter, accounting_settings)


@pytest.fixture(scope="function")
def client(override_get_db, documents, billing_settings) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app backed by the fake accounting system."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_documents] = lambda: documents
    app.dependency_overrides[get_settings] = lambda: billing_settings
    # Set raise_server_exceptions=False so that 500 errors return responses instead of raising
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# Test data fixtures
@pytest.fixture(scope="function")
def service(db_session, fake_adapter):
    """A 60 minute psychotherapy service billed at $150.00, contracted at $100.00."""
    service = ServiceFactory(
        payer__id="PAYER001",
        payer__name="ACME HEALTH",
        payer__qb_customer_id="58",
        qb_item_id="ITEM1",
    )
    fake_adapter.seed(
        "Item",
        {
            "Id": "ITEM1",
            "Name": service.name,
            "Type": "Service",
            "IncomeAccountRef": {"value": INCOME_ACCOUNT_ID, "name": "Services"},
        },
    )
    return service


@pytest.fixture(scope="function")
def unbilled_charges(db_session, service):
    """
    Two charges for Jane Doe billed on 2024-03-20, each with its completed
    appointment, not yet on a claim.
    """
    charges = []
    for charge_line, service_date in (("4521", date(2024, 3, 4)), ("4522", date(2024, 3, 11))):
        charge = ChargeFactory(
            charge_line=charge_line,
            service=service,
            service_date=service_date,
            billed_date=date(2024, 3, 20),
        )
        AppointmentFactory(
            id="A%s" % charge_line,
            service=service,
            service_date=service_date,
            billed_date=date(2024, 3, 20),
            charge_line=charge_line,
        )
        charges.append(charge)
    return charges


# Service fixtures
@pytest.fixture(scope="function")
def claim_service(db_session, documents, billing_settings) -> ClaimCreationService:
    return ClaimCreationService(db_session, documents, billing_settings)


@pytest.fixture(scope="function")
def reconciliation(db_session, documents, billing_settings) -> ReconciliationService:
    return ReconciliationService(db_session, documents, billing_settings.currency_code)


@pytest.fixture(scope="function")
def payment_service(db_session, reconciliation, billing_settings) -> PaymentCreationService:
    return PaymentCreationService(db_session, reconciliation, billing_settings)


@pytest.fixture(scope="function")
def manual_payment_service(db_session, reconciliation, billing_settings) -> ManualPaymentService:
    return ManualPaymentService(db_session, reconciliation, billing_settings)


@pytest.fixture(scope="function")
def processed_claim(claim_service, unbilled_charges):
    """Claim IN00004521 created from the 837 that billed the two unbilled charges."""
    return claim_service.process_data(jane_doe_claim().encode()).claims[0]
