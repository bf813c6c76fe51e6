"""
Shared test fixtures.

Sets up an isolated SQLite database so tests never touch a
real ledger. Tables are created before each test and dropped
after it, so no cash balance or payment leaks between tests.
"""

import os

# Must be set before the app imports its engine
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.pop("SMS_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from coffee_finance.api.dependencies import finance_settings, get_notifier
from coffee_finance.config import FinanceSettings
from coffee_finance.main import app
from coffee_finance.models import Base
from coffee_finance.models.base import get_db
from coffee_finance.services.notification_service import NotificationService


TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop them after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def finance_config():
    """
    Finance policy pinned for tests: soft overdraft, exact
    amounts, three approvals above 100,000.
    """
    return FinanceSettings(
        three_approval_threshold=100000,
        allow_negative_balance=True,
        cash_warning_threshold=10000,
        payment_rounding="exact",
        auto_recover_advances=True,
        minimum_advance_amount=50000,
        allow_advance_with_arrears=False,
        max_bulk_lots=10,
    )


class RecordingNotifier(NotificationService):
    """Notifier that remembers what it was asked to send."""

    def __init__(self):
        super().__init__(api_key="")
        self.sent = []

    def notify(self, channel, recipient, message):
        self.sent.append((channel, recipient, message))
        return True


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db_session, finance_config, notifier):
    """
    Provide a test client wired to the test database, the pinned
    finance policy and the recording notifier.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[finance_settings] = lambda: finance_config
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()
