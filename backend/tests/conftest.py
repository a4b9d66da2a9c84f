"""
Centralized Test Configuration.

Each test gets its own in-memory SQLite engine, disposed afterwards. Foreign
keys are enforced by the connect listener registered in
dealer_ledger.core.database, so tables are never dropped one by one.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dealer_ledger.core.database import Base, get_db
from dealer_ledger.core.security import create_access_token
from dealer_ledger.main import app
from dealer_ledger.models import AccountType
from dealer_ledger.schemas import AccountCreate, LedgerLine, PayrollRecordInput
from dealer_ledger.services.chart_service import ChartOfAccountsService

TEST_DATABASE_URL = "sqlite://"

ACTOR = "clerk-1"


@pytest.fixture
def db_session():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        engine.dispose()


@pytest.fixture
def accounts(db_session):
    """A small dealership chart. Returns account ids keyed by code."""
    service = ChartOfAccountsService(db_session)
    ids = {}
    for code, name, account_type, parent in [
        ("1000", "Assets", AccountType.ASSET, None),
        ("1010", "Cash on Hand", AccountType.ASSET, "1000"),
        ("1020", "Bank - Operating", AccountType.ASSET, "1000"),
        ("2100", "Payroll Liabilities", AccountType.LIABILITY, None),
        ("2110", "Payroll Deductions Payable", AccountType.LIABILITY, "2100"),
        ("2200", "Accounts Payable", AccountType.LIABILITY, None),
        ("3000", "Owner's Capital", AccountType.EQUITY, None),
        ("4000", "Vehicle Sales", AccountType.REVENUE, None),
        ("5000", "Salaries and Wages", AccountType.EXPENSE, None),
    ]:
        account = service.create(
            AccountCreate(code=code, name=name, type=account_type, parent_id=ids.get(parent)),
            actor_id="setup"
        )
        ids[code] = account.id
    return ids


@pytest.fixture
def make_lines(accounts):
    """Build a two-line entry: debit one account code, credit another, in cents."""
    def _make(debit_code, credit_code, debit_cents, credit_cents=None):
        return [
            LedgerLine(account_id=accounts[debit_code], debit_cents=debit_cents),
            LedgerLine(
                account_id=accounts[credit_code],
                credit_cents=debit_cents if credit_cents is None else credit_cents
            ),
        ]
    return _make


@pytest.fixture
def payroll_records(accounts):
    """Two employees: net 1000.00 (after 200.00 deductions) and net 1500.00."""
    return [
        PayrollRecordInput(
            employee_id="EMP-001",
            gross_pay_cents=120000,
            deductions_cents=20000,
            net_pay_cents=100000,
            expense_account_id=accounts["5000"],
            liability_account_id=accounts["2100"],
            deductions_account_id=accounts["2110"],
        ),
        PayrollRecordInput(
            employee_id="EMP-002",
            gross_pay_cents=150000,
            expense_account_id=accounts["5000"],
            liability_account_id=accounts["2100"],
        ),
    ]


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = create_access_token({"sub": ACTOR, "permissions": ["*"]})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def readonly_headers():
    token = create_access_token({"sub": "viewer-1", "permissions": ["reports:view"]})
    return {"Authorization": f"Bearer {token}"}
