"""
Pydantic Schemas for API Validation

Request schemas carry decimal amounts; the service layer works in integer
cents (LedgerLine, PayrollRecordInput). Response schemas expose both.
"""
from pydantic import BaseModel, Field, ConfigDict, computed_field, field_validator
from typing import Dict, List, Optional
from datetime import datetime, date
from decimal import Decimal

from dealer_ledger.core.money import to_cents, from_cents
from dealer_ledger.models import (
    AccountType, NormalBalance, EntryStatus, PayrollBatchStatus, PayrollRecordStatus
)


def _two_places(value: Decimal) -> Decimal:
    # Raises ValueError for sub-cent precision
    to_cents(value)
    return value


# ==================== ACCOUNT SCHEMAS ====================

class AccountBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=2, max_length=255)
    type: AccountType
    description: Optional[str] = None


class AccountCreate(AccountBase):
    normal_balance: Optional[NormalBalance] = None
    parent_id: Optional[int] = None


class AccountMove(BaseModel):
    parent_id: Optional[int] = None


class AccountResponse(AccountBase):
    id: int
    normal_balance: NormalBalance
    parent_id: Optional[int]
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccountBalanceResponse(BaseModel):
    account_id: int
    code: str
    name: str
    type: AccountType
    normal_balance: NormalBalance
    balance_cents: int
    include_descendants: bool = False

    @computed_field
    @property
    def balance(self) -> Decimal:
        return from_cents(self.balance_cents)


# ==================== JOURNAL SCHEMAS ====================

class LedgerLine(BaseModel):
    """A journal line in integer cents, as consumed by the posting engine"""
    account_id: int
    debit_cents: int = 0
    credit_cents: int = 0
    description: Optional[str] = None


class JournalLineCreate(BaseModel):
    account_id: int
    debit: Decimal = Decimal("0.00")
    credit: Decimal = Decimal("0.00")
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("debit", "credit")
    @classmethod
    def check_precision(cls, value: Decimal) -> Decimal:
        return _two_places(value)

    def to_ledger_line(self) -> LedgerLine:
        return LedgerLine(
            account_id=self.account_id,
            debit_cents=to_cents(self.debit),
            credit_cents=to_cents(self.credit),
            description=self.description
        )


class JournalEntryCreate(BaseModel):
    lines: List[JournalLineCreate]
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    entry_date: Optional[date] = None
    source_reference: Optional[str] = Field(None, max_length=100)


class JournalEntryVoid(BaseModel):
    reason: Optional[str] = None


class JournalEntryItemResponse(BaseModel):
    line_number: int
    account_id: int
    description: Optional[str]
    debit_cents: int
    credit_cents: int

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def debit(self) -> Decimal:
        return from_cents(self.debit_cents)

    @computed_field
    @property
    def credit(self) -> Decimal:
        return from_cents(self.credit_cents)


class JournalEntryResponse(BaseModel):
    id: int
    entry_number: str
    entry_date: date
    description: Optional[str]
    status: EntryStatus
    source_reference: Optional[str]
    idempotency_key: Optional[str]
    created_by: str
    created_at: datetime
    reverses_entry_id: Optional[int]
    reversal_entry_id: Optional[int]
    voided_at: Optional[datetime]
    voided_by: Optional[str]
    void_reason: Optional[str]
    total_debit_cents: int
    total_credit_cents: int
    items: List[JournalEntryItemResponse]

    model_config = ConfigDict(from_attributes=True)


# ==================== PAYROLL SCHEMAS ====================

class PayrollRecordInput(BaseModel):
    """A payroll record in integer cents, as consumed by the batch processor"""
    employee_id: str = Field(..., min_length=1, max_length=100)
    gross_pay_cents: int
    deductions_cents: int = 0
    net_pay_cents: Optional[int] = None
    expense_account_id: int
    liability_account_id: int
    deductions_account_id: Optional[int] = None


class PayrollRecordCreate(BaseModel):
    employee_id: str = Field(..., min_length=1, max_length=100)
    gross_pay: Decimal
    deductions: Decimal = Decimal("0.00")
    net_pay: Optional[Decimal] = None
    expense_account_id: int
    liability_account_id: int
    deductions_account_id: Optional[int] = None

    @field_validator("gross_pay", "deductions", "net_pay")
    @classmethod
    def check_precision(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        return value if value is None else _two_places(value)

    def to_record_input(self) -> PayrollRecordInput:
        return PayrollRecordInput(
            employee_id=self.employee_id,
            gross_pay_cents=to_cents(self.gross_pay),
            deductions_cents=to_cents(self.deductions),
            net_pay_cents=to_cents(self.net_pay) if self.net_pay is not None else None,
            expense_account_id=self.expense_account_id,
            liability_account_id=self.liability_account_id,
            deductions_account_id=self.deductions_account_id
        )


class PayrollBatchCreate(BaseModel):
    period: str = Field(..., min_length=1, max_length=50)
    cash_account_id: Optional[int] = None
    records: List[PayrollRecordCreate] = []


class PayrollStatusUpdate(BaseModel):
    status: PayrollBatchStatus
    notes: Optional[str] = None


class PayrollPaymentRequest(BaseModel):
    cash_account_id: Optional[int] = None


class PayrollRecordResponse(BaseModel):
    id: int
    batch_id: int
    employee_id: str
    gross_pay_cents: int
    deductions_cents: int
    net_pay_cents: int
    expense_account_id: int
    liability_account_id: int
    deductions_account_id: Optional[int]
    status: PayrollRecordStatus
    paid_at: Optional[datetime]
    paid_by: Optional[str]

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def net_pay(self) -> Decimal:
        return from_cents(self.net_pay_cents)


class PayrollTransitionResponse(BaseModel):
    from_status: Optional[PayrollBatchStatus]
    to_status: PayrollBatchStatus
    actor_id: str
    notes: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PayrollBatchResponse(BaseModel):
    id: int
    period: str
    status: PayrollBatchStatus
    cash_account_id: Optional[int]
    accrual_journal_entry_id: Optional[int]
    payment_journal_entry_id: Optional[int]
    created_by: str
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    paid_at: Optional[datetime]
    created_at: datetime
    total_gross_cents: int
    total_net_cents: int
    records: List[PayrollRecordResponse]
    transitions: List[PayrollTransitionResponse]

    model_config = ConfigDict(from_attributes=True)


class PayrollBatchSummary(BaseModel):
    id: int
    period: str
    status: PayrollBatchStatus
    total_net_cents: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== REPORT SCHEMAS ====================

class SummaryTotals(BaseModel):
    totalAssets: Decimal
    totalLiabilities: Decimal
    totalRevenue: Decimal
    totalExpenses: Decimal
    netIncome: Decimal
    equity: Decimal


class SummaryAccounts(BaseModel):
    total: int
    active: int


class SummaryResponse(BaseModel):
    totals: SummaryTotals
    accounts: SummaryAccounts
    entryStatus: Dict[str, int]


class TrialBalanceRow(BaseModel):
    account_id: int
    code: str
    name: str
    type: AccountType
    debit: Decimal
    credit: Decimal


class TrialBalanceResponse(BaseModel):
    rows: List[TrialBalanceRow]
    total_debit: Decimal
    total_credit: Decimal
