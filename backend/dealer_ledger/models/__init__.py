"""
SQLAlchemy Models for the Dealer Ledger
"""
from datetime import datetime, date
from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, Boolean, DateTime, Date,
    ForeignKey, Enum, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
import enum

from dealer_ledger.core.database import Base


# ==================== ENUMS ====================

class AccountType(str, enum.Enum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


class NormalBalance(str, enum.Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


NORMAL_BALANCE_BY_TYPE = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.REVENUE: NormalBalance.CREDIT,
}


class EntryStatus(str, enum.Enum):
    POSTED = "POSTED"
    VOID = "VOID"


class PayrollBatchStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    POSTED_ACCRUAL = "POSTED_ACCRUAL"
    POSTED_PAYMENT = "POSTED_PAYMENT"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PayrollRecordStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PAID = "PAID"


# ==================== CHART OF ACCOUNTS ====================

class Account(Base):
    """Chart of Accounts"""
    __tablename__ = 'accounts'

    id = Column(Integer, primary_key=True)
    code = Column(String(20), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(Enum(AccountType, native_enum=False, length=20), nullable=False)
    normal_balance = Column(Enum(NormalBalance, native_enum=False, length=10), nullable=False)
    parent_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    parent = relationship("Account", remote_side=[id], backref="children")
    items = relationship("JournalEntryItem", back_populates="account")

    __table_args__ = (
        Index('ix_accounts_parent_id', 'parent_id'),
        Index('ix_accounts_type', 'type'),
    )


# ==================== JOURNAL ====================

class JournalEntry(Base):
    """A balanced, immutable journal entry"""
    __tablename__ = 'journal_entries'

    id = Column(Integer, primary_key=True)
    entry_date = Column(Date, nullable=False, default=date.today)
    description = Column(Text, nullable=True)
    status = Column(
        Enum(EntryStatus, native_enum=False, length=10),
        nullable=False,
        default=EntryStatus.POSTED
    )
    source_reference = Column(String(100), nullable=True)
    idempotency_key = Column(String(150), nullable=True, unique=True)
    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Void / reversal linkage
    reverses_entry_id = Column(Integer, ForeignKey('journal_entries.id', ondelete='RESTRICT'), nullable=True)
    voided_at = Column(DateTime, nullable=True)
    voided_by = Column(String(100), nullable=True)
    void_reason = Column(Text, nullable=True)

    # Relationships
    items = relationship(
        "JournalEntryItem",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="JournalEntryItem.line_number"
    )
    reverses = relationship("JournalEntry", remote_side=[id], backref="reversals")

    @property
    def entry_number(self) -> str:
        return f"JE-{self.id:06d}" if self.id else None

    @property
    def total_debit_cents(self) -> int:
        return sum(item.debit_cents for item in self.items)

    @property
    def total_credit_cents(self) -> int:
        return sum(item.credit_cents for item in self.items)

    @property
    def reversal_entry_id(self):
        return self.reversals[0].id if self.reversals else None

    __table_args__ = (
        Index('ix_journal_entries_status', 'status'),
        Index('ix_journal_entries_source_reference', 'source_reference'),
        Index('ix_journal_entries_entry_date', 'entry_date'),
    )


class JournalEntryItem(Base):
    """One debit or credit line of a journal entry, in integer cents"""
    __tablename__ = 'journal_entry_items'

    id = Column(Integer, primary_key=True)
    entry_id = Column(Integer, ForeignKey('journal_entries.id', ondelete='CASCADE'), nullable=False)
    account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False)
    line_number = Column(Integer, nullable=False)
    description = Column(String(500), nullable=True)
    debit_cents = Column(BigInteger, nullable=False, default=0)
    credit_cents = Column(BigInteger, nullable=False, default=0)

    # Relationships
    entry = relationship("JournalEntry", back_populates="items")
    account = relationship("Account", back_populates="items")

    __table_args__ = (
        CheckConstraint('debit_cents >= 0 AND credit_cents >= 0', name='ck_item_non_negative'),
        CheckConstraint(
            '(debit_cents > 0 AND credit_cents = 0) OR (debit_cents = 0 AND credit_cents > 0)',
            name='ck_item_one_side'
        ),
        UniqueConstraint('entry_id', 'line_number', name='uq_item_line_number'),
        Index('ix_journal_entry_items_account_id', 'account_id'),
    )


# ==================== PAYROLL ====================

class PayrollBatch(Base):
    """A pay period's batch of payroll records"""
    __tablename__ = 'payroll_batches'

    id = Column(Integer, primary_key=True)
    period = Column(String(50), nullable=False)
    status = Column(
        Enum(PayrollBatchStatus, native_enum=False, length=20),
        nullable=False,
        default=PayrollBatchStatus.DRAFT
    )
    cash_account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=True)
    accrual_journal_entry_id = Column(Integer, ForeignKey('journal_entries.id', ondelete='RESTRICT'), nullable=True)
    payment_journal_entry_id = Column(Integer, ForeignKey('journal_entries.id', ondelete='RESTRICT'), nullable=True)
    created_by = Column(String(100), nullable=False)
    approved_by = Column(String(100), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    records = relationship(
        "PayrollRecord",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="PayrollRecord.id"
    )
    transitions = relationship(
        "PayrollBatchTransition",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="PayrollBatchTransition.id"
    )

    @property
    def total_gross_cents(self) -> int:
        return sum(r.gross_pay_cents for r in self.records)

    @property
    def total_net_cents(self) -> int:
        return sum(r.net_pay_cents for r in self.records)

    __table_args__ = (
        Index('ix_payroll_batches_status', 'status'),
        Index('ix_payroll_batches_period', 'period'),
    )


class PayrollRecord(Base):
    """One employee's pay within a batch"""
    __tablename__ = 'payroll_records'

    id = Column(Integer, primary_key=True)
    batch_id = Column(Integer, ForeignKey('payroll_batches.id', ondelete='CASCADE'), nullable=False)
    employee_id = Column(String(100), nullable=False)
    gross_pay_cents = Column(BigInteger, nullable=False)
    deductions_cents = Column(BigInteger, nullable=False, default=0)
    net_pay_cents = Column(BigInteger, nullable=False)
    expense_account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False)
    liability_account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False)
    deductions_account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=True)
    status = Column(
        Enum(PayrollRecordStatus, native_enum=False, length=20),
        nullable=False,
        default=PayrollRecordStatus.PENDING
    )
    paid_at = Column(DateTime, nullable=True)
    paid_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    batch = relationship("PayrollBatch", back_populates="records")

    __table_args__ = (
        CheckConstraint(
            'gross_pay_cents >= 0 AND deductions_cents >= 0 AND net_pay_cents >= 0',
            name='ck_payroll_record_non_negative'
        ),
        CheckConstraint(
            'net_pay_cents = gross_pay_cents - deductions_cents',
            name='ck_payroll_record_net'
        ),
        Index('ix_payroll_records_batch_id', 'batch_id'),
    )


class PayrollBatchTransition(Base):
    """Status history of a payroll batch"""
    __tablename__ = 'payroll_batch_transitions'

    id = Column(Integer, primary_key=True)
    batch_id = Column(Integer, ForeignKey('payroll_batches.id', ondelete='CASCADE'), nullable=False)
    from_status = Column(Enum(PayrollBatchStatus, native_enum=False, length=20), nullable=True)
    to_status = Column(Enum(PayrollBatchStatus, native_enum=False, length=20), nullable=False)
    actor_id = Column(String(100), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    batch = relationship("PayrollBatch", back_populates="transitions")


# ==================== AUDIT ====================

class AuditLog(Base):
    """Audit trail for ledger mutations"""
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Who performed the action
    actor_id = Column(String(100), nullable=False)

    # What action was performed
    action = Column(String(50), nullable=False)  # CREATE, JOURNAL_POSTED, PAYROLL_ACCRUED, ...
    resource_type = Column(String(100), nullable=False)  # Account, JournalEntry, PayrollBatch, ...
    resource_id = Column(Integer, nullable=True)

    # Details
    description = Column(Text, nullable=True)
    old_values = Column(Text, nullable=True)  # JSON string of old values
    new_values = Column(Text, nullable=True)  # JSON string of new values

    __table_args__ = (
        Index('ix_audit_logs_timestamp', 'timestamp'),
        Index('ix_audit_logs_actor_id', 'actor_id'),
        Index('ix_audit_logs_resource', 'resource_type', 'resource_id'),
        Index('ix_audit_logs_action', 'action'),
    )
