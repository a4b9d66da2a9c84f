"""
Chart of Accounts Service - account registry, hierarchy and default chart
"""
from typing import List, Optional, Union
import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dealer_ledger.core.database import atomic
from dealer_ledger.core.exceptions import (
    AccountInUse, DuplicateCode, InvalidNormalBalance, InvalidParent, NotFoundError
)
from dealer_ledger.models import (
    Account, AccountType, JournalEntryItem, NORMAL_BALANCE_BY_TYPE,
    PayrollBatch, PayrollBatchStatus, PayrollRecord
)
from dealer_ledger.schemas import AccountCreate
from dealer_ledger.services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)

# Hierarchies deeper than this are rejected as malformed
MAX_ACCOUNT_DEPTH = 64

# Batches whose ledger work is not finished yet
OPEN_BATCH_STATUSES = (
    PayrollBatchStatus.DRAFT,
    PayrollBatchStatus.APPROVED,
    PayrollBatchStatus.POSTED_ACCRUAL,
)

SYSTEM_ACTOR = "system"

DEFAULT_CHART = [
    # (code, name, type, parent code)
    ("1000", "Assets", AccountType.ASSET, None),
    ("1010", "Cash on Hand", AccountType.ASSET, "1000"),
    ("1020", "Bank - Operating", AccountType.ASSET, "1000"),
    ("1100", "Accounts Receivable - Vehicles", AccountType.ASSET, "1000"),
    ("1130", "Vehicle Inventory", AccountType.ASSET, "1000"),
    ("1140", "Parts Inventory", AccountType.ASSET, "1000"),
    ("1200", "Fixed Assets", AccountType.ASSET, "1000"),
    ("2000", "Liabilities", AccountType.LIABILITY, None),
    ("2100", "Payroll Liabilities", AccountType.LIABILITY, "2000"),
    ("2105", "Payroll Taxes Payable", AccountType.LIABILITY, "2100"),
    ("2110", "Payroll Deductions Payable", AccountType.LIABILITY, "2100"),
    ("2200", "Accounts Payable - Suppliers", AccountType.LIABILITY, "2000"),
    ("2300", "VAT Payable", AccountType.LIABILITY, "2000"),
    ("3000", "Equity", AccountType.EQUITY, None),
    ("3100", "Owner's Capital", AccountType.EQUITY, "3000"),
    ("3200", "Retained Earnings", AccountType.EQUITY, "3000"),
    ("4000", "Revenue", AccountType.REVENUE, None),
    ("4100", "Vehicle Sales", AccountType.REVENUE, "4000"),
    ("4200", "Parts Sales", AccountType.REVENUE, "4000"),
    ("4300", "Service Revenue", AccountType.REVENUE, "4000"),
    ("5000", "Expenses", AccountType.EXPENSE, None),
    ("5100", "Cost of Vehicles Sold", AccountType.EXPENSE, "5000"),
    ("5200", "Salaries and Wages", AccountType.EXPENSE, "5000"),
    ("5210", "Employee Salaries", AccountType.EXPENSE, "5200"),
    ("5220", "Sales Commissions", AccountType.EXPENSE, "5200"),
    ("5300", "Showroom Rent", AccountType.EXPENSE, "5000"),
    ("5400", "Utilities", AccountType.EXPENSE, "5000"),
]


class ChartOfAccountsService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, account_id: int) -> Optional[Account]:
        return self.db.query(Account).filter(Account.id == account_id).first()

    def get_by_code(self, code: str) -> Optional[Account]:
        return self.db.query(Account).filter(Account.code == code).first()

    def lookup(self, key: Union[int, str]) -> Account:
        """Find an account by id (int) or code (str)."""
        account = self.get_by_id(key) if isinstance(key, int) else self.get_by_code(key)
        if not account:
            raise NotFoundError("Account", key)
        return account

    def list_accounts(self, include_inactive: bool = False) -> List[Account]:
        query = self.db.query(Account)
        if not include_inactive:
            query = query.filter(Account.is_active == True)  # noqa: E712
        return query.order_by(Account.code).all()

    def children(self, account_id: int) -> List[Account]:
        return self.db.query(Account).filter(
            Account.parent_id == account_id
        ).order_by(Account.code).all()

    def ancestors(self, account_id: int) -> List[Account]:
        """Parents of an account, nearest first."""
        account = self.lookup(account_id)
        result = []
        parent_id = account.parent_id
        while parent_id is not None:
            if len(result) >= MAX_ACCOUNT_DEPTH:
                raise InvalidParent(parent_id, "hierarchy is too deep")
            parent = self.get_by_id(parent_id)
            result.append(parent)
            parent_id = parent.parent_id
        return result

    def descendant_ids(self, account_id: int) -> List[int]:
        """Ids of an account and everything below it."""
        ids = [account_id]
        frontier = [account_id]
        for _ in range(MAX_ACCOUNT_DEPTH):
            if not frontier:
                break
            rows = self.db.query(Account.id).filter(Account.parent_id.in_(frontier)).all()
            frontier = [row.id for row in rows if row.id not in ids]
            ids.extend(frontier)
        return ids

    def _check_parent(self, parent_id: Optional[int], account_id: Optional[int] = None):
        """Reject a missing parent or one that would close a cycle."""
        if parent_id is None:
            return
        if account_id is not None and parent_id == account_id:
            raise InvalidParent(parent_id, "an account cannot be its own parent")

        current = self.get_by_id(parent_id)
        if not current:
            raise InvalidParent(parent_id, "parent account does not exist")

        depth = 0
        while current is not None:
            if account_id is not None and current.id == account_id:
                raise InvalidParent(parent_id, "move would create a cycle")
            depth += 1
            if depth > MAX_ACCOUNT_DEPTH:
                raise InvalidParent(parent_id, "hierarchy is too deep")
            current = self.get_by_id(current.parent_id) if current.parent_id is not None else None

    def create(self, account_data: AccountCreate, actor_id: str) -> Account:
        expected = NORMAL_BALANCE_BY_TYPE[account_data.type]
        normal_balance = account_data.normal_balance or expected
        if normal_balance != expected:
            raise InvalidNormalBalance(account_data.type.value, normal_balance.value)

        if self.get_by_code(account_data.code):
            raise DuplicateCode(account_data.code)

        self._check_parent(account_data.parent_id)

        try:
            with atomic(self.db):
                account = Account(
                    code=account_data.code,
                    name=account_data.name,
                    description=account_data.description,
                    type=account_data.type,
                    normal_balance=normal_balance,
                    parent_id=account_data.parent_id,
                    created_by=actor_id
                )
                self.db.add(account)
                self.db.flush()
                AuditService(self.db).log(
                    action=AuditAction.CREATE,
                    resource_type="Account",
                    resource_id=account.id,
                    actor_id=actor_id,
                    new_values={"code": account.code, "type": account.type.value}
                )
        except IntegrityError:
            # Lost a race on the unique code
            if self.get_by_code(account_data.code):
                raise DuplicateCode(account_data.code)
            raise

        logger.info(f"Account {account.code} created by {actor_id}")
        return account

    def move(self, account_id: int, new_parent_id: Optional[int], actor_id: str) -> Account:
        """Re-parent an account; None makes it a root."""
        account = self.lookup(account_id)
        self._check_parent(new_parent_id, account_id=account.id)

        old_parent_id = account.parent_id
        with atomic(self.db):
            account.parent_id = new_parent_id
            AuditService(self.db).log(
                action=AuditAction.UPDATE,
                resource_type="Account",
                resource_id=account.id,
                actor_id=actor_id,
                old_values={"parent_id": old_parent_id},
                new_values={"parent_id": new_parent_id}
            )
        return account

    def _raw_balance_cents(self, account_id: int) -> int:
        result = self.db.query(
            func.coalesce(func.sum(JournalEntryItem.debit_cents - JournalEntryItem.credit_cents), 0)
        ).filter(JournalEntryItem.account_id == account_id).scalar()
        return int(result or 0)

    def _has_open_payroll_work(self, account_id: int) -> bool:
        record = self.db.query(PayrollRecord.id).join(PayrollBatch).filter(
            PayrollBatch.status.in_(OPEN_BATCH_STATUSES),
            or_(
                PayrollRecord.expense_account_id == account_id,
                PayrollRecord.liability_account_id == account_id,
                PayrollRecord.deductions_account_id == account_id,
            )
        ).first()
        if record:
            return True
        batch = self.db.query(PayrollBatch.id).filter(
            PayrollBatch.status.in_(OPEN_BATCH_STATUSES),
            PayrollBatch.cash_account_id == account_id
        ).first()
        return batch is not None

    def deactivate(self, account_id: int, actor_id: str) -> Account:
        """Mark an account inactive. Accounts are never deleted."""
        account = self.lookup(account_id)
        if not account.is_active:
            return account

        if self._raw_balance_cents(account.id) != 0:
            raise AccountInUse(account.id, "account has a nonzero balance")
        if self._has_open_payroll_work(account.id):
            raise AccountInUse(account.id, "account is referenced by an open payroll batch")

        with atomic(self.db):
            account.is_active = False
            AuditService(self.db).log(
                action=AuditAction.DEACTIVATE,
                resource_type="Account",
                resource_id=account.id,
                actor_id=actor_id
            )

        logger.info(f"Account {account.code} deactivated by {actor_id}")
        return account


def seed_default_chart(db: Session) -> int:
    """Create any missing default accounts. Returns how many were added."""
    service = ChartOfAccountsService(db)
    created = 0
    for code, name, account_type, parent_code in DEFAULT_CHART:
        if service.get_by_code(code):
            continue
        parent = service.get_by_code(parent_code) if parent_code else None
        service.create(
            AccountCreate(
                code=code,
                name=name,
                type=account_type,
                parent_id=parent.id if parent else None
            ),
            actor_id=SYSTEM_ACTOR
        )
        created += 1

    if created:
        logger.info(f"Seeded {created} default accounts")
    return created
