"""
Balance Service - account balances, financial summary and trial balance

Balances are computed from every journal line. A voided entry keeps its lines
and its reversal carries the mirror image, so the pair nets to zero on every
account it touched.
"""
from decimal import Decimal
from typing import Dict, List
import logging

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from dealer_ledger.core.money import from_cents
from dealer_ledger.models import (
    Account, AccountType, EntryStatus, JournalEntry, JournalEntryItem, NORMAL_BALANCE_BY_TYPE,
    NormalBalance
)
from dealer_ledger.services.chart_service import ChartOfAccountsService

logger = logging.getLogger(__name__)


def _signed(normal_balance: NormalBalance, debit_cents: int, credit_cents: int) -> int:
    if normal_balance == NormalBalance.DEBIT:
        return debit_cents - credit_cents
    return credit_cents - debit_cents


class BalanceService:
    def __init__(self, db: Session):
        self.db = db
        self.chart = ChartOfAccountsService(db)

    def _totals_for(self, account_ids: List[int]):
        debit, credit = self.db.query(
            func.coalesce(func.sum(JournalEntryItem.debit_cents), 0),
            func.coalesce(func.sum(JournalEntryItem.credit_cents), 0)
        ).filter(JournalEntryItem.account_id.in_(account_ids)).one()
        return int(debit), int(credit)

    def balance_cents(self, account_id: int) -> int:
        account = self.chart.lookup(account_id)
        debit, credit = self._totals_for([account.id])
        return _signed(account.normal_balance, debit, credit)

    def balance(self, account_id: int) -> Decimal:
        """Balance in the account's normal direction."""
        return from_cents(self.balance_cents(account_id))

    def rollup_balance_cents(self, account_id: int) -> int:
        """Balance of an account and all of its descendants."""
        account = self.chart.lookup(account_id)
        debit, credit = self._totals_for(self.chart.descendant_ids(account.id))
        return _signed(account.normal_balance, debit, credit)

    def balances(self) -> Dict[int, int]:
        """Balance in cents of every account, keyed by account id."""
        rows = self.db.query(
            Account.id,
            Account.normal_balance,
            func.coalesce(func.sum(JournalEntryItem.debit_cents), 0).label("debit"),
            func.coalesce(func.sum(JournalEntryItem.credit_cents), 0).label("credit")
        ).outerjoin(
            JournalEntryItem, JournalEntryItem.account_id == Account.id
        ).group_by(Account.id, Account.normal_balance).all()

        return {row.id: _signed(row.normal_balance, int(row.debit), int(row.credit)) for row in rows}

    def summary(self) -> Dict:
        """
        Financial position across the whole ledger.

        Equity-type accounts are left out of the rollups; ``equity`` is derived
        as assets minus liabilities and ``netIncome`` as revenue minus expenses.
        """
        rows = self.db.query(
            Account.type,
            func.coalesce(func.sum(JournalEntryItem.debit_cents), 0).label("debit"),
            func.coalesce(func.sum(JournalEntryItem.credit_cents), 0).label("credit")
        ).join(
            JournalEntryItem, JournalEntryItem.account_id == Account.id
        ).group_by(Account.type).all()

        by_type = {account_type: 0 for account_type in AccountType}
        for row in rows:
            by_type[row.type] = _signed(
                NORMAL_BALANCE_BY_TYPE[row.type], int(row.debit), int(row.credit)
            )

        assets = by_type[AccountType.ASSET]
        liabilities = by_type[AccountType.LIABILITY]
        revenue = by_type[AccountType.REVENUE]
        expenses = by_type[AccountType.EXPENSE]

        total_accounts, active_accounts = self.db.query(
            func.count(Account.id),
            func.coalesce(func.sum(case((Account.is_active == True, 1), else_=0)), 0)  # noqa: E712
        ).one()

        entry_status = {status.value: 0 for status in EntryStatus}
        for status, count in self.db.query(
            JournalEntry.status, func.count(JournalEntry.id)
        ).group_by(JournalEntry.status).all():
            entry_status[status.value] = count

        return {
            "totals": {
                "totalAssets": from_cents(assets),
                "totalLiabilities": from_cents(liabilities),
                "totalRevenue": from_cents(revenue),
                "totalExpenses": from_cents(expenses),
                "netIncome": from_cents(revenue - expenses),
                "equity": from_cents(assets - liabilities),
            },
            "accounts": {
                "total": int(total_accounts),
                "active": int(active_accounts),
            },
            "entryStatus": entry_status,
        }

    def trial_balance(self) -> Dict:
        """Net debit or credit per account with activity; the two columns always agree."""
        rows = self.db.query(
            Account.id,
            Account.code,
            Account.name,
            Account.type,
            func.sum(JournalEntryItem.debit_cents).label("debit"),
            func.sum(JournalEntryItem.credit_cents).label("credit")
        ).join(
            JournalEntryItem, JournalEntryItem.account_id == Account.id
        ).group_by(Account.id, Account.code, Account.name, Account.type).order_by(Account.code).all()

        result = []
        total_debit = 0
        total_credit = 0
        for row in rows:
            net = int(row.debit) - int(row.credit)
            if net == 0:
                continue
            debit = net if net > 0 else 0
            credit = -net if net < 0 else 0
            total_debit += debit
            total_credit += credit
            result.append({
                "account_id": row.id,
                "code": row.code,
                "name": row.name,
                "type": row.type,
                "debit": from_cents(debit),
                "credit": from_cents(credit),
            })

        logger.debug(f"Trial balance over {len(result)} accounts, {total_debit} cents each side")
        return {
            "rows": result,
            "total_debit": from_cents(total_debit),
            "total_credit": from_cents(total_credit),
        }
