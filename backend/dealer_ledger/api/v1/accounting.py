"""
Accounting API Routes - Chart of Accounts, Journal Entries, Balances
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from dealer_ledger.core.database import get_db
from dealer_ledger.core.security import Actor, get_current_actor, PermissionChecker
from dealer_ledger.models import EntryStatus
from dealer_ledger.schemas import (
    AccountCreate, AccountMove, AccountResponse, AccountBalanceResponse,
    JournalEntryCreate, JournalEntryResponse, JournalEntryVoid
)
from dealer_ledger.services.chart_service import ChartOfAccountsService
from dealer_ledger.services.ledger_service import LedgerPostingService
from dealer_ledger.services.report_service import BalanceService

router = APIRouter(prefix="/accounting", tags=["Accounting"])


# ==================== CHART OF ACCOUNTS ====================

@router.get("/accounts", response_model=List[AccountResponse])
async def list_accounts(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """List accounts ordered by code"""
    return ChartOfAccountsService(db).list_accounts(include_inactive)


@router.post(
    "/accounts",
    response_model=AccountResponse,
    status_code=201,
    dependencies=[Depends(PermissionChecker(["accounting:create"]))]
)
async def create_account(
    account_data: AccountCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Create a new account"""
    return ChartOfAccountsService(db).create(account_data, actor.id)


@router.get("/accounts/by-code/{code}", response_model=AccountResponse)
async def get_account_by_code(
    code: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return ChartOfAccountsService(db).lookup(code)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return ChartOfAccountsService(db).lookup(account_id)


@router.get("/accounts/{account_id}/children", response_model=List[AccountResponse])
async def list_child_accounts(
    account_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    service = ChartOfAccountsService(db)
    service.lookup(account_id)
    return service.children(account_id)


@router.post(
    "/accounts/{account_id}/move",
    response_model=AccountResponse,
    dependencies=[Depends(PermissionChecker(["accounting:edit"]))]
)
async def move_account(
    account_id: int,
    move_data: AccountMove,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Re-parent an account"""
    return ChartOfAccountsService(db).move(account_id, move_data.parent_id, actor.id)


@router.post(
    "/accounts/{account_id}/deactivate",
    response_model=AccountResponse,
    dependencies=[Depends(PermissionChecker(["accounting:edit"]))]
)
async def deactivate_account(
    account_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Deactivate an account with no balance and no open payroll work"""
    return ChartOfAccountsService(db).deactivate(account_id, actor.id)


@router.get("/accounts/{account_id}/balance", response_model=AccountBalanceResponse)
async def get_account_balance(
    account_id: int,
    include_descendants: bool = False,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Get account balance, optionally rolled up over its sub-accounts"""
    balance_service = BalanceService(db)
    account = balance_service.chart.lookup(account_id)
    if include_descendants:
        cents = balance_service.rollup_balance_cents(account.id)
    else:
        cents = balance_service.balance_cents(account.id)
    return AccountBalanceResponse(
        account_id=account.id,
        code=account.code,
        name=account.name,
        type=account.type,
        normal_balance=account.normal_balance,
        balance_cents=cents,
        include_descendants=include_descendants
    )


# ==================== JOURNAL ENTRIES ====================

@router.get("/journal-entries", response_model=List[JournalEntryResponse])
async def list_journal_entries(
    status: Optional[EntryStatus] = None,
    source_reference: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return LedgerPostingService(db).list_entries(status, source_reference, min(limit, 500), offset)


@router.post(
    "/journal-entries",
    response_model=JournalEntryResponse,
    status_code=201,
    dependencies=[Depends(PermissionChecker(["accounting:post"]))]
)
async def post_journal_entry(
    entry_data: JournalEntryCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Post a balanced journal entry. Replaying an idempotency key returns the original entry."""
    return LedgerPostingService(db).post_entry(
        [line.to_ledger_line() for line in entry_data.lines],
        actor.id,
        idempotency_key=entry_data.idempotency_key,
        description=entry_data.description,
        entry_date=entry_data.entry_date,
        source_reference=entry_data.source_reference
    )


@router.get("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
async def get_journal_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return LedgerPostingService(db).get(entry_id)


@router.post(
    "/journal-entries/{entry_id}/void",
    response_model=JournalEntryResponse,
    dependencies=[Depends(PermissionChecker(["accounting:void"]))]
)
async def void_journal_entry(
    entry_id: int,
    void_data: JournalEntryVoid,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Void an entry; returns the reversal entry"""
    return LedgerPostingService(db).void_entry(entry_id, actor.id, void_data.reason)
