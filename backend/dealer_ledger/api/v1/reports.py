"""
Reports API Routes - Financial Summary, Trial Balance
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dealer_ledger.core.database import get_db
from dealer_ledger.core.security import PermissionChecker
from dealer_ledger.schemas import SummaryResponse, TrialBalanceResponse
from dealer_ledger.services.report_service import BalanceService

router = APIRouter(
    prefix="/reports",
    tags=["Reports"],
    dependencies=[Depends(PermissionChecker(["reports:view"]))]
)


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(db: Session = Depends(get_db)):
    """Totals by account class, account counts and entry status counts"""
    return BalanceService(db).summary()


@router.get("/trial-balance", response_model=TrialBalanceResponse)
async def get_trial_balance(db: Session = Depends(get_db)):
    return BalanceService(db).trial_balance()
