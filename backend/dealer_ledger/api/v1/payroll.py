"""
Payroll API Routes - Batches, Records, Ledger Postings
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from dealer_ledger.core.database import get_db
from dealer_ledger.core.security import Actor, get_current_actor, PermissionChecker
from dealer_ledger.models import PayrollBatchStatus
from dealer_ledger.schemas import (
    PayrollBatchCreate, PayrollBatchResponse, PayrollBatchSummary,
    PayrollRecordCreate, PayrollRecordResponse,
    PayrollStatusUpdate, PayrollPaymentRequest
)
from dealer_ledger.services.payroll_service import PayrollBatchService

router = APIRouter(prefix="/payroll", tags=["Payroll"])


# ==================== BATCHES ====================

@router.get("/batches", response_model=List[PayrollBatchSummary])
async def list_batches(
    status: Optional[PayrollBatchStatus] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return PayrollBatchService(db).list_batches(status)


@router.post(
    "/batches",
    response_model=PayrollBatchResponse,
    status_code=201,
    dependencies=[Depends(PermissionChecker(["payroll:create"]))]
)
async def create_batch(
    batch_data: PayrollBatchCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Create a DRAFT payroll batch"""
    return PayrollBatchService(db).create_batch(
        batch_data.period,
        actor.id,
        cash_account_id=batch_data.cash_account_id,
        records=[record.to_record_input() for record in batch_data.records]
    )


@router.get("/batches/{batch_id}", response_model=PayrollBatchResponse)
async def get_batch(
    batch_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return PayrollBatchService(db).get_batch(batch_id)


@router.post(
    "/batches/{batch_id}/records",
    response_model=PayrollRecordResponse,
    status_code=201,
    dependencies=[Depends(PermissionChecker(["payroll:create"]))]
)
async def add_record(
    batch_id: int,
    record_data: PayrollRecordCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Add an employee record to a DRAFT batch"""
    return PayrollBatchService(db).add_record(batch_id, record_data.to_record_input(), actor.id)


@router.post(
    "/batches/{batch_id}/status",
    response_model=PayrollBatchResponse,
    dependencies=[Depends(PermissionChecker(["payroll:approve"]))]
)
async def update_batch_status(
    batch_id: int,
    status_data: PayrollStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Move a batch along DRAFT -> APPROVED -> POSTED_ACCRUAL -> POSTED_PAYMENT -> PAID"""
    return PayrollBatchService(db).update_batch_status(
        batch_id, status_data.status, actor.id, status_data.notes
    )


@router.post(
    "/batches/{batch_id}/accrual",
    response_model=PayrollBatchResponse,
    dependencies=[Depends(PermissionChecker(["payroll:post"]))]
)
async def post_accrual(
    batch_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Post the payroll accrual entry (idempotent)"""
    return PayrollBatchService(db).post_batch_accrual(batch_id, actor.id)


@router.post(
    "/batches/{batch_id}/payment",
    response_model=PayrollBatchResponse,
    dependencies=[Depends(PermissionChecker(["payroll:post"]))]
)
async def post_payment(
    batch_id: int,
    payment_data: Optional[PayrollPaymentRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Post the payroll payment entry (idempotent)"""
    cash_account_id = payment_data.cash_account_id if payment_data else None
    return PayrollBatchService(db).post_batch_payment(batch_id, actor.id, cash_account_id)


# ==================== RECORDS ====================

@router.post(
    "/records/{record_id}/mark-paid",
    response_model=PayrollRecordResponse,
    dependencies=[Depends(PermissionChecker(["payroll:post"]))]
)
async def mark_record_paid(
    record_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    return PayrollBatchService(db).mark_payroll_record_paid(record_id, actor.id)
