"""
Payroll Batch Service - batch state machine and payroll ledger postings

    DRAFT -> APPROVED -> POSTED_ACCRUAL -> POSTED_PAYMENT -> PAID
    DRAFT | APPROVED -> CANCELLED

Accounting entries created:
1. Accrual (APPROVED -> POSTED_ACCRUAL)
   Debit each record's expense account, credit its liability account.
   Net pay on the default basis; on the gross basis the expense carries gross
   pay and deductions are credited to the deductions account.
2. Payment (POSTED_ACCRUAL -> POSTED_PAYMENT)
   Debit the liability accounts, credit the disbursing cash/bank account
   for total net pay.

Each posting uses a fixed idempotency key per batch, so a batch can never be
accrued or paid twice.
"""
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from dealer_ledger.core.config import settings
from dealer_ledger.core.database import atomic
from dealer_ledger.core.exceptions import (
    InvalidAccount, InvalidPayrollRecord, InvalidTransition, NotFoundError, StateConflictError,
    ValidationError
)
from dealer_ledger.models import (
    Account, AccountType, PayrollBatch, PayrollBatchStatus, PayrollBatchTransition,
    PayrollRecord, PayrollRecordStatus
)
from dealer_ledger.schemas import LedgerLine, PayrollRecordInput
from dealer_ledger.services.audit_service import AuditService, AuditAction
from dealer_ledger.services.ledger_service import LedgerPostingService

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[PayrollBatchStatus, frozenset] = {
    PayrollBatchStatus.DRAFT: frozenset({PayrollBatchStatus.APPROVED, PayrollBatchStatus.CANCELLED}),
    PayrollBatchStatus.APPROVED: frozenset({PayrollBatchStatus.POSTED_ACCRUAL, PayrollBatchStatus.CANCELLED}),
    PayrollBatchStatus.POSTED_ACCRUAL: frozenset({PayrollBatchStatus.POSTED_PAYMENT}),
    PayrollBatchStatus.POSTED_PAYMENT: frozenset({PayrollBatchStatus.PAID}),
    PayrollBatchStatus.PAID: frozenset(),
    PayrollBatchStatus.CANCELLED: frozenset(),
}


def can_transition(current: PayrollBatchStatus, requested: PayrollBatchStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def accrual_key(batch_id: int) -> str:
    return f"payroll:{batch_id}:accrual"


def payment_key(batch_id: int) -> str:
    return f"payroll:{batch_id}:payment"


def _add_amount(bucket: "OrderedDict[int, int]", account_id: int, cents: int):
    if cents:
        bucket[account_id] = bucket.get(account_id, 0) + cents


def _lines(debits: "OrderedDict[int, int]", credits: "OrderedDict[int, int]", memo: str) -> List[LedgerLine]:
    lines = [
        LedgerLine(account_id=account_id, debit_cents=cents, description=memo)
        for account_id, cents in debits.items()
    ]
    lines.extend(
        LedgerLine(account_id=account_id, credit_cents=cents, description=memo)
        for account_id, cents in credits.items()
    )
    return lines


class PayrollBatchService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerPostingService(db)
        self.audit = AuditService(db)

    # ==================== QUERIES ====================

    def get_batch(self, batch_id: int, for_update: bool = False) -> PayrollBatch:
        query = self.db.query(PayrollBatch).options(
            selectinload(PayrollBatch.records),
            selectinload(PayrollBatch.transitions)
        ).filter(PayrollBatch.id == batch_id)
        if for_update:
            query = query.with_for_update()
        batch = query.first()
        if not batch:
            raise NotFoundError("PayrollBatch", batch_id)
        return batch

    def list_batches(self, status: Optional[PayrollBatchStatus] = None) -> List[PayrollBatch]:
        query = self.db.query(PayrollBatch).options(selectinload(PayrollBatch.records))
        if status:
            query = query.filter(PayrollBatch.status == status)
        return query.order_by(PayrollBatch.id.desc()).all()

    def get_record(self, record_id: int, for_update: bool = False) -> PayrollRecord:
        query = self.db.query(PayrollRecord).filter(PayrollRecord.id == record_id)
        if for_update:
            query = query.with_for_update()
        record = query.first()
        if not record:
            raise NotFoundError("PayrollRecord", record_id)
        return record

    # ==================== BATCH ASSEMBLY ====================

    def _require_active_account(self, account_id: Optional[int]) -> Optional[Account]:
        if account_id is None:
            return None
        account = self.db.query(Account).filter(Account.id == account_id).first()
        if not account:
            raise InvalidAccount(account_id, "not found")
        if not account.is_active:
            raise InvalidAccount(account_id, "inactive")
        return account

    def _require_cash_account(self, account_id: Optional[int]) -> Optional[Account]:
        """Payroll is disbursed from an active asset (cash or bank) account."""
        account = self._require_active_account(account_id)
        if account is not None and account.type != AccountType.ASSET:
            raise InvalidAccount(account_id, "not an asset account")
        return account

    def _build_record(self, data: PayrollRecordInput) -> PayrollRecord:
        if data.gross_pay_cents < 0 or data.deductions_cents < 0:
            raise InvalidPayrollRecord("amounts cannot be negative", {"employee_id": data.employee_id})
        expected_net = data.gross_pay_cents - data.deductions_cents
        if expected_net < 0:
            raise InvalidPayrollRecord("deductions exceed gross pay", {"employee_id": data.employee_id})
        net = expected_net if data.net_pay_cents is None else data.net_pay_cents
        if net != expected_net:
            raise InvalidPayrollRecord(
                "net pay must equal gross pay minus deductions",
                {"employee_id": data.employee_id, "net_pay_cents": net, "expected_cents": expected_net}
            )

        self._require_active_account(data.expense_account_id)
        self._require_active_account(data.liability_account_id)
        self._require_active_account(data.deductions_account_id)

        return PayrollRecord(
            employee_id=data.employee_id,
            gross_pay_cents=data.gross_pay_cents,
            deductions_cents=data.deductions_cents,
            net_pay_cents=net,
            expense_account_id=data.expense_account_id,
            liability_account_id=data.liability_account_id,
            deductions_account_id=data.deductions_account_id,
            status=PayrollRecordStatus.PENDING
        )

    def create_batch(
        self,
        period: str,
        actor_id: str,
        cash_account_id: Optional[int] = None,
        records: Iterable[PayrollRecordInput] = ()
    ) -> PayrollBatch:
        self._require_cash_account(cash_account_id)
        built = [self._build_record(data) for data in records]

        with atomic(self.db):
            batch = PayrollBatch(
                period=period,
                status=PayrollBatchStatus.DRAFT,
                cash_account_id=cash_account_id,
                created_by=actor_id
            )
            batch.records.extend(built)
            batch.transitions.append(PayrollBatchTransition(
                from_status=None,
                to_status=PayrollBatchStatus.DRAFT,
                actor_id=actor_id
            ))
            self.db.add(batch)
            self.db.flush()
            self.audit.log(
                action=AuditAction.CREATE,
                resource_type="PayrollBatch",
                resource_id=batch.id,
                actor_id=actor_id,
                new_values={"period": period, "records": len(built)}
            )

        logger.info(f"Payroll batch {batch.id} ({period}) created with {len(built)} records by {actor_id}")
        return batch

    def add_record(self, batch_id: int, data: PayrollRecordInput, actor_id: str) -> PayrollRecord:
        record = self._build_record(data)
        with atomic(self.db):
            batch = self.get_batch(batch_id, for_update=True)
            if batch.status != PayrollBatchStatus.DRAFT:
                raise StateConflictError(
                    f"Records can only be added to a DRAFT batch (batch {batch.id} is {batch.status.value})",
                    error_code="ERR_BATCH_NOT_DRAFT",
                    details={"batch_id": batch.id, "status": batch.status.value}
                )
            batch.records.append(record)
            self.db.flush()
            self.audit.log(
                action=AuditAction.UPDATE,
                resource_type="PayrollBatch",
                resource_id=batch.id,
                actor_id=actor_id,
                description=f"Added record for employee {data.employee_id}"
            )
        return record

    # ==================== TRANSITIONS ====================

    def _transition(
        self,
        batch: PayrollBatch,
        new_status: PayrollBatchStatus,
        actor_id: str,
        notes: Optional[str] = None
    ):
        old_status = batch.status
        if not can_transition(old_status, new_status):
            raise InvalidTransition(old_status.value, new_status.value, resource_id=batch.id)

        batch.status = new_status
        batch.transitions.append(PayrollBatchTransition(
            from_status=old_status,
            to_status=new_status,
            actor_id=actor_id,
            notes=notes
        ))
        self.db.flush()
        self.audit.log(
            action=AuditAction.PAYROLL_STATUS_CHANGED,
            resource_type="PayrollBatch",
            resource_id=batch.id,
            actor_id=actor_id,
            description=notes,
            old_values={"status": old_status.value},
            new_values={"status": new_status.value}
        )
        logger.info(f"Payroll batch {batch.id}: {old_status.value} -> {new_status.value} by {actor_id}")

    def _accrual_lines(self, batch: PayrollBatch) -> List[LedgerLine]:
        debits: "OrderedDict[int, int]" = OrderedDict()
        credits: "OrderedDict[int, int]" = OrderedDict()
        gross_basis = settings.accrual_basis == "gross"

        for record in batch.records:
            if gross_basis:
                _add_amount(debits, record.expense_account_id, record.gross_pay_cents)
                _add_amount(credits, record.liability_account_id, record.net_pay_cents)
                _add_amount(
                    credits,
                    record.deductions_account_id or record.liability_account_id,
                    record.deductions_cents
                )
            else:
                _add_amount(debits, record.expense_account_id, record.net_pay_cents)
                _add_amount(credits, record.liability_account_id, record.net_pay_cents)

        return _lines(debits, credits, f"Payroll accrual {batch.period}")

    def _payment_lines(self, batch: PayrollBatch, cash_account_id: int) -> List[LedgerLine]:
        debits: "OrderedDict[int, int]" = OrderedDict()
        credits: "OrderedDict[int, int]" = OrderedDict()
        for record in batch.records:
            _add_amount(debits, record.liability_account_id, record.net_pay_cents)
            _add_amount(credits, cash_account_id, record.net_pay_cents)
        return _lines(debits, credits, f"Payroll payment {batch.period}")

    def _resolve_cash_account(self, batch: PayrollBatch, override_id: Optional[int]) -> int:
        if override_id is not None:
            return self._require_cash_account(override_id).id
        if batch.cash_account_id is not None:
            return self._require_cash_account(batch.cash_account_id).id
        account = self.db.query(Account).filter(
            Account.code == settings.PAYROLL_CASH_ACCOUNT_CODE
        ).first()
        if not account:
            raise InvalidAccount(settings.PAYROLL_CASH_ACCOUNT_CODE, "not found (payroll cash account)")
        return self._require_cash_account(account.id).id

    def post_batch_accrual(self, batch_id: int, actor_id: str, notes: Optional[str] = None) -> PayrollBatch:
        """Post the accrual entry and move the batch to POSTED_ACCRUAL. Safe to repeat."""
        try:
            with atomic(self.db):
                batch = self.get_batch(batch_id, for_update=True)
                if batch.accrual_journal_entry_id is not None:
                    logger.info(f"Payroll batch {batch.id} accrual already posted")
                    return batch
                if batch.status != PayrollBatchStatus.APPROVED:
                    raise InvalidTransition(
                        batch.status.value, PayrollBatchStatus.POSTED_ACCRUAL.value, resource_id=batch.id
                    )

                entry = self.ledger.stage_entry(
                    self._accrual_lines(batch),
                    actor_id,
                    idempotency_key=accrual_key(batch.id),
                    description=f"Payroll accrual for {batch.period}",
                    source_reference=f"payroll:{batch.id}"
                )
                batch.accrual_journal_entry_id = entry.id
                for record in batch.records:
                    record.status = PayrollRecordStatus.APPROVED
                self._transition(batch, PayrollBatchStatus.POSTED_ACCRUAL, actor_id, notes)
                self.audit.log(
                    action=AuditAction.PAYROLL_ACCRUED,
                    resource_type="PayrollBatch",
                    resource_id=batch.id,
                    actor_id=actor_id,
                    new_values={"journal_entry_id": entry.id, "total_net_cents": batch.total_net_cents}
                )
        except IntegrityError:
            # A concurrent call posted the accrual first
            batch = self.get_batch(batch_id)
            if batch.accrual_journal_entry_id is not None:
                return batch
            raise

        return batch

    def post_batch_payment(
        self,
        batch_id: int,
        actor_id: str,
        cash_account_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> PayrollBatch:
        """Post the payment entry and move the batch to POSTED_PAYMENT. Safe to repeat."""
        try:
            with atomic(self.db):
                batch = self.get_batch(batch_id, for_update=True)
                if batch.payment_journal_entry_id is not None:
                    logger.info(f"Payroll batch {batch.id} payment already posted")
                    return batch
                if batch.status != PayrollBatchStatus.POSTED_ACCRUAL:
                    raise InvalidTransition(
                        batch.status.value, PayrollBatchStatus.POSTED_PAYMENT.value, resource_id=batch.id
                    )

                cash_id = self._resolve_cash_account(batch, cash_account_id)
                entry = self.ledger.stage_entry(
                    self._payment_lines(batch, cash_id),
                    actor_id,
                    idempotency_key=payment_key(batch.id),
                    description=f"Payroll payment for {batch.period}",
                    source_reference=f"payroll:{batch.id}"
                )
                batch.cash_account_id = cash_id
                batch.payment_journal_entry_id = entry.id
                self._transition(batch, PayrollBatchStatus.POSTED_PAYMENT, actor_id, notes)
                self.audit.log(
                    action=AuditAction.PAYROLL_PAYMENT_POSTED,
                    resource_type="PayrollBatch",
                    resource_id=batch.id,
                    actor_id=actor_id,
                    new_values={"journal_entry_id": entry.id, "cash_account_id": cash_id}
                )
        except IntegrityError:
            batch = self.get_batch(batch_id)
            if batch.payment_journal_entry_id is not None:
                return batch
            raise

        return batch

    def _pay_record(self, record: PayrollRecord, actor_id: str, paid_at: datetime):
        record.status = PayrollRecordStatus.PAID
        record.paid_at = paid_at
        record.paid_by = actor_id
        self.audit.log(
            action=AuditAction.PAYROLL_RECORD_PAID,
            resource_type="PayrollRecord",
            resource_id=record.id,
            actor_id=actor_id,
            new_values={"employee_id": record.employee_id, "net_pay_cents": record.net_pay_cents}
        )

    def mark_payroll_record_paid(self, record_id: int, actor_id: str) -> PayrollRecord:
        """Mark one record paid; the batch becomes PAID once every record is."""
        with atomic(self.db):
            record = self.get_record(record_id, for_update=True)
            if record.status == PayrollRecordStatus.PAID:
                return record

            batch = self.get_batch(record.batch_id, for_update=True)
            if batch.status != PayrollBatchStatus.POSTED_PAYMENT:
                raise InvalidTransition(
                    record.status.value,
                    PayrollRecordStatus.PAID.value,
                    resource="PayrollRecord",
                    resource_id=record.id
                )

            now = datetime.utcnow()
            self._pay_record(record, actor_id, now)
            self.db.flush()

            if all(r.status == PayrollRecordStatus.PAID for r in batch.records):
                batch.paid_at = now
                self._transition(batch, PayrollBatchStatus.PAID, actor_id, "All records paid")

        return record

    def update_batch_status(
        self,
        batch_id: int,
        status: PayrollBatchStatus,
        actor_id: str,
        notes: Optional[str] = None
    ) -> PayrollBatch:
        """
        Move a batch along the state graph.

        Ledger-posting targets run the posting operations so a batch never
        reaches a posted status without its journal entry. Any edge not on the
        graph raises InvalidTransition and leaves the batch untouched.
        """
        try:
            status = PayrollBatchStatus(status)
        except ValueError:
            raise ValidationError(
                f"Unknown payroll batch status '{status}'",
                error_code="ERR_INVALID_STATUS",
                details={"status": status, "allowed": [s.value for s in PayrollBatchStatus]}
            )
        batch = self.get_batch(batch_id)
        current = batch.status
        if not can_transition(current, status):
            logger.warning(f"Rejected payroll batch {batch_id} transition {current.value} -> {status.value}")
            raise InvalidTransition(current.value, status.value, resource_id=batch_id)

        if status == PayrollBatchStatus.POSTED_ACCRUAL:
            return self.post_batch_accrual(batch_id, actor_id, notes)
        if status == PayrollBatchStatus.POSTED_PAYMENT:
            return self.post_batch_payment(batch_id, actor_id, notes=notes)

        with atomic(self.db):
            batch = self.get_batch(batch_id, for_update=True)
            now = datetime.utcnow()
            if status == PayrollBatchStatus.APPROVED:
                if not batch.records:
                    raise InvalidPayrollRecord("a batch needs at least one record to be approved")
                batch.approved_by = actor_id
                batch.approved_at = now
            elif status == PayrollBatchStatus.PAID:
                for record in batch.records:
                    if record.status != PayrollRecordStatus.PAID:
                        self._pay_record(record, actor_id, now)
                batch.paid_at = now
            self._transition(batch, status, actor_id, notes)

        return batch
