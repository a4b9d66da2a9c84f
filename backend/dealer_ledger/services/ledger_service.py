"""
Ledger Posting Service - validated, atomic, idempotent journal entries

The only write path into journal_entries / journal_entry_items. Every entry
is validated in full before anything is written, so a rejected call leaves no
trace. Posted entries are never edited: voiding adds a mirrored reversal.
"""
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from dealer_ledger.core.database import atomic
from dealer_ledger.core.exceptions import (
    AlreadyVoided, EmptyEntry, InvalidAccount, LedgerError, MalformedLine, NotFoundError,
    ReservedIdempotencyKey, StateConflictError, UnbalancedEntry
)
from dealer_ledger.models import Account, EntryStatus, JournalEntry, JournalEntryItem
from dealer_ledger.schemas import LedgerLine
from dealer_ledger.services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)

# Keys the ledger assigns to its own postings (voids and payroll)
RESERVED_KEY_PREFIXES = ("void:", "payroll:")


def void_key(entry_id: int) -> str:
    return f"void:{entry_id}"


def _key_conflict(idempotency_key: str, existing: JournalEntry) -> StateConflictError:
    return StateConflictError(
        f"Idempotency key '{idempotency_key}' already belongs to {existing.entry_number}",
        error_code="ERR_IDEMPOTENCY_CONFLICT",
        details={
            "idempotency_key": idempotency_key,
            "entry_id": existing.id,
            "source_reference": existing.source_reference
        }
    )


class LedgerPostingService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, entry_id: int) -> JournalEntry:
        entry = self.db.query(JournalEntry).options(
            selectinload(JournalEntry.items)
        ).filter(JournalEntry.id == entry_id).first()
        if not entry:
            raise NotFoundError("JournalEntry", entry_id)
        return entry

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[JournalEntry]:
        return self.db.query(JournalEntry).filter(
            JournalEntry.idempotency_key == idempotency_key
        ).first()

    def list_entries(
        self,
        status: Optional[EntryStatus] = None,
        source_reference: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[JournalEntry]:
        query = self.db.query(JournalEntry).options(selectinload(JournalEntry.items))
        if status:
            query = query.filter(JournalEntry.status == status)
        if source_reference:
            query = query.filter(JournalEntry.source_reference == source_reference)
        return query.order_by(JournalEntry.id.desc()).offset(offset).limit(limit).all()

    # ---------------------------------------------------------------- validation

    def validate_lines(self, lines: Sequence[LedgerLine]) -> None:
        """Raise the first problem found with a set of lines. Never writes."""
        if len(lines) < 2:
            raise EmptyEntry(len(lines))

        account_ids = {line.account_id for line in lines}
        accounts: Dict[int, Account] = {
            account.id: account
            for account in self.db.query(Account).filter(Account.id.in_(account_ids)).all()
        }
        for line in lines:
            account = accounts.get(line.account_id)
            if account is None:
                raise InvalidAccount(line.account_id, "not found")
            if not account.is_active:
                raise InvalidAccount(line.account_id, "inactive")

        total_debit = 0
        total_credit = 0
        for number, line in enumerate(lines, start=1):
            if line.debit_cents < 0 or line.credit_cents < 0:
                raise MalformedLine(number, "amounts cannot be negative")
            if line.debit_cents and line.credit_cents:
                raise MalformedLine(number, "a line cannot carry both a debit and a credit")
            if not line.debit_cents and not line.credit_cents:
                raise MalformedLine(number, "a line needs a debit or a credit")
            total_debit += line.debit_cents
            total_credit += line.credit_cents

        if total_debit != total_credit:
            raise UnbalancedEntry(total_debit, total_credit)

    # ---------------------------------------------------------------- writes

    def _write_entry(
        self,
        lines: Sequence[LedgerLine],
        actor_id: str,
        idempotency_key: Optional[str],
        description: Optional[str],
        entry_date: Optional[date],
        source_reference: Optional[str],
        reverses_entry_id: Optional[int] = None
    ) -> JournalEntry:
        entry = JournalEntry(
            entry_date=entry_date or date.today(),
            description=description,
            status=EntryStatus.POSTED,
            source_reference=source_reference,
            idempotency_key=idempotency_key,
            created_by=actor_id,
            reverses_entry_id=reverses_entry_id
        )
        for number, line in enumerate(lines, start=1):
            entry.items.append(JournalEntryItem(
                account_id=line.account_id,
                line_number=number,
                description=line.description,
                debit_cents=line.debit_cents,
                credit_cents=line.credit_cents
            ))
        self.db.add(entry)
        self.db.flush()

        AuditService(self.db).log(
            action=AuditAction.JOURNAL_POSTED,
            resource_type="JournalEntry",
            resource_id=entry.id,
            actor_id=actor_id,
            new_values={
                "idempotency_key": idempotency_key,
                "source_reference": source_reference,
                "total_cents": entry.total_debit_cents,
            }
        )
        return entry

    def stage_entry(
        self,
        lines: Sequence[LedgerLine],
        actor_id: str,
        idempotency_key: Optional[str] = None,
        description: Optional[str] = None,
        entry_date: Optional[date] = None,
        source_reference: Optional[str] = None
    ) -> JournalEntry:
        """
        Validate and add an entry to the caller's open transaction.

        Same rules as post_entry, but only flushes: the caller commits or
        rolls back the entry together with its own changes. A replayed key
        must belong to the same source, otherwise StateConflictError.
        """
        if idempotency_key:
            existing = self.get_by_idempotency_key(idempotency_key)
            if existing:
                if existing.source_reference != source_reference:
                    raise _key_conflict(idempotency_key, existing)
                return existing

        self.validate_lines(lines)
        return self._write_entry(lines, actor_id, idempotency_key, description, entry_date, source_reference)

    def post_entry(
        self,
        lines: Sequence[LedgerLine],
        actor_id: str,
        idempotency_key: Optional[str] = None,
        description: Optional[str] = None,
        entry_date: Optional[date] = None,
        source_reference: Optional[str] = None
    ) -> JournalEntry:
        """
        Post a balanced journal entry as one transaction.

        If ``idempotency_key`` was already used, the existing entry is returned
        and nothing is written. Validation errors are raised before any write.
        Keys under RESERVED_KEY_PREFIXES are refused.
        """
        if idempotency_key and idempotency_key.startswith(RESERVED_KEY_PREFIXES):
            logger.warning(f"Journal entry rejected for actor={actor_id}: reserved key {idempotency_key}")
            raise ReservedIdempotencyKey(idempotency_key)

        if idempotency_key:
            existing = self.get_by_idempotency_key(idempotency_key)
            if existing:
                logger.info(f"Idempotent replay of {idempotency_key}: returning {existing.entry_number}")
                return existing

        try:
            self.validate_lines(lines)
        except LedgerError as e:
            logger.warning(f"Journal entry rejected for actor={actor_id}: {e}")
            raise

        try:
            with atomic(self.db):
                entry = self._write_entry(
                    lines, actor_id, idempotency_key, description, entry_date, source_reference
                )
        except IntegrityError:
            # A concurrent post with the same key committed first
            if idempotency_key:
                existing = self.get_by_idempotency_key(idempotency_key)
                if existing:
                    logger.info(f"Lost idempotency race on {idempotency_key}: returning {existing.entry_number}")
                    return existing
            raise

        logger.info(
            f"Posted {entry.entry_number} ({len(lines)} lines, {entry.total_debit_cents} cents) by {actor_id}"
        )
        return entry

    def void_entry(self, entry_id: int, actor_id: str, reason: Optional[str] = None) -> JournalEntry:
        """
        Void a posted entry by posting its mirror image.

        The original keeps its lines and is marked VOID; the reversal is a new
        POSTED entry pointing back at it. Returns the reversal.
        """
        entry = self.db.query(JournalEntry).filter(
            JournalEntry.id == entry_id
        ).with_for_update().first()
        if not entry:
            raise NotFoundError("JournalEntry", entry_id)
        if entry.status != EntryStatus.POSTED:
            raise AlreadyVoided(entry_id)

        mirrored = [
            LedgerLine(
                account_id=item.account_id,
                debit_cents=item.credit_cents,
                credit_cents=item.debit_cents,
                description=item.description
            )
            for item in entry.items
        ]

        try:
            with atomic(self.db):
                reversal = self._write_entry(
                    mirrored,
                    actor_id,
                    idempotency_key=void_key(entry.id),
                    description=f"Reversal of {entry.entry_number}" + (f": {reason}" if reason else ""),
                    entry_date=date.today(),
                    source_reference=entry.source_reference,
                    reverses_entry_id=entry.id
                )
                entry.status = EntryStatus.VOID
                entry.voided_at = datetime.utcnow()
                entry.voided_by = actor_id
                entry.void_reason = reason
                AuditService(self.db).log(
                    action=AuditAction.JOURNAL_VOIDED,
                    resource_type="JournalEntry",
                    resource_id=entry.id,
                    actor_id=actor_id,
                    description=reason,
                    new_values={"reversal_entry_id": reversal.id}
                )
        except IntegrityError:
            # Someone else voided it between our read and our write
            existing = self.get_by_idempotency_key(void_key(entry_id))
            if existing is None:
                raise
            if existing.reverses_entry_id == entry_id:
                raise AlreadyVoided(entry_id)
            raise _key_conflict(void_key(entry_id), existing)

        logger.info(f"Voided {entry.entry_number} with reversal {reversal.entry_number} by {actor_id}")
        return reversal
