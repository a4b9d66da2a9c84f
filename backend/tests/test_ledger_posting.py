"""
Journal posting: validation without side effects, atomic writes, idempotency
and void-by-reversal.
"""
import pytest

from dealer_ledger.core.exceptions import (
    AlreadyVoided, EmptyEntry, InvalidAccount, MalformedLine, ReservedIdempotencyKey,
    StateConflictError, UnbalancedEntry
)
from dealer_ledger.models import AuditLog, EntryStatus, JournalEntry, JournalEntryItem
from dealer_ledger.schemas import LedgerLine
from dealer_ledger.services.chart_service import ChartOfAccountsService
from dealer_ledger.services.audit_service import AuditAction, AuditService
from dealer_ledger.services.ledger_service import LedgerPostingService, void_key

ACTOR = "clerk-1"


def _counts(db):
    return db.query(JournalEntry).count(), db.query(JournalEntryItem).count()


def test_post_balanced_entry(db_session, accounts, make_lines):
    entry = LedgerPostingService(db_session).post_entry(
        make_lines("1000", "4000", 50000), ACTOR, description="Vehicle sale"
    )

    assert entry.status == EntryStatus.POSTED
    assert entry.entry_number == f"JE-{entry.id:06d}"
    assert entry.created_by == ACTOR
    assert entry.total_debit_cents == entry.total_credit_cents == 50000
    assert [item.line_number for item in entry.items] == [1, 2]
    assert _counts(db_session) == (1, 2)


def test_unbalanced_entry_leaves_no_trace(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    audit_rows = db_session.query(AuditLog).count()

    with pytest.raises(UnbalancedEntry):
        ledger.post_entry(make_lines("1000", "4000", 10000, 9000), ACTOR)

    assert _counts(db_session) == (0, 0)
    assert db_session.query(AuditLog).count() == audit_rows


def test_fewer_than_two_lines_rejected(db_session, accounts):
    ledger = LedgerPostingService(db_session)
    with pytest.raises(EmptyEntry):
        ledger.post_entry([], ACTOR)
    with pytest.raises(EmptyEntry):
        ledger.post_entry([LedgerLine(account_id=accounts["1000"], debit_cents=100)], ACTOR)
    assert _counts(db_session) == (0, 0)


@pytest.mark.parametrize("debit_cents, credit_cents", [(500, 500), (0, 0), (-500, 0)])
def test_malformed_line_rejected(db_session, accounts, debit_cents, credit_cents):
    lines = [
        LedgerLine(account_id=accounts["1000"], debit_cents=debit_cents, credit_cents=credit_cents),
        LedgerLine(account_id=accounts["4000"], credit_cents=500),
    ]
    with pytest.raises(MalformedLine) as exc_info:
        LedgerPostingService(db_session).post_entry(lines, ACTOR)
    assert exc_info.value.details["line_number"] == 1
    assert _counts(db_session) == (0, 0)


def test_unknown_account_rejected(db_session, accounts):
    lines = [
        LedgerLine(account_id=accounts["1000"], debit_cents=500),
        LedgerLine(account_id=9999, credit_cents=500),
    ]
    with pytest.raises(InvalidAccount):
        LedgerPostingService(db_session).post_entry(lines, ACTOR)
    assert _counts(db_session) == (0, 0)


def test_inactive_account_rejected(db_session, accounts, make_lines):
    ChartOfAccountsService(db_session).deactivate(accounts["2200"], ACTOR)

    with pytest.raises(InvalidAccount) as exc_info:
        LedgerPostingService(db_session).post_entry(make_lines("1000", "2200", 500), ACTOR)
    assert exc_info.value.details["reason"] == "inactive"


def test_idempotency_key_returns_existing_entry(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    first = ledger.post_entry(make_lines("1000", "4000", 50000), ACTOR, idempotency_key="sale:42")
    second = ledger.post_entry(make_lines("1000", "4000", 50000), "clerk-2", idempotency_key="sale:42")

    assert second.id == first.id
    assert second.created_by == ACTOR
    assert _counts(db_session) == (1, 2)


def test_concurrent_duplicate_key_returns_winner(db_session, accounts, make_lines, monkeypatch):
    ledger = LedgerPostingService(db_session)
    winner_id = ledger.post_entry(make_lines("1000", "4000", 50000), ACTOR, idempotency_key="sale:43").id

    real_lookup = LedgerPostingService.get_by_idempotency_key
    calls = []

    def lookup_before_winner_committed(self, key):
        calls.append(key)
        if len(calls) == 1:
            return None
        return real_lookup(self, key)

    monkeypatch.setattr(LedgerPostingService, "get_by_idempotency_key", lookup_before_winner_committed)

    loser = ledger.post_entry(make_lines("1000", "4000", 50000), "clerk-2", idempotency_key="sale:43")

    assert loser.id == winner_id
    assert _counts(db_session) == (1, 2)


def test_void_posts_mirrored_reversal(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    original = ledger.post_entry(make_lines("1000", "4000", 50000), ACTOR)
    original_id = original.id
    original_lines = [
        (item.account_id, item.debit_cents, item.credit_cents) for item in original.items
    ]

    reversal = ledger.void_entry(original_id, "manager-1", reason="Sale cancelled")

    original = ledger.get(original_id)
    assert original.status == EntryStatus.VOID
    assert original.voided_by == "manager-1"
    assert original.void_reason == "Sale cancelled"
    assert original.reversal_entry_id == reversal.id
    assert [
        (item.account_id, item.debit_cents, item.credit_cents) for item in original.items
    ] == original_lines

    assert reversal.status == EntryStatus.POSTED
    assert reversal.reverses_entry_id == original_id
    assert [
        (item.account_id, item.debit_cents, item.credit_cents) for item in reversal.items
    ] == [(account_id, credit, debit) for account_id, debit, credit in original_lines]


def test_void_twice_rejected(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    entry_id = ledger.post_entry(make_lines("1000", "4000", 50000), ACTOR).id
    ledger.void_entry(entry_id, ACTOR)

    with pytest.raises(AlreadyVoided):
        ledger.void_entry(entry_id, ACTOR)
    assert db_session.query(JournalEntry).count() == 2


def test_list_entries_filters(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    ledger.post_entry(make_lines("1000", "4000", 100), ACTOR, source_reference="sale:1")
    voided_id = ledger.post_entry(make_lines("1000", "4000", 200), ACTOR, source_reference="sale:2").id
    ledger.void_entry(voided_id, ACTOR)

    assert [e.id for e in ledger.list_entries(status=EntryStatus.VOID)] == [voided_id]
    assert len(ledger.list_entries(source_reference="sale:2")) == 2
    assert len(ledger.list_entries()) == 3


@pytest.mark.parametrize("key", ["void:1", "payroll:1:accrual", "payroll:7:payment"])
def test_reserved_idempotency_keys_rejected(db_session, accounts, make_lines, key):
    with pytest.raises(ReservedIdempotencyKey):
        LedgerPostingService(db_session).post_entry(make_lines("1000", "4000", 100), ACTOR, idempotency_key=key)
    assert _counts(db_session) == (0, 0)


def test_void_ignores_unrelated_entry_holding_the_void_key(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    entry_id = ledger.post_entry(make_lines("1000", "4000", 50000), ACTOR).id
    # An entry written outside post_entry that happens to carry this entry's void key
    ledger.stage_entry(
        make_lines("1010", "4000", 100), ACTOR, idempotency_key=void_key(entry_id), source_reference="import"
    )
    db_session.commit()

    with pytest.raises(StateConflictError) as exc_info:
        ledger.void_entry(entry_id, ACTOR)
    assert not isinstance(exc_info.value, AlreadyVoided)
    assert exc_info.value.error_code == "ERR_IDEMPOTENCY_CONFLICT"
    assert ledger.get(entry_id).status == EntryStatus.POSTED


def test_stage_entry_refuses_key_owned_by_another_source(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    ledger.stage_entry(make_lines("1010", "4000", 100), ACTOR, idempotency_key="batch:9", source_reference="manual")
    db_session.commit()

    with pytest.raises(StateConflictError) as exc_info:
        ledger.stage_entry(
            make_lines("5000", "2100", 250000), ACTOR, idempotency_key="batch:9", source_reference="payroll:9"
        )
    assert exc_info.value.error_code == "ERR_IDEMPOTENCY_CONFLICT"


def test_posting_and_voiding_are_audited(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    entry_id = ledger.post_entry(make_lines("1000", "4000", 50000), ACTOR).id
    ledger.void_entry(entry_id, "manager-1", reason="Sale cancelled")

    history = AuditService(db_session).get_by_resource("JournalEntry", entry_id)
    assert [row.action for row in history] == [AuditAction.JOURNAL_VOIDED, AuditAction.JOURNAL_POSTED]
    assert history[0].actor_id == "manager-1"
