"""
Balances and reports derived from posted journal lines.
"""
from decimal import Decimal

from dealer_ledger.schemas import LedgerLine
from dealer_ledger.services.chart_service import ChartOfAccountsService
from dealer_ledger.services.ledger_service import LedgerPostingService
from dealer_ledger.services.report_service import BalanceService

ACTOR = "clerk-1"


def test_sale_moves_asset_and_revenue(db_session, accounts, make_lines):
    balances = BalanceService(db_session)
    before = balances.summary()["totals"]["netIncome"]

    LedgerPostingService(db_session).post_entry(make_lines("1000", "4000", 50000), ACTOR)

    assert balances.balance(accounts["1000"]) == Decimal("500.00")
    assert balances.balance(accounts["4000"]) == Decimal("500.00")
    assert balances.summary()["totals"]["netIncome"] - before == Decimal("500.00")


def test_accounting_identity_holds(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    ledger.post_entry(make_lines("1020", "3000", 1000000), ACTOR)   # owner funds the bank
    ledger.post_entry(make_lines("1010", "4000", 250000), ACTOR)    # cash sale
    ledger.post_entry(make_lines("5000", "2200", 80000), ACTOR)     # wages owed
    ledger.post_entry(make_lines("2200", "1020", 30000), ACTOR)     # part paid

    totals = BalanceService(db_session).summary()["totals"]
    assert totals["totalAssets"] == totals["totalLiabilities"] + totals["equity"]
    assert totals["totalAssets"] == Decimal("12200.00")
    assert totals["totalLiabilities"] == Decimal("500.00")
    assert totals["totalRevenue"] == Decimal("2500.00")
    assert totals["totalExpenses"] == Decimal("800.00")
    assert totals["netIncome"] == Decimal("1700.00")


def test_void_nets_to_zero(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    balances = BalanceService(db_session)
    ledger.post_entry(make_lines("1010", "4000", 10000), ACTOR)
    voided_id = ledger.post_entry(make_lines("1010", "4000", 50000), ACTOR).id

    ledger.void_entry(voided_id, ACTOR, reason="Duplicate sale")

    assert balances.balance_cents(accounts["1010"]) == 10000
    assert balances.balance_cents(accounts["4000"]) == 10000

    summary = balances.summary()
    assert summary["entryStatus"] == {"POSTED": 2, "VOID": 1}
    assert summary["totals"]["totalRevenue"] == Decimal("100.00")


def test_voiding_a_reversal_restores_the_original_effect(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    entry_id = ledger.post_entry(make_lines("1010", "4000", 50000), ACTOR).id
    reversal = ledger.void_entry(entry_id, ACTOR)
    ledger.void_entry(reversal.id, ACTOR)

    assert BalanceService(db_session).balance_cents(accounts["4000"]) == 50000


def test_rollup_includes_sub_accounts(db_session, accounts, make_lines):
    ledger = LedgerPostingService(db_session)
    ledger.post_entry(make_lines("1010", "4000", 20000), ACTOR)
    ledger.post_entry(make_lines("1020", "4000", 30000), ACTOR)

    balances = BalanceService(db_session)
    assert balances.balance_cents(accounts["1000"]) == 0
    assert balances.rollup_balance_cents(accounts["1000"]) == 50000
    assert balances.balances()[accounts["1010"]] == 20000


def test_summary_counts_accounts(db_session, accounts):
    ChartOfAccountsService(db_session).deactivate(accounts["2200"], ACTOR)

    summary = BalanceService(db_session).summary()
    assert summary["accounts"] == {"total": len(accounts), "active": len(accounts) - 1}
    assert summary["entryStatus"] == {"POSTED": 0, "VOID": 0}


def test_trial_balance_columns_agree(db_session, accounts):
    LedgerPostingService(db_session).post_entry([
        LedgerLine(account_id=accounts["1010"], debit_cents=70000),
        LedgerLine(account_id=accounts["1020"], debit_cents=30000),
        LedgerLine(account_id=accounts["4000"], credit_cents=100000),
    ], ACTOR)

    report = BalanceService(db_session).trial_balance()
    assert report["total_debit"] == report["total_credit"] == Decimal("1000.00")
    assert [row["code"] for row in report["rows"]] == ["1010", "1020", "4000"]
