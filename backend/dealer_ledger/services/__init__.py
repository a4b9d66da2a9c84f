# Services Package
from dealer_ledger.services.audit_service import AuditService, AuditAction
from dealer_ledger.services.chart_service import ChartOfAccountsService, seed_default_chart
from dealer_ledger.services.ledger_service import LedgerPostingService
from dealer_ledger.services.payroll_service import PayrollBatchService
from dealer_ledger.services.report_service import BalanceService

__all__ = [
    'AuditService',
    'AuditAction',
    'ChartOfAccountsService',
    'seed_default_chart',
    'LedgerPostingService',
    'PayrollBatchService',
    'BalanceService',
]
