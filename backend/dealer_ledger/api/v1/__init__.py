# API v1 Package
from dealer_ledger.api.v1 import accounting, payroll, reports

__all__ = [
    'accounting',
    'payroll',
    'reports',
]
