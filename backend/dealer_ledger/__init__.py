"""Dealer Ledger - chart of accounts, journal posting and payroll ledger core"""

__version__ = "1.0.0"
