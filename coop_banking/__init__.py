"""
Cooperative Banking Engine

Financial ledger and lifecycle engine for a cooperative bank: account
balances, loans, term deposits, share holdings and dividends, with
Decimal money math, atomic state changes and a hash-chained audit trail.
"""

__version__ = "1.0.0"
