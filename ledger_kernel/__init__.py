"""
Ledger Kernel - employee financial ledger

Append-only salary ledger for factory staff with:
- Idempotent daily salary accrual (live and backfill)
- Withdrawal reservations that cannot overdraw under concurrency
- Salary advances bound to a two-stage Admin -> Finance approval
- Hash-chained audit trail for every balance-affecting action
"""

__version__ = "0.1.0"
