"""Read-only queries over the ledger.  Selectors never flush or commit."""

from ledger_kernel.selectors.balance_selector import BalanceSelector, StatementLine

__all__ = ["BalanceSelector", "StatementLine"]
