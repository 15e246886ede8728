"""
Module: ledger_kernel.selectors.balance_selector
Responsibility: The Balance Calculator.  Derives an employee's ledger
    balance, reserved withdrawals and available-to-request figure from the
    ledger and the open withdrawal requests.  There are NO stored balances.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - available_to_request = max(ledger_balance - pending_withdrawals, 0).
    - Reads on the caller's session: when called after the employee's
      balance lock is taken, the figures are current for that transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.ledger import BalanceSnapshot, LedgerEntryKind
from ledger_kernel.domain.withdrawal import RESERVING_STATUSES
from ledger_kernel.models.ledger_entry import LedgerEntry
from ledger_kernel.models.withdrawal import WithdrawalRequest


@dataclass(frozen=True)
class StatementLine:
    """One ledger entry with the running balance after it."""

    effective_date: date
    kind: LedgerEntryKind
    amount: Decimal
    reference_key: str
    running_balance: Decimal


class BalanceSelector:
    """Read-side balance queries for one employee at a time."""

    def __init__(self, session: Session):
        self.session = session

    def ledger_balance(self, employee_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), ZERO))
            .where(LedgerEntry.employee_id == employee_id)
        ).scalar_one()
        return round_money(Decimal(total))

    def pending_withdrawals(self, employee_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(WithdrawalRequest.amount), ZERO))
            .where(WithdrawalRequest.employee_id == employee_id)
            .where(WithdrawalRequest.status.in_([s.value for s in RESERVING_STATUSES]))
        ).scalar_one()
        return round_money(Decimal(total))

    def compute_balance(self, employee_id: UUID) -> BalanceSnapshot:
        return BalanceSnapshot(
            employee_id=employee_id,
            ledger_balance=self.ledger_balance(employee_id),
            pending_withdrawals=self.pending_withdrawals(employee_id),
        )

    def entries(
        self,
        employee_id: UUID,
        start: date | None = None,
        end: date | None = None,
        kind: LedgerEntryKind | None = None,
    ) -> list[LedgerEntry]:
        stmt = select(LedgerEntry).where(LedgerEntry.employee_id == employee_id)
        if start is not None:
            stmt = stmt.where(LedgerEntry.effective_date >= start)
        if end is not None:
            stmt = stmt.where(LedgerEntry.effective_date <= end)
        if kind is not None:
            stmt = stmt.where(LedgerEntry.kind == kind.value)
        stmt = stmt.order_by(LedgerEntry.effective_date, LedgerEntry.created_at, LedgerEntry.reference_key)
        return list(self.session.execute(stmt).scalars())

    def statement(
        self,
        employee_id: UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> list[StatementLine]:
        """Entries in order with a running balance, opening at the balance before ``start``."""
        running = ZERO
        if start is not None:
            opening = self.session.execute(
                select(func.coalesce(func.sum(LedgerEntry.amount), ZERO))
                .where(LedgerEntry.employee_id == employee_id)
                .where(LedgerEntry.effective_date < start)
            ).scalar_one()
            running = round_money(Decimal(opening))

        lines = []
        for entry in self.entries(employee_id, start, end):
            amount = round_money(Decimal(entry.amount))
            running += amount
            lines.append(StatementLine(
                effective_date=entry.effective_date,
                kind=entry.entry_kind,
                amount=amount,
                reference_key=entry.reference_key,
                running_balance=running,
            ))
        return lines

    def has_entry(self, reference_key: str) -> bool:
        return self.session.execute(
            select(LedgerEntry.id).where(LedgerEntry.reference_key == reference_key)
        ).first() is not None
