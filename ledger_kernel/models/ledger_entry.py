"""
Module: ledger_kernel.models.ledger_entry
Responsibility: ORM persistence for the append-only employee ledger and the
    per-employee balance lock row.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - reference_key is UNIQUE: one row per logical ledger event.  This is the
      idempotency backstop for accruals, disbursements, repayments and payouts.
    - Entries are never updated or deleted (ORM listeners in db/immutability).
    - Amount is signed: credits positive, debits negative, never zero.

Failure modes:
    - IntegrityError on duplicate reference_key (reported by LedgerStore as
      ALREADY_EXISTS, never surfaced to end users).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.db.types import UUIDString
from ledger_kernel.domain.ledger import LedgerEntryKind


class LedgerEntry(Base):
    """
    One balance-affecting event for one employee.

    Guarantees:
        - Balance for an employee is exactly SUM(amount) over their rows.
        - kind is one of LedgerEntryKind.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_ledger_entries_amount_non_zero"),
        CheckConstraint(
            "kind IN ('DAILY_SALARY', 'ADVANCE_DISBURSEMENT', 'ADVANCE_REPAYMENT', "
            "'WITHDRAWAL_DEBIT', 'WITHDRAWAL_REVERSAL')",
            name="ck_ledger_entries_valid_kind",
        ),
        Index("idx_ledger_entries_employee_date", "employee_id", "effective_date"),
        Index("idx_ledger_entries_kind", "kind"),
    )

    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("employees.id"), nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    reference_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    # Originating withdrawal / advance / payment row, when there is one
    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    entry_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    @property
    def entry_kind(self) -> LedgerEntryKind:
        return LedgerEntryKind(self.kind)

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.reference_key} {self.amount}>"


class BalanceLock(Base):
    """
    Per-employee serialization point.

    Every balance-dependent decision first increments ``version`` on this
    row.  The UPDATE takes the row lock, so a second decision for the same
    employee waits until the first commits and then sees its reservation.
    """

    __tablename__ = "employee_balance_locks"

    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("employees.id"), nullable=False, unique=True,
    )
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
