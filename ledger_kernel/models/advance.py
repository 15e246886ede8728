"""
Module: ledger_kernel.models.advance
Responsibility: ORM persistence for salary advances and their repayments.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - One advance per approval request (UNIQUE approval_request_id), so a
      replayed activation can never create a second advance.
    - remaining_balance is between 0 and original_amount (check constraint)
      and never increases (ORM listener in db/immutability).
    - A payment only moves remaining_balance once it is approved.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.db.types import UUIDString
from ledger_kernel.domain.advance import AdvanceStatus, PaymentStatus


class SalaryAdvance(TrackedBase):
    """An upfront disbursement against future salary."""

    __tablename__ = "salary_advances"

    __table_args__ = (
        CheckConstraint("original_amount > 0", name="ck_salary_advances_amount_positive"),
        CheckConstraint(
            "remaining_balance >= 0 AND remaining_balance <= original_amount",
            name="ck_salary_advances_remaining_in_range",
        ),
        CheckConstraint("minimum_payment > 0", name="ck_salary_advances_minimum_positive"),
        CheckConstraint(
            "status IN ('pending_approval', 'active', 'paid_off', 'cancelled')",
            name="ck_salary_advances_valid_status",
        ),
        Index("idx_salary_advances_employee_status", "employee_id", "status"),
    )

    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("employees.id"), nullable=False,
    )
    approval_request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False, unique=True,
    )
    original_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    remaining_balance: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    minimum_payment: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AdvanceStatus.ACTIVE.value,
    )
    paid_off_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    @property
    def advance_status(self) -> AdvanceStatus:
        return AdvanceStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<SalaryAdvance {self.id} {self.remaining_balance}/"
            f"{self.original_amount} ({self.status})>"
        )


class AdvancePayment(TrackedBase):
    """One deduction against an advance, pending until approved."""

    __tablename__ = "advance_payments"

    __table_args__ = (
        CheckConstraint("amount_paid > 0", name="ck_advance_payments_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_advance_payments_valid_status",
        ),
        Index("idx_advance_payments_advance_status", "advance_id", "status"),
    )

    advance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("salary_advances.id"), nullable=False,
    )
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    # Salary payout this deduction was taken from, when recorded via payroll
    salary_request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value,
    )
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    def __repr__(self) -> str:
        return f"<AdvancePayment {self.id} {self.amount_paid} ({self.status})>"
