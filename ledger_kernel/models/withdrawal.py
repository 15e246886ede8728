"""
Module: ledger_kernel.models.withdrawal
Responsibility: ORM persistence for withdrawal requests (reservations).
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - amount > 0, request_ref unique.
    - amount, employee_id and request_ref never change after insert
      (ORM listener in db/immutability).
    - A row in status pending/approved holds its amount against the
      employee's available balance.
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
from ledger_kernel.domain.withdrawal import WithdrawalStatus


class WithdrawalRequest(TrackedBase):
    """An employee's request to be paid out part of their balance."""

    __tablename__ = "withdrawal_requests"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_requests_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'paid', 'cancelled', 'reversed')",
            name="ck_withdrawal_requests_valid_status",
        ),
        Index("idx_withdrawal_requests_employee_status", "employee_id", "status"),
    )

    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("employees.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False)
    channel: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WithdrawalStatus.PENDING.value,
    )
    request_ref: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    approval_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=True,
    )
    resolved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    resolution_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    @property
    def withdrawal_status(self) -> WithdrawalStatus:
        return WithdrawalStatus(self.status)

    @property
    def requires_approval(self) -> bool:
        return self.approval_request_id is not None

    def __repr__(self) -> str:
        return f"<WithdrawalRequest {self.request_ref} {self.amount} ({self.status})>"
