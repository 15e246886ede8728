"""
Salary advance domain rules (``ledger_kernel.domain.advance``).

Pure arithmetic for the advance lifecycle.  The tracker service applies
these under the employee's balance lock; nothing here touches a session.

Invariants enforced
-------------------
* ``remaining_balance`` never increases and never goes below zero.
* An advance is paid off exactly when its remaining balance reaches zero.
* A salary deduction lies in ``[floor, ceiling]`` where the ceiling is the
  smaller of the unreserved remaining balance and the salary being paid,
  and the floor is the minimum payment (or the whole unreserved remainder
  when that is smaller, so the final instalment can close the advance).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from ledger_kernel.db.types import ZERO


class AdvanceStatus(str, Enum):
    # pending_approval and cancelled are never produced by the kernel: an
    # advance row only exists once its approval request is fully approved.
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.APPROVED, PaymentStatus.REJECTED}),
    PaymentStatus.APPROVED: frozenset(),
    PaymentStatus.REJECTED: frozenset(),
}


@dataclass(frozen=True)
class DeductionBounds:
    """Inclusive bounds for one salary deduction against an advance."""

    floor: Decimal
    ceiling: Decimal

    @property
    def is_empty(self) -> bool:
        return self.ceiling <= ZERO or self.floor > self.ceiling

    def admits(self, amount: Decimal) -> bool:
        return amount > ZERO and self.floor <= amount <= self.ceiling


def deduction_bounds(
    remaining_balance: Decimal,
    minimum_payment: Decimal,
    salary_amount: Decimal,
    pending_payments: Decimal = ZERO,
) -> DeductionBounds:
    """
    Compute the admissible deduction range.

    ``pending_payments`` are recorded but not yet approved deductions; they
    already claim part of the remaining balance.
    """
    unreserved = max(remaining_balance - pending_payments, ZERO)
    ceiling = min(unreserved, max(salary_amount, ZERO))
    floor = min(minimum_payment, unreserved)
    return DeductionBounds(floor=floor, ceiling=ceiling)


@dataclass(frozen=True)
class RepaymentOutcome:
    remaining_balance: Decimal
    paid_off: bool
    applied: Decimal


def apply_repayment(remaining_balance: Decimal, amount_paid: Decimal) -> RepaymentOutcome:
    """
    remaining := max(remaining - amount, 0); paid off at zero.  ``applied``
    is the part of the payment that reduced the balance.

    Raises:
        ValueError: If amount_paid is not positive.
    """
    if amount_paid <= ZERO:
        raise ValueError(f"Repayment must be positive, got {amount_paid}")
    applied = min(amount_paid, max(remaining_balance, ZERO))
    remaining = max(remaining_balance - amount_paid, ZERO)
    return RepaymentOutcome(
        remaining_balance=remaining, paid_off=remaining == ZERO, applied=applied,
    )
