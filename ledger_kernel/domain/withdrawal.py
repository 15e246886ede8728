"""
Withdrawal domain rules (``ledger_kernel.domain.withdrawal``).

A withdrawal request is a reservation: while it is pending or approved its
amount is held against the employee's available balance.  Only ``paid``
moves money (a WITHDRAWAL_DEBIT); ``reversed`` puts it back.
"""

from __future__ import annotations

import secrets
import string
from datetime import date
from enum import Enum


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELLED = "cancelled"
    REVERSED = "reversed"


WITHDRAWAL_TRANSITIONS: dict[WithdrawalStatus, frozenset[WithdrawalStatus]] = {
    WithdrawalStatus.PENDING: frozenset({
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.REJECTED,
        WithdrawalStatus.CANCELLED,
    }),
    WithdrawalStatus.APPROVED: frozenset({
        WithdrawalStatus.PAID,
        WithdrawalStatus.REJECTED,
    }),
    WithdrawalStatus.PAID: frozenset({WithdrawalStatus.REVERSED}),
    WithdrawalStatus.REJECTED: frozenset(),
    WithdrawalStatus.CANCELLED: frozenset(),
    WithdrawalStatus.REVERSED: frozenset(),
}

RESERVING_STATUSES: frozenset[WithdrawalStatus] = frozenset({
    WithdrawalStatus.PENDING,
    WithdrawalStatus.APPROVED,
})

_REF_ALPHABET = string.ascii_uppercase + string.digits
REF_SUFFIX_LENGTH = 4


def can_transition(current: WithdrawalStatus, target: WithdrawalStatus) -> bool:
    return target in WITHDRAWAL_TRANSITIONS[current]


def make_request_ref(on: date, prefix: str = "WR", suffix: str | None = None) -> str:
    """
    Human-facing reference such as ``WR-2024-01-15-7QX2``.

    Uniqueness is enforced by the database; callers retry on collision.
    """
    if suffix is None:
        suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(REF_SUFFIX_LENGTH))
    return f"{prefix}-{on.isoformat()}-{suffix}"
