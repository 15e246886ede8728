"""
Ledger domain types (``ledger_kernel.domain.ledger``).

Responsibility
--------------
Pure value objects and arithmetic for the employee ledger: entry kinds and
their signs, deterministic reference keys, the balance snapshot, daily
accrual amounts and the rest-day calendar.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  No imports from ``db/`` (other than
the rounding helpers in ``db/types``), ``services/``, ``selectors/``.

Invariants enforced
-------------------
* Credits are positive, debits negative.  ``LedgerEntryKind.sign`` is the
  single source of that rule.
* One reference key per logical ledger event.  Keys are built here and
  nowhere else.
* ``available_to_request`` is never negative.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, Iterator
from uuid import UUID

from ledger_kernel.db.types import ZERO, round_money, to_money
from ledger_kernel.exceptions import InvalidAmountError


class LedgerEntryKind(str, Enum):
    """Balance-affecting event kinds."""

    DAILY_SALARY = "DAILY_SALARY"
    ADVANCE_DISBURSEMENT = "ADVANCE_DISBURSEMENT"
    ADVANCE_REPAYMENT = "ADVANCE_REPAYMENT"
    WITHDRAWAL_DEBIT = "WITHDRAWAL_DEBIT"
    WITHDRAWAL_REVERSAL = "WITHDRAWAL_REVERSAL"

    @property
    def sign(self) -> int:
        """+1 for credits, -1 for debits."""
        return -1 if self in _DEBIT_KINDS else 1

    @property
    def is_credit(self) -> bool:
        return self.sign > 0


_DEBIT_KINDS = frozenset({
    LedgerEntryKind.ADVANCE_REPAYMENT,
    LedgerEntryKind.WITHDRAWAL_DEBIT,
})


# =========================================================================
# Reference keys
# =========================================================================


def daily_salary_key(employee_id: UUID, run_date: date) -> str:
    return f"DAILY_SALARY:{employee_id}:{run_date.isoformat()}"


def advance_disbursement_key(approval_request_id: UUID) -> str:
    return f"ADVANCE_DISBURSEMENT:{approval_request_id}"


def advance_payment_key(payment_id: UUID) -> str:
    return f"ADVANCE_PAYMENT:{payment_id}"


def withdrawal_key(withdrawal_id: UUID) -> str:
    return f"WITHDRAWAL:{withdrawal_id}"


def withdrawal_reversal_key(withdrawal_id: UUID) -> str:
    return f"WITHDRAWAL_REVERSAL:{withdrawal_id}"


def signed_amount(kind: LedgerEntryKind, amount: Decimal) -> Decimal:
    """
    Apply the kind's sign to a positive magnitude.

    Raises:
        ValueError: If amount is not strictly positive.
    """
    if amount <= ZERO:
        raise ValueError(f"Ledger amounts are given as positive magnitudes, got {amount}")
    return amount * kind.sign


def positive_amount(value: Decimal | int | str, what: str) -> Decimal:
    """
    Coerce a caller-supplied amount that must be positive whole cents.

    Raises:
        InvalidAmountError: Zero, negative, or finer than one cent.
    """
    money = to_money(value)
    if money <= ZERO:
        raise InvalidAmountError(money, f"{what} must be positive")
    if money != round_money(money):
        raise InvalidAmountError(money, f"{what} is finer than one cent")
    return money


# =========================================================================
# Balance
# =========================================================================


@dataclass(frozen=True)
class BalanceSnapshot:
    """
    Derived balance view for one employee at one point in a transaction.

    ``ledger_balance`` sums every ledger entry.  ``pending_withdrawals`` sums
    reserved (pending or approved) withdrawal amounts.
    """

    employee_id: UUID
    ledger_balance: Decimal
    pending_withdrawals: Decimal

    @property
    def available_to_request(self) -> Decimal:
        return compute_available(self.ledger_balance, self.pending_withdrawals)

    @property
    def balance(self) -> Decimal:
        return self.ledger_balance

    def to_dict(self) -> dict:
        return {
            "employee_id": str(self.employee_id),
            "balance": self.ledger_balance,
            "pending_withdrawals": self.pending_withdrawals,
            "available_to_request": self.available_to_request,
        }


def compute_available(ledger_balance: Decimal, pending_withdrawals: Decimal) -> Decimal:
    """max(ledger_balance - pending_withdrawals, 0)."""
    return max(ledger_balance - pending_withdrawals, ZERO)


# =========================================================================
# Accrual arithmetic
# =========================================================================


def daily_credit(monthly_salary: Decimal, working_days_per_month: int) -> Decimal:
    """
    Salary portion credited for one working day, rounded to 2 places.

    780000 / 26 -> 30000.00
    """
    if working_days_per_month <= 0:
        raise ValueError("working_days_per_month must be positive")
    return round_money(Decimal(monthly_salary) / Decimal(working_days_per_month))


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def position(self) -> int:
        """Matches ``date.weekday()`` (Monday is 0)."""
        return _WEEKDAY_ORDER.index(self)

    @classmethod
    def of(cls, day: date) -> Weekday:
        return _WEEKDAY_ORDER[day.weekday()]


_WEEKDAY_ORDER = (
    Weekday.MONDAY,
    Weekday.TUESDAY,
    Weekday.WEDNESDAY,
    Weekday.THURSDAY,
    Weekday.FRIDAY,
    Weekday.SATURDAY,
    Weekday.SUNDAY,
)


@dataclass(frozen=True)
class RestDayPolicy:
    """Days of the week on which no salary accrues."""

    rest_days: frozenset[Weekday] = frozenset({Weekday.SUNDAY})

    def __post_init__(self) -> None:
        if len(self.rest_days) >= 7:
            raise ValueError("At least one working day per week is required")

    @classmethod
    def parse(cls, value: str | Iterable[str] | None, default: RestDayPolicy | None = None) -> RestDayPolicy:
        """
        Build from "sunday" / "saturday,sunday" / ["sunday"].

        Empty or None yields ``default`` (or the Sunday-only policy).
        """
        if value is None:
            return default or cls()
        names = value.split(",") if isinstance(value, str) else list(value)
        names = [n.strip().lower() for n in names if n and n.strip()]
        if not names:
            return default or cls()
        return cls(frozenset(Weekday(n) for n in names))

    def is_rest_day(self, day: date) -> bool:
        return Weekday.of(day) in self.rest_days

    def serialize(self) -> str:
        return ",".join(d.value for d in sorted(self.rest_days, key=lambda d: d.position))


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every date from start to end inclusive."""
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def working_days(start: date, end: date, policy: RestDayPolicy) -> list[date]:
    """Dates in the inclusive range that are not rest days under ``policy``."""
    return [d for d in iter_dates(start, end) if not policy.is_rest_day(d)]
