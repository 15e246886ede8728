"""
Module: ledger_kernel.db.types
Responsibility: Column types and money coercion shared by every model and
    service.  Salaries, withdrawals and advances are stored as
    Numeric(38, 9) and handled as Decimal end to end.
Architecture position: Kernel > DB.  Imported by db/base.py, models/,
    domain/, services/ and selectors/.  Imports nothing from the kernel.

Invariants enforced:
    - Floats and bools never enter the ledger as amounts.
    - round_money() is the one rounding rule for shillings: ROUND_HALF_UP to
      two places, the way payroll slips are rounded.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

# Storage precision for every amount column
MONEY_PRECISION = 38
MONEY_SCALE = 9

MONEY_DECIMAL_PLACES = 2
ZERO = Decimal("0")
_CENT = Decimal("0.01")


def money_column_type() -> Numeric:
    return Numeric(MONEY_PRECISION, MONEY_SCALE)


class UUIDString(TypeDecorator):
    """
    UUID stored as its 36-character string.

    Keeps one schema for SQLite and PostgreSQL; values come back as
    ``uuid.UUID``.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Coerce a caller-supplied amount to Decimal.

    Raises:
        TypeError: If value is a float or bool.
        ValueError: If value is not a finite number.
    """
    if isinstance(value, (float, bool)):
        raise TypeError(f"Monetary amounts must not be {type(value).__name__}: {value!r}")
    if isinstance(value, Decimal):
        money = value
    else:
        try:
            money = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not money.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return money


def round_money(value: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Half-up rounding to ``places`` decimals (shillings and cents by default)."""
    exponent = _CENT if places == MONEY_DECIMAL_PLACES else Decimal(1).scaleb(-places)
    return Decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)
