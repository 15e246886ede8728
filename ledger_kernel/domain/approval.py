"""
Approval domain types (``ledger_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the two-stage (Admin -> Finance) approval workflow:
the stage machine, the request DTO, and the tagged union that replaces the
free-form ``details`` payload with one strict parser per request type.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``APPROVAL_TRANSITIONS`` defines the only valid stage moves.  Terminal
  stages have no outgoing edges.
* A known request type whose details do not parse is rejected at submit
  time.  Unknown types parse to ``UnknownDetails`` and never move money.
* Extra keys in a details payload are tolerated and ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.exceptions import InvalidApprovalDetailsError


class ApprovalStage(str, Enum):
    """Approval request lifecycle stages."""

    PENDING_ADMIN = "pending_admin"
    PENDING_FINANCE = "pending_finance"
    APPROVED = "approved"
    REJECTED = "rejected"


APPROVAL_TRANSITIONS: dict[ApprovalStage, frozenset[ApprovalStage]] = {
    ApprovalStage.PENDING_ADMIN: frozenset({
        ApprovalStage.PENDING_FINANCE,
        ApprovalStage.REJECTED,
    }),
    ApprovalStage.PENDING_FINANCE: frozenset({
        ApprovalStage.APPROVED,
        ApprovalStage.REJECTED,
    }),
    ApprovalStage.APPROVED: frozenset(),
    ApprovalStage.REJECTED: frozenset(),
}

TERMINAL_APPROVAL_STAGES: frozenset[ApprovalStage] = frozenset({
    ApprovalStage.APPROVED,
    ApprovalStage.REJECTED,
})


def can_transition(current: ApprovalStage, target: ApprovalStage) -> bool:
    return target in APPROVAL_TRANSITIONS[current]


class ApprovalType(str, Enum):
    """Request types that carry activation logic."""

    SALARY_ADVANCE = "Salary Advance"
    WITHDRAWAL = "Withdrawal"


# =========================================================================
# Details tagged union
# =========================================================================


def _require(payload: Mapping[str, Any], key: str, request_type: str) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise InvalidApprovalDetailsError(request_type, f"missing '{key}'")
    return value


def _as_uuid(value: Any, key: str, request_type: str) -> UUID:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError as exc:
        raise InvalidApprovalDetailsError(request_type, f"'{key}' is not a UUID") from exc


def _as_amount(value: Any, key: str, request_type: str) -> Decimal:
    if isinstance(value, (float, bool)):
        raise InvalidApprovalDetailsError(
            request_type, f"'{key}' must be a decimal string or integer"
        )
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise InvalidApprovalDetailsError(request_type, f"'{key}' is not a number") from exc
    if not amount.is_finite() or amount <= ZERO:
        raise InvalidApprovalDetailsError(request_type, f"'{key}' must be positive")
    if amount != round_money(amount):
        raise InvalidApprovalDetailsError(request_type, f"'{key}' is finer than one cent")
    return amount


@dataclass(frozen=True)
class SalaryAdvanceDetails:
    """Details of a "Salary Advance" request."""

    employee_id: UUID
    advance_amount: Decimal
    minimum_payment: Decimal
    reason: str = ""

    request_type = ApprovalType.SALARY_ADVANCE.value

    @classmethod
    def parse(cls, payload: Mapping[str, Any]) -> SalaryAdvanceDetails:
        t = cls.request_type
        advance_amount = _as_amount(_require(payload, "advance_amount", t), "advance_amount", t)
        minimum_payment = _as_amount(_require(payload, "minimum_payment", t), "minimum_payment", t)
        if minimum_payment > advance_amount:
            raise InvalidApprovalDetailsError(
                t, "minimum_payment cannot exceed advance_amount"
            )
        return cls(
            employee_id=_as_uuid(_require(payload, "employee_id", t), "employee_id", t),
            advance_amount=advance_amount,
            minimum_payment=minimum_payment,
            reason=str(payload.get("reason") or ""),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "advance_amount": str(self.advance_amount),
            "minimum_payment": str(self.minimum_payment),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class WithdrawalDetails:
    """Details of a high-value "Withdrawal" request."""

    withdrawal_id: UUID
    employee_id: UUID

    request_type = ApprovalType.WITHDRAWAL.value

    @classmethod
    def parse(cls, payload: Mapping[str, Any]) -> WithdrawalDetails:
        t = cls.request_type
        return cls(
            withdrawal_id=_as_uuid(_require(payload, "withdrawal_id", t), "withdrawal_id", t),
            employee_id=_as_uuid(_require(payload, "employee_id", t), "employee_id", t),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "withdrawal_id": str(self.withdrawal_id),
            "employee_id": str(self.employee_id),
        }


@dataclass(frozen=True)
class UnknownDetails:
    """Details for a request type without activation logic."""

    request_type: str
    raw: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return dict(self.raw)


ApprovalDetails = SalaryAdvanceDetails | WithdrawalDetails | UnknownDetails

_PARSERS = {
    ApprovalType.SALARY_ADVANCE.value: SalaryAdvanceDetails.parse,
    ApprovalType.WITHDRAWAL.value: WithdrawalDetails.parse,
}


def is_known_type(request_type: str) -> bool:
    return request_type in _PARSERS


def parse_details(request_type: str, payload: Mapping[str, Any] | None) -> ApprovalDetails:
    """
    Parse a details payload by request type.

    Raises:
        InvalidApprovalDetailsError: Known type with a malformed payload.
    """
    payload = payload or {}
    if not isinstance(payload, Mapping):
        raise InvalidApprovalDetailsError(request_type, "details must be an object")
    parser = _PARSERS.get(request_type)
    if parser is None:
        return UnknownDetails(request_type=request_type, raw=dict(payload))
    return parser(payload)


# =========================================================================
# Request DTO
# =========================================================================


@dataclass(frozen=True)
class ApprovalRequestView:
    """Immutable snapshot of a persisted approval request."""

    request_id: UUID
    request_type: str
    title: str
    amount: Decimal
    requested_by: UUID
    stage: ApprovalStage
    details: dict[str, Any]
    created_at: datetime | None = None
    admin_approved_at: datetime | None = None
    admin_approved_by: UUID | None = None
    finance_approved_at: datetime | None = None
    finance_approved_by: UUID | None = None
    rejected_at: datetime | None = None
    rejected_by: UUID | None = None
    rejection_reason: str | None = None
    rejection_stage: ApprovalStage | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_APPROVAL_STAGES

    def parsed_details(self) -> ApprovalDetails:
        return parse_details(self.request_type, self.details)
